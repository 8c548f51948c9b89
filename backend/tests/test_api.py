"""Tests for the HTTP adapter."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from accesscore.auth.deps import IdentityContext, get_identity
from accesscore.main import create_app


class IdentityHolder:
    """Lets a test switch the caller between requests."""

    def __init__(self):
        self.current: IdentityContext | None = None

    def login(self, user_id: str, organization_id: str) -> None:
        self.current = IdentityContext(user_id=user_id, organization_id=organization_id)


@pytest.fixture
def identity() -> IdentityHolder:
    return IdentityHolder()


@pytest_asyncio.fixture
async def client(services, identity) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(services)

    async def override_get_identity() -> IdentityContext:
        return identity.current

    app.dependency_overrides[get_identity] = override_get_identity
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    await services.audit.drain()


@pytest_asyncio.fixture
async def anonymous_client(services) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.integration
@pytest.mark.asyncio
class TestHealthAndIdentity:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_ready(self, client):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["organizations"] == 7

    async def test_missing_identity(self, anonymous_client):
        response = await anonymous_client.get(
            "/api/permissions/check", params={"resource": "events", "action": "view"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"


@pytest.mark.integration
@pytest.mark.asyncio
class TestPermissionEndpoints:
    async def test_check_through_hierarchy(self, client, identity, store):
        store.assign("u1", "org-a", "trainer")
        identity.login("u1", "org-a")

        response = await client.get(
            "/api/permissions/check",
            params={"resource": "events", "action": "view", "organization_id": "org-b"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is True
        assert body["source_organization_id"] == "org-a"
        assert body["matched_grant"] == "events.view"

    async def test_check_unknown_permission(self, client, identity, store):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.get(
            "/api/permissions/check", params={"resource": "invoices", "action": "view"}
        )
        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert response.json()["reason"] == "UnknownPermission"

    async def test_list_requires_manage_roles(self, client, identity, store):
        store.assign("u1", "org-a", "trainer")
        identity.login("u1", "org-a")

        response = await client.get("/api/permissions/")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_list(self, client, identity, store, catalog):
        store.assign("u1", "org-a", "admin")
        identity.login("u1", "org-a")

        response = await client.get("/api/permissions/")
        assert response.status_code == 200
        assert response.json()["total"] == len(catalog)

        response = await client.get("/api/permissions/", params={"resource": "workouts"})
        assert response.json()["resources"] == ["workouts"]

    async def test_store_failure_is_500(self, client, identity, services):
        class BrokenStore:
            async def get_active_membership(self, user_id, organization_id):
                raise ConnectionError("down")

        services.resolver.memberships = BrokenStore()
        identity.login("u1", "org-a")

        response = await client.get(
            "/api/permissions/check", params={"resource": "events", "action": "view"}
        )
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "RESOLUTION_ERROR"


@pytest.mark.integration
@pytest.mark.asyncio
class TestRoleEndpoints:
    async def test_role_lifecycle(self, client, identity, store):
        store.assign("u1", "org-a", "admin")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/roles/",
            json={"name": "Coach", "slug": "coach", "grants": ["events.view"]},
        )
        assert response.status_code == 201
        assert response.json()["grants"] == ["events.view"]

        response = await client.get("/api/roles/")
        slugs = {r["slug"] for r in response.json()["roles"]}
        assert {"owner", "member", "coach"} <= slugs

        response = await client.put(
            "/api/roles/coach/permissions", json={"grants": ["clients.*"]}
        )
        assert response.status_code == 200
        granted = {p["key"] for p in response.json()["permissions"] if p["granted"]}
        assert granted == {
            "clients.view",
            "clients.create",
            "clients.update",
            "clients.delete",
            "clients.export",
        }

        response = await client.patch("/api/roles/coach", json={"name": "Head Coach"})
        assert response.json()["name"] == "Head Coach"

        response = await client.delete("/api/roles/coach")
        assert response.status_code == 204
        response = await client.get("/api/roles/coach/permissions")
        assert response.status_code == 404

    async def test_duplicate_and_invalid_slugs(self, client, identity, store):
        store.assign("u1", "org-a", "admin")
        identity.login("u1", "org-a")

        response = await client.post("/api/roles/", json={"name": "Owner", "slug": "owner"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_SLUG"

        response = await client.post("/api/roles/", json={"name": "Coach", "slug": "Head Coach"})
        assert response.status_code == 422

    async def test_system_role_grants_refused(self, client, identity, store):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.put("/api/roles/member/permissions", json={"grants": ["*.*"]})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SYSTEM_ROLE_IMMUTABLE"

    async def test_invalid_grant(self, client, identity, store):
        store.assign("u1", "org-a", "admin")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/roles/", json={"name": "Coach", "slug": "coach", "grants": ["*.view"]}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_GRANT"


@pytest.mark.integration
@pytest.mark.asyncio
class TestOrganizationEndpoints:
    async def test_hierarchy(self, client, identity, store):
        store.assign("u1", "org-a", "admin")
        identity.login("u1", "org-a")

        response = await client.get("/api/organizations/org-a/hierarchy")
        assert response.status_code == 200
        body = response.json()
        assert body["root"]["id"] == "org-a"
        assert [c["id"] for c in body["children"]] == ["org-b", "org-m"]
        assert len(body["descendants"]) == 3

    async def test_move(self, client, identity, store):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/organizations/org-c/move", json={"new_parent_id": "org-a"}
        )
        assert response.status_code == 200
        assert response.json()["hierarchy_level"] == 1

        response = await client.post(
            "/api/organizations/org-a/move", json={"new_parent_id": "org-m"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CYCLE_DETECTED"

    async def test_create_and_remove(self, client, identity, store, hierarchy):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/organizations/", json={"name": "Acme Harbour", "parent_id": "org-m"}
        )
        assert response.status_code == 201
        created = response.json()
        assert created["organization_type"] == "child"
        assert created["hierarchy_level"] == 2

        response = await client.delete("/api/organizations/org-m")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ACTIVE_CHILDREN"

        hierarchy.deactivate("org-c")
        hierarchy.deactivate(created["id"])
        response = await client.delete("/api/organizations/org-m")
        assert response.status_code == 200
        assert set(response.json()["removed"]) == {"org-m", "org-c", created["id"]}
        assert not hierarchy.contains("org-m")

    async def test_create_requires_update_on_parent(self, client, identity, store):
        store.assign("u1", "org-a", "trainer")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/organizations/", json={"name": "Acme Harbour", "parent_id": "org-a"}
        )
        assert response.status_code == 403

    async def test_retype_with_children_rejected(self, client, identity, store):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.post(
            "/api/organizations/org-m/move",
            json={"new_parent_id": "org-a", "organization_type": "child"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARENT"

    async def test_unknown_organization(self, client, identity, store):
        store.assign("u1", "org-a", "owner")
        identity.login("u1", "org-a")

        response = await client.get("/api/organizations/nope/hierarchy")
        assert response.status_code == 403


@pytest.mark.integration
@pytest.mark.asyncio
class TestUserEndpoints:
    async def test_own_permissions(self, client, identity, store):
        store.assign("u1", "org-s", "member")
        identity.login("u1", "org-s")

        response = await client.get("/api/users/u1/permissions")
        assert response.status_code == 200
        assert response.json()["permissions"] == ["events.view", "workouts.view"]
        assert response.json()["role"] == "member"

    async def test_other_user_requires_manage_staff(self, client, identity, store):
        store.assign("u1", "org-s", "trainer")
        store.assign("u2", "org-s", "member")
        identity.login("u1", "org-s")

        response = await client.get("/api/users/u2/permissions")
        assert response.status_code == 403

        store.assign("u1", "org-s", "admin")
        response = await client.get("/api/users/u2/permissions")
        assert response.status_code == 200

    async def test_get_own_role(self, client, identity, store):
        store.assign("u1", "org-s", "member")
        identity.login("u1", "org-s")

        response = await client.get("/api/users/u1/role")
        assert response.status_code == 200
        body = response.json()
        assert body["organization_id"] == "org-s"
        assert body["role"]["slug"] == "member"

    async def test_change_role(self, client, identity, store, resolver):
        store.assign("u1", "org-s", "admin")
        store.assign("u2", "org-s", "member")
        identity.login("u1", "org-s")

        response = await client.put("/api/users/u2/role", json={"role": "front_desk"})
        assert response.status_code == 200
        assert response.json()["role"]["slug"] == "front_desk"
        assert await resolver.get_role("u2", "org-s") == "front_desk"

        response = await client.put("/api/users/u9/role", json={"role": "member"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "MEMBERSHIP_NOT_FOUND"

    async def test_change_role_requires_manage_staff(self, client, identity, store):
        store.assign("u1", "org-s", "trainer")
        store.assign("u2", "org-s", "member")
        identity.login("u1", "org-s")

        response = await client.put("/api/users/u2/role", json={"role": "owner"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"
