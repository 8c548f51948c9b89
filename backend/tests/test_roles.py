"""Tests for the role registry: system roles, inheritance, custom roles."""

import pytest

from accesscore.auth.catalog import default_catalog
from accesscore.auth.grants import ExactGrant, GlobalWildcard, ResourceWildcard
from accesscore.auth.roles import (
    SYSTEM_ROLES,
    RoleRegistry,
    SystemRoleDefinition,
    order_definitions,
)
from accesscore.exceptions import (
    DuplicateSlugError,
    InvalidGrantError,
    InvalidHierarchyError,
    RoleNotFoundError,
    SystemRoleImmutableError,
)


@pytest.fixture
def registry() -> RoleRegistry:
    registry = RoleRegistry(default_catalog())
    registry.define_system_roles(SYSTEM_ROLES)
    return registry


@pytest.mark.unit
class TestSystemRoles:
    def test_default_roles_defined(self, registry):
        assert [r.slug for r in registry.system_roles()] == [
            "member",
            "trainer",
            "front_desk",
            "admin",
            "owner",
        ]
        assert all(registry.is_system_role(r.slug) for r in registry.system_roles())

    def test_inheritance_is_monotonic(self, registry):
        """A role's expansion contains the expansion of every role it inherits."""
        for role in registry.system_roles():
            expanded = registry.expand_grants(role.slug)
            for inherited in registry.inherited_roles(role.slug):
                assert registry.expand_grants(inherited) <= expanded

    def test_admin_expansion(self, registry):
        expanded = registry.expand_grants("admin")
        assert ResourceWildcard("clients") in expanded
        assert ExactGrant("organization", "manage_roles") in expanded
        # inherited from member
        assert ExactGrant("workouts", "view") in expanded
        assert not any(g.matches("organization", "billing") for g in expanded)

    def test_owner_has_global_wildcard(self, registry):
        assert GlobalWildcard() in registry.expand_grants("owner")

    def test_transitive_inheritance(self, registry):
        assert registry.inherited_roles("owner") == ["admin", "trainer", "front_desk", "member"]
        assert registry.role_inherits_from("owner", "member")
        assert registry.role_inherits_from("trainer", "member")
        assert not registry.role_inherits_from("member", "trainer")

    def test_expansion_is_memoized(self, registry):
        assert registry.expand_grants("admin") is registry.expand_grants("admin")

    def test_system_roles_are_immutable(self, registry):
        with pytest.raises(SystemRoleImmutableError):
            registry.set_role_grants("admin", ["*.*"])
        with pytest.raises(SystemRoleImmutableError):
            registry.update_custom_role("member", name="Guest")
        with pytest.raises(SystemRoleImmutableError):
            registry.delete_custom_role("owner")

    def test_unknown_role(self, registry):
        assert registry.find_role("coach") is None
        with pytest.raises(RoleNotFoundError):
            registry.get_role("coach")
        with pytest.raises(RoleNotFoundError):
            registry.expand_grants("coach")


@pytest.mark.unit
class TestInheritanceTable:
    def test_cycle_rejected(self):
        definitions = [
            SystemRoleDefinition("a", "A", "", ("events.view",), ("b",)),
            SystemRoleDefinition("b", "B", "", ("events.view",), ("c",)),
            SystemRoleDefinition("c", "C", "", ("events.view",), ("a",)),
        ]
        with pytest.raises(InvalidHierarchyError):
            order_definitions(definitions)
        with pytest.raises(InvalidHierarchyError):
            RoleRegistry(default_catalog()).define_system_roles(definitions)

    def test_unknown_parent_rejected(self):
        definitions = [SystemRoleDefinition("a", "A", "", (), ("ghost",))]
        with pytest.raises(InvalidHierarchyError):
            RoleRegistry(default_catalog()).define_system_roles(definitions)

    def test_self_inheritance_rejected(self):
        registry = RoleRegistry(default_catalog())
        with pytest.raises(InvalidHierarchyError):
            registry.define_system_role("a", "A", "", (), ("a",))

    def test_definitions_order_independent(self):
        reversed_roles = RoleRegistry(default_catalog())
        reversed_roles.define_system_roles(tuple(reversed(SYSTEM_ROLES)))
        assert GlobalWildcard() in reversed_roles.expand_grants("owner")
        assert reversed_roles.role_inherits_from("owner", "member")

    def test_invalid_grant_rejected(self):
        registry = RoleRegistry(default_catalog())
        with pytest.raises(InvalidGrantError):
            registry.define_system_role("a", "A", "", ["invoices.view"])


@pytest.mark.unit
class TestCustomRoles:
    def test_create_and_set_grants(self, registry):
        role = registry.create_custom_role("org-a", "Coach", "coach")
        assert not role.is_system
        assert registry.expand_grants("coach") == frozenset()

        registry.set_role_grants("coach", ["events.view", "clients.*"])
        assert registry.expand_grants("coach") == {
            ExactGrant("events", "view"),
            ResourceWildcard("clients"),
        }

    def test_grant_replacement_visible_immediately(self, registry):
        registry.create_custom_role("org-a", "Coach", "coach")
        registry.set_role_grants("coach", ["events.view"])
        registry.set_role_grants("coach", ["workouts.view"])
        assert registry.expand_grants("coach") == {ExactGrant("workouts", "view")}

    def test_lookup_by_id(self, registry):
        role = registry.create_custom_role("org-a", "Coach", "coach")
        assert registry.get_role(role.id).slug == "coach"

    def test_duplicate_slug(self, registry):
        registry.create_custom_role("org-a", "Coach", "coach")
        with pytest.raises(DuplicateSlugError):
            registry.create_custom_role("org-b", "Coach", "coach")
        with pytest.raises(DuplicateSlugError):
            registry.create_custom_role("org-a", "Admin", "admin")

    def test_invalid_slug(self, registry):
        with pytest.raises(ValueError):
            registry.create_custom_role("org-a", "Coach", "Head Coach")
        with pytest.raises(ValueError):
            registry.create_custom_role("org-a", "Coach", "c" * 51)

    def test_invalid_grants_leave_role_unchanged(self, registry):
        registry.create_custom_role("org-a", "Coach", "coach")
        registry.set_role_grants("coach", ["events.view"])
        with pytest.raises(InvalidGrantError):
            registry.set_role_grants("coach", ["events.view", "invoices.*"])
        assert registry.expand_grants("coach") == {ExactGrant("events", "view")}

    def test_list_roles_scoped_to_organization(self, registry):
        registry.create_custom_role("org-a", "Coach", "coach")
        registry.create_custom_role("org-b", "Cleaner", "cleaner")

        slugs_a = {r.slug for r in registry.list_roles("org-a")}
        assert "coach" in slugs_a
        assert "cleaner" not in slugs_a
        assert "owner" in slugs_a
        assert {r.slug for r in registry.list_roles()} == {r.slug for r in registry.system_roles()}

    def test_update_and_delete(self, registry):
        registry.create_custom_role("org-a", "Coach", "coach", "Runs classes")
        updated = registry.update_custom_role("coach", name="Head Coach")
        assert updated.name == "Head Coach"
        assert updated.description == "Runs classes"

        registry.delete_custom_role("coach")
        assert registry.find_role("coach") is None
