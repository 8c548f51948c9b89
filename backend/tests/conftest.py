"""Pytest configuration and fixtures for accesscore tests.

Most fixtures build the in-process services over an in-memory membership
store, seeded with this organization forest:

    org-a  Acme Group        parent
    ├── org-b  Acme Downtown     child
    └── org-m  Acme Region       parent
        └── org-c  Acme Uptown       child
    org-f  FitCo             franchise_parent
    └── org-g  FitCo Riverside   franchise_child
    org-s  Solo Studio       single
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from accesscore.auth.audit import AuditEvent
from accesscore.auth.bootstrap import AccessServices, build_services
from accesscore.auth.hierarchy import OrganizationHierarchy, OrganizationType
from accesscore.config import Settings
from accesscore.stores.memory import InMemoryMembershipStore


class RecordingSink:
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


class FailingSink:
    def __init__(self):
        self.calls = 0

    async def record(self, event: AuditEvent) -> None:
        self.calls += 1
        raise RuntimeError("audit store offline")


def seed_tree(hierarchy: OrganizationHierarchy) -> None:
    add = hierarchy.add_organization
    add("Acme Group", OrganizationType.PARENT, organization_id="org-a")
    add("Acme Downtown", OrganizationType.CHILD, parent_id="org-a", organization_id="org-b")
    add("Acme Region", OrganizationType.PARENT, parent_id="org-a", organization_id="org-m")
    add("Acme Uptown", OrganizationType.CHILD, parent_id="org-m", organization_id="org-c")
    add("FitCo", OrganizationType.FRANCHISE_PARENT, organization_id="org-f")
    add(
        "FitCo Riverside",
        OrganizationType.FRANCHISE_CHILD,
        parent_id="org-f",
        organization_id="org-g",
    )
    add("Solo Studio", OrganizationType.SINGLE, organization_id="org-s")


# ── Service Fixtures ─────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        audit_enabled=True,
        audit_sink="log",
        denial_tracker="memory",
        hierarchy_access_enabled=True,
        franchise_access_enabled=True,
        max_hierarchy_depth=5,
        repeated_denial_threshold=3,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def store() -> InMemoryMembershipStore:
    return InMemoryMembershipStore()


@pytest.fixture
def services(test_settings, store, sink) -> AccessServices:
    built = build_services(test_settings, store, sink=sink)
    seed_tree(built.hierarchy)
    return built


@pytest.fixture
def catalog(services):
    return services.catalog


@pytest.fixture
def roles(services):
    return services.roles


@pytest.fixture
def hierarchy(services):
    return services.hierarchy


@pytest.fixture
def resolver(services):
    return services.resolver


@pytest.fixture
def admin(services):
    return services.admin


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client(test_settings) -> AsyncGenerator:
    """Redis client for tests; skips when no server is reachable."""
    import redis.asyncio as redis

    client = redis.from_url(test_settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (redis.ConnectionError, OSError):
        await client.aclose()
        pytest.skip("Redis not reachable")

    yield client

    await client.flushdb()
    await client.aclose()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "cache: Tests that need a reachable Redis")
