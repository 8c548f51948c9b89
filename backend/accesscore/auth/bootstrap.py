"""Build the authorization services once at process start.

``build_services`` wires in-memory components from explicit inputs (tests,
embedding).  ``load_services`` does the same from the SQL database: it
loads the organization tree and custom roles, then provisions system roles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accesscore.auth.admin import AccessAdministration, AccessRepository
from accesscore.auth.audit import (
    AuditEmitter,
    AuditSink,
    DenialTracker,
    InMemoryDenialTracker,
    LoggingAuditSink,
    RedisDenialTracker,
)
from accesscore.auth.catalog import PermissionCatalog, default_catalog
from accesscore.auth.hierarchy import Organization, OrganizationHierarchy, TraversalPolicy
from accesscore.auth.resolver import PermissionResolver
from accesscore.auth.roles import SYSTEM_ROLES, Role, RoleRegistry
from accesscore.config import Settings
from accesscore.stores.base import MembershipWriter
from accesscore.stores.sql import SqlAccessRepository, SqlAuditSink, SqlMembershipStore

logger = logging.getLogger(__name__)


@dataclass
class AccessServices:
    settings: Settings
    catalog: PermissionCatalog
    roles: RoleRegistry
    hierarchy: OrganizationHierarchy
    memberships: MembershipWriter
    audit: AuditEmitter
    resolver: PermissionResolver
    admin: AccessAdministration


def build_denial_tracker(
    settings: Settings, redis_client: redis.Redis | None = None
) -> DenialTracker:
    if settings.denial_tracker == "redis":
        if redis_client is None:
            raise ValueError("denial_tracker=redis requires a Redis client")
        return RedisDenialTracker(redis_client, settings.repeated_denial_window_seconds)
    return InMemoryDenialTracker(settings.repeated_denial_window_seconds)


def build_services(
    settings: Settings,
    memberships: MembershipWriter,
    *,
    sink: AuditSink | None = None,
    repository: AccessRepository | None = None,
    organizations: Iterable[Organization] = (),
    custom_roles: Iterable[Role] = (),
    redis_client: redis.Redis | None = None,
) -> AccessServices:
    catalog = default_catalog()

    roles = RoleRegistry(catalog)
    roles.define_system_roles(SYSTEM_ROLES)
    for role in custom_roles:
        roles.load_custom_role(role)

    hierarchy = OrganizationHierarchy(
        max_depth=settings.max_hierarchy_depth,
        policy=TraversalPolicy(franchise_parent=settings.franchise_access_enabled),
    )
    hierarchy.load(organizations)

    audit = AuditEmitter(
        sink or LoggingAuditSink(),
        build_denial_tracker(settings, redis_client),
        repeated_denial_threshold=settings.repeated_denial_threshold,
        enabled=settings.audit_enabled,
    )
    resolver = PermissionResolver(
        catalog,
        roles,
        hierarchy,
        memberships,
        audit,
        hierarchy_access=settings.hierarchy_access_enabled,
    )
    admin = AccessAdministration(resolver, repository, audit)

    logger.info(
        "Authorization services ready: %d permission(s), %d role(s), %d organization(s)",
        len(catalog),
        len(roles.list_roles()),
        len(hierarchy.organizations()),
    )
    return AccessServices(
        settings=settings,
        catalog=catalog,
        roles=roles,
        hierarchy=hierarchy,
        memberships=memberships,
        audit=audit,
        resolver=resolver,
        admin=admin,
    )


async def load_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: redis.Redis | None = None,
) -> AccessServices:
    """Build services backed by the SQL membership store and repository."""
    repository = SqlAccessRepository(session_factory)
    sink = SqlAuditSink(session_factory) if settings.audit_sink == "database" else None

    services = build_services(
        settings,
        SqlMembershipStore(session_factory),
        sink=sink,
        repository=repository,
        organizations=await repository.load_organizations(),
        custom_roles=await repository.load_custom_roles(),
        redis_client=redis_client,
    )
    await repository.provision_system_roles(services.roles.system_roles())
    return services
