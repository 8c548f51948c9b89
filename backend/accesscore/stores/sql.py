"""SQLAlchemy-backed collaborators.

  - SqlMembershipStore   → MembershipStore over ``user_organizations``
  - SqlAuditSink         → AuditSink appending to ``audit_logs``
  - SqlAccessRepository  → persistence for organizations and roles, used by
                           bootstrap (load) and AccessAdministration (save)

Each call opens its own session from the factory and commits before
returning, so the in-process registry and hierarchy are only updated after
the write succeeded.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accesscore.auth.audit import AuditEvent
from accesscore.auth.hierarchy import Organization, OrganizationType
from accesscore.auth.roles import Role
from accesscore.exceptions import AmbiguousMembershipError, RoleNotFoundError
from accesscore.models.audit_log import AuditLog
from accesscore.models.membership import UserOrganization
from accesscore.models.organization import OrganizationRecord
from accesscore.models.role import RoleGrantRecord, RoleRecord
from accesscore.stores.base import Membership

logger = logging.getLogger(__name__)


def _to_membership(row: UserOrganization) -> Membership:
    return Membership(
        id=row.id,
        user_id=row.user_id,
        organization_id=row.organization_id,
        role_slug=row.role_slug,
        is_active=row.is_active,
        is_primary=row.is_primary,
    )


def _sync_grants(record: RoleRecord, expressions: Iterable[str]) -> None:
    """Make ``record.grants`` hold exactly ``expressions``.

    Only the difference is written, so the (role_id, expression) unique
    constraint never sees a transient duplicate.
    """
    wanted = set(expressions)
    existing = {g.expression: g for g in record.grants}
    for expression, grant in existing.items():
        if expression not in wanted:
            record.grants.remove(grant)
    for expression in sorted(wanted - existing.keys()):
        record.grants.append(RoleGrantRecord(expression=expression))


class SqlMembershipStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_active_membership(
        self, user_id: str, organization_id: str
    ) -> Membership | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserOrganization).where(
                    UserOrganization.user_id == user_id,
                    UserOrganization.organization_id == organization_id,
                    UserOrganization.is_active == True,  # noqa: E712
                )
            )
            rows = result.scalars().all()

        if len(rows) > 1:
            raise AmbiguousMembershipError(user_id, organization_id, len(rows))
        return _to_membership(rows[0]) if rows else None

    async def get_active_memberships(self, user_id: str) -> list[Membership]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserOrganization)
                .where(
                    UserOrganization.user_id == user_id,
                    UserOrganization.is_active == True,  # noqa: E712
                )
                .order_by(UserOrganization.is_primary.desc(), UserOrganization.joined_at)
            )
            return [_to_membership(r) for r in result.scalars().all()]

    async def update_role(
        self, user_id: str, organization_id: str, role_slug: str
    ) -> Membership | None:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(UserOrganization).where(
                        UserOrganization.user_id == user_id,
                        UserOrganization.organization_id == organization_id,
                        UserOrganization.is_active == True,  # noqa: E712
                    )
                )
                rows = result.scalars().all()
                if len(rows) > 1:
                    raise AmbiguousMembershipError(user_id, organization_id, len(rows))
                if not rows:
                    return None
                rows[0].role_slug = role_slug
            return _to_membership(rows[0])

    async def add_membership(
        self,
        user_id: str,
        organization_id: str,
        role_slug: str,
        *,
        is_primary: bool = False,
    ) -> Membership:
        async with self.session_factory() as session:
            row = UserOrganization(
                user_id=user_id,
                organization_id=organization_id,
                role_slug=role_slug,
                is_active=True,
                is_primary=is_primary,
            )
            session.add(row)
            await session.commit()
            return _to_membership(row)


class SqlAuditSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        async with self.session_factory() as session:
            session.add(
                AuditLog(
                    user_id=event.actor_id,
                    organization_id=event.organization_id,
                    action=event.action,
                    severity=event.severity.value,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    old_values=event.before,
                    new_values=event.after,
                    details=event.metadata or None,
                    created_at=event.created_at.replace(tzinfo=None),
                )
            )
            await session.commit()


class SqlAccessRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # ── Organizations ──────────────────────────────────────────

    async def load_organizations(self) -> list[Organization]:
        async with self.session_factory() as session:
            result = await session.execute(select(OrganizationRecord))
            return [
                Organization(
                    id=r.id,
                    name=r.name,
                    organization_type=OrganizationType(r.organization_type),
                    parent_id=r.parent_id,
                    hierarchy_level=r.hierarchy_level,
                    is_active=r.is_active,
                )
                for r in result.scalars().all()
            ]

    async def save_organizations(self, organizations: Iterable[Organization]) -> None:
        """Upsert snapshots in one transaction (a move relevels a whole subtree)."""
        async with self.session_factory() as session:
            async with session.begin():
                for org in organizations:
                    await session.merge(
                        OrganizationRecord(
                            id=org.id,
                            name=org.name,
                            organization_type=org.organization_type.value,
                            parent_id=org.parent_id,
                            hierarchy_level=org.hierarchy_level,
                            is_active=org.is_active,
                        )
                    )

    async def delete_organizations(self, organization_ids: Iterable[str]) -> None:
        ids = list(organization_ids)
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(OrganizationRecord).where(OrganizationRecord.id.in_(ids))
                )

    # ── Roles ──────────────────────────────────────────────────

    async def load_custom_roles(self) -> list[Role]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RoleRecord).where(RoleRecord.is_system == False)  # noqa: E712
            )
            return [
                Role(
                    id=r.id,
                    slug=r.slug,
                    name=r.name,
                    description=r.description or "",
                    is_system=False,
                    organization_id=r.organization_id,
                    grants=frozenset(g.expression for g in r.grants),
                )
                for r in result.scalars().all()
            ]

    async def save_role(self, role: Role) -> None:
        """Insert or update a role's own columns; grants are saved separately."""
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(RoleRecord, role.id)
                if record is None:
                    session.add(
                        RoleRecord(
                            id=role.id,
                            slug=role.slug,
                            name=role.name,
                            description=role.description,
                            is_system=role.is_system,
                            organization_id=role.organization_id,
                        )
                    )
                else:
                    record.name = role.name
                    record.description = role.description

    async def save_role_grants(self, role: Role) -> None:
        """Replace the stored grant set of a role."""
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(RoleRecord, role.id)
                if record is None:
                    raise RoleNotFoundError(role.slug)
                _sync_grants(record, role.grant_strings())

    async def delete_role(self, role: Role) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(RoleRecord, role.id)
                if record is not None:
                    await session.delete(record)

    async def provision_system_roles(self, roles: Iterable[Role]) -> int:
        """Make the stored system roles match the in-process definitions.

        Rows are matched by slug; returns how many were inserted.
        """
        inserted = 0
        async with self.session_factory() as session:
            async with session.begin():
                for role in roles:
                    result = await session.execute(
                        select(RoleRecord).where(RoleRecord.slug == role.slug)
                    )
                    record = result.scalar_one_or_none()
                    if record is None:
                        record = RoleRecord(
                            id=role.id,
                            slug=role.slug,
                            name=role.name,
                            description=role.description,
                            is_system=True,
                        )
                        session.add(record)
                        inserted += 1
                    else:
                        record.name = role.name
                        record.description = role.description
                        record.is_system = True
                    _sync_grants(record, role.grant_strings())

        if inserted:
            logger.info("Provisioned %d system role(s)", inserted)
        return inserted
