"""Administration of roles, grants, memberships and the organization tree.

Every operation first asks the resolution engine whether the actor may
perform it in the organization concerned:

  - role and permission administration → ``organization.manage_roles``
  - member role changes                 → ``organization.manage_staff``
  - hierarchy changes                   → ``organization.update``

then validates, persists through the optional repository, applies the
change to the in-process registry or hierarchy, and emits an audit event
carrying before/after snapshots.

Hierarchy changes are serialized on one lock from planning through
persistence to applying, so a move never overwrites a concurrent change to
the nodes it touches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Protocol

from accesscore.auth.audit import AuditAction, AuditEmitter
from accesscore.auth.catalog import Permission
from accesscore.auth.grants import Grant
from accesscore.auth.hierarchy import Organization, OrganizationType
from accesscore.auth.resolver import Decision, PermissionResolver
from accesscore.auth.roles import Role
from accesscore.exceptions import (
    AccessCoreException,
    ActiveChildrenError,
    MembershipNotFoundError,
    PermissionDeniedError,
    RoleNotFoundError,
    SystemRoleImmutableError,
)
from accesscore.stores.base import Membership

logger = logging.getLogger(__name__)


class AccessRepository(Protocol):
    async def save_organizations(self, organizations: Iterable[Organization]) -> None: ...

    async def delete_organizations(self, organization_ids: Iterable[str]) -> None: ...

    async def save_role(self, role: Role) -> None: ...

    async def save_role_grants(self, role: Role) -> None: ...

    async def delete_role(self, role: Role) -> None: ...


@dataclass(frozen=True)
class RolePermission:
    """A catalog permission and whether a role's grants cover it."""

    permission: Permission
    granted: bool


def role_snapshot(role: Role) -> dict[str, Any]:
    return {
        "slug": role.slug,
        "name": role.name,
        "description": role.description,
        "grants": role.grant_strings(),
    }


def organization_snapshot(org: Organization) -> dict[str, Any]:
    return {
        "name": org.name,
        "organization_type": org.organization_type.value,
        "parent_id": org.parent_id,
        "hierarchy_level": org.hierarchy_level,
        "is_active": org.is_active,
    }


class AccessAdministration:
    def __init__(
        self,
        resolver: PermissionResolver,
        repository: AccessRepository | None = None,
        audit: AuditEmitter | None = None,
    ) -> None:
        self.resolver = resolver
        self.catalog = resolver.catalog
        self.roles = resolver.roles
        self.hierarchy = resolver.hierarchy
        self.memberships = resolver.memberships
        self.repository = repository
        self.audit = audit if audit is not None else resolver.audit
        self._tree_lock = asyncio.Lock()

    async def require(
        self, actor_id: str, organization_id: str, resource: str, action: str
    ) -> Decision:
        """Check() or raise PermissionDeniedError."""
        decision = await self.resolver.check(actor_id, organization_id, resource, action)
        if not decision.allowed:
            raise PermissionDeniedError(f"Missing permission: {decision.permission}")
        return decision

    # ── Permissions ────────────────────────────────────────────

    async def list_permissions(
        self,
        actor_id: str,
        organization_id: str,
        resource: str | None = None,
        action: str | None = None,
    ) -> list[Permission]:
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        permissions = self.catalog.list()
        if resource is not None:
            permissions = [p for p in permissions if p.resource == resource]
        if action is not None:
            permissions = [p for p in permissions if p.action == action]
        return permissions

    # ── Roles ──────────────────────────────────────────────────

    async def list_roles(self, actor_id: str, organization_id: str) -> list[Role]:
        await self.require(actor_id, organization_id, "organization", "view")
        return self.roles.list_roles(organization_id)

    async def get_role_permissions(
        self, actor_id: str, organization_id: str, ref: str
    ) -> tuple[Role, list[RolePermission]]:
        """Every catalog permission, flagged by whether the role covers it."""
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        role = self._visible_role(organization_id, ref)
        expanded = self.roles.expand_grants(role.slug)
        return role, [
            RolePermission(
                permission=p,
                granted=any(g.matches(p.resource, p.action) for g in expanded),
            )
            for p in self.catalog.list()
        ]

    async def create_custom_role(
        self,
        actor_id: str,
        organization_id: str,
        name: str,
        slug: str,
        description: str = "",
        grants: Iterable[str | Grant] = (),
    ) -> Role:
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        validated = self.roles.validate_grants(grants)

        self.roles.create_custom_role(organization_id, name, slug, description)
        role = self.roles.set_role_grants(slug, validated)
        if self.repository is not None:
            try:
                await self.repository.save_role(role)
                await self.repository.save_role_grants(role)
            except Exception:
                self.roles.delete_custom_role(role.slug)
                raise

        logger.info("Custom role %s created in %s by %s", role.slug, organization_id, actor_id)
        self._emit(
            AuditAction.ROLE_CREATE,
            "role",
            role.id,
            actor_id=actor_id,
            organization_id=organization_id,
            after=role_snapshot(role),
        )
        return role

    async def update_custom_role(
        self,
        actor_id: str,
        organization_id: str,
        ref: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Role:
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        before = self._visible_role(organization_id, ref)
        updated = self.roles.update_custom_role(before.slug, name=name, description=description)
        if self.repository is not None:
            try:
                await self.repository.save_role(updated)
            except Exception:
                self.roles.update_custom_role(
                    before.slug, name=before.name, description=before.description
                )
                raise

        self._emit(
            AuditAction.ROLE_UPDATE,
            "role",
            updated.id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=role_snapshot(before),
            after=role_snapshot(updated),
        )
        return updated

    async def delete_custom_role(self, actor_id: str, organization_id: str, ref: str) -> Role:
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        role = self._visible_role(organization_id, ref)
        if role.is_system:
            raise SystemRoleImmutableError(role.slug)
        if self.repository is not None:
            await self.repository.delete_role(role)
        self.roles.delete_custom_role(role.slug)

        logger.info("Custom role %s deleted from %s by %s", role.slug, organization_id, actor_id)
        self._emit(
            AuditAction.ROLE_DELETE,
            "role",
            role.id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=role_snapshot(role),
        )
        return role

    async def set_role_grants(
        self,
        actor_id: str,
        organization_id: str,
        ref: str,
        grants: Iterable[str | Grant],
    ) -> Role:
        """Replace a custom role's grant set (PUT semantics)."""
        await self.require(actor_id, organization_id, "organization", "manage_roles")
        before = self._visible_role(organization_id, ref)
        validated = self.roles.validate_grants(grants)

        updated = self.roles.set_role_grants(before.slug, validated)
        if self.repository is not None:
            try:
                await self.repository.save_role_grants(updated)
            except Exception:
                self.roles.set_role_grants(before.slug, before.grants)
                raise

        logger.info(
            "Grants of role %s replaced by %s (%d grant(s))",
            updated.slug,
            actor_id,
            len(updated.grants),
        )
        self._emit(
            AuditAction.ROLE_PERMISSION_CHANGE,
            "role",
            updated.id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=role_snapshot(before),
            after=role_snapshot(updated),
        )
        return updated

    # ── Members ────────────────────────────────────────────────

    async def get_member_role(
        self, actor_id: str, organization_id: str, user_id: str
    ) -> tuple[Membership, Role]:
        """A member's role; reading anyone but yourself needs organization.view."""
        if user_id != actor_id:
            await self.require(actor_id, organization_id, "organization", "view")
        membership = await self.memberships.get_active_membership(user_id, organization_id)
        if membership is None:
            raise MembershipNotFoundError(user_id, organization_id)
        return membership, self.roles.get_role(membership.role_slug)

    async def assign_role(
        self, actor_id: str, organization_id: str, user_id: str, ref: str
    ) -> Membership:
        """Change an existing member's role (system or this organization's custom)."""
        await self.require(actor_id, organization_id, "organization", "manage_staff")
        role = self._visible_role(organization_id, ref)

        before = await self.memberships.get_active_membership(user_id, organization_id)
        if before is None:
            raise MembershipNotFoundError(user_id, organization_id)
        updated = await self.memberships.update_role(user_id, organization_id, role.slug)
        if updated is None:
            raise MembershipNotFoundError(user_id, organization_id)

        logger.info(
            "Role of %s in %s changed from %s to %s by %s",
            user_id,
            organization_id,
            before.role_slug,
            updated.role_slug,
            actor_id,
        )
        self._emit(
            AuditAction.USER_ROLE_CHANGE,
            "membership",
            updated.id,
            actor_id=actor_id,
            organization_id=organization_id,
            before={"user_id": user_id, "role": before.role_slug},
            after={"user_id": user_id, "role": updated.role_slug},
        )
        return updated

    # ── Organization tree ──────────────────────────────────────

    async def create_organization(
        self,
        actor_id: str,
        parent_id: str,
        name: str,
        organization_type: OrganizationType | str = OrganizationType.CHILD,
    ) -> Organization:
        """Create a child organization under ``parent_id``."""
        await self.require(actor_id, parent_id, "organization", "update")
        async with self._tree_lock:
            org = self.hierarchy.add_organization(name, organization_type, parent_id=parent_id)
            if self.repository is not None:
                try:
                    await self.repository.save_organizations([org])
                except Exception:
                    self.hierarchy.remove(org.id)
                    raise

        self._emit(
            AuditAction.ORG_CREATE,
            "organization",
            org.id,
            actor_id=actor_id,
            organization_id=parent_id,
            after=organization_snapshot(org),
        )
        return org

    async def move_organization(
        self,
        actor_id: str,
        organization_id: str,
        new_parent_id: str | None,
        organization_type: OrganizationType | str | None = None,
    ) -> Organization:
        """Re-parent an organization; the actor needs update rights on both ends."""
        await self.require(actor_id, organization_id, "organization", "update")
        if new_parent_id is not None:
            await self.require(actor_id, new_parent_id, "organization", "update")

        async with self._tree_lock:
            before = self.hierarchy.get_node(organization_id)
            plan = self.hierarchy.plan_move(organization_id, new_parent_id, organization_type)
            if self.repository is not None:
                await self.repository.save_organizations(plan.updated)
                # Changes made outside this service while saving: save the fresh plan.
                while not self.hierarchy.is_current(plan):
                    try:
                        replanned = self.hierarchy.plan_move(
                            organization_id, new_parent_id, organization_type
                        )
                    except AccessCoreException:
                        await self.repository.save_organizations(
                            [
                                self.hierarchy.get_node(o.id)
                                for o in plan.updated
                                if self.hierarchy.contains(o.id)
                            ]
                        )
                        raise
                    plan = replanned
                    await self.repository.save_organizations(plan.updated)
            moved = self.hierarchy.apply_move(plan)

        self._emit(
            AuditAction.ORG_MOVE,
            "organization",
            organization_id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=organization_snapshot(before),
            after=organization_snapshot(moved),
            metadata={"relevelled": len(plan.updated)},
        )
        return moved

    async def deactivate_organization(self, actor_id: str, organization_id: str) -> Organization:
        await self.require(actor_id, organization_id, "organization", "update")
        async with self._tree_lock:
            before = self.hierarchy.get_node(organization_id)
            if self.repository is not None:
                await self.repository.save_organizations([replace(before, is_active=False)])
            org = self.hierarchy.deactivate(organization_id)

        logger.warning("Organization %s deactivated by %s", organization_id, actor_id)
        self._emit(
            AuditAction.ORG_DEACTIVATE,
            "organization",
            organization_id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=organization_snapshot(before),
            after=organization_snapshot(org),
        )
        return org

    async def remove_organization(self, actor_id: str, organization_id: str) -> list[Organization]:
        """Physically remove an inactive-only subtree.

        Authorized against the parent; roots are checked against themselves.
        """
        async with self._tree_lock:
            node = self.hierarchy.get_node(organization_id)
            await self.require(actor_id, node.parent_id or organization_id, "organization", "update")

            active = self.hierarchy.get_descendants(organization_id)
            if active:
                raise ActiveChildrenError(organization_id, len(active))
            doomed = [node] + self.hierarchy.get_descendants(organization_id, include_inactive=True)
            if self.repository is not None:
                await self.repository.delete_organizations(o.id for o in reversed(doomed))
            removed = self.hierarchy.remove(organization_id)

        logger.warning(
            "Organization %s and %d descendant(s) removed by %s",
            organization_id,
            len(removed) - 1,
            actor_id,
        )
        self._emit(
            AuditAction.ORG_DELETE,
            "organization",
            organization_id,
            actor_id=actor_id,
            organization_id=node.parent_id or organization_id,
            before=organization_snapshot(node),
            metadata={"removed": [o.id for o in removed]},
        )
        return removed

    # ── Internals ──────────────────────────────────────────────

    def _visible_role(self, organization_id: str, ref: str) -> Role:
        """System roles, or custom roles owned by ``organization_id``.

        Another organization's custom role is reported as not found.
        """
        role = self.roles.get_role(ref)
        if not role.is_system and role.organization_id != organization_id:
            raise RoleNotFoundError(ref)
        return role

    def _emit(self, action: str, entity_type: str, entity_id: str | None, **kwargs: Any) -> None:
        if self.audit is not None:
            self.audit.emit(action, entity_type, entity_id, **kwargs)

