"""Permission resolution engine.

``check(user, org, resource, action)``:

  1. Unknown ``resource.action``      -> deny, reason UNKNOWN_PERMISSION
  2. Membership at ``org``            -> expand role grants, match
  3. No match and hierarchy access on -> walk ancestors nearest first; the
                                         first active ancestor that may
                                         traverse into ``org`` and whose
                                         membership matches wins
  4. Nothing matched                  -> deny, reason NO_MATCHING_GRANT

Every decision is handed to the audit emitter.  Store failures raise
ResolutionError so callers can tell "denied" from "undetermined".
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from accesscore.auth.audit import AuditEmitter
from accesscore.auth.catalog import Permission, PermissionCatalog
from accesscore.auth.grants import Grant, grant_sort_key
from accesscore.auth.hierarchy import Organization, OrganizationHierarchy
from accesscore.auth.roles import RoleRegistry
from accesscore.exceptions import (
    AccessCoreException,
    AmbiguousMembershipError,
    OrganizationNotFoundError,
    ResolutionError,
)
from accesscore.stores.base import Membership, MembershipStore

logger = logging.getLogger(__name__)


class DecisionReason(str, enum.Enum):
    UNKNOWN_PERMISSION = "UnknownPermission"
    NO_MATCHING_GRANT = "NoMatchingGrant"
    AMBIGUOUS_MEMBERSHIP = "AmbiguousMembership"
    ORGANIZATION_NOT_FOUND = "OrganizationNotFound"


@dataclass(frozen=True)
class Decision:
    user_id: str
    organization_id: str
    resource: str
    action: str
    allowed: bool
    matched_grant: Grant | None = None
    source_organization_id: str | None = None
    role_slug: str | None = None
    reason: DecisionReason | None = None

    @property
    def permission(self) -> str:
        return f"{self.resource}.{self.action}"


class PermissionResolver:
    def __init__(
        self,
        catalog: PermissionCatalog,
        roles: RoleRegistry,
        hierarchy: OrganizationHierarchy,
        memberships: MembershipStore,
        audit: AuditEmitter | None = None,
        *,
        hierarchy_access: bool = True,
    ) -> None:
        self.catalog = catalog
        self.roles = roles
        self.hierarchy = hierarchy
        self.memberships = memberships
        self.audit = audit
        self.hierarchy_access = hierarchy_access

    async def check(
        self,
        user_id: str,
        organization_id: str,
        resource: str,
        action: str,
    ) -> Decision:
        decision = await self._resolve(user_id, organization_id, resource, action)
        self._log(decision)
        if self.audit is not None:
            self.audit.emit_decision(decision)
        return decision

    async def is_allowed(
        self, user_id: str, organization_id: str, resource: str, action: str
    ) -> bool:
        return (await self.check(user_id, organization_id, resource, action)).allowed

    # ── Supplementary queries ──────────────────────────────────

    async def get_role(self, user_id: str, organization_id: str) -> str | None:
        """Role slug held directly at ``organization_id``, if any."""
        membership = await self._lookup(user_id, organization_id)
        return membership.role_slug if membership else None

    async def has_role(
        self, user_id: str, organization_id: str, roles: list[str] | tuple[str, ...]
    ) -> bool:
        role = await self.get_role(user_id, organization_id)
        return role is not None and role in roles

    async def effective_permissions(
        self, user_id: str, organization_id: str
    ) -> list[Permission]:
        """Catalog permissions the user holds at ``organization_id``.

        Uses the same sources as ``check``: the direct membership plus every
        ancestor allowed to traverse into the organization.
        """
        grants: set[Grant] = set()
        for _, membership in await self._grant_sources(user_id, organization_id):
            grants.update(self._expand(membership))

        ordered = sorted(grants, key=grant_sort_key)
        return [
            p for p in self.catalog.list()
            if any(g.matches(p.resource, p.action) for g in ordered)
        ]

    # ── Internals ──────────────────────────────────────────────

    async def _resolve(
        self, user_id: str, organization_id: str, resource: str, action: str
    ) -> Decision:
        def deny(reason: DecisionReason) -> Decision:
            return Decision(
                user_id=user_id,
                organization_id=organization_id,
                resource=resource,
                action=action,
                allowed=False,
                reason=reason,
            )

        if not self.catalog.is_valid(resource, action):
            return deny(DecisionReason.UNKNOWN_PERMISSION)

        try:
            target = self.hierarchy.get_node(organization_id)
        except OrganizationNotFoundError:
            return deny(DecisionReason.ORGANIZATION_NOT_FOUND)

        try:
            # Direct membership; an inactive organization is never a grant source.
            if target.is_active:
                membership = await self._lookup(user_id, organization_id)
                grant = self._match(membership, resource, action)
                if grant is not None:
                    return Decision(
                        user_id=user_id,
                        organization_id=organization_id,
                        resource=resource,
                        action=action,
                        allowed=True,
                        matched_grant=grant,
                        source_organization_id=organization_id,
                        role_slug=membership.role_slug,
                    )

            if self.hierarchy_access:
                for ancestor in self._traversable_ancestors(target):
                    membership = await self._lookup(user_id, ancestor.id)
                    grant = self._match(membership, resource, action)
                    if grant is not None:
                        return Decision(
                            user_id=user_id,
                            organization_id=organization_id,
                            resource=resource,
                            action=action,
                            allowed=True,
                            matched_grant=grant,
                            source_organization_id=ancestor.id,
                            role_slug=membership.role_slug,
                        )
        except AmbiguousMembershipError as exc:
            logger.error(
                "Data integrity violation: %s",
                exc.message,
                extra={"user_id": user_id, "organization_id": exc.organization_id},
            )
            return deny(DecisionReason.AMBIGUOUS_MEMBERSHIP)

        return deny(DecisionReason.NO_MATCHING_GRANT)

    def _traversable_ancestors(self, target: Organization) -> list[Organization]:
        """Ancestors nearest first, skipping ones that cannot extend access."""
        return [
            a for a in self.hierarchy.get_ancestors(target.id)
            if self.hierarchy.can_traverse_for_access(a.id, target.id)
        ]

    async def _grant_sources(
        self, user_id: str, organization_id: str
    ) -> list[tuple[str, Membership]]:
        target = self.hierarchy.get_node(organization_id)
        sources = []
        if target.is_active:
            membership = await self._lookup(user_id, organization_id)
            if membership is not None:
                sources.append((organization_id, membership))
        if self.hierarchy_access:
            for ancestor in self._traversable_ancestors(target):
                membership = await self._lookup(user_id, ancestor.id)
                if membership is not None:
                    sources.append((ancestor.id, membership))
        return sources

    async def _lookup(self, user_id: str, organization_id: str) -> Membership | None:
        try:
            membership = await self.memberships.get_active_membership(user_id, organization_id)
        except AmbiguousMembershipError:
            raise
        except AccessCoreException as exc:
            raise ResolutionError(f"Membership lookup failed: {exc.message}") from exc
        except Exception as exc:
            logger.error(
                "Membership store failure for user %s in %s",
                user_id,
                organization_id,
                exc_info=True,
            )
            raise ResolutionError("Membership store unavailable") from exc

        if membership is not None and not membership.is_active:
            return None
        return membership

    def _expand(self, membership: Membership) -> frozenset[Grant]:
        role = self.roles.find_role(membership.role_slug)
        if role is None:
            logger.warning(
                "Membership %s references unknown role %s",
                membership.id,
                membership.role_slug,
            )
            return frozenset()
        if not role.is_system and role.organization_id != membership.organization_id:
            logger.warning(
                "Membership %s in %s references custom role %s owned by %s",
                membership.id,
                membership.organization_id,
                role.slug,
                role.organization_id,
            )
            return frozenset()
        return self.roles.expand_grants(role.slug)

    def _match(
        self, membership: Membership | None, resource: str, action: str
    ) -> Grant | None:
        if membership is None:
            return None
        # Most specific first: exact, then resource wildcard, then global.
        for grant in sorted(self._expand(membership), key=grant_sort_key, reverse=True):
            if grant.matches(resource, action):
                return grant
        return None

    @staticmethod
    def _log(decision: Decision) -> None:
        if decision.allowed:
            logger.debug(
                "Permission granted: %s in %s -> %s via %s (%s)",
                decision.user_id,
                decision.organization_id,
                decision.permission,
                decision.matched_grant,
                decision.source_organization_id,
            )
        elif decision.reason == DecisionReason.UNKNOWN_PERMISSION:
            logger.warning(
                "Permission check for unknown permission %s (user %s, organization %s)",
                decision.permission,
                decision.user_id,
                decision.organization_id,
            )
        else:
            logger.info(
                "Permission denied: %s in %s -> %s (%s)",
                decision.user_id,
                decision.organization_id,
                decision.permission,
                decision.reason.value if decision.reason else None,
            )
