"""Role registry: system roles, organization custom roles, inheritance.

Design:
  - System roles are defined once at bootstrap from SYSTEM_ROLES and never
    mutated.  Their inheritance graph is static, so ``expand_grants`` results
    for system roles are memoized for the lifetime of the registry.
  - Custom roles belong to one organization, never inherit, and can have
    their grants replaced at runtime.  Their expansion is recomputed on every
    call.
  - Slugs are globally unique across system and custom roles.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Iterable

from accesscore.auth.catalog import PermissionCatalog
from accesscore.auth.grants import Grant, grant_sort_key, is_valid_token, parse_grant
from accesscore.exceptions import (
    DuplicateSlugError,
    InvalidHierarchyError,
    RoleNotFoundError,
    SystemRoleImmutableError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Role:
    slug: str
    name: str
    description: str
    is_system: bool
    organization_id: str | None = None
    grants: frozenset[Grant] = frozenset()
    inherits_from: tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def grant_strings(self) -> list[str]:
        return [str(g) for g in sorted(self.grants, key=grant_sort_key)]


@dataclass(frozen=True)
class SystemRoleDefinition:
    """Seed data for an immutable system role."""

    slug: str
    name: str
    description: str
    grants: tuple[str, ...]
    inherits_from: tuple[str, ...] = ()


# ── Default system roles ───────────────────────────────────────

SYSTEM_ROLES: tuple[SystemRoleDefinition, ...] = (
    SystemRoleDefinition(
        slug="owner",
        name="Owner",
        description="Full access to all organization features",
        grants=("*.*",),
        inherits_from=("admin", "trainer", "front_desk", "member"),
    ),
    SystemRoleDefinition(
        slug="admin",
        name="Administrator",
        description="Administrative access except billing",
        grants=(
            "analytics.*",
            "clients.*",
            "documents.*",
            "events.*",
            "memberships.*",
            "notifications.*",
            "organization.view",
            "organization.update",
            "organization.manage_roles",
            "organization.manage_staff",
            "system.*",
            "workouts.*",
        ),
        inherits_from=("trainer", "front_desk", "member"),
    ),
    SystemRoleDefinition(
        slug="trainer",
        name="Trainer",
        description="Manage clients, events, and workouts",
        grants=(
            "clients.view",
            "clients.create",
            "clients.update",
            "events.*",
            "workouts.*",
            "analytics.view_basic",
            "documents.view",
            "documents.upload",
            "memberships.view",
            "memberships.create",
            "memberships.update",
        ),
        inherits_from=("member",),
    ),
    SystemRoleDefinition(
        slug="front_desk",
        name="Front Desk",
        description="Basic client and event management",
        grants=(
            "clients.view",
            "clients.create",
            "events.view",
            "events.book",
            "events.cancel_booking",
            "memberships.view",
            "analytics.view_basic",
        ),
        inherits_from=("member",),
    ),
    SystemRoleDefinition(
        slug="member",
        name="Member",
        description="Basic member access",
        grants=("events.view", "workouts.view"),
    ),
)


def order_definitions(
    definitions: Iterable[SystemRoleDefinition],
) -> list[SystemRoleDefinition]:
    """Topologically sort definitions so parents come after what they inherit.

    Raises InvalidHierarchyError on unknown references or cycles.
    """
    by_slug = {d.slug: d for d in definitions}
    for d in by_slug.values():
        for parent in d.inherits_from:
            if parent not in by_slug:
                raise InvalidHierarchyError(
                    f"Role '{d.slug}' inherits from undefined role '{parent}'"
                )

    ordered: list[SystemRoleDefinition] = []
    state: dict[str, str] = {}  # slug -> "visiting" | "done"

    def visit(slug: str, path: list[str]) -> None:
        mark = state.get(slug)
        if mark == "done":
            return
        if mark == "visiting":
            cycle = " -> ".join(path + [slug])
            raise InvalidHierarchyError(f"Role inheritance cycle: {cycle}")
        state[slug] = "visiting"
        for parent in by_slug[slug].inherits_from:
            visit(parent, path + [slug])
        state[slug] = "done"
        ordered.append(by_slug[slug])

    for slug in by_slug:
        visit(slug, [])
    return ordered


# ── Registry ───────────────────────────────────────────────────


class RoleRegistry:
    def __init__(self, catalog: PermissionCatalog) -> None:
        self.catalog = catalog
        self._roles: dict[str, Role] = {}
        self._ids: dict[str, str] = {}  # role id -> slug
        self._system_expansions: dict[str, frozenset[Grant]] = {}
        self._lock = threading.RLock()

    # -- grant validation --------------------------------------

    def validate_grants(self, grants: Iterable[str | Grant]) -> frozenset[Grant]:
        """Parse and catalog-check grant expressions.  Raises InvalidGrantError."""
        parsed = set()
        for g in grants:
            grant = parse_grant(g) if isinstance(g, str) else g
            parsed.add(self.catalog.validate_grant(grant))
        return frozenset(parsed)

    # -- system roles ------------------------------------------

    def define_system_role(
        self,
        slug: str,
        name: str,
        description: str,
        grants: Iterable[str | Grant],
        inherits_from: Iterable[str] = (),
    ) -> Role:
        inherits = tuple(inherits_from)
        with self._lock:
            self._check_new_slug(slug)
            if slug in inherits:
                raise InvalidHierarchyError(f"Role '{slug}' cannot inherit from itself")
            for parent in inherits:
                parent_role = self._roles.get(parent)
                if parent_role is None:
                    raise InvalidHierarchyError(
                        f"Role '{slug}' inherits from undefined role '{parent}'"
                    )
                if not parent_role.is_system:
                    raise InvalidHierarchyError(
                        f"Role '{slug}' cannot inherit from custom role '{parent}'"
                    )

            role = Role(
                slug=slug,
                name=name,
                description=description,
                is_system=True,
                grants=self.validate_grants(grants),
                inherits_from=inherits,
            )
            self._store(role)
            logger.debug("Defined system role %s (inherits %s)", slug, list(inherits))
            return role

    def define_system_roles(self, definitions: Iterable[SystemRoleDefinition]) -> list[Role]:
        """Define a whole inheritance table, in dependency order."""
        return [
            self.define_system_role(
                d.slug, d.name, d.description, d.grants, d.inherits_from
            )
            for d in order_definitions(definitions)
        ]

    # -- custom roles ------------------------------------------

    def create_custom_role(
        self,
        organization_id: str,
        name: str,
        slug: str,
        description: str = "",
    ) -> Role:
        with self._lock:
            self._check_new_slug(slug)
            role = Role(
                slug=slug,
                name=name,
                description=description,
                is_system=False,
                organization_id=organization_id,
            )
            self._store(role)
            return role

    def load_custom_role(self, role: Role) -> Role:
        """Register a custom role read back from storage."""
        if role.is_system or role.inherits_from:
            raise InvalidHierarchyError(
                f"Stored role '{role.slug}' is not a valid custom role"
            )
        with self._lock:
            self._check_new_slug(role.slug)
            role = replace(role, grants=self.validate_grants(role.grants))
            self._store(role)
            return role

    def update_custom_role(
        self,
        ref: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Role:
        with self._lock:
            role = self._mutable(ref)
            updated = replace(
                role,
                name=role.name if name is None else name,
                description=role.description if description is None else description,
            )
            self._roles[role.slug] = updated
            return updated

    def delete_custom_role(self, ref: str) -> Role:
        with self._lock:
            role = self._mutable(ref)
            del self._roles[role.slug]
            del self._ids[role.id]
            return role

    def set_role_grants(self, ref: str, grants: Iterable[str | Grant]) -> Role:
        """Replace a custom role's grant set.  System roles are immutable."""
        with self._lock:
            role = self._mutable(ref)
            updated = replace(role, grants=self.validate_grants(grants))
            self._roles[role.slug] = updated
            return updated

    # -- lookups -----------------------------------------------

    def find_role(self, ref: str) -> Role | None:
        """Look a role up by slug or id."""
        with self._lock:
            role = self._roles.get(ref)
            if role is None and ref in self._ids:
                role = self._roles.get(self._ids[ref])
            return role

    def get_role(self, ref: str) -> Role:
        role = self.find_role(ref)
        if role is None:
            raise RoleNotFoundError(ref)
        return role

    def is_system_role(self, slug: str) -> bool:
        role = self.find_role(slug)
        return role is not None and role.is_system

    def list_roles(self, organization_id: str | None = None) -> list[Role]:
        """System roles plus the custom roles of ``organization_id``."""
        with self._lock:
            roles = list(self._roles.values())
        return [
            r for r in roles
            if r.is_system or (organization_id is not None and r.organization_id == organization_id)
        ]

    def system_roles(self) -> list[Role]:
        return [r for r in self.list_roles() if r.is_system]

    # -- expansion ---------------------------------------------

    def expand_grants(self, ref: str) -> frozenset[Grant]:
        """Own grants plus every transitively inherited role's grants."""
        role = self.get_role(ref)
        if not role.is_system:
            return role.grants

        cached = self._system_expansions.get(role.slug)
        if cached is not None:
            return cached

        grants: set[Grant] = set()
        seen: set[str] = set()
        queue = deque([role.slug])
        while queue:
            slug = queue.popleft()
            if slug in seen:
                continue
            seen.add(slug)
            current = self._roles.get(slug)
            if current is None:
                logger.error("Role %s inherits from missing role %s", role.slug, slug)
                continue
            grants.update(current.grants)
            queue.extend(current.inherits_from)

        expanded = frozenset(grants)
        with self._lock:
            self._system_expansions[role.slug] = expanded
        return expanded

    def inherited_roles(self, ref: str) -> list[str]:
        """Every role slug reachable through inherits_from, breadth-first."""
        role = self.get_role(ref)
        result: list[str] = []
        seen = {role.slug}
        queue = deque(role.inherits_from)
        while queue:
            slug = queue.popleft()
            if slug in seen:
                continue
            seen.add(slug)
            result.append(slug)
            current = self._roles.get(slug)
            if current is not None:
                queue.extend(current.inherits_from)
        return result

    def role_inherits_from(self, ref: str, target: str) -> bool:
        return target in self.inherited_roles(ref)

    # -- internals ---------------------------------------------

    def _check_new_slug(self, slug: str) -> None:
        if not is_valid_token(slug) or len(slug) > 50:
            raise ValueError(f"Role slug must be lowercase snake_case: {slug!r}")
        if slug in self._roles:
            raise DuplicateSlugError(slug)

    def _store(self, role: Role) -> None:
        self._roles[role.slug] = role
        self._ids[role.id] = role.slug

    def _mutable(self, ref: str) -> Role:
        role = self.find_role(ref)
        if role is None:
            raise RoleNotFoundError(ref)
        if role.is_system:
            raise SystemRoleImmutableError(role.slug)
        return role
