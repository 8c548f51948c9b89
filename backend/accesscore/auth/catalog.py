"""Permission catalog: the vocabulary of valid ``resource.action`` pairs.

Design:
  - The catalog is an ordered, append-only registry.  Resources keep the
    order in which they were first registered and actions keep their order
    within a resource, so ``list()`` is deterministic.
  - Built once at process start from PERMISSION_DEFINITIONS (see
    ``default_catalog()``) and then only read.
  - Every role grant is validated against it: a concrete grant must name a
    registered pair, a resource wildcard must name a registered resource.

Permission naming: ``<resource>.<action>``, both lowercase snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass

from accesscore.auth.grants import (
    ExactGrant,
    GlobalWildcard,
    Grant,
    ResourceWildcard,
    is_valid_token,
)
from accesscore.exceptions import DuplicatePermissionError, InvalidGrantError


@dataclass(frozen=True)
class Permission:
    resource: str
    action: str
    description: str = ""

    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}"

    @classmethod
    def parse(cls, value: str) -> "Permission":
        parts = value.split(".")
        if len(parts) != 2 or not all(is_valid_token(p) for p in parts):
            raise ValueError(f"Invalid permission string: {value!r}")
        return cls(resource=parts[0], action=parts[1])

    def __str__(self) -> str:
        return self.key


# ── Default catalog configuration ──────────────────────────────

PERMISSION_DEFINITIONS: dict[str, dict[str, str]] = {
    "analytics": {
        "view_basic": "View basic analytics and reports",
        "view_detailed": "View detailed analytics",
        "export": "Export analytics data",
    },
    "clients": {
        "view": "View client profiles and information",
        "create": "Create new client accounts",
        "update": "Update client information",
        "delete": "Delete client accounts",
        "export": "Export client data",
    },
    "documents": {
        "view": "View documents",
        "upload": "Upload new documents",
        "delete": "Delete documents",
    },
    "events": {
        "view": "View events and classes",
        "create": "Create new events and classes",
        "update": "Update event information",
        "delete": "Delete events and classes",
        "book": "Book clients into events",
        "cancel_booking": "Cancel event bookings",
    },
    "memberships": {
        "view": "View membership information",
        "create": "Create new memberships",
        "update": "Update membership details",
        "delete": "Delete memberships",
        "suspend": "Suspend or resume memberships",
    },
    "notifications": {
        "send": "Send notifications to users",
        "manage_templates": "Manage notification templates",
    },
    "organization": {
        "view": "View organization settings",
        "update": "Update organization settings",
        "billing": "Manage billing and subscriptions",
        "manage_roles": "Manage roles and permissions",
        "manage_staff": "Manage staff members",
    },
    "system": {
        "access_admin_panel": "Access admin panel",
        "manage_integrations": "Manage third-party integrations",
        "view_audit_logs": "View audit logs",
    },
    "workouts": {
        "view": "View workout plans and history",
        "create": "Create workout plans",
        "update": "Update workout plans",
        "delete": "Delete workout plans",
        "assign": "Assign workouts to clients",
    },
}


# ── Catalog ────────────────────────────────────────────────────


class PermissionCatalog:
    def __init__(self) -> None:
        # dicts preserve insertion order: resource order, then action order
        self._entries: dict[str, dict[str, Permission]] = {}

    def register(self, resource: str, action: str, description: str = "") -> Permission:
        """Add a ``(resource, action)`` pair.  Raises DuplicatePermissionError."""
        if not is_valid_token(resource) or not is_valid_token(action):
            raise ValueError(
                f"Permission tokens must be lowercase snake_case: {resource!r}.{action!r}"
            )
        actions = self._entries.setdefault(resource, {})
        if action in actions:
            raise DuplicatePermissionError(resource, action)
        permission = Permission(resource=resource, action=action, description=description)
        actions[action] = permission
        return permission

    def is_valid(self, resource: str, action: str) -> bool:
        return action in self._entries.get(resource, {})

    def has_resource(self, resource: str) -> bool:
        return resource in self._entries

    def get(self, resource: str, action: str) -> Permission | None:
        return self._entries.get(resource, {}).get(action)

    def describe(self, resource: str, action: str) -> str | None:
        permission = self.get(resource, action)
        return permission.description if permission else None

    def list(self) -> list[Permission]:
        """All permissions, grouped by resource in registration order."""
        return [p for actions in self._entries.values() for p in actions.values()]

    def by_resource(self, resource: str) -> list[Permission]:
        return list(self._entries.get(resource, {}).values())

    def resources(self) -> list[str]:
        return list(self._entries)

    def validate_grant(self, grant: Grant) -> Grant:
        """Ensure a grant refers to catalogued vocabulary."""
        if isinstance(grant, GlobalWildcard):
            return grant
        if isinstance(grant, ResourceWildcard):
            if not self.has_resource(grant.resource):
                raise InvalidGrantError(f"Unknown resource in grant: {grant}")
            return grant
        if isinstance(grant, ExactGrant) and not self.is_valid(grant.resource, grant.action):
            raise InvalidGrantError(f"Unknown permission in grant: {grant}")
        return grant

    def expand(self, grant: Grant) -> list[Permission]:
        """Concrete catalog permissions covered by a grant, in catalog order."""
        return [p for p in self.list() if grant.matches(p.resource, p.action)]

    def __len__(self) -> int:
        return sum(len(actions) for actions in self._entries.values())

    def __contains__(self, key: str) -> bool:
        resource, _, action = key.partition(".")
        return self.is_valid(resource, action)


def default_catalog(
    definitions: dict[str, dict[str, str]] | None = None,
) -> PermissionCatalog:
    """Build a catalog from a ``{resource: {action: description}}`` mapping."""
    catalog = PermissionCatalog()
    for resource, actions in (definitions or PERMISSION_DEFINITIONS).items():
        for action, description in actions.items():
            catalog.register(resource, action, description)
    return catalog
