"""Grant expressions attached to roles.

A grant is one of three shapes:

  ExactGrant("clients", "view")   serialized as  "clients.view"
  ResourceWildcard("clients")     serialized as  "clients.*"
  GlobalWildcard()                serialized as  "*.*"

Strings are parsed once, when a role is defined or its grants are replaced,
never at check time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from accesscore.exceptions import InvalidGrantError

WILDCARD = "*"

TOKEN_RE = re.compile(r"^[a-z][a-z0-9_]*$")


def is_valid_token(token: str) -> bool:
    """Resource and action names are non-empty lowercase snake_case."""
    return bool(TOKEN_RE.match(token))


@dataclass(frozen=True)
class ExactGrant:
    resource: str
    action: str

    def matches(self, resource: str, action: str) -> bool:
        return self.resource == resource and self.action == action

    def __str__(self) -> str:
        return f"{self.resource}.{self.action}"


@dataclass(frozen=True)
class ResourceWildcard:
    resource: str

    def matches(self, resource: str, action: str) -> bool:
        return self.resource == resource

    def __str__(self) -> str:
        return f"{self.resource}.{WILDCARD}"


@dataclass(frozen=True)
class GlobalWildcard:
    def matches(self, resource: str, action: str) -> bool:
        return True

    def __str__(self) -> str:
        return f"{WILDCARD}.{WILDCARD}"


Grant = Union[ExactGrant, ResourceWildcard, GlobalWildcard]


def parse_grant(expression: str) -> Grant:
    """Parse ``"resource.action"``, ``"resource.*"`` or ``"*.*"``.

    Raises InvalidGrantError for anything else (``"*.view"`` included: an
    action wildcard across resources is not a supported shape).
    """
    parts = expression.split(".")
    if len(parts) != 2:
        raise InvalidGrantError(f"Malformed grant expression: {expression!r}")

    resource, action = parts
    if resource == WILDCARD:
        if action != WILDCARD:
            raise InvalidGrantError(f"Unsupported grant expression: {expression!r}")
        return GlobalWildcard()

    if not is_valid_token(resource):
        raise InvalidGrantError(f"Invalid resource in grant: {expression!r}")
    if action == WILDCARD:
        return ResourceWildcard(resource)
    if not is_valid_token(action):
        raise InvalidGrantError(f"Invalid action in grant: {expression!r}")
    return ExactGrant(resource, action)


def matches_wildcard(grant: Grant, resource: str, action: str) -> bool:
    """True if ``grant`` covers ``resource.action``.

    Resource names compare by exact string equality only.
    """
    return grant.matches(resource, action)


def grant_sort_key(grant: Grant) -> tuple[int, str]:
    """Global wildcard first, then resource wildcards, then exact grants."""
    if isinstance(grant, GlobalWildcard):
        return (0, str(grant))
    if isinstance(grant, ResourceWildcard):
        return (1, str(grant))
    return (2, str(grant))
