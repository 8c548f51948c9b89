"""Membership store interface consumed by the resolution engine.

The store is an external collaborator: the engine only reads from it and
never caches what it returns.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol, Sequence


@dataclass(frozen=True)
class Membership:
    user_id: str
    organization_id: str
    role_slug: str
    is_active: bool = True
    is_primary: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


class MembershipStore(Protocol):
    async def get_active_membership(
        self, user_id: str, organization_id: str
    ) -> Membership | None:
        """The single active membership, or None.

        Raises AmbiguousMembershipError if more than one active row exists.
        """
        ...

    async def get_active_memberships(self, user_id: str) -> Sequence[Membership]:
        ...


class MembershipWriter(MembershipStore, Protocol):
    """Store with the write side used by administration, never by ``Check()``."""

    async def update_role(
        self, user_id: str, organization_id: str, role_slug: str
    ) -> Membership | None:
        """Change the role of the active membership; None when there is none."""
        ...
