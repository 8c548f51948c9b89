"""In-process membership store, for tests and single-node embedding."""

from __future__ import annotations

from dataclasses import replace

from accesscore.exceptions import AmbiguousMembershipError
from accesscore.stores.base import Membership


class InMemoryMembershipStore:
    def __init__(self, memberships: list[Membership] | None = None) -> None:
        self._rows: list[Membership] = list(memberships or [])

    def add(
        self,
        user_id: str,
        organization_id: str,
        role_slug: str,
        *,
        is_active: bool = True,
        is_primary: bool = False,
    ) -> Membership:
        """Record a membership.

        Adding a second active row for the same pair is allowed here so the
        engine's integrity handling can be exercised; callers that want
        one-role-per-organization use ``assign``.
        """
        if is_primary and is_active:
            self._clear_primary(user_id)
        row = Membership(
            user_id=user_id,
            organization_id=organization_id,
            role_slug=role_slug,
            is_active=is_active,
            is_primary=is_primary,
        )
        self._rows.append(row)
        return row

    def assign(self, user_id: str, organization_id: str, role_slug: str) -> Membership:
        """Set the user's single role in an organization."""
        self._rows = [
            r for r in self._rows
            if not (r.user_id == user_id and r.organization_id == organization_id)
        ]
        return self.add(user_id, organization_id, role_slug)

    def deactivate(self, user_id: str, organization_id: str) -> None:
        self._rows = [
            replace(r, is_active=False, is_primary=False)
            if r.user_id == user_id and r.organization_id == organization_id
            else r
            for r in self._rows
        ]

    async def get_active_membership(
        self, user_id: str, organization_id: str
    ) -> Membership | None:
        rows = [
            r for r in self._rows
            if r.user_id == user_id and r.organization_id == organization_id and r.is_active
        ]
        if len(rows) > 1:
            raise AmbiguousMembershipError(user_id, organization_id, len(rows))
        return rows[0] if rows else None

    async def get_active_memberships(self, user_id: str) -> list[Membership]:
        return [r for r in self._rows if r.user_id == user_id and r.is_active]

    async def update_role(
        self, user_id: str, organization_id: str, role_slug: str
    ) -> Membership | None:
        current = await self.get_active_membership(user_id, organization_id)
        if current is None:
            return None
        updated = replace(current, role_slug=role_slug)
        self._rows = [updated if r is current else r for r in self._rows]
        return updated

    def _clear_primary(self, user_id: str) -> None:
        self._rows = [
            replace(r, is_primary=False) if r.user_id == user_id else r
            for r in self._rows
        ]
