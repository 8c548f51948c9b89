"""Organization hierarchy: a forest of organizations with computed depth.

Design:
  - Arena-style storage: ``_nodes`` maps id -> Organization (immutable
    snapshots) and ``_children`` maps id -> child ids.  Moves build the new
    snapshots for the whole subtree first, then swap them in under the lock,
    so ``hierarchy_level`` is never observed half-updated.
  - ``hierarchy_level`` is 0 for roots and parent + 1 otherwise, capped at
    ``max_depth``.
  - Whether membership in one organization extends into another is an
    explicit policy (``TraversalPolicy``), not inferred from tree shape alone.
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Iterable

from accesscore.exceptions import (
    ActiveChildrenError,
    CycleDetectedError,
    DepthExceededError,
    InvalidParentError,
    OrganizationNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5


class OrganizationType(str, enum.Enum):
    SINGLE = "single"
    PARENT = "parent"
    CHILD = "child"
    FRANCHISE_PARENT = "franchise_parent"
    FRANCHISE_CHILD = "franchise_child"


PARENT_TYPES = frozenset({OrganizationType.PARENT, OrganizationType.FRANCHISE_PARENT})
CHILD_TYPES = frozenset({OrganizationType.CHILD, OrganizationType.FRANCHISE_CHILD})


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    organization_type: OrganizationType = OrganizationType.SINGLE
    parent_id: str | None = None
    hierarchy_level: int = 0
    is_active: bool = True

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(frozen=True)
class TraversalPolicy:
    """Which ancestor types extend their members' access to descendants.

    Access never flows upward (child -> parent).
    """

    parent: bool = True
    franchise_parent: bool = True

    def allows(self, ancestor_type: OrganizationType) -> bool:
        if ancestor_type == OrganizationType.PARENT:
            return self.parent
        if ancestor_type == OrganizationType.FRANCHISE_PARENT:
            return self.franchise_parent
        return False


@dataclass
class MovePlan:
    """Validated result of a move, not yet applied.

    ``originals`` and ``child_sets`` hold the state the plan was computed
    from (the subtree plus the new parent) so staleness can be detected.
    """

    organization_id: str
    previous_parent_id: str | None
    new_parent_id: str | None
    updated: list[Organization] = field(default_factory=list)
    originals: dict[str, Organization] = field(default_factory=dict)
    child_sets: dict[str, frozenset[str]] = field(default_factory=dict)

    @property
    def moved(self) -> Organization:
        return self.updated[0]


@dataclass(frozen=True)
class HierarchyView:
    root: Organization
    children: list[Organization]
    descendants: list[Organization]


class OrganizationHierarchy:
    def __init__(
        self,
        max_depth: int = DEFAULT_MAX_DEPTH,
        policy: TraversalPolicy | None = None,
    ) -> None:
        self.max_depth = max_depth
        self.policy = policy or TraversalPolicy()
        self._nodes: dict[str, Organization] = {}
        self._children: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    # ── Construction ───────────────────────────────────────────

    def add_organization(
        self,
        name: str,
        organization_type: OrganizationType | str = OrganizationType.SINGLE,
        parent_id: str | None = None,
        is_active: bool = True,
        organization_id: str | None = None,
    ) -> Organization:
        """Create an organization; its level is computed from the parent."""
        org_type = OrganizationType(organization_type)
        with self._lock:
            org_id = organization_id or str(uuid.uuid4())
            if org_id in self._nodes:
                raise InvalidParentError(f"Organization already exists: {org_id}")

            level = 0
            if parent_id is not None:
                parent = self.get_node(parent_id)
                self._check_parent(org_type, parent)
                level = parent.hierarchy_level + 1
                if level > self.max_depth:
                    raise DepthExceededError(level, self.max_depth)
            elif org_type in CHILD_TYPES:
                raise InvalidParentError(
                    f"A {org_type.value} organization requires a parent"
                )

            org = Organization(
                id=org_id,
                name=name,
                organization_type=org_type,
                parent_id=parent_id,
                hierarchy_level=level,
                is_active=is_active,
            )
            self._nodes[org_id] = org
            self._children.setdefault(org_id, set())
            if parent_id is not None:
                self._children[parent_id].add(org_id)
            return org

    def load(self, organizations: Iterable[Organization]) -> None:
        """Bulk-load stored organizations, parents before children.

        Levels are recomputed rather than trusted from storage.
        """
        pending = {o.id: o for o in organizations}
        with self._lock:
            while pending:
                ready = [
                    o for o in pending.values()
                    if o.parent_id is None or o.parent_id in self._nodes
                ]
                if not ready:
                    raise InvalidParentError(
                        "Stored organizations reference missing parents or form a cycle: "
                        + ", ".join(sorted(pending))
                    )
                for org in ready:
                    level = 0
                    if org.parent_id is not None:
                        level = self._nodes[org.parent_id].hierarchy_level + 1
                    if level > self.max_depth:
                        raise DepthExceededError(level, self.max_depth)
                    self._nodes[org.id] = replace(org, hierarchy_level=level)
                    self._children.setdefault(org.id, set())
                    if org.parent_id is not None:
                        self._children[org.parent_id].add(org.id)
                    del pending[org.id]

    # ── Queries ────────────────────────────────────────────────

    def get_node(self, organization_id: str) -> Organization:
        org = self._nodes.get(organization_id)
        if org is None:
            raise OrganizationNotFoundError(organization_id)
        return org

    def contains(self, organization_id: str) -> bool:
        return organization_id in self._nodes

    def get_ancestors(self, organization_id: str) -> list[Organization]:
        """Nearest first, ending at the root.  Inactive ancestors included."""
        with self._lock:
            node = self.get_node(organization_id)
            ancestors = []
            while node.parent_id is not None:
                node = self._nodes[node.parent_id]
                ancestors.append(node)
                if len(ancestors) > self.max_depth:
                    logger.error("Ancestor walk from %s exceeded depth cap", organization_id)
                    break
            return ancestors

    def get_children(self, organization_id: str, include_inactive: bool = False) -> list[Organization]:
        with self._lock:
            self.get_node(organization_id)
            children = [self._nodes[c] for c in self._children.get(organization_id, ())]
        children.sort(key=lambda o: o.name)
        if include_inactive:
            return children
        return [c for c in children if c.is_active]

    def get_descendants(self, organization_id: str, include_inactive: bool = False) -> list[Organization]:
        """All descendants at any depth, breadth-first.

        Inactive nodes are walked through but only returned when
        ``include_inactive`` is set.
        """
        with self._lock:
            self.get_node(organization_id)
            result = []
            queue = deque(self._children.get(organization_id, ()))
            while queue:
                node = self._nodes[queue.popleft()]
                if include_inactive or node.is_active:
                    result.append(node)
                queue.extend(self._children.get(node.id, ()))
            return result

    def get_hierarchy(self, organization_id: str) -> HierarchyView:
        return HierarchyView(
            root=self.get_node(organization_id),
            children=self.get_children(organization_id),
            descendants=self.get_descendants(organization_id),
        )

    def subtree_height(self, organization_id: str) -> int:
        """Levels below the node (0 for a leaf)."""
        base = self.get_node(organization_id).hierarchy_level
        deepest = base
        for d in self.get_descendants(organization_id, include_inactive=True):
            deepest = max(deepest, d.hierarchy_level)
        return deepest - base

    def organizations(self) -> list[Organization]:
        with self._lock:
            return list(self._nodes.values())

    # ── Access extension ───────────────────────────────────────

    def can_traverse_for_access(self, from_org_id: str, to_org_id: str) -> bool:
        """True if members of ``from_org_id`` may act inside ``to_org_id``.

        Only an active ancestor whose type the policy allows qualifies;
        a descendant never confers access on its ancestors.
        """
        if from_org_id == to_org_id:
            return False
        source = self._nodes.get(from_org_id)
        if source is None or not source.is_active:
            return False
        if not self.policy.allows(source.organization_type):
            return False
        return any(a.id == from_org_id for a in self.get_ancestors(to_org_id))

    # ── Mutation ───────────────────────────────────────────────

    def plan_move(
        self,
        organization_id: str,
        new_parent_id: str | None,
        organization_type: OrganizationType | str | None = None,
    ) -> MovePlan:
        """Validate a move and compute every new snapshot, without applying it."""
        with self._lock:
            node = self.get_node(organization_id)
            org_type = (
                node.organization_type
                if organization_type is None
                else OrganizationType(organization_type)
            )
            if org_type not in PARENT_TYPES and self._children.get(organization_id):
                raise InvalidParentError(
                    f"Organization {organization_id} has child organizations "
                    f"and cannot become {org_type.value}"
                )

            new_level = 0
            originals = {organization_id: node}
            if new_parent_id is not None:
                if new_parent_id == organization_id:
                    raise CycleDetectedError(organization_id, new_parent_id)
                parent = self.get_node(new_parent_id)
                subtree = self.get_descendants(organization_id, include_inactive=True)
                if any(d.id == new_parent_id for d in subtree):
                    raise CycleDetectedError(organization_id, new_parent_id)
                self._check_parent(org_type, parent)
                new_level = parent.hierarchy_level + 1
                originals[new_parent_id] = parent
            elif org_type in CHILD_TYPES:
                raise InvalidParentError(
                    f"A {org_type.value} organization requires a parent"
                )

            deepest = new_level + self.subtree_height(organization_id)
            if deepest > self.max_depth:
                raise DepthExceededError(deepest, self.max_depth)

            moved = replace(
                node,
                parent_id=new_parent_id,
                organization_type=org_type,
                hierarchy_level=new_level,
            )
            updated = [moved]
            child_sets = {organization_id: frozenset(self._children.get(organization_id, ()))}
            queue = deque((c, new_level + 1) for c in child_sets[organization_id])
            while queue:
                child_id, level = queue.popleft()
                child = self._nodes[child_id]
                originals[child_id] = child
                updated.append(replace(child, hierarchy_level=level))
                child_sets[child_id] = frozenset(self._children.get(child_id, ()))
                queue.extend((c, level + 1) for c in child_sets[child_id])

            return MovePlan(
                organization_id=organization_id,
                previous_parent_id=node.parent_id,
                new_parent_id=new_parent_id,
                updated=updated,
                originals=originals,
                child_sets=child_sets,
            )

    def is_current(self, plan: MovePlan) -> bool:
        """True if no node the plan was computed from has changed since."""
        with self._lock:
            if any(self._nodes.get(i) != o for i, o in plan.originals.items()):
                return False
            return all(
                frozenset(self._children.get(i, ())) == kids
                for i, kids in plan.child_sets.items()
            )

    def apply_move(self, plan: MovePlan) -> Organization:
        """Swap in a planned move.  Re-plans if the touched nodes changed meanwhile."""
        with self._lock:
            if not self.is_current(plan):
                plan = self.plan_move(
                    plan.organization_id, plan.new_parent_id, plan.moved.organization_type
                )

            if plan.previous_parent_id is not None:
                self._children[plan.previous_parent_id].discard(plan.organization_id)
            if plan.new_parent_id is not None:
                self._children[plan.new_parent_id].add(plan.organization_id)
            for org in plan.updated:
                self._nodes[org.id] = org

            logger.info(
                "Moved organization %s from %s to %s (%d node(s) relevelled)",
                plan.organization_id,
                plan.previous_parent_id,
                plan.new_parent_id,
                len(plan.updated),
            )
            return self._nodes[plan.organization_id]

    def move(
        self,
        organization_id: str,
        new_parent_id: str | None,
        organization_type: OrganizationType | str | None = None,
    ) -> Organization:
        """Re-parent a node and relevel its whole subtree atomically."""
        with self._lock:
            return self.apply_move(
                self.plan_move(organization_id, new_parent_id, organization_type)
            )

    def deactivate(self, organization_id: str) -> Organization:
        """Soft delete: the node stays in the tree but stops granting access."""
        with self._lock:
            org = replace(self.get_node(organization_id), is_active=False)
            self._nodes[organization_id] = org
            return org

    def reactivate(self, organization_id: str) -> Organization:
        with self._lock:
            org = replace(self.get_node(organization_id), is_active=True)
            self._nodes[organization_id] = org
            return org

    def remove(self, organization_id: str) -> list[Organization]:
        """Physically remove a node and its (inactive) subtree.

        Refused while any descendant is still active.
        """
        with self._lock:
            node = self.get_node(organization_id)
            active = self.get_descendants(organization_id)
            if active:
                raise ActiveChildrenError(organization_id, len(active))

            removed = [node] + self.get_descendants(organization_id, include_inactive=True)
            for org in removed:
                del self._nodes[org.id]
                self._children.pop(org.id, None)
            if node.parent_id is not None:
                self._children[node.parent_id].discard(organization_id)
            return removed

    # ── Internals ──────────────────────────────────────────────

    @staticmethod
    def _check_parent(org_type: OrganizationType, parent: Organization) -> None:
        if org_type == OrganizationType.SINGLE:
            raise InvalidParentError("A single organization cannot have a parent")
        if not parent.is_active:
            raise InvalidParentError(f"Parent organization {parent.id} is inactive")
        if parent.organization_type not in PARENT_TYPES:
            raise InvalidParentError(
                f"Organization {parent.id} of type "
                f"{parent.organization_type.value} cannot be a parent"
            )
