"""Tests for the organization hierarchy: levels, moves, traversal policy."""

import pytest

from accesscore.auth.hierarchy import (
    Organization,
    OrganizationHierarchy,
    OrganizationType,
    TraversalPolicy,
)
from accesscore.exceptions import (
    ActiveChildrenError,
    CycleDetectedError,
    DepthExceededError,
    InvalidParentError,
    OrganizationNotFoundError,
)

P = OrganizationType.PARENT


def chain(hierarchy: OrganizationHierarchy, prefix: str, length: int, parent_id=None) -> list[str]:
    """Add ``length`` nested parent-type organizations; returns their ids."""
    ids = []
    for i in range(length):
        org = hierarchy.add_organization(
            f"{prefix}{i}", P, parent_id=parent_id, organization_id=f"{prefix}{i}"
        )
        ids.append(org.id)
        parent_id = org.id
    return ids


def snapshot(hierarchy: OrganizationHierarchy) -> dict[str, Organization]:
    return {o.id: o for o in hierarchy.organizations()}


@pytest.mark.unit
class TestQueries:
    def test_levels(self, hierarchy):
        assert hierarchy.get_node("org-a").hierarchy_level == 0
        assert hierarchy.get_node("org-m").hierarchy_level == 1
        assert hierarchy.get_node("org-c").hierarchy_level == 2

    def test_ancestors_nearest_first(self, hierarchy):
        assert [a.id for a in hierarchy.get_ancestors("org-c")] == ["org-m", "org-a"]
        assert hierarchy.get_ancestors("org-a") == []

    def test_children_and_descendants(self, hierarchy):
        assert [c.name for c in hierarchy.get_children("org-a")] == ["Acme Downtown", "Acme Region"]
        assert {d.id for d in hierarchy.get_descendants("org-a")} == {"org-b", "org-m", "org-c"}
        assert hierarchy.get_descendants("org-s") == []

    def test_get_hierarchy(self, hierarchy):
        view = hierarchy.get_hierarchy("org-m")
        assert view.root.id == "org-m"
        assert [c.id for c in view.children] == ["org-c"]
        assert [d.id for d in view.descendants] == ["org-c"]

    def test_unknown_organization(self, hierarchy):
        with pytest.raises(OrganizationNotFoundError):
            hierarchy.get_node("nope")
        with pytest.raises(OrganizationNotFoundError):
            hierarchy.get_ancestors("nope")


@pytest.mark.unit
class TestConstruction:
    def test_child_type_requires_parent(self):
        hierarchy = OrganizationHierarchy()
        with pytest.raises(InvalidParentError):
            hierarchy.add_organization("Orphan", OrganizationType.CHILD)

    def test_single_cannot_have_parent(self, hierarchy):
        with pytest.raises(InvalidParentError):
            hierarchy.add_organization("Solo", OrganizationType.SINGLE, parent_id="org-a")

    def test_parent_must_be_parent_type(self, hierarchy):
        with pytest.raises(InvalidParentError):
            hierarchy.add_organization("Sub", OrganizationType.CHILD, parent_id="org-b")

    def test_parent_must_be_active(self, hierarchy):
        hierarchy.deactivate("org-a")
        with pytest.raises(InvalidParentError):
            hierarchy.add_organization("New", OrganizationType.CHILD, parent_id="org-a")

    def test_depth_cap(self):
        hierarchy = OrganizationHierarchy(max_depth=5)
        ids = chain(hierarchy, "p", 6)
        assert hierarchy.get_node(ids[-1]).hierarchy_level == 5
        with pytest.raises(DepthExceededError):
            hierarchy.add_organization("too deep", OrganizationType.CHILD, parent_id=ids[-1])

    def test_load_recomputes_levels(self):
        hierarchy = OrganizationHierarchy()
        hierarchy.load(
            [
                Organization("c", "C", OrganizationType.CHILD, parent_id="a", hierarchy_level=4),
                Organization("a", "A", P),
            ]
        )
        assert hierarchy.get_node("c").hierarchy_level == 1

    def test_load_rejects_missing_parent(self):
        hierarchy = OrganizationHierarchy()
        with pytest.raises(InvalidParentError):
            hierarchy.load([Organization("c", "C", OrganizationType.CHILD, parent_id="ghost")])


@pytest.mark.unit
class TestMove:
    def test_move_relevels_subtree(self, hierarchy):
        hierarchy.move("org-m", None)

        assert hierarchy.get_node("org-m").parent_id is None
        assert hierarchy.get_node("org-m").hierarchy_level == 0
        assert hierarchy.get_node("org-c").hierarchy_level == 1
        assert [a.id for a in hierarchy.get_ancestors("org-c")] == ["org-m"]
        assert "org-m" not in {c.id for c in hierarchy.get_children("org-a")}

    def test_move_under_new_parent(self, hierarchy):
        hierarchy.move("org-c", "org-a")
        assert hierarchy.get_node("org-c").hierarchy_level == 1
        assert [c.id for c in hierarchy.get_children("org-m")] == []

    def test_move_with_type_change(self, hierarchy):
        moved = hierarchy.move("org-s", "org-a", OrganizationType.CHILD)
        assert moved.organization_type == OrganizationType.CHILD
        assert moved.hierarchy_level == 1

    @pytest.mark.parametrize(
        "org_id, new_parent",
        [("org-a", "org-a"), ("org-a", "org-m"), ("org-a", "org-c")],
    )
    def test_cycle_rejected_without_change(self, hierarchy, org_id, new_parent):
        before = snapshot(hierarchy)
        with pytest.raises(CycleDetectedError):
            hierarchy.move(org_id, new_parent)
        assert snapshot(hierarchy) == before

    def test_cycle_rejection_is_idempotent(self, hierarchy):
        for _ in range(2):
            with pytest.raises(CycleDetectedError):
                hierarchy.move("org-a", "org-c")
        assert hierarchy.get_node("org-a").parent_id is None

    def test_invalid_parent_types(self, hierarchy):
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-b", "org-c")
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-b", None)
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-s", "org-a")

    def test_depth_counts_whole_subtree(self):
        hierarchy = OrganizationHierarchy(max_depth=3)
        p = chain(hierarchy, "p", 3)
        q = chain(hierarchy, "q", 2)
        before = snapshot(hierarchy)

        with pytest.raises(DepthExceededError):
            hierarchy.move(q[0], p[-1])
        assert snapshot(hierarchy) == before

        hierarchy.move(q[0], p[1])
        assert hierarchy.get_node(q[1]).hierarchy_level == 3

    def test_plan_does_not_mutate(self, hierarchy):
        plan = hierarchy.plan_move("org-m", None)
        assert hierarchy.get_node("org-m").parent_id == "org-a"
        assert {o.id for o in plan.updated} == {"org-m", "org-c"}

        moved = hierarchy.apply_move(plan)
        assert moved.hierarchy_level == 0

    @pytest.mark.parametrize(
        "new_type", [OrganizationType.CHILD, OrganizationType.FRANCHISE_CHILD]
    )
    def test_organization_with_children_keeps_a_parent_type(self, hierarchy, new_type):
        before = snapshot(hierarchy)
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-m", "org-a", new_type)
        assert snapshot(hierarchy) == before

    def test_root_with_children_cannot_become_single(self, hierarchy):
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-f", None, OrganizationType.SINGLE)
        assert hierarchy.get_node("org-f").organization_type == OrganizationType.FRANCHISE_PARENT

    def test_inactive_children_still_count(self, hierarchy):
        hierarchy.deactivate("org-c")
        with pytest.raises(InvalidParentError):
            hierarchy.move("org-m", "org-a", OrganizationType.CHILD)

    def test_stale_plan_keeps_concurrent_deactivation(self, hierarchy):
        plan = hierarchy.plan_move("org-m", None)
        hierarchy.deactivate("org-c")
        assert not hierarchy.is_current(plan)

        hierarchy.apply_move(plan)
        org_c = hierarchy.get_node("org-c")
        assert not org_c.is_active
        assert org_c.hierarchy_level == 1

    def test_stale_plan_relevels_new_children(self, hierarchy):
        plan = hierarchy.plan_move("org-m", None)
        late = hierarchy.add_organization("Late", OrganizationType.CHILD, parent_id="org-m")
        assert not hierarchy.is_current(plan)

        hierarchy.apply_move(plan)
        assert hierarchy.get_node(late.id).hierarchy_level == 1
        assert hierarchy.get_node("org-m").hierarchy_level == 0

    def test_stale_when_new_parent_changes(self, hierarchy):
        plan = hierarchy.plan_move("org-c", "org-f")
        hierarchy.deactivate("org-f")
        assert not hierarchy.is_current(plan)
        with pytest.raises(InvalidParentError):
            hierarchy.apply_move(plan)
        assert hierarchy.get_node("org-c").parent_id == "org-m"

    def test_untouched_plan_is_current(self, hierarchy):
        plan = hierarchy.plan_move("org-m", None)
        hierarchy.deactivate("org-b")
        assert hierarchy.is_current(plan)


@pytest.mark.unit
class TestTraversalPolicy:
    def test_parent_extends_to_descendants(self, hierarchy):
        assert hierarchy.can_traverse_for_access("org-a", "org-b")
        assert hierarchy.can_traverse_for_access("org-a", "org-c")
        assert hierarchy.can_traverse_for_access("org-m", "org-c")

    def test_never_upward_or_sideways(self, hierarchy):
        assert not hierarchy.can_traverse_for_access("org-c", "org-a")
        assert not hierarchy.can_traverse_for_access("org-b", "org-m")
        assert not hierarchy.can_traverse_for_access("org-a", "org-a")
        assert not hierarchy.can_traverse_for_access("org-a", "org-g")

    def test_franchise_configurable(self):
        for enabled in (True, False):
            hierarchy = OrganizationHierarchy(policy=TraversalPolicy(franchise_parent=enabled))
            hierarchy.add_organization("F", OrganizationType.FRANCHISE_PARENT, organization_id="f")
            hierarchy.add_organization(
                "G", OrganizationType.FRANCHISE_CHILD, parent_id="f", organization_id="g"
            )
            assert hierarchy.can_traverse_for_access("f", "g") is enabled

    def test_inactive_ancestor_does_not_extend(self, hierarchy):
        hierarchy.deactivate("org-a")
        assert not hierarchy.can_traverse_for_access("org-a", "org-c")
        assert hierarchy.can_traverse_for_access("org-m", "org-c")


@pytest.mark.unit
class TestDeactivateAndRemove:
    def test_deactivate_hides_from_children(self, hierarchy):
        hierarchy.deactivate("org-b")
        assert [c.id for c in hierarchy.get_children("org-a")] == ["org-m"]
        assert len(hierarchy.get_children("org-a", include_inactive=True)) == 2

        hierarchy.reactivate("org-b")
        assert len(hierarchy.get_children("org-a")) == 2

    def test_remove_refused_with_active_descendants(self, hierarchy):
        with pytest.raises(ActiveChildrenError):
            hierarchy.remove("org-m")
        assert hierarchy.contains("org-c")

    def test_remove_inactive_subtree(self, hierarchy):
        hierarchy.deactivate("org-c")
        removed = hierarchy.remove("org-m")

        assert {o.id for o in removed} == {"org-m", "org-c"}
        assert not hierarchy.contains("org-m")
        assert not hierarchy.contains("org-c")
        assert [c.id for c in hierarchy.get_children("org-a")] == ["org-b"]
