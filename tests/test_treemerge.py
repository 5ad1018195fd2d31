import pytest

from subclonemerge.errors import TreeStructureError
from subclonemerge.events import EventMatcher, event_difference
from subclonemerge.models import EventKind, SomaticEvent, Subclone
from subclonemerge.treemerge import check_placement, compare_trees, node_events_list, tree_merge

M = EventMatcher(resolution=0)

A = SomaticEvent(kind=EventKind.SNV, chrom="1", start=100, label="A")
B = SomaticEvent(kind=EventKind.SNV, chrom="2", start=200, label="B")
C = SomaticEvent(kind=EventKind.SNV, chrom="3", start=300, label="C")
D = SomaticEvent(kind=EventKind.CNV, chrom="4", start=1_000, end=9_000, label="D")


def two_branch_tree():
    """root{} -> C1{A}, C2{B}"""
    root = Subclone(label="root")
    c1 = root.add_child(Subclone(events=[A], label="C1"))
    c2 = root.add_child(Subclone(events=[B], label="C2"))
    return root, c1, c2


def test_node_events_list_root_to_node_order():
    root = Subclone(events=[A], label="root")
    mid = root.add_child(Subclone(events=[B], label="mid"))
    leaf = mid.add_child(Subclone(events=[C, D], label="leaf"))
    assert node_events_list(leaf) == [A, B, C, D]
    assert node_events_list(root) == [A]


def test_node_events_list_rejects_missing_node():
    with pytest.raises(TreeStructureError):
        node_events_list(None)


def test_single_branch_placement_goes_to_matching_child():
    root, c1, _ = two_branch_tree()
    res = check_placement(root, [A], M)
    assert res.placeable
    assert res.leftover == []
    assert res.node is c1
    assert res.child_count == 1
    assert not res.ambiguous


def test_events_spanning_siblings_are_ambiguous():
    """Events split across sibling branches land on the first branch.

    Both branches are feasible, so the result is C1 with leftover {B} rather
    than the root with leftover {A, B}.
    """
    root, c1, _ = two_branch_tree()
    res = check_placement(root, [A, B], M)
    assert res.placeable
    assert res.child_count == 2
    assert res.ambiguous
    # equal-sized leftovers: the first child wins
    assert res.node is c1
    assert res.leftover == [B]


def test_tie_break_prefers_fewest_leftover():
    root = Subclone(label="root")
    root.add_child(Subclone(events=[A], label="C1"))
    deep = root.add_child(Subclone(events=[B], label="C2"))
    deeper = deep.add_child(Subclone(events=[C], label="C2a"))
    res = check_placement(root, [A, B, C], M)
    assert res.node is deeper
    assert res.leftover == [A]
    assert res.ambiguous


def test_infeasible_root_is_not_placeable():
    root = Subclone(events=[A], label="root")
    root.add_child(Subclone(events=[B]))
    res = check_placement(root, [B], M)
    assert not res.placeable
    assert res.leftover == [B]
    assert res.node is None


def test_empty_event_set_places_at_root():
    root, _, _ = two_branch_tree()
    res = check_placement(root, [], M)
    assert res.placeable
    assert res.node is root
    assert res.leftover == []


def test_leftover_is_subsequence_of_input():
    root, _, _ = two_branch_tree()
    events = [C, A, D]
    res = check_placement(root, events, M)
    assert res.leftover == event_difference(events, node_events_list(res.node), M)
    it = iter(events)
    assert all(e in it for e in res.leftover)


def test_check_placement_rejects_missing_tree():
    with pytest.raises(TreeStructureError):
        check_placement(None, [A], M)


def test_check_placement_detects_shared_child():
    root = Subclone(label="root")
    shared = Subclone(label="shared")
    a = root.add_child(Subclone(label="a"))
    a.children.append(shared)
    root.children.append(shared)
    with pytest.raises(TreeStructureError):
        check_placement(root, [A], M)


def test_tree_is_compatible_with_itself():
    root = Subclone(events=[A], label="root")
    mid = root.add_child(Subclone(events=[B], label="mid"))
    mid.add_child(Subclone(events=[C], label="leaf1"))
    mid.add_child(Subclone(events=[D], label="leaf2"))
    assert tree_merge(root, root, M)
    assert compare_trees(root, root, M).compatible


def test_subtree_of_reference_is_compatible():
    p, _, _ = two_branch_tree()
    q = Subclone(label="q-root")
    q.add_child(Subclone(events=[A], label="q1"))
    assert tree_merge(p, q, M)


def test_novel_event_makes_trees_incompatible():
    p, _, _ = two_branch_tree()
    q = Subclone(label="q-root")
    q.add_child(Subclone(events=[A, C], label="q1"))
    assert not tree_merge(p, q, M)
    assert tree_merge(p, q, M, allow_novel_events=True)


def test_empty_event_set_fits_below_truncal_events():
    root = Subclone(events=[A], label="root")
    root.add_child(Subclone(events=[B], label="c"))
    res = check_placement(root, [], M)
    assert res.placeable
    assert res.node is root
    assert res.leftover == []


def test_eventless_q_root_is_compatible_with_truncal_p_root():
    p = Subclone(events=[A], label="p-root")
    p.add_child(Subclone(events=[B], label="c"))
    q = Subclone(label="q-root")
    q.add_child(Subclone(events=[A], label="q1"))
    assert tree_merge(p, q, M)
    assert compare_trees(p, q, M).compatible


def test_q_root_missing_truncal_events_is_incompatible():
    p = Subclone(events=[A, B], label="p-root")
    q = Subclone(events=[A], label="q-root")
    assert not tree_merge(p, q, M)
    assert not tree_merge(p, q, M, allow_novel_events=True)


def test_tolerance_threads_through_tree_merge():
    p = Subclone(label="p")
    p.add_child(Subclone(events=[SomaticEvent(kind="snv", chrom="1", start=1_000)]))
    q = Subclone(label="q")
    q.add_child(Subclone(events=[SomaticEvent(kind="snv", chrom="1", start=1_500)]))
    assert not tree_merge(p, q, EventMatcher(resolution=100))
    assert tree_merge(p, q, EventMatcher(resolution=500))
    # default resolution is generous
    assert tree_merge(p, q)


def test_compare_trees_reports_every_node():
    p, _, _ = two_branch_tree()
    q = Subclone(label="q-root")
    q1 = q.add_child(Subclone(events=[A], label="q1"))
    q1.add_child(Subclone(events=[C], label="q1a"))
    res = compare_trees(p, q, M)

    assert not res.compatible
    assert res.compatible == tree_merge(p, q, M)
    assert [r.label for r in res.placements] == ["q-root", "q1", "q1a"]
    assert res.n_nodes == 3
    assert res.n_incompatible == 1
    bad = res.placements[-1]
    assert bad.placed_at == "C1"
    assert [e.label for e in bad.placement.leftover] == ["C"]

    d = res.to_dict()
    assert d["incompatible_nodes"] == 1
    assert d["placements"][1]["placed_at"] == "C1"


def test_missing_roots_raise():
    p, _, _ = two_branch_tree()
    with pytest.raises(TreeStructureError):
        tree_merge(None, p, M)
    with pytest.raises(TreeStructureError):
        compare_trees(p, None, M)


def test_deep_tree_does_not_recurse():
    root = Subclone(label="n0")
    node = root
    for i in range(3_000):
        node = node.add_child(Subclone(label=f"n{i + 1}"))
    node.add_event(A)
    assert node_events_list(node) == [A]
    res = check_placement(root, [A], M)
    assert res.placeable
    assert res.node is node
    assert res.leftover == []


def test_add_child_twice_keeps_one_link():
    root = Subclone(label="root")
    child = Subclone(events=[A], label="c")
    root.add_child(child)
    root.add_child(child)
    assert root.children == [child]
    assert len(root) == 2
    assert check_placement(root, [A], M).node is child


def test_add_child_moves_node_between_parents():
    root = Subclone(label="root")
    a = root.add_child(Subclone(label="a"))
    b = root.add_child(Subclone(label="b"))
    leaf = a.add_child(Subclone(label="leaf"))
    b.add_child(leaf)
    assert a.children == []
    assert b.children == [leaf]
    assert leaf.parent is b
