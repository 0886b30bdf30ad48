"""
Tests for sopdesk/services/sop_tree.py — pure tree derivation.

Coverage:
  - build_node_tree orders siblings by sort_order and sets depth
  - orphans (parent missing from input, or caught in a cycle) surface at root level
  - flatten ∘ build keeps every node and each sibling group's order
  - descendant_ids / ancestor_ids / would_create_cycle
"""

from sopdesk.services.sop_tree import (
    ancestor_ids,
    build_node_tree,
    children_index,
    descendant_ids,
    flatten_node_tree,
    sibling_group,
    would_create_cycle,
)


def _node(node_id, parent_id=None, sort_order=0, title=None):
    return {
        "id": node_id,
        "parent_id": parent_id,
        "sort_order": sort_order,
        "title": title or node_id.upper(),
    }


def _sample():
    """
    a
    ├── a1
    │   └── a1x
    └── a2
    b
    c
    """
    return [
        _node("c", None, 2),
        _node("a2", "a", 1),
        _node("a1x", "a1", 0),
        _node("b", None, 1),
        _node("a", None, 0),
        _node("a1", "a", 0),
    ]


class TestBuildNodeTree:

    def test_roots_ordered_by_sort_order(self):
        roots = build_node_tree(_sample())
        assert [r["id"] for r in roots] == ["a", "b", "c"]

    def test_children_nested_and_ordered(self):
        roots = build_node_tree(_sample())
        a = roots[0]
        assert [c["id"] for c in a["children"]] == ["a1", "a2"]
        assert [c["id"] for c in a["children"][0]["children"]] == ["a1x"]

    def test_depth(self):
        flat = {n["id"]: n for n in flatten_node_tree(build_node_tree(_sample()))}
        assert flat["a"]["depth"] == 0
        assert flat["a1"]["depth"] == 1
        assert flat["a1x"]["depth"] == 2

    def test_input_not_mutated(self):
        nodes = _sample()
        build_node_tree(nodes)
        assert all("children" not in n for n in nodes)

    def test_empty_input(self):
        assert build_node_tree([]) == []

    def test_orphan_placed_at_root(self):
        nodes = [_node("a", None, 0), _node("lost", "gone", 0)]
        roots = build_node_tree(nodes)
        ids = {r["id"]: r for r in roots}
        assert set(ids) == {"a", "lost"}
        assert ids["lost"]["is_orphan"] is True
        assert ids["a"]["is_orphan"] is False

    def test_parent_cycle_surfaces_as_orphan_root(self):
        nodes = [_node("r", None, 0), _node("a", "b", 0), _node("b", "a", 1)]
        roots = build_node_tree(nodes)
        assert [r["id"] for r in roots] == ["a", "r"]
        assert roots[0]["is_orphan"] is True
        assert [c["id"] for c in roots[0]["children"]] == ["b"]
        flat = {n["id"]: n for n in flatten_node_tree(roots)}
        assert set(flat) == {"r", "a", "b"}
        assert flat["b"]["depth"] == 1

    def test_self_contained_cycle_with_tail(self):
        nodes = [_node("a", "c", 0), _node("b", "a", 0), _node("c", "b", 0), _node("t", "b", 1)]
        flat = flatten_node_tree(build_node_tree(nodes))
        assert [n["id"] for n in flat] == ["a", "b", "c", "t"]
        assert [n["depth"] for n in flat] == [0, 1, 2, 2]

    def test_tied_sort_order_falls_back_to_id(self):
        nodes = [_node("y", None, 0), _node("x", None, 0)]
        assert [r["id"] for r in build_node_tree(nodes)] == ["x", "y"]

    def test_accepts_objects_with_to_dict(self):
        class _Row:
            def __init__(self, data):
                self._data = data

            def to_dict(self):
                return dict(self._data)

        roots = build_node_tree([_Row(n) for n in _sample()])
        assert [r["id"] for r in roots] == ["a", "b", "c"]


class TestFlattenRoundTrip:

    def test_preorder(self):
        flat = flatten_node_tree(build_node_tree(_sample()))
        assert [n["id"] for n in flat] == ["a", "a1", "a1x", "a2", "b", "c"]

    def test_flatten_is_permutation_of_input(self):
        nodes = _sample()
        flat = flatten_node_tree(build_node_tree(nodes))
        assert sorted(n["id"] for n in flat) == sorted(n["id"] for n in nodes)
        assert all("children" not in n for n in flat)

    def test_sibling_order_preserved_per_parent(self):
        nodes = _sample()
        flat = flatten_node_tree(build_node_tree(nodes))
        by_parent = {}
        for n in flat:
            by_parent.setdefault(n["parent_id"], []).append(n["id"])
        for parent_id, ids in by_parent.items():
            assert ids == [s["id"] for s in sibling_group(nodes, parent_id)]


class TestWalks:

    def test_children_index(self):
        index = children_index(_sample())
        assert [n["id"] for n in index[None]] == ["a", "b", "c"]
        assert [n["id"] for n in index["a"]] == ["a1", "a2"]

    def test_descendant_ids(self):
        assert descendant_ids(_sample(), "a") == ["a1", "a1x", "a2"]
        assert descendant_ids(_sample(), "b") == []

    def test_ancestor_ids_nearest_first(self):
        assert ancestor_ids(_sample(), "a1x") == ["a1", "a"]
        assert ancestor_ids(_sample(), "a") == []

    def test_ancestor_ids_survives_corrupt_cycle(self):
        nodes = [_node("p", "q"), _node("q", "p")]
        assert ancestor_ids(nodes, "p") == ["q"]

    def test_would_create_cycle(self):
        nodes = _sample()
        assert would_create_cycle(nodes, "a", "a") is True
        assert would_create_cycle(nodes, "a", "a1x") is True
        assert would_create_cycle(nodes, "a1", "b") is False
        assert would_create_cycle(nodes, "a1", None) is False
