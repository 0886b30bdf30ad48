"""
SOP Node Tree Builder.

Pure functions over a flat list of node dicts (``SOPNode.to_dict()`` shape,
or model instances — anything with ``to_dict()`` is converted first).
Nothing here touches the database, so the tree can be rebuilt after every
edit without side effects.

    roots = build_node_tree(nodes)        # ordered forest
    flat = flatten_node_tree(roots)       # depth-first pre-order
    ids = descendant_ids(nodes, node_id)  # subtree below node_id
    chain = ancestor_ids(nodes, node_id)  # parent, grandparent, ...

Ordering inside a sibling group is ascending sort_order; ties (which the
node service never commits, but a caller may still hand us) fall back to
id so the output is deterministic.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable


def _as_dict(node) -> dict:
    if isinstance(node, dict):
        return node
    return node.to_dict()


def _sibling_key(node: dict):
    return (node.get("sort_order") or 0, str(node.get("id")))


def _reachable(roots: list[dict]) -> set:
    seen: set = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        if node["id"] in seen:
            continue
        seen.add(node["id"])
        stack.extend(node["children"])
    return seen


def build_node_tree(nodes: Iterable) -> list[dict]:
    """Build an ordered forest from a flat node collection.

    Each returned dict is a shallow copy of the input node with two extra
    keys: ``children`` (ordered list) and ``depth`` (0 for roots).

    A node whose parent_id points at a node that is not in the input is
    placed at root level and marked ``is_orphan: True``.  This happens when
    nodes arrive from a partial fetch; it is not an error.

    Nodes caught in a parent_id cycle are never reached from a root.  The
    first of them in sibling order is detached from its parent and promoted
    to an orphan root, so every input node appears exactly once.
    """
    copies = {}
    for raw in nodes:
        node = dict(_as_dict(raw))
        node["children"] = []
        node["depth"] = 0
        node["is_orphan"] = False
        copies[node["id"]] = node

    roots: list[dict] = []
    for node in copies.values():
        parent_id = node.get("parent_id")
        if parent_id is None:
            roots.append(node)
        elif parent_id in copies and parent_id != node["id"]:
            copies[parent_id]["children"].append(node)
        else:
            node["is_orphan"] = True
            roots.append(node)

    reached = _reachable(roots)
    for node in sorted(copies.values(), key=_sibling_key):
        if node["id"] in reached:
            continue
        parent = copies[node["parent_id"]]
        parent["children"] = [c for c in parent["children"] if c is not node]
        node["is_orphan"] = True
        roots.append(node)
        reached |= _reachable([node])

    roots.sort(key=_sibling_key)
    stack = [(root, 0) for root in roots]
    while stack:
        node, depth = stack.pop()
        node["depth"] = depth
        node["children"].sort(key=_sibling_key)
        stack.extend((child, depth + 1) for child in node["children"])
    return roots


def flatten_node_tree(roots: list[dict]) -> list[dict]:
    """Flatten a forest back to a list in depth-first pre-order.

    The returned dicts are copies without the ``children`` key, so the
    result has the same shape as the input to build_node_tree (plus depth).
    """
    result: list[dict] = []

    def walk(level: list[dict]) -> None:
        for node in level:
            flat = {k: v for k, v in node.items() if k != "children"}
            result.append(flat)
            walk(node.get("children") or [])

    walk(roots)
    return result


def children_index(nodes: Iterable) -> dict:
    """Return {parent_id: [child dicts ordered by sort_order]} for a flat list."""
    index: dict = defaultdict(list)
    for raw in nodes:
        node = _as_dict(raw)
        index[node.get("parent_id")].append(node)
    for siblings in index.values():
        siblings.sort(key=_sibling_key)
    return index


def sibling_group(nodes: Iterable, parent_id: str | None) -> list[dict]:
    """Ordered siblings sharing ``parent_id`` (None = roots)."""
    return children_index(nodes).get(parent_id, [])


def descendant_ids(nodes: Iterable, node_id: str) -> list[str]:
    """Ids of every node below ``node_id`` (not including it), pre-order."""
    index = children_index(nodes)
    found: list[str] = []
    seen = {node_id}
    stack = [c["id"] for c in reversed(index.get(node_id, []))]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        stack.extend(c["id"] for c in reversed(index.get(current, [])))
    return found


def ancestor_ids(nodes: Iterable, node_id: str | None) -> list[str]:
    """Parent chain of ``node_id``, nearest first.

    Stops at a root, at a parent missing from the input, or at an id that
    was already visited (a corrupt cycle never loops forever).
    """
    parents = {}
    for raw in nodes:
        node = _as_dict(raw)
        parents[node["id"]] = node.get("parent_id")

    chain: list[str] = []
    seen = {node_id}
    current = parents.get(node_id)
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = parents.get(current)
    return chain


def would_create_cycle(nodes: Iterable, node_id: str, new_parent_id: str | None) -> bool:
    """True when placing ``node_id`` under ``new_parent_id`` closes a loop."""
    if new_parent_id is None:
        return False
    if new_parent_id == node_id:
        return True
    nodes = list(nodes)
    return node_id in ancestor_ids(nodes, new_parent_id)
