"""
SOP Node Mutator Tests — create, rename, delete, move, reparent.

Coverage:
  - sort_order assignment on create (0, 1, 2 ...)
  - move up / down swaps, boundary moves are no-ops
  - sibling sort_order values stay unique after any mix of operations
  - delete removes the whole subtree and nothing else
  - reparent appends under the new parent, rejects cycles
  - tenant isolation on every node lookup
"""

import pytest

from sopdesk.core.exceptions import CycleError, NotFoundError, ValidationError
from sopdesk.models import db
from sopdesk.models.sop import SOPNode
from sopdesk.services import sop_node_service as nodes
from sopdesk.services.sop_tree import sibling_group


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _titles(tenant_id, document_id, parent_id=None):
    flat = nodes.list_nodes(tenant_id, document_id)
    return [n["title"] for n in sibling_group(flat, parent_id)]


def _orders(tenant_id, document_id, parent_id=None):
    flat = nodes.list_nodes(tenant_id, document_id)
    return [n["sort_order"] for n in sibling_group(flat, parent_id)]


def _abc(tenant_id, document_id, parent_id=None):
    return [
        nodes.create_node(tenant_id, document_id, parent_id, title)
        for title in ("A", "B", "C")
    ]


def _assert_unique_orders(document_id):
    rows = db.session.execute(
        db.select(SOPNode.parent_id, SOPNode.sort_order).where(SOPNode.document_id == document_id)
    ).all()
    seen = set()
    for parent_id, order in rows:
        assert (parent_id, order) not in seen, f"duplicate sort_order {order} under {parent_id}"
        seen.add((parent_id, order))


# ═══════════════════════════════════════════════════════════════════════════
# Create / rename
# ═══════════════════════════════════════════════════════════════════════════


class TestCreateNode:

    def test_siblings_get_sequential_sort_order(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        assert [a["sort_order"], b["sort_order"], c["sort_order"]] == [0, 1, 2]

    def test_new_node_defaults(self, tenant, document):
        node = nodes.create_node(tenant.id, document["id"], None, "  Scope  ")
        assert node["title"] == "Scope"
        assert node["content_type"] == "rich_text"
        assert node["parent_id"] is None

    def test_child_group_numbered_independently(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        child = nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        assert child["sort_order"] == 0
        assert child["parent_id"] == a["id"]

    def test_appends_after_highest_existing_order(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        nodes.delete_node(tenant.id, b["id"])
        d = nodes.create_node(tenant.id, document["id"], None, "D")
        assert d["sort_order"] == 3

    def test_blank_title_rejected_and_tree_unchanged(self, tenant, document):
        _abc(tenant.id, document["id"])
        before = nodes.list_nodes(tenant.id, document["id"])
        with pytest.raises(ValidationError):
            nodes.create_node(tenant.id, document["id"], None, "")
        with pytest.raises(ValidationError):
            nodes.create_node(tenant.id, document["id"], None, "   ")
        assert nodes.list_nodes(tenant.id, document["id"]) == before

    def test_overlong_title_rejected(self, tenant, document):
        with pytest.raises(ValidationError):
            nodes.create_node(tenant.id, document["id"], None, "x" * 256)

    def test_unknown_parent(self, tenant, document):
        with pytest.raises(NotFoundError):
            nodes.create_node(tenant.id, document["id"], "no-such-node", "Child")

    def test_parent_from_other_document_rejected(self, tenant, document):
        from sopdesk.services import sop_lifecycle

        other = sop_lifecycle.create_document(tenant.id, "Fridge temperatures")
        foreign = nodes.create_node(tenant.id, other["id"], None, "Foreign")
        with pytest.raises(ValidationError):
            nodes.create_node(tenant.id, document["id"], foreign["id"], "Child")

    def test_other_tenant_cannot_create(self, tenant, other_tenant, document):
        with pytest.raises(NotFoundError):
            nodes.create_node(other_tenant.id, document["id"], None, "Intruder")


class TestRenameNode:

    def test_rename_keeps_order(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        renamed = nodes.rename_node(tenant.id, b["id"], "Bravo")
        assert renamed["title"] == "Bravo"
        assert renamed["sort_order"] == 1
        assert _titles(tenant.id, document["id"]) == ["A", "Bravo", "C"]

    def test_blank_rename_rejected(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        with pytest.raises(ValidationError):
            nodes.rename_node(tenant.id, a["id"], "")
        assert nodes.get_node(tenant.id, a["id"])["title"] == "A"

    def test_other_tenant_sees_not_found(self, tenant, other_tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        with pytest.raises(NotFoundError):
            nodes.rename_node(other_tenant.id, a["id"], "Hijacked")


# ═══════════════════════════════════════════════════════════════════════════
# Move
# ═══════════════════════════════════════════════════════════════════════════


class TestMoveNode:

    def test_move_up_swaps_with_previous(self, tenant, document):
        _a, b, _c = _abc(tenant.id, document["id"])
        result = nodes.move_node(tenant.id, b["id"], "up")
        assert result["moved"] is True
        assert _titles(tenant.id, document["id"]) == ["B", "A", "C"]
        assert _orders(tenant.id, document["id"]) == [0, 1, 2]

    def test_move_down_swaps_with_next(self, tenant, document):
        _a, b, c = _abc(tenant.id, document["id"])
        result = nodes.move_node(tenant.id, b["id"], "down")
        assert result["swapped_with"] == c["id"]
        assert _titles(tenant.id, document["id"]) == ["A", "C", "B"]

    def test_up_at_top_is_noop(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        result = nodes.move_node(tenant.id, a["id"], "up")
        assert result["moved"] is False
        assert result["swapped_with"] is None
        assert _titles(tenant.id, document["id"]) == ["A", "B", "C"]

    def test_down_at_bottom_is_noop(self, tenant, document):
        _a, _b, c = _abc(tenant.id, document["id"])
        result = nodes.move_node(tenant.id, c["id"], "down")
        assert result["moved"] is False
        assert _titles(tenant.id, document["id"]) == ["A", "B", "C"]

    def test_single_node_move_is_noop(self, tenant, document):
        only = nodes.create_node(tenant.id, document["id"], None, "Only")
        assert nodes.move_node(tenant.id, only["id"], "up")["moved"] is False
        assert nodes.move_node(tenant.id, only["id"], "down")["moved"] is False

    def test_move_stays_inside_sibling_group(self, tenant, document):
        a, b, _c = _abc(tenant.id, document["id"])
        child_1 = nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        nodes.create_node(tenant.id, document["id"], a["id"], "A.2")
        assert nodes.move_node(tenant.id, child_1["id"], "up")["moved"] is False
        nodes.move_node(tenant.id, child_1["id"], "down")
        assert _titles(tenant.id, document["id"], a["id"]) == ["A.2", "A.1"]
        assert _titles(tenant.id, document["id"]) == ["A", "B", "C"]

    def test_invalid_direction(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        with pytest.raises(ValidationError):
            nodes.move_node(tenant.id, a["id"], "sideways")

    def test_repairs_tied_orders_before_swapping(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        db.session.get(SOPNode, c["id"]).sort_order = 1  # B and C now tie
        db.session.commit()

        result = nodes.move_node(tenant.id, c["id"], "up")
        assert result["moved"] is True
        _assert_unique_orders(document["id"])
        assert _orders(tenant.id, document["id"]) == [0, 1, 2]

    def test_orders_unique_after_mixed_sequence(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        d = nodes.create_node(tenant.id, document["id"], None, "D")
        nodes.move_node(tenant.id, d["id"], "up")
        nodes.move_node(tenant.id, a["id"], "down")
        nodes.delete_node(tenant.id, b["id"])
        e = nodes.create_node(tenant.id, document["id"], None, "E")
        nodes.move_node(tenant.id, e["id"], "up")
        nodes.move_node(tenant.id, c["id"], "down")

        _assert_unique_orders(document["id"])
        orders = _orders(tenant.id, document["id"])
        assert orders == sorted(orders)
        assert len(set(orders)) == len(orders)


# ═══════════════════════════════════════════════════════════════════════════
# Delete
# ═══════════════════════════════════════════════════════════════════════════


class TestDeleteNode:

    def _build(self, tenant_id, document_id):
        a, b, c = _abc(tenant_id, document_id)
        a1 = nodes.create_node(tenant_id, document_id, a["id"], "A.1")
        nodes.create_node(tenant_id, document_id, a1["id"], "A.1.x")
        nodes.create_node(tenant_id, document_id, a1["id"], "A.1.y")
        nodes.create_node(tenant_id, document_id, a["id"], "A.2")
        return a, b, c

    def test_preview_counts_descendants(self, tenant, document):
        a, b, _c = self._build(tenant.id, document["id"])
        preview = nodes.delete_preview(tenant.id, a["id"])
        assert preview == {"node_id": a["id"], "descendant_count": 4, "total_count": 5}
        assert nodes.delete_preview(tenant.id, b["id"])["descendant_count"] == 0

    def test_preview_deletes_nothing(self, tenant, document):
        a, _b, _c = self._build(tenant.id, document["id"])
        nodes.delete_preview(tenant.id, a["id"])
        assert len(nodes.list_nodes(tenant.id, document["id"])) == 7

    def test_delete_removes_n_plus_one(self, tenant, document):
        a, _b, _c = self._build(tenant.id, document["id"])
        result = nodes.delete_node(tenant.id, a["id"])
        assert result["descendant_count"] == 4
        assert result["deleted_count"] == 5
        remaining = nodes.list_nodes(tenant.id, document["id"])
        assert [n["title"] for n in remaining] == ["B", "C"]

    def test_no_dangling_parent_ids(self, tenant, document):
        a, _b, _c = self._build(tenant.id, document["id"])
        nodes.delete_node(tenant.id, a["id"])
        remaining = nodes.list_nodes(tenant.id, document["id"])
        ids = {n["id"] for n in remaining}
        assert all(n["parent_id"] is None or n["parent_id"] in ids for n in remaining)

    def test_delete_leaf(self, tenant, document):
        _a, b, _c = _abc(tenant.id, document["id"])
        result = nodes.delete_node(tenant.id, b["id"])
        assert result["deleted_ids"] == [b["id"]]
        assert _titles(tenant.id, document["id"]) == ["A", "C"]

    def test_delete_unknown(self, tenant, document):
        with pytest.raises(NotFoundError):
            nodes.delete_node(tenant.id, "missing")


# ═══════════════════════════════════════════════════════════════════════════
# Reparent
# ═══════════════════════════════════════════════════════════════════════════


class TestReparentNode:

    def test_move_under_new_parent_appends(self, tenant, document):
        a, b, c = _abc(tenant.id, document["id"])
        nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        moved = nodes.reparent_node(tenant.id, c["id"], a["id"])
        assert moved["parent_id"] == a["id"]
        assert moved["sort_order"] == 1
        assert _titles(tenant.id, document["id"], a["id"]) == ["A.1", "C"]
        assert _titles(tenant.id, document["id"]) == ["A", "B"]

    def test_move_to_root(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        child = nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        moved = nodes.reparent_node(tenant.id, child["id"], None)
        assert moved["parent_id"] is None
        assert moved["sort_order"] == 3

    def test_subtree_travels_along(self, tenant, document):
        a, b, _c = _abc(tenant.id, document["id"])
        child = nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        nodes.reparent_node(tenant.id, a["id"], b["id"])
        assert nodes.get_node(tenant.id, child["id"])["parent_id"] == a["id"]
        tree = nodes.get_node_tree(tenant.id, document["id"])
        b_node = next(r for r in tree if r["id"] == b["id"])
        assert b_node["children"][0]["children"][0]["id"] == child["id"]

    def test_same_parent_is_noop(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        assert nodes.reparent_node(tenant.id, a["id"], None)["sort_order"] == 0

    def test_self_parent_is_cycle(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        with pytest.raises(CycleError):
            nodes.reparent_node(tenant.id, a["id"], a["id"])

    def test_descendant_parent_is_cycle(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        child = nodes.create_node(tenant.id, document["id"], a["id"], "A.1")
        grandchild = nodes.create_node(tenant.id, document["id"], child["id"], "A.1.x")
        with pytest.raises(CycleError):
            nodes.reparent_node(tenant.id, a["id"], grandchild["id"])
        assert nodes.get_node(tenant.id, a["id"])["parent_id"] is None

    def test_cycle_error_is_validation_error(self, tenant, document):
        a, _b, _c = _abc(tenant.id, document["id"])
        with pytest.raises(ValidationError):
            nodes.reparent_node(tenant.id, a["id"], a["id"])
