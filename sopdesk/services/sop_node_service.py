"""
SOP Node Mutator — create, rename, delete, move and reparent sections.

Rules:
  - tenant_id is always an explicit parameter; nodes are scoped through
    their document's tenant.
  - Every write checks the archive guard first (DocumentArchivedError).
  - db.session.commit() happens only through commit_or_raise, which rolls
    back on failure, so a failed call leaves no half-applied state.
  - Within one sibling group (same document, same parent_id) sort_order
    values stay unique after every commit.

Ordering writes (create, move, reparent) lock the owning document row
first.  On PostgreSQL that serializes concurrent structural edits of the
same document; SQLite serializes writers anyway.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select

from sopdesk.core.exceptions import CycleError, ValidationError
from sopdesk.models import db
from sopdesk.models.sop import MOVE_DIRECTIONS, TITLE_MAX_LENGTH, SOPDocument, SOPNode
from sopdesk.services.helpers.scoped_queries import get_scoped_node
from sopdesk.services.sop_lifecycle import ensure_editable, load_document
from sopdesk.services.sop_tree import build_node_tree, descendant_ids, would_create_cycle
from sopdesk.utils.helpers import clean_title, commit_or_raise, flush_or_raise

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _parent_filter(parent_id: str | None):
    if parent_id is None:
        return SOPNode.parent_id.is_(None)
    return SOPNode.parent_id == parent_id


def _next_sort_order(document_id: str, parent_id: str | None) -> int:
    """max(sibling sort_order) + 1, or 0 for an empty sibling group."""
    current_max = db.session.execute(
        select(func.max(SOPNode.sort_order)).where(
            SOPNode.document_id == document_id,
            _parent_filter(parent_id),
        )
    ).scalar_one_or_none()
    return 0 if current_max is None else current_max + 1


def _siblings(document_id: str, parent_id: str | None, *, for_update: bool = False) -> list[SOPNode]:
    stmt = (
        select(SOPNode)
        .where(SOPNode.document_id == document_id, _parent_filter(parent_id))
        .order_by(SOPNode.sort_order.asc(), SOPNode.id.asc())
    )
    if for_update:
        stmt = stmt.with_for_update()
    return list(db.session.execute(stmt).scalars().all())


def _structure(document_id: str) -> list[dict]:
    """Minimal (id, parent_id, sort_order) rows for tree walks."""
    rows = db.session.execute(
        select(SOPNode.id, SOPNode.parent_id, SOPNode.sort_order)
        .where(SOPNode.document_id == document_id)
    ).all()
    return [{"id": r.id, "parent_id": r.parent_id, "sort_order": r.sort_order} for r in rows]


def _lock_document(document: SOPDocument) -> None:
    db.session.execute(
        select(SOPDocument.id).where(SOPDocument.id == document.id).with_for_update()
    )


def _normalize_if_tied(siblings: list[SOPNode]) -> bool:
    """Renumber a sibling group 0..n-1 when it contains duplicate sort_order values.

    The list is already in (sort_order, id) order, so the visible order is
    preserved.  Returns True when anything was rewritten.
    """
    orders = [s.sort_order for s in siblings]
    if len(set(orders)) == len(orders):
        return False
    for position, sibling in enumerate(siblings):
        sibling.sort_order = position
    return True


def _resolve_parent(tenant_id: int, document: SOPDocument, parent_id: str | None) -> SOPNode | None:
    if parent_id is None:
        return None
    parent, parent_doc = get_scoped_node(parent_id, tenant_id=tenant_id)
    if parent_doc.id != document.id:
        raise ValidationError(
            "parent_id belongs to a different document",
            details={"parent_id": parent_id},
        )
    return parent


# ── Reads ──────────────────────────────────────────────────────────────────────


def list_nodes(tenant_id: int, document_id: str) -> list[dict]:
    """Fetch all nodes of a document as a flat list (sort_order ascending)."""
    doc = load_document(tenant_id, document_id)
    nodes = db.session.execute(
        select(SOPNode)
        .where(SOPNode.document_id == doc.id)
        .order_by(SOPNode.sort_order.asc(), SOPNode.id.asc())
    ).scalars().all()
    return [n.to_dict() for n in nodes]


def get_node_tree(tenant_id: int, document_id: str) -> list[dict]:
    """Nodes of a document as an ordered forest (see sop_tree.build_node_tree)."""
    return build_node_tree(list_nodes(tenant_id, document_id))


def get_node(tenant_id: int, node_id: str) -> dict:
    node, _doc = get_scoped_node(node_id, tenant_id=tenant_id)
    return node.to_dict()


# ── Writes ─────────────────────────────────────────────────────────────────────


def create_node(
    tenant_id: int,
    document_id: str,
    parent_id: str | None,
    title: str,
    actor_id: int | None = None,
) -> dict:
    """Append a new section at the end of its sibling group.

    sort_order = max(existing sibling sort_order) + 1, or 0 without siblings.
    New sections start as rich_text with empty content.

    Raises:
        DocumentArchivedError: document is archived.
        ValidationError: blank title, or parent in another document.
        NotFoundError: document or parent missing.
    """
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "create_node")
    title = clean_title(title, max_length=TITLE_MAX_LENGTH)
    _lock_document(doc)
    parent = _resolve_parent(tenant_id, doc, parent_id)

    node = SOPNode(
        document_id=doc.id,
        parent_id=parent.id if parent else None,
        title=title,
        sort_order=_next_sort_order(doc.id, parent.id if parent else None),
        content_type="rich_text",
    )
    db.session.add(node)
    if actor_id is not None:
        doc.updated_by = actor_id
    commit_or_raise("create_node", resource="SOPNode")

    logger.info(
        "SOP node created at order %d",
        node.sort_order,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return node.to_dict()


def rename_node(tenant_id: int, node_id: str, title: str) -> dict:
    """Change a section title.  No effect on ordering."""
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "rename_node")
    node.title = clean_title(title, max_length=TITLE_MAX_LENGTH)
    commit_or_raise("rename_node", resource="SOPNode")
    return node.to_dict()


def delete_preview(tenant_id: int, node_id: str) -> dict:
    """How many nodes delete_node would remove, without removing anything.

    Returns:
        {"node_id", "descendant_count", "total_count"}
    """
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    below = descendant_ids(_structure(doc.id), node.id)
    return {
        "node_id": node.id,
        "descendant_count": len(below),
        "total_count": len(below) + 1,
    }


def delete_node(tenant_id: int, node_id: str) -> dict:
    """Delete a section and its whole subtree.  Irreversible.

    Returns:
        {"deleted_ids": [...], "descendant_count": N, "deleted_count": N + 1}
    """
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "delete_node")

    doomed = [node.id] + descendant_ids(_structure(doc.id), node.id)
    db.session.execute(
        delete(SOPNode)
        .where(SOPNode.document_id == doc.id, SOPNode.id.in_(doomed))
        .execution_options(synchronize_session="fetch")
    )
    commit_or_raise("delete_node", resource="SOPNode")

    logger.info(
        "SOP node deleted with %d descendants",
        len(doomed) - 1,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return {
        "deleted_ids": doomed,
        "descendant_count": len(doomed) - 1,
        "deleted_count": len(doomed),
    }


def move_node(tenant_id: int, node_id: str, direction: str) -> dict:
    """Swap a section with its neighbour above ("up") or below ("down").

    Siblings are re-read under lock inside the transaction, so the swap
    uses current values rather than whatever the caller saw.  Both rows
    change in one commit; the moving row is parked on an unused value
    first so no flush ever holds two equal sort_order values.

    No neighbour in the requested direction is a no-op, not an error.

    Returns:
        {"moved": bool, "node": dict, "swapped_with": str | None}
    """
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "move_node")
    if direction not in MOVE_DIRECTIONS:
        raise ValidationError(
            f"direction must be one of: {', '.join(MOVE_DIRECTIONS)}",
            details={"direction": direction},
        )

    _lock_document(doc)
    siblings = _siblings(doc.id, node.parent_id, for_update=True)
    repaired = _normalize_if_tied(siblings)
    if repaired:
        logger.warning(
            "Repaired duplicate sort_order values before move",
            extra={"tenant_id": tenant_id, "document_id": doc.id},
        )

    index = next(i for i, s in enumerate(siblings) if s.id == node.id)
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(siblings):
        if repaired:
            commit_or_raise("move_node", resource="SOPNode")
        return {"moved": False, "node": node.to_dict(), "swapped_with": None}

    neighbour = siblings[target]
    node_order, neighbour_order = node.sort_order, neighbour.sort_order

    node.sort_order = min(s.sort_order for s in siblings) - 1
    flush_or_raise("move_node", resource="SOPNode")
    neighbour.sort_order = node_order
    flush_or_raise("move_node", resource="SOPNode")
    node.sort_order = neighbour_order
    commit_or_raise("move_node", resource="SOPNode")

    logger.info(
        "SOP node moved %s",
        direction,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return {"moved": True, "node": node.to_dict(), "swapped_with": neighbour.id}


def reparent_node(tenant_id: int, node_id: str, new_parent_id: str | None) -> dict:
    """Move a section (with its subtree) under another parent, or to root level.

    The node is appended to the end of its new sibling group.

    Raises:
        CycleError: new_parent_id is the node itself or one of its descendants.
        ValidationError: new parent in another document.
        NotFoundError: new parent missing.
    """
    node, doc = get_scoped_node(node_id, tenant_id=tenant_id)
    ensure_editable(doc, "reparent_node")
    if new_parent_id == node.parent_id:
        return node.to_dict()

    _lock_document(doc)
    _resolve_parent(tenant_id, doc, new_parent_id)
    if would_create_cycle(_structure(doc.id), node.id, new_parent_id):
        raise CycleError(node.id, new_parent_id)

    new_order = _next_sort_order(doc.id, new_parent_id)
    node.parent_id = new_parent_id
    node.sort_order = new_order
    commit_or_raise("reparent_node", resource="SOPNode")

    logger.info(
        "SOP node reparented",
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return node.to_dict()
