"""
SOP Document Lifecycle Service.

Manages document status transitions with:
  - Transition validation (DOCUMENT_TRANSITIONS)
  - The version counter (publish is the only writer)
  - The archive guard every other SOP service calls before writing

States:
    draft ──publish──▶ published ──publish──▶ published (version + 1)
      │                    │
      └──────archive───────┴──────▶ archived (terminal)

Publish is one UPDATE statement that moves version, status and
published_at together, so no reader can see a new published_at next to
an old version.  It is not idempotent; a caller retrying after a
TransientStoreError passes ``expected_version`` so a publish that did
land is not applied twice.

Usage:
    from sopdesk.services import sop_lifecycle

    doc = sop_lifecycle.create_document(tenant_id, "Controlled drugs handling")
    doc = sop_lifecycle.publish(tenant_id, doc["id"], expected_version=0)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select, update

from sopdesk.core.exceptions import (
    ConflictError,
    DocumentArchivedError,
    NotFoundError,
    ValidationError,
)
from sopdesk.models import db
from sopdesk.models.auth import Member, Tenant
from sopdesk.models.sop import (
    DOCUMENT_STATUSES,
    DOCUMENT_TRANSITIONS,
    TITLE_MAX_LENGTH,
    SOPAssignment,
    SOPCompletion,
    SOPDocument,
    SOPNode,
)
from sopdesk.services.helpers.scoped_queries import get_scoped
from sopdesk.services.sop_tree import build_node_tree
from sopdesk.utils.helpers import clean_title, commit_or_raise

logger = logging.getLogger(__name__)

# Fields callers may change through update_document
_EDITABLE_FIELDS = ("title", "description")
# Fields only the lifecycle transitions may change
_LIFECYCLE_FIELDS = ("status", "version", "published_at", "archived_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Guards ──────────────────────────────────────────────────────────────────


def ensure_editable(document: SOPDocument, operation: str | None = None) -> None:
    """Raise DocumentArchivedError when ``document`` no longer accepts writes.

    Called by every node, content, assignment and completion write before
    it touches the session.
    """
    if document.is_archived:
        logger.info(
            "Rejected %s on archived document",
            operation or "write",
            extra={"tenant_id": document.tenant_id, "document_id": document.id},
        )
        raise DocumentArchivedError(document.id, operation)


def load_document(tenant_id: int, document_id: str, *, for_update: bool = False) -> SOPDocument:
    """Tenant-scoped fetch of the SOPDocument model (NotFoundError when missing)."""
    return get_scoped(SOPDocument, document_id, tenant_id=tenant_id, for_update=for_update)


def validate_transition(document: SOPDocument, action: str) -> dict:
    """
    Validate whether an action is valid for the document's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = DOCUMENT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": document.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if document.status not in rule["from"]:
        return {"valid": False, "from": document.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{document.status}'"}

    return {"valid": True, "from": document.status, "to": rule["to"], "reason": None}


def available_actions(document: SOPDocument) -> list[str]:
    """Lifecycle actions allowed from the document's current status."""
    return [
        action for action, rule in DOCUMENT_TRANSITIONS.items()
        if document.status in rule["from"]
    ]


def _require_transition(document: SOPDocument, action: str) -> dict:
    validation = validate_transition(document, action)
    if not validation["valid"]:
        if document.is_archived:
            raise DocumentArchivedError(document.id, action)
        raise ValidationError(validation["reason"], details={"status": document.status})
    return validation


def _require_member(tenant_id: int, member_id: int | None) -> None:
    if member_id is not None:
        get_scoped(Member, member_id, tenant_id=tenant_id)


# ── Documents ───────────────────────────────────────────────────────────────


def create_document(
    tenant_id: int,
    title: str,
    description: str | None = None,
    created_by: int | None = None,
) -> dict:
    """Create a draft document at version 0.

    Raises:
        NotFoundError: unknown tenant or creating member.
        ValidationError: blank title.
    """
    if db.session.get(Tenant, tenant_id) is None:
        raise NotFoundError(resource="Tenant", resource_id=tenant_id)
    title = clean_title(title, max_length=TITLE_MAX_LENGTH)
    _require_member(tenant_id, created_by)

    doc = SOPDocument(
        tenant_id=tenant_id,
        title=title,
        description=(description or "").strip() or None,
        status="draft",
        version=0,
        created_by=created_by,
        updated_by=created_by,
    )
    db.session.add(doc)
    commit_or_raise("create_document", resource="SOPDocument")

    logger.info(
        "SOP document created",
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return doc.to_dict()


def get_document(tenant_id: int, document_id: str, *, include_nodes: bool = False) -> dict:
    """Return the document dict, optionally with its flat nodes and derived tree."""
    doc = load_document(tenant_id, document_id)
    result = doc.to_dict()
    result["available_actions"] = available_actions(doc)
    if include_nodes:
        nodes = db.session.execute(
            select(SOPNode)
            .where(SOPNode.document_id == doc.id)
            .order_by(SOPNode.sort_order.asc(), SOPNode.id.asc())
        ).scalars().all()
        flat = [n.to_dict() for n in nodes]
        result["nodes"] = flat
        result["tree"] = build_node_tree(flat)
    return result


def list_documents(tenant_id: int, status: str | None = None) -> list[dict]:
    """Documents of one organization, newest first, optionally filtered by status."""
    stmt = select(SOPDocument).where(SOPDocument.tenant_id == tenant_id)
    if status:
        if status not in DOCUMENT_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(DOCUMENT_STATUSES)}",
                details={"status": status},
            )
        stmt = stmt.where(SOPDocument.status == status)
    stmt = stmt.order_by(SOPDocument.created_at.desc(), SOPDocument.id.asc())
    return [d.to_dict() for d in db.session.execute(stmt).scalars().all()]


def update_document(
    tenant_id: int,
    document_id: str,
    data: dict,
    actor_id: int | None = None,
) -> dict:
    """Update title and/or description.  Never touches version.

    Raises:
        ValidationError: blank title, or an attempt to set lifecycle fields.
        DocumentArchivedError: document is archived.
    """
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "update_document")

    forbidden = sorted(k for k in data if k in _LIFECYCLE_FIELDS)
    if forbidden:
        raise ValidationError(
            "Lifecycle fields change only through publish or archive",
            details={k: "read-only" for k in forbidden},
        )

    if "title" in data:
        doc.title = clean_title(data.get("title"), max_length=TITLE_MAX_LENGTH)
    if "description" in data:
        doc.description = (data.get("description") or "").strip() or None
    if actor_id is not None:
        _require_member(tenant_id, actor_id)
        doc.updated_by = actor_id

    commit_or_raise("update_document", resource="SOPDocument")
    logger.info(
        "SOP document updated",
        extra={"tenant_id": tenant_id, "document_id": document_id},
    )
    return doc.to_dict()


def publish(
    tenant_id: int,
    document_id: str,
    actor_id: int | None = None,
    expected_version: int | None = None,
) -> dict:
    """Publish (or republish) a document: version + 1, status published, published_at now.

    Every existing completion record becomes stale as a consequence.

    Args:
        expected_version: When given, publish only if the stored version still
                          equals it; otherwise ConflictError and no change.

    Raises:
        DocumentArchivedError: document is archived.
        ConflictError: expected_version no longer matches.
    """
    doc = load_document(tenant_id, document_id)
    _require_transition(doc, "publish")
    if expected_version is not None and doc.version != expected_version:
        raise ConflictError("SOPDocument", "version", str(doc.version))
    _require_member(tenant_id, actor_id)

    now = _utcnow()
    stmt = (
        update(SOPDocument)
        .where(
            SOPDocument.id == document_id,
            SOPDocument.tenant_id == tenant_id,
            SOPDocument.status.in_(DOCUMENT_TRANSITIONS["publish"]["from"]),
        )
        .values(
            version=SOPDocument.version + 1,
            status=DOCUMENT_TRANSITIONS["publish"]["to"],
            published_at=now,
            updated_at=now,
            updated_by=actor_id if actor_id is not None else SOPDocument.updated_by,
        )
        .execution_options(synchronize_session=False)
    )
    if expected_version is not None:
        stmt = stmt.where(SOPDocument.version == expected_version)

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        # Archived or republished between our read and the UPDATE
        db.session.rollback()
        raise ConflictError("SOPDocument", "version", str(expected_version))
    commit_or_raise("publish", resource="SOPDocument")

    db.session.refresh(doc)
    logger.info(
        "SOP document published v%d",
        doc.version,
        extra={"tenant_id": tenant_id, "document_id": document_id},
    )
    return doc.to_dict()


def archive(tenant_id: int, document_id: str, actor_id: int | None = None) -> dict:
    """Archive a document.  Terminal; the version is left unchanged."""
    doc = load_document(tenant_id, document_id)
    validation = _require_transition(doc, "archive")
    _require_member(tenant_id, actor_id)

    doc.status = validation["to"]
    doc.archived_at = _utcnow()
    if actor_id is not None:
        doc.updated_by = actor_id
    commit_or_raise("archive", resource="SOPDocument")

    logger.info(
        "SOP document archived at v%d",
        doc.version,
        extra={"tenant_id": tenant_id, "document_id": document_id},
    )
    return doc.to_dict()


def delete_document(tenant_id: int, document_id: str) -> dict:
    """Delete a non-archived document with its nodes, assignments and completions.

    Archived documents are kept as compliance records and cannot be deleted.

    Returns:
        {"deleted": True, "node_count": int}
    """
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "delete_document")

    node_count = db.session.execute(
        select(db.func.count(SOPNode.id)).where(SOPNode.document_id == doc.id)
    ).scalar_one()

    db.session.execute(delete(SOPCompletion).where(SOPCompletion.document_id == doc.id))
    db.session.execute(delete(SOPAssignment).where(SOPAssignment.document_id == doc.id))
    db.session.execute(delete(SOPNode).where(SOPNode.document_id == doc.id))
    db.session.delete(doc)
    commit_or_raise("delete_document", resource="SOPDocument")

    logger.info(
        "SOP document deleted with %d nodes",
        node_count,
        extra={"tenant_id": tenant_id, "document_id": document_id},
    )
    return {"deleted": True, "node_count": node_count}
