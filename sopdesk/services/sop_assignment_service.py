"""
SOP Assignment & Progress Service.

Assignments say who is expected to read a document:

    member_id NULL   everyone in the organization
    member_id = N    one specific member

The two forms never coexist for one document.  Assigning to everyone
replaces any per-member rows; assigning a member removes the "everyone"
row.

Progress joins the active roster (members.status = "active") with the
completion ledger.  Per member:

    completion          the ledger row or None
    is_current_version  completion exists at the document's version
    needs_reread        completion exists at an older version
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, or_, select

from sopdesk.models import db
from sopdesk.models.auth import Member
from sopdesk.models.sop import SOPAssignment, SOPCompletion, SOPDocument
from sopdesk.services.helpers.scoped_queries import get_scoped
from sopdesk.services.sop_completion_service import is_current
from sopdesk.services.sop_lifecycle import ensure_editable, load_document
from sopdesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


def list_assignments(tenant_id: int, document_id: str) -> list[dict]:
    doc = load_document(tenant_id, document_id)
    rows = db.session.execute(
        select(SOPAssignment)
        .where(SOPAssignment.tenant_id == tenant_id, SOPAssignment.document_id == doc.id)
        .order_by(SOPAssignment.assigned_at.asc())
    ).scalars().all()
    return [a.to_dict() for a in rows]


def assign_to_all(tenant_id: int, document_id: str, assigned_by: int | None = None) -> dict:
    """Assign a document to every member, replacing per-member assignments."""
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "assign_to_all")
    if assigned_by is not None:
        get_scoped(Member, assigned_by, tenant_id=tenant_id)

    db.session.execute(delete(SOPAssignment).where(SOPAssignment.document_id == doc.id))
    assignment = SOPAssignment(
        tenant_id=tenant_id,
        document_id=doc.id,
        member_id=None,
        assigned_by=assigned_by,
        assigned_at=_utcnow(),
    )
    db.session.add(assignment)
    commit_or_raise("assign_to_all", resource="SOPAssignment")

    logger.info(
        "SOP assigned to all members",
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return assignment.to_dict()


def assign_to_member(
    tenant_id: int,
    document_id: str,
    member_id: int,
    assigned_by: int | None = None,
) -> dict:
    """Assign a document to one member; drops the "everyone" assignment if present.

    Assigning an already-assigned member refreshes assigned_by / assigned_at.
    """
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "assign_to_member")
    member = get_scoped(Member, member_id, tenant_id=tenant_id)
    if assigned_by is not None:
        get_scoped(Member, assigned_by, tenant_id=tenant_id)

    db.session.execute(
        delete(SOPAssignment).where(
            SOPAssignment.document_id == doc.id,
            SOPAssignment.member_id.is_(None),
        )
    )
    assignment = db.session.execute(
        select(SOPAssignment).where(
            SOPAssignment.document_id == doc.id,
            SOPAssignment.member_id == member.id,
        )
    ).scalar_one_or_none()
    if assignment is None:
        assignment = SOPAssignment(tenant_id=tenant_id, document_id=doc.id, member_id=member.id)
        db.session.add(assignment)
    assignment.assigned_by = assigned_by
    assignment.assigned_at = _utcnow()
    commit_or_raise("assign_to_member", resource="SOPAssignment")

    logger.info(
        "SOP assigned to member %s",
        member.id,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return assignment.to_dict()


def remove_assignment(tenant_id: int, assignment_id: str) -> dict:
    assignment = get_scoped(SOPAssignment, assignment_id, tenant_id=tenant_id)
    doc = load_document(tenant_id, assignment.document_id)
    ensure_editable(doc, "remove_assignment")
    db.session.delete(assignment)
    commit_or_raise("remove_assignment", resource="SOPAssignment")
    return {"deleted": True, "id": assignment_id}


def remove_all_assignments(tenant_id: int, document_id: str) -> dict:
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "remove_all_assignments")
    result = db.session.execute(
        delete(SOPAssignment).where(SOPAssignment.document_id == doc.id)
    )
    commit_or_raise("remove_all_assignments", resource="SOPAssignment")

    logger.info(
        "Removed %d SOP assignments",
        result.rowcount,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return {"deleted_count": result.rowcount}


# ═════════════════════════════════════════════════════════════════════════════
# Reading lists & progress
# ═════════════════════════════════════════════════════════════════════════════


def my_documents(tenant_id: int, member_id: int) -> list[dict]:
    """Published documents assigned to a member (directly or via "everyone").

    Ordered by title.  Each document carries the member's completion
    (or None) and whether it is current.
    """
    member = get_scoped(Member, member_id, tenant_id=tenant_id)

    assigned_ids = (
        select(SOPAssignment.document_id)
        .where(
            SOPAssignment.tenant_id == tenant_id,
            or_(SOPAssignment.member_id.is_(None), SOPAssignment.member_id == member.id),
        )
    )
    docs = db.session.execute(
        select(SOPDocument)
        .where(
            SOPDocument.tenant_id == tenant_id,
            SOPDocument.status == "published",
            SOPDocument.id.in_(assigned_ids),
        )
        .order_by(SOPDocument.title.asc(), SOPDocument.id.asc())
    ).scalars().all()

    completions = {
        c.document_id: c
        for c in db.session.execute(
            select(SOPCompletion).where(
                SOPCompletion.tenant_id == tenant_id,
                SOPCompletion.member_id == member.id,
            )
        ).scalars().all()
    }

    result = []
    for doc in docs:
        record = completions.get(doc.id)
        item = doc.to_dict()
        item["my_completion"] = record.to_dict() if record else None
        item["is_current"] = is_current(record, doc)
        result.append(item)
    return result


def member_progress(tenant_id: int, document_id: str) -> dict:
    """Join the active roster with the document's completions.

    Returns:
        {
            "document_id", "version",
            "members": [{"member", "assigned", "completion",
                         "is_current_version", "needs_reread"}],
            "totals": {"members", "current", "needs_reread", "not_started"},
        }
    """
    doc = load_document(tenant_id, document_id)

    members = db.session.execute(
        select(Member)
        .where(Member.tenant_id == tenant_id, Member.status == "active")
        .order_by(Member.full_name.asc(), Member.id.asc())
    ).scalars().all()
    completions = {
        c.member_id: c
        for c in db.session.execute(
            select(SOPCompletion).where(
                SOPCompletion.tenant_id == tenant_id,
                SOPCompletion.document_id == doc.id,
            )
        ).scalars().all()
    }
    assignments = db.session.execute(
        select(SOPAssignment.member_id).where(SOPAssignment.document_id == doc.id)
    ).scalars().all()
    everyone = any(m is None for m in assignments)
    assigned_members = {m for m in assignments if m is not None}

    rows = []
    totals = {"members": 0, "current": 0, "needs_reread": 0, "not_started": 0}
    for member in members:
        record = completions.get(member.id)
        current = is_current(record, doc)
        needs_reread = record is not None and not current
        rows.append({
            "member": member.to_dict(),
            "assigned": everyone or member.id in assigned_members,
            "completion": record.to_dict() if record else None,
            "is_current_version": current,
            "needs_reread": needs_reread,
        })
        totals["members"] += 1
        if current:
            totals["current"] += 1
        elif needs_reread:
            totals["needs_reread"] += 1
        else:
            totals["not_started"] += 1

    return {
        "document_id": doc.id,
        "version": doc.version,
        "members": rows,
        "totals": totals,
    }
