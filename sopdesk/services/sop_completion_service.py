"""
SOP Completion Ledger — who has read which version of a document.

One row per (document, member).  Marking complete again overwrites the
row with the newer version and timestamp; rows are never deleted here,
only superseded.  A record is *current* while its document_version equals
the document's version, so every publish turns all existing records stale
without touching them.

The ledger computes no percentages; progress views build on the raw
records (see sop_assignment_service.member_progress).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from sopdesk.core.exceptions import ValidationError
from sopdesk.models import db
from sopdesk.models.auth import Member
from sopdesk.models.sop import SOPCompletion, SOPDocument
from sopdesk.services.helpers.scoped_queries import get_scoped
from sopdesk.services.sop_lifecycle import ensure_editable, load_document
from sopdesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def is_current(record, document) -> bool:
    """True when ``record`` acknowledges the document's present version.

    Accepts models or their dicts; a missing record is never current.
    """
    if record is None:
        return False
    record_version = record["document_version"] if isinstance(record, dict) else record.document_version
    document_version = document["version"] if isinstance(document, dict) else document.version
    return record_version == document_version


def _completion_dict(record: SOPCompletion, document: SOPDocument) -> dict:
    data = record.to_dict()
    data["is_current"] = is_current(record, document)
    return data


def mark_complete(tenant_id: int, document_id: str, version, member_id: int) -> dict:
    """Record that ``member_id`` read ``document_id`` at ``version``.

    Raises:
        NotFoundError: document or member missing in this tenant.
        ValidationError: version is not a published version of the document.
        DocumentArchivedError: document is archived.
    """
    doc = load_document(tenant_id, document_id)
    ensure_editable(doc, "mark_complete")

    if isinstance(version, bool) or not isinstance(version, int):
        raise ValidationError("version must be an integer", details={"version": version})
    if version < 1 or version > doc.version:
        raise ValidationError(
            f"version must be between 1 and {doc.version}",
            details={"version": version, "current_version": doc.version},
        )
    member = get_scoped(Member, member_id, tenant_id=tenant_id)

    record = db.session.execute(
        select(SOPCompletion).where(
            SOPCompletion.document_id == doc.id,
            SOPCompletion.member_id == member.id,
        )
    ).scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if record is None:
        record = SOPCompletion(
            tenant_id=tenant_id,
            document_id=doc.id,
            member_id=member.id,
            document_version=version,
            completed_at=now,
        )
        db.session.add(record)
    else:
        record.document_version = version
        record.completed_at = now
    commit_or_raise("mark_complete", resource="SOPCompletion")

    logger.info(
        "SOP completion recorded for member %s at v%d",
        member.id,
        version,
        extra={"tenant_id": tenant_id, "document_id": doc.id},
    )
    return _completion_dict(record, doc)


def list_completions(tenant_id: int, document_id: str) -> list[dict]:
    """All completion records of a document, each annotated with is_current."""
    doc = load_document(tenant_id, document_id)
    records = db.session.execute(
        select(SOPCompletion)
        .where(SOPCompletion.tenant_id == tenant_id, SOPCompletion.document_id == doc.id)
        .order_by(SOPCompletion.completed_at.desc())
    ).scalars().all()
    return [_completion_dict(r, doc) for r in records]


def get_member_completion(tenant_id: int, document_id: str, member_id: int) -> dict | None:
    doc = load_document(tenant_id, document_id)
    record = db.session.execute(
        select(SOPCompletion).where(
            SOPCompletion.tenant_id == tenant_id,
            SOPCompletion.document_id == doc.id,
            SOPCompletion.member_id == member_id,
        )
    ).scalar_one_or_none()
    return _completion_dict(record, doc) if record else None
