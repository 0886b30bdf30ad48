"""
SOP Document Engine — document, node, completion and assignment models.

Tables:
  - sop_documents    one Standard Operating Procedure per row, versioned
  - sop_nodes        sections of a document, a tree via parent_id
  - sop_completions  one acknowledgement per (document, member)
  - sop_assignments  who must read a document (member_id NULL = everyone)

Tree storage:
    Nodes only carry parent_id and sort_order.  Child lists are derived on
    demand by sopdesk.services.sop_tree; there is deliberately no children
    relationship that could drift from parent_id.

    sort_order is unique within a sibling group.  That is enforced by the
    node service inside a transaction rather than by a UNIQUE constraint:
    root nodes share parent_id NULL, which SQL treats as distinct values,
    and an immediate constraint would reject the intermediate row state of
    a two-row swap on SQLite.
"""

import uuid
from datetime import datetime, timezone

from sopdesk.models import db
from sopdesk.models.base import TenantModel


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ─────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = ("draft", "published", "archived")

# Transition table: action → allowed source statuses and target status.
# "archived" has no outgoing transitions.
DOCUMENT_TRANSITIONS = {
    "publish": {"from": ["draft", "published"], "to": "published"},
    "archive": {"from": ["draft", "published"], "to": "archived"},
}

CONTENT_TYPES = ("rich_text", "external_document", "container")

MOVE_DIRECTIONS = ("up", "down")

TITLE_MAX_LENGTH = 255


class SOPDocument(TenantModel):
    """
    One Standard Operating Procedure.

    Lifecycle: draft → published → published (republish) → archived.
    version starts at 0 and is incremented only by publish; every publish
    makes existing completion records stale.
    """

    __tablename__ = "sop_documents"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default="draft",
        comment="draft | published | archived",
    )
    version = db.Column(
        db.Integer,
        nullable=False,
        default=0,
        comment="Incremented by publish only; compared against sop_completions.document_version",
    )
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
    )
    updated_by = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        TenantModel.tenant_composite_index("sop_documents", "status"),
    )

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "version": self.version,
            "published_at": _iso(self.published_at),
            "archived_at": _iso(self.archived_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<SOPDocument {self.id} v{self.version} {self.status}>"


class SOPNode(db.Model):
    """
    One section of a document.

    Exactly one content variant is active (content_type); the payload of the
    inactive variant is kept so switching back is lossless.
    """

    __tablename__ = "sop_nodes"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    document_id = db.Column(
        db.String(36),
        db.ForeignKey("sop_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("sop_nodes.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL = root-level section",
    )
    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    content_type = db.Column(
        db.String(30),
        nullable=False,
        default="rich_text",
        comment="rich_text | external_document | container",
    )
    rich_content = db.Column(db.Text, nullable=True, comment="Opaque HTML from the editor")
    external_ref = db.Column(
        db.String(500),
        nullable=True,
        comment="Opaque storage locator returned by the file storage collaborator",
    )
    external_filename = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        db.Index("ix_sop_nodes_document_parent_order", "document_id", "parent_id", "sort_order"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "parent_id": self.parent_id,
            "title": self.title,
            "sort_order": self.sort_order,
            "content_type": self.content_type,
            "rich_content": self.rich_content,
            "external_ref": self.external_ref,
            "external_filename": self.external_filename,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<SOPNode {self.id} parent={self.parent_id} order={self.sort_order}>"


class SOPCompletion(TenantModel):
    """
    A member's acknowledgement of having read a document at a version.

    Business rules:
    - At most one row per (document_id, member_id); re-completing overwrites.
    - Current iff document_version == SOPDocument.version.
    - Never deleted by the ledger, only superseded.
    """

    __tablename__ = "sop_completions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    document_id = db.Column(
        db.String(36),
        db.ForeignKey("sop_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_version = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("document_id", "member_id", name="uq_sop_completion_document_member"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_id": self.document_id,
            "member_id": self.member_id,
            "document_version": self.document_version,
            "completed_at": _iso(self.completed_at),
        }

    def __repr__(self) -> str:
        return f"<SOPCompletion {self.document_id}/{self.member_id} v{self.document_version}>"


class SOPAssignment(TenantModel):
    """
    Who is expected to read a document.

    member_id NULL means "every member of the organization".  An
    "everyone" row and per-member rows never coexist for one document.
    """

    __tablename__ = "sop_assignments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    document_id = db.Column(
        db.String(36),
        db.ForeignKey("sop_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="CASCADE"),
        nullable=True,
        comment="NULL = assigned to all members",
    )
    assigned_by = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("document_id", "member_id", name="uq_sop_assignment_document_member"),
    )

    @property
    def is_all_members(self) -> bool:
        return self.member_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_id": self.document_id,
            "member_id": self.member_id,
            "all_members": self.member_id is None,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
        }
