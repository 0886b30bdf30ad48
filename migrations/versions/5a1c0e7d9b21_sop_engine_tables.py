"""sop_engine_tables

Creates the organization and SOP document engine tables:
  - tenants           organizations
  - members           staff roster per organization
  - sop_documents     versioned Standard Operating Procedures
  - sop_nodes         sections of a document (tree via parent_id)
  - sop_completions   one acknowledgement per (document, member)
  - sop_assignments   who must read a document (member_id NULL = everyone)

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5a1c0e7d9b21
Revises:
Create Date: 2026-10-19 09:12:41.530114
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5a1c0e7d9b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Tenant ────────────────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    # ── Member ────────────────────────────────────────────────────────────
    if "members" not in existing:
        op.create_table(
            "members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=50), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=True,
                comment="active | invited | inactive",
            ),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_member_tenant_email"),
        )
        op.create_index("ix_members_tenant_id", "members", ["tenant_id"])

    # ── SOPDocument ───────────────────────────────────────────────────────
    if "sop_documents" not in existing:
        op.create_table(
            "sop_documents",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="draft",
                comment="draft | published | archived",
            ),
            sa.Column(
                "version", sa.Integer(), nullable=False,
                server_default="0",
                comment="Incremented by publish only; compared against sop_completions.document_version",
            ),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["members.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["updated_by"], ["members.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sop_documents_tenant_id", "sop_documents", ["tenant_id"])
        op.create_index("ix_sop_documents_tenant_status", "sop_documents", ["tenant_id", "status"])

    # ── SOPNode ───────────────────────────────────────────────────────────
    if "sop_nodes" not in existing:
        op.create_table(
            "sop_nodes",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("document_id", sa.String(length=36), nullable=False),
            sa.Column(
                "parent_id", sa.String(length=36), nullable=True,
                comment="NULL = root-level section",
            ),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column(
                "content_type", sa.String(length=30), nullable=False,
                server_default="rich_text",
                comment="rich_text | external_document | container",
            ),
            sa.Column("rich_content", sa.Text(), nullable=True, comment="Opaque HTML from the editor"),
            sa.Column(
                "external_ref", sa.String(length=500), nullable=True,
                comment="Opaque storage locator returned by the file storage collaborator",
            ),
            sa.Column("external_filename", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["document_id"], ["sop_documents.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["sop_nodes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sop_nodes_document_id", "sop_nodes", ["document_id"])
        op.create_index("ix_sop_nodes_parent_id", "sop_nodes", ["parent_id"])
        op.create_index(
            "ix_sop_nodes_document_parent_order", "sop_nodes",
            ["document_id", "parent_id", "sort_order"],
        )

    # ── SOPCompletion ─────────────────────────────────────────────────────
    if "sop_completions" not in existing:
        op.create_table(
            "sop_completions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.String(length=36), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("document_version", sa.Integer(), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["document_id"], ["sop_documents.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_id", "member_id", name="uq_sop_completion_document_member"),
        )
        op.create_index("ix_sop_completions_tenant_id", "sop_completions", ["tenant_id"])
        op.create_index("ix_sop_completions_document_id", "sop_completions", ["document_id"])
        op.create_index("ix_sop_completions_member_id", "sop_completions", ["member_id"])

    # ── SOPAssignment ─────────────────────────────────────────────────────
    if "sop_assignments" not in existing:
        op.create_table(
            "sop_assignments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.String(length=36), nullable=False),
            sa.Column(
                "member_id", sa.Integer(), nullable=True,
                comment="NULL = assigned to all members",
            ),
            sa.Column("assigned_by", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["document_id"], ["sop_documents.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_by"], ["members.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("document_id", "member_id", name="uq_sop_assignment_document_member"),
        )
        op.create_index("ix_sop_assignments_tenant_id", "sop_assignments", ["tenant_id"])
        op.create_index("ix_sop_assignments_document_id", "sop_assignments", ["document_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    for table in (
        "sop_assignments",
        "sop_completions",
        "sop_nodes",
        "sop_documents",
        "members",
        "tenants",
    ):
        if table in existing:
            op.drop_table(table)
