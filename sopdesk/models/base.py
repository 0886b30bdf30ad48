"""
TenantModel — Abstract base class for tenant-scoped models.

Every SOP table that belongs to an organization inherits from TenantModel
instead of db.Model directly. This adds:
  - tenant_id FK column with index
  - Composite index macro helper
"""

from sopdesk.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def tenant_composite_index(cls, table_name, *extra_cols):
        """Helper to build a (tenant_id, ...) composite index.

        Takes the table name explicitly because __table_args__ is evaluated
        before the class (and its __tablename__) exists.
        """
        name = f"ix_{table_name}_tenant_{'_'.join(extra_cols)}"
        cols = ("tenant_id",) + extra_cols
        return db.Index(name, *cols)
