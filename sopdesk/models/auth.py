"""
Organization Models — tenants and their members.

The engine does not authenticate anyone.  These two tables exist so that
SOP rows have a real owning organization and so that completion and
assignment rows point at members that actually exist.

The member roster here is also what progress reporting joins against.
"""

from datetime import datetime, timezone

from sopdesk.models import db

MEMBER_STATUSES = ("active", "invited", "inactive")


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS (organizations)
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    members = db.relationship(
        "Member", back_populates="tenant", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "member_count": self.members.count() if self.members else 0,
        }


# ═══════════════════════════════════════════════════════════════
# 2. MEMBERS (staff of an organization)
# ═══════════════════════════════════════════════════════════════
class Member(db.Model):
    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(50), default="staff")  # owner, manager, pharmacist, staff, locum
    status = db.Column(db.String(20), default="active")  # active, invited, inactive
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_member_tenant_email"),
        db.Index("ix_members_tenant_id", "tenant_id"),
    )

    tenant = db.relationship("Tenant", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
