"""
Tenant model — the isolation boundary of every CRM record.

``tenant_id`` is the slug issued by the identity provider (e.g. "acme-corp");
tenant-scoped tables store that slug, not the integer PK.
"""

from datetime import datetime, timezone

from crm.models import db

TENANT_STATUSES = {"active", "inactive", "suspended"}


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    settings = db.Column(db.JSON, default=dict)
    subscription = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def plan(self) -> str:
        return (self.subscription or {}).get("plan", "trial")

    def context(self) -> dict:
        """The tenant info attached to each request as ``g.tenant_info``."""
        return {
            "tenantId": self.tenant_id,
            "status": self.status,
            "settings": self.settings or {},
            "subscription": self.subscription or {},
        }

    def to_dict(self):
        return {
            "id": str(self.id),
            "tenantId": self.tenant_id,
            "name": self.name,
            "status": self.status,
            "settings": self.settings or {},
            "subscription": self.subscription or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Tenant {self.tenant_id} ({self.status})>"
