"""
Organization model — per-tenant hierarchy of org units.

``level``, ``path`` and ``children`` are computed from the parent chain,
never stored.
"""

from crm.models import db
from crm.models.base import TenantModel

# Guards against corrupt data forming a parent cycle
MAX_DEPTH = 32


class Organization(TenantModel):
    __tablename__ = "organizations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "org_code", name="uq_org_tenant_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    org_type = db.Column(db.String(50), default="department")
    description = db.Column(db.Text)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    parent = db.relationship("Organization", remote_side=[id], back_populates="children")
    children = db.relationship("Organization", back_populates="parent", order_by="Organization.name")

    def ancestors(self) -> list["Organization"]:
        """Root-first list of ancestors (excluding self)."""
        chain = []
        node = self.parent
        while node is not None and len(chain) < MAX_DEPTH:
            chain.append(node)
            node = node.parent
        chain.reverse()
        return chain

    @property
    def level(self) -> int:
        return len(self.ancestors())

    @property
    def path(self) -> list[str]:
        return [a.org_code for a in self.ancestors()] + [self.org_code]

    def to_dict(self, include_children: bool = False) -> dict:
        result = {
            "id": str(self.id),
            "orgCode": self.org_code,
            "name": self.name,
            "orgType": self.org_type,
            "description": self.description or "",
            "parentId": str(self.parent_id) if self.parent_id else None,
            "isActive": self.is_active,
            "level": self.level,
            "path": self.path,
            "childCount": len(self.children),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_children:
            result["children"] = [c.to_dict(include_children=True) for c in self.children]
        return result

    def __repr__(self):
        return f"<Organization {self.org_code}>"
