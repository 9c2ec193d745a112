"""
User models — profiles, CRM roles, and the two assignment join tables.

Assignment rows keep both the resolved FK and the raw identifier string it
came from. During data migration the referenced user/org/role may not exist
yet; the string survives and the FK is filled in later.
"""

import uuid
from datetime import datetime, timezone

from crm.models import db
from crm.models.base import TenantModel
from crm.utils.helpers import as_utc

ASSIGNMENT_TYPES = {"primary", "secondary", "temporary"}


def _assignment_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class UserProfile(TenantModel):
    __tablename__ = "user_profiles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "user_id", name="uq_user_profile_tenant_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(100), nullable=False, comment="Identity provider subject")
    employee_code = db.Column(db.String(50))
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), default="")
    email = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(50))
    job_title = db.Column(db.String(100))
    department = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_activity_at = db.Column(db.DateTime)
    last_synced_at = db.Column(db.DateTime)

    role_assignments = db.relationship(
        "RoleAssignment", back_populates="user_profile", lazy="select",
    )
    org_assignments = db.relationship(
        "EmployeeOrgAssignment", back_populates="user_profile", lazy="select",
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name or ''}".strip()

    def primary_org_assignment(self):
        active = [a for a in self.org_assignments if a.is_effective()]
        primary = [a for a in active if a.assignment_type == "primary"]
        candidates = primary or active
        return min(candidates, key=lambda a: a.priority) if candidates else None

    def to_dict(self, include_assignments: bool = False) -> dict:
        primary = self.primary_org_assignment()
        result = {
            "id": str(self.id),
            "userId": self.user_id,
            "employeeCode": self.employee_code or "",
            "firstName": self.first_name,
            "lastName": self.last_name or "",
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone or "",
            "jobTitle": self.job_title or "",
            "department": self.department or "",
            "isActive": self.is_active,
            "primaryOrgCode": primary.entity_id_string if primary else None,
            "lastActivityAt": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "lastSyncedAt": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_assignments:
            result["roleAssignments"] = [a.to_dict() for a in self.role_assignments if a.is_active]
            result["organizationAssignments"] = [a.to_dict() for a in self.org_assignments if a.is_active]
        return result

    def __repr__(self):
        return f"<UserProfile {self.user_id}@{self.tenant_id}>"


class CrmRole(TenantModel):
    __tablename__ = "crm_roles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "role_id", name="uq_crm_role_tenant_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    permissions = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "roleId": self.role_id,
            "name": self.name,
            "description": self.description or "",
            "permissions": list(self.permissions or []),
            "isActive": self.is_active,
        }


class _AssignmentMixin:
    """Lifecycle shared by both assignment tables."""

    def is_effective(self, now=None) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) > now

    def deactivate(self, reason: str | None = None):
        self.is_active = False
        self.deactivated_at = datetime.now(timezone.utc)
        if reason:
            self.notes = reason


class EmployeeOrgAssignment(_AssignmentMixin, TenantModel):
    __tablename__ = "employee_org_assignments"
    __table_args__ = (
        db.Index("ix_emp_org_tenant_user", "tenant_id", "user_id_string"),
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.String(40), unique=True, nullable=False,
        default=lambda: _assignment_id("emp_org"),
    )
    user_profile_id = db.Column(
        db.Integer, db.ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True,
    )
    user_id_string = db.Column(db.String(100), nullable=False)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True,
    )
    entity_id_string = db.Column(db.String(100), nullable=False, comment="Org code")
    assignment_type = db.Column(db.String(20), nullable=False, default="primary")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    priority = db.Column(db.Integer, default=1, nullable=False)
    assigned_by = db.Column(db.String(100))
    expires_at = db.Column(db.DateTime)
    deactivated_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    user_profile = db.relationship("UserProfile", back_populates="org_assignments")
    organization = db.relationship("Organization")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "assignmentId": self.assignment_id,
            "userId": str(self.user_profile_id) if self.user_profile_id else None,
            "userIdString": self.user_id_string,
            "entityId": str(self.organization_id) if self.organization_id else None,
            "entityIdString": self.entity_id_string,
            "assignmentType": self.assignment_type,
            "isActive": self.is_active,
            "priority": self.priority,
            "assignedBy": self.assigned_by,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class RoleAssignment(_AssignmentMixin, TenantModel):
    __tablename__ = "role_assignments"
    __table_args__ = (
        db.Index("ix_role_assign_tenant_user", "tenant_id", "user_id_string"),
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.String(40), unique=True, nullable=False,
        default=lambda: _assignment_id("role"),
    )
    user_profile_id = db.Column(
        db.Integer, db.ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True,
    )
    user_id_string = db.Column(db.String(100), nullable=False)
    role_ref_id = db.Column(
        db.Integer, db.ForeignKey("crm_roles.id", ondelete="SET NULL"), nullable=True,
    )
    role_id_string = db.Column(db.String(100), nullable=False)
    entity_id_string = db.Column(db.String(100), comment="Optional org scope")
    assignment_type = db.Column(db.String(20), nullable=False, default="primary")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    priority = db.Column(db.Integer, default=1, nullable=False)
    assigned_by = db.Column(db.String(100))
    expires_at = db.Column(db.DateTime)
    deactivated_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    user_profile = db.relationship("UserProfile", back_populates="role_assignments")
    role = db.relationship("CrmRole")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "assignmentId": self.assignment_id,
            "userId": str(self.user_profile_id) if self.user_profile_id else None,
            "userIdString": self.user_id_string,
            "roleId": str(self.role_ref_id) if self.role_ref_id else None,
            "roleIdString": self.role_id_string,
            "roleName": self.role.name if self.role else None,
            "entityIdString": self.entity_id_string,
            "assignmentType": self.assignment_type,
            "isActive": self.is_active,
            "priority": self.priority,
            "assignedBy": self.assigned_by,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
