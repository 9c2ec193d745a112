"""
User Service — CRM user profiles, their org/role assignments, and roles.

Identity lives in the external identity provider; a UserProfile is the
tenant-local record keyed by the provider's subject (``userId``).

Functions:
    Profiles:     create_user, list_users, get_user, update_user, delete_user
    Assignments:  assign_organization, assign_role, revoke_role
    Roles:        create_role, list_roles

Every change to a user's roles invalidates that user's cached permissions.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_, select

from crm.core.exceptions import NotFoundError, ValidationError
from crm.models import db
from crm.models.organization import Organization
from crm.models.user import (
    ASSIGNMENT_TYPES,
    CrmRole,
    EmployeeOrgAssignment,
    RoleAssignment,
    UserProfile,
)
from crm.services import permission_service
from crm.utils.helpers import (
    apply_fields,
    boolean,
    db_commit,
    get_for_tenant,
    integer,
    paginate_select,
    parse_datetime,
    pick,
    require_fields,
    text,
)

logger = logging.getLogger(__name__)

USER_FIELDS = {
    "employee_code": (("employeeCode", "employee_code"), text(50)),
    "first_name": (("firstName", "first_name"), text(100)),
    "last_name": (("lastName", "last_name"), text(100)),
    "phone": (("phone",), text(50)),
    "job_title": (("jobTitle", "job_title"), text(100)),
    "department": (("department",), text(100)),
    "is_active": (("isActive", "is_active"), boolean),
}


def _normalize_email(value) -> str:
    try:
        return validate_email(str(value or ""), check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", details={"email": "invalid"})


# ═══════════════════════════════════════════════════════════════
# Profiles
# ═══════════════════════════════════════════════════════════════


def create_user(tenant_id: str, data: dict, actor_id: str) -> dict:
    """Create a user profile.

    Optional ``orgCode`` creates a primary org assignment and optional
    ``roles`` (list of role ids) creates role assignments, in the same
    transaction.

    Raises:
        ValidationError: userId/firstName/email missing or email malformed.
        ConflictError: userId already has a profile in this tenant.
    """
    require_fields(data, ("userId", "user_id"), ("firstName", "first_name"), "email")
    user_id = str(pick(data, "userId", "user_id")).strip()

    profile = UserProfile(tenant_id=tenant_id, user_id=user_id, last_name="", is_active=True)
    apply_fields(profile, data, USER_FIELDS)
    profile.email = _normalize_email(data.get("email"))
    db.session.add(profile)
    db_commit("User", "userId", user_id)

    org_code = pick(data, "orgCode", "org_code")
    if org_code:
        _add_org_assignment(tenant_id, profile, {"orgCode": org_code}, actor_id)
    for role_id in pick(data, "roles", default=None) or []:
        _add_role_assignment(tenant_id, profile, {"roleId": role_id}, actor_id)
    if org_code or pick(data, "roles"):
        db_commit("Assignment")
        permission_service.invalidate_cache(tenant_id, user_id)

    logger.info(
        "User profile created",
        extra={"tenant_id": tenant_id, "user_id": user_id, "actor": actor_id},
    )
    return profile.to_dict(include_assignments=True)


def list_users(tenant_id: str, *, skip: int = 0, limit: int = 50,
               is_active=None, search=None, department=None) -> tuple[list[dict], int]:
    stmt = select(UserProfile).where(UserProfile.tenant_id == tenant_id)
    if is_active is not None:
        stmt = stmt.where(UserProfile.is_active == boolean(is_active))
    if department:
        stmt = stmt.where(UserProfile.department == department)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            UserProfile.first_name.ilike(like),
            UserProfile.last_name.ilike(like),
            UserProfile.email.ilike(like),
            UserProfile.user_id.ilike(like),
        ))
    rows, total = paginate_select(stmt, skip, limit, UserProfile.first_name, UserProfile.id)
    return [u.to_dict() for u in rows], total


def get_user(tenant_id: str, profile_id) -> dict:
    return get_for_tenant(UserProfile, tenant_id, profile_id, "User").to_dict(include_assignments=True)


def update_user(tenant_id: str, profile_id, data: dict, actor_id: str) -> dict:
    profile = get_for_tenant(UserProfile, tenant_id, profile_id, "User")
    changed = apply_fields(profile, data, USER_FIELDS)
    if not profile.first_name:
        raise ValidationError("firstName cannot be empty", details={"firstName": "required"})
    if "email" in data:
        profile.email = _normalize_email(data["email"])
        changed.append("email")
    db_commit("User")
    if "is_active" in changed:
        permission_service.invalidate_cache(tenant_id, profile.user_id)
    logger.info(
        "User profile updated",
        extra={"tenant_id": tenant_id, "user_id": profile.user_id, "fields": changed, "actor": actor_id},
    )
    return profile.to_dict(include_assignments=True)


def delete_user(tenant_id: str, profile_id, actor_id: str) -> None:
    """Delete a profile together with its org and role assignment rows."""
    profile = get_for_tenant(UserProfile, tenant_id, profile_id, "User")
    user_id = profile.user_id
    for model in (EmployeeOrgAssignment, RoleAssignment):
        rows = db.session.execute(
            select(model).where(
                model.tenant_id == tenant_id,
                or_(model.user_profile_id == profile.id, model.user_id_string == user_id),
            )
        ).scalars().all()
        for row in rows:
            db.session.delete(row)
    db.session.delete(profile)
    db_commit("User")
    permission_service.invalidate_cache(tenant_id, user_id)
    logger.info(
        "User profile deleted",
        extra={"tenant_id": tenant_id, "user_id": user_id, "actor": actor_id},
    )


# ═══════════════════════════════════════════════════════════════
# Assignments
# ═══════════════════════════════════════════════════════════════


def _assignment_type(data) -> str:
    value = pick(data, "assignmentType", "assignment_type") or "primary"
    if value not in ASSIGNMENT_TYPES:
        raise ValidationError(
            f"assignmentType must be one of: {', '.join(sorted(ASSIGNMENT_TYPES))}",
            details={"assignmentType": value},
        )
    return value


def _add_org_assignment(tenant_id, profile, data, actor_id) -> EmployeeOrgAssignment:
    org_ref = pick(data, "organizationId", "organization_id")
    org_code = pick(data, "orgCode", "org_code", "entityId")
    if org_ref:
        org = get_for_tenant(Organization, tenant_id, org_ref, "Organization")
    else:
        org = db.session.execute(
            select(Organization).where(
                Organization.tenant_id == tenant_id, Organization.org_code == org_code,
            )
        ).scalars().first()
    assignment_type = _assignment_type(data)

    if assignment_type == "primary":
        for existing in profile.org_assignments:
            if existing.is_active and existing.assignment_type == "primary":
                existing.assignment_type = "secondary"

    assignment = EmployeeOrgAssignment(
        tenant_id=tenant_id,
        user_profile_id=profile.id,
        user_id_string=profile.user_id,
        organization_id=org.id if org else None,
        entity_id_string=org.org_code if org else str(org_code),
        assignment_type=assignment_type,
        priority=integer(pick(data, "priority")) or 1,
        assigned_by=actor_id,
        expires_at=parse_datetime(pick(data, "expiresAt", "expires_at")),
        notes=text()(pick(data, "notes")),
    )
    db.session.add(assignment)
    profile.org_assignments.append(assignment)
    return assignment


def assign_organization(tenant_id: str, profile_id, data: dict, actor_id: str) -> dict:
    """Attach a user to an org unit.

    A new primary assignment demotes any current primary to secondary.
    An orgCode that does not resolve yet is kept as the raw string.

    Raises:
        ValidationError: neither orgCode nor organizationId given.
    """
    profile = get_for_tenant(UserProfile, tenant_id, profile_id, "User")
    require_fields(data, ("orgCode", "org_code", "organizationId", "organization_id"))
    assignment = _add_org_assignment(tenant_id, profile, data, actor_id)
    db_commit("Organization assignment")
    logger.info(
        "Organization assigned",
        extra={"tenant_id": tenant_id, "user_id": profile.user_id,
               "org_code": assignment.entity_id_string, "actor": actor_id},
    )
    return assignment.to_dict()


def _add_role_assignment(tenant_id, profile, data, actor_id) -> RoleAssignment:
    role_ref = str(pick(data, "roleId", "role_id")).strip()
    role = db.session.execute(
        select(CrmRole).where(CrmRole.tenant_id == tenant_id, CrmRole.role_id == role_ref)
    ).scalars().first()
    if role is None and role_ref.isdigit():
        candidate = db.session.get(CrmRole, int(role_ref))
        role = candidate if candidate is not None and candidate.tenant_id == tenant_id else None
    if role is None:
        logger.warning(
            "Role %s not defined yet; assignment keeps the raw id", role_ref,
            extra={"tenant_id": tenant_id, "user_id": profile.user_id},
        )

    assignment = RoleAssignment(
        tenant_id=tenant_id,
        user_profile_id=profile.id,
        user_id_string=profile.user_id,
        role_ref_id=role.id if role else None,
        role_id_string=role.role_id if role else role_ref,
        entity_id_string=text(100)(pick(data, "orgCode", "org_code", "entityId")),
        assignment_type=_assignment_type(data),
        priority=integer(pick(data, "priority")) or 1,
        assigned_by=actor_id,
        expires_at=parse_datetime(pick(data, "expiresAt", "expires_at")),
        notes=text()(pick(data, "notes")),
    )
    db.session.add(assignment)
    profile.role_assignments.append(assignment)
    return assignment


def assign_role(tenant_id: str, profile_id, data: dict, actor_id: str) -> dict:
    """Grant a role to a user.

    Raises:
        ValidationError: roleId missing.
    """
    profile = get_for_tenant(UserProfile, tenant_id, profile_id, "User")
    require_fields(data, ("roleId", "role_id"))
    assignment = _add_role_assignment(tenant_id, profile, data, actor_id)
    db_commit("Role assignment")
    permission_service.invalidate_cache(tenant_id, profile.user_id)
    logger.info(
        "Role assigned",
        extra={"tenant_id": tenant_id, "user_id": profile.user_id,
               "role_id": assignment.role_id_string, "actor": actor_id},
    )
    return assignment.to_dict()


def revoke_role(tenant_id: str, profile_id, assignment_id: str, actor_id: str) -> dict:
    """Deactivate one role assignment of a user (the row is kept).

    *assignment_id* is the ``role_...`` identifier or the numeric id.
    """
    profile = get_for_tenant(UserProfile, tenant_id, profile_id, "User")
    match = [
        a for a in profile.role_assignments
        if a.assignment_id == assignment_id or str(a.id) == str(assignment_id)
    ]
    if not match:
        raise NotFoundError(resource="Role assignment", resource_id=assignment_id, tenant_id=tenant_id)
    assignment = match[0]
    assignment.deactivate(reason=f"revoked by {actor_id}")
    db_commit("Role assignment")
    permission_service.invalidate_cache(tenant_id, profile.user_id)
    logger.info(
        "Role revoked",
        extra={"tenant_id": tenant_id, "user_id": profile.user_id,
               "role_id": assignment.role_id_string, "actor": actor_id},
    )
    return assignment.to_dict()


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════


def create_role(tenant_id: str, data: dict) -> dict:
    """Define a tenant role with a permission list.

    Raises:
        ValidationError: roleId/name missing or permissions not a list.
        ConflictError: roleId already defined.
    """
    require_fields(data, ("roleId", "role_id"), "name")
    permissions = pick(data, "permissions", default=[]) or []
    if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
        raise ValidationError("permissions must be a list of strings", details={"permissions": "invalid"})
    role_id = str(pick(data, "roleId", "role_id")).strip()
    role = CrmRole(
        tenant_id=tenant_id,
        role_id=role_id,
        name=text(100)(data["name"]),
        description=text()(data.get("description")),
        permissions=permissions,
        is_active=True,
    )
    db.session.add(role)
    db_commit("Role", "roleId", role_id)

    # Assignments created before the role existed now resolve to it
    pending = db.session.execute(
        select(RoleAssignment).where(
            RoleAssignment.tenant_id == tenant_id,
            RoleAssignment.role_id_string == role_id,
            RoleAssignment.role_ref_id.is_(None),
        )
    ).scalars().all()
    for assignment in pending:
        assignment.role_ref_id = role.id
    if pending:
        db_commit("Role assignment")
        permission_service.invalidate_tenant_cache(tenant_id)

    logger.info("Role created", extra={"tenant_id": tenant_id, "role_id": role_id, "linked": len(pending)})
    return role.to_dict()


def list_roles(tenant_id: str) -> list[dict]:
    rows = db.session.execute(
        select(CrmRole).where(CrmRole.tenant_id == tenant_id).order_by(CrmRole.name)
    ).scalars().all()
    return [r.to_dict() for r in rows]
