"""
Activity Service — append-only activity trail and the audit-log view.

Functions:
    - record_activity:      append one ActivityLog row (flush only; caller commits)
    - list_activity:        "my activity" / entity activity pages
    - entity_trail_scope:   whose entries an entity trail may include
    - resolve_audit_scope:  decide which user's logs an audit request may see
    - list_audit_logs:      filtered audit page honouring resolve_audit_scope

Audit access rules:
    * ``userId=me`` anywhere in the query pins the filter to the caller,
      whatever other ``userId`` values were sent.
    * Callers without an audit permission may only read their own logs;
      asking for someone else's is a 403.
    * ``*_read_all`` holders may filter by any user; everyone else is
      forced onto their own id.
    * No ``userId`` and no read-all: own logs only, unless the caller's
      role is admin / super_admin.
"""

import logging

from sqlalchemy import func, select

from crm.core.exceptions import PermissionDeniedError, ValidationError
from crm.models import db
from crm.models.activity import OPERATION_TYPES, SEVERITIES, ActivityLog
from crm.services.permission_service import has_any_permission
from crm.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

AUDIT_READ_PERMISSIONS = (
    "crm.system.audit_read",
    "crm.system.audit_read_all",
    "crm.system.activity_logs_read",
    "crm.system.activity_logs_read_all",
    "system.audit.read",
    "system.audit.read_all",
)
AUDIT_READ_ALL_PERMISSIONS = (
    "crm.system.audit_read_all",
    "crm.system.activity_logs_read_all",
    "system.audit.read_all",
)
ADMIN_ROLES = frozenset({"admin", "super_admin"})

ME = "me"


def record_activity(
    *,
    tenant_id: str,
    user_id: str,
    operation_type: str,
    resource_type: str,
    resource_id=None,
    operation_code: str | None = None,
    org_code: str | None = None,
    status: str = "success",
    severity: str = "low",
    error_code: str | None = None,
    error_message: str | None = None,
    processing_time_ms: float | None = None,
    credits_consumed: float = 0.0,
    details: dict | None = None,
    metadata: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> ActivityLog:
    """Append a single activity row.  Uses ``flush`` so callers keep
    transaction control."""
    if operation_type not in OPERATION_TYPES:
        operation_type = "other"
    if severity not in SEVERITIES:
        severity = "low"
    log = ActivityLog(
        tenant_id=tenant_id,
        user_id=str(user_id),
        org_code=org_code,
        operation_type=operation_type,
        operation_code=operation_code,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        operation_details=details or {},
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        request_id=request_id,
        severity=severity,
        status=status,
        error_code=error_code,
        error_message=error_message,
        processing_time_ms=processing_time_ms,
        credits_consumed=credits_consumed or 0.0,
        log_metadata=metadata or {},
    )
    db.session.add(log)
    db.session.flush()
    return log


def _page(stmt, skip: int, limit: int) -> tuple[list[dict], int]:
    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    rows = db.session.execute(
        stmt.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).offset(skip).limit(limit)
    ).scalars().all()
    return [r.to_dict() for r in rows], total


def _apply_filters(stmt, filters: dict):
    entity_type = filters.get("entity_type")
    if entity_type:
        stmt = stmt.where(ActivityLog.resource_type == entity_type)
    entity_id = filters.get("entity_id")
    if entity_id:
        stmt = stmt.where(ActivityLog.resource_id == str(entity_id))
    org_code = filters.get("org_code")
    if org_code:
        stmt = stmt.where(ActivityLog.org_code == org_code)
    operation_type = filters.get("operation_type")
    if operation_type:
        stmt = stmt.where(ActivityLog.operation_type == operation_type)
    start = filters.get("start_date")
    end = filters.get("end_date")
    if start or end:
        start_dt = parse_datetime(start)
        end_dt = parse_datetime(end)
        if (start and start_dt is None) or (end and end_dt is None):
            raise ValidationError("startDate/endDate must be ISO dates")
        if start_dt is not None:
            stmt = stmt.where(ActivityLog.timestamp >= start_dt.replace(tzinfo=None))
        if end_dt is not None:
            stmt = stmt.where(ActivityLog.timestamp <= end_dt.replace(tzinfo=None))
    return stmt


def list_activity(tenant_id: str, *, user_id: str | None = None, skip: int = 0,
                  limit: int = 50, **filters) -> tuple[list[dict], int]:
    """Activity of one user (or of one entity when *user_id* is None)."""
    stmt = select(ActivityLog).where(ActivityLog.tenant_id == tenant_id)
    if user_id:
        stmt = stmt.where(ActivityLog.user_id == user_id)
    stmt = _apply_filters(stmt, filters)
    return _page(stmt, skip, limit)


def entity_trail_scope(current_user_id: str, permissions, roles=()) -> str | None:
    """User filter for an entity's activity trail.

    Audit readers and admins see every user's entries on the entity;
    anyone else sees only their own.
    """
    if has_any_permission(permissions, AUDIT_READ_PERMISSIONS) or ADMIN_ROLES.intersection(roles or ()):
        return None
    return current_user_id


def resolve_audit_scope(
    requested_user_ids: list[str],
    current_user_id: str,
    permissions,
    roles=(),
) -> str | None:
    """Return the user id the audit query must be restricted to, or None
    for an unrestricted (tenant-wide) query.

    Raises:
        PermissionDeniedError: caller has no audit access and asked for
            someone else's logs.
    """
    requested = [u for u in (requested_user_ids or []) if u]
    if ME in requested:
        return current_user_id

    has_audit = has_any_permission(permissions, AUDIT_READ_PERMISSIONS)
    has_read_all = has_any_permission(permissions, AUDIT_READ_ALL_PERMISSIONS)
    requesting_own = not requested or all(u == current_user_id for u in requested)

    if not has_audit and not requesting_own:
        raise PermissionDeniedError(
            "Insufficient permissions to view audit logs",
            required=AUDIT_READ_PERMISSIONS[0],
        )

    if requested:
        if has_read_all:
            return requested[0]
        return current_user_id

    if has_read_all or ADMIN_ROLES.intersection(roles or ()):
        return None
    return current_user_id


def list_audit_logs(
    tenant_id: str,
    *,
    current_user_id: str,
    permissions,
    roles=(),
    requested_user_ids=None,
    skip: int = 0,
    limit: int = 50,
    **filters,
) -> tuple[list[dict], int, str | None]:
    """Return (items, total, effective_user_filter)."""
    scope_user = resolve_audit_scope(requested_user_ids or [], current_user_id, permissions, roles)
    stmt = select(ActivityLog).where(ActivityLog.tenant_id == tenant_id)
    if scope_user is not None:
        stmt = stmt.where(ActivityLog.user_id == scope_user)
    stmt = _apply_filters(stmt, filters)
    items, total = _page(stmt, skip, limit)
    logger.debug(
        "Audit logs listed",
        extra={"tenant_id": tenant_id, "user_id": current_user_id},
    )
    return items, total, scope_user
