"""
Activity Blueprint — activity trail and audit-log views.

Endpoints:
    GET /api/v1/activity-logs   own activity; entity activity with entityType+entityId
                                (other users' entries need an audit permission)
    GET /api/v1/audit-logs      tenant audit trail (access rules in activity_service)

Query params (both):
    startDate, endDate, entityType, entityId, orgCode, operationType, skip, limit
    userId (audit only, repeatable; ``me`` pins the caller)
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import page_body, page_params
from crm.middleware.permission_required import current_permissions
from crm.services import activity_service

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")


def _filters() -> dict:
    args = request.args
    return {
        "entity_type": args.get("entityType") or args.get("entity_type"),
        "entity_id": args.get("entityId") or args.get("entity_id"),
        "org_code": args.get("orgCode") or args.get("org_code"),
        "operation_type": args.get("operationType") or args.get("operation_type"),
        "start_date": args.get("startDate") or args.get("start_date"),
        "end_date": args.get("endDate") or args.get("end_date"),
    }


@activity_bp.route("/activity-logs", methods=["GET"])
def activity_logs():
    """The caller's own activity, or the full trail of one entity."""
    skip, limit = page_params()
    filters = _filters()
    user_id = g.jwt_user_id
    if filters["entity_type"] and filters["entity_id"]:
        user_id = activity_service.entity_trail_scope(user_id, current_permissions(), g.jwt_roles)
    items, total = activity_service.list_activity(
        g.tenant_id,
        user_id=user_id,
        skip=skip,
        limit=limit,
        **filters,
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@activity_bp.route("/audit-logs", methods=["GET"])
def audit_logs():
    skip, limit = page_params()
    requested = request.args.getlist("userId") + request.args.getlist("user_id")
    items, total, scope_user = activity_service.list_audit_logs(
        g.tenant_id,
        current_user_id=g.jwt_user_id,
        permissions=current_permissions(),
        roles=g.jwt_roles,
        requested_user_ids=requested,
        skip=skip,
        limit=limit,
        **_filters(),
    )
    body = page_body(items, total, skip, limit)
    body["userId"] = scope_user
    return jsonify(body), 200
