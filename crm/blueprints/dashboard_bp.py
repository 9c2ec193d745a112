"""
Dashboard Blueprint.

Endpoints:
    GET /api/v1/dashboard/summary   pipeline + contact folds over the tenant's data
"""

from flask import Blueprint, g, jsonify

from crm.middleware.permission_required import require_permission
from crm.services import dashboard_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")


@dashboard_bp.route("/summary", methods=["GET"])
@require_permission("crm.opportunities.read")
def summary():
    return jsonify(dashboard_service.get_dashboard_summary(g.tenant_id)), 200
