"""
Opportunities Blueprint.

Endpoints:
    GET/POST        /api/v1/opportunities
    GET/PUT/DELETE  /api/v1/opportunities/<id>

List filters: stage, status, accountId.
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import opportunity_service

opportunities_bp = Blueprint("opportunities", __name__, url_prefix="/api/v1/opportunities")


@opportunities_bp.route("", methods=["GET"])
@require_permission("crm.opportunities.read")
def list_opportunities():
    skip, limit = page_params()
    items, total = opportunity_service.list_opportunities(
        g.tenant_id,
        skip=skip,
        limit=limit,
        stage=request.args.get("stage"),
        status=request.args.get("status"),
        account_id=request.args.get("accountId") or request.args.get("account_id"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@opportunities_bp.route("", methods=["POST"])
@track_activity("create", "opportunity")
@require_permission("crm.opportunities.create")
@require_credits("crm.opportunities.create")
def create_opportunity():
    opp = opportunity_service.create_opportunity(g.tenant_id, json_body(), g.jwt_user_id)
    return jsonify(opp), 201


@opportunities_bp.route("/<opportunity_id>", methods=["GET"])
@require_permission("crm.opportunities.read")
def get_opportunity(opportunity_id):
    return jsonify(opportunity_service.get_opportunity(g.tenant_id, opportunity_id)), 200


@opportunities_bp.route("/<opportunity_id>", methods=["PUT", "PATCH"])
@track_activity("update", "opportunity")
@require_permission("crm.opportunities.update")
@require_credits("crm.opportunities.update")
def update_opportunity(opportunity_id):
    opp = opportunity_service.update_opportunity(g.tenant_id, opportunity_id, json_body(), g.jwt_user_id)
    return jsonify(opp), 200


@opportunities_bp.route("/<opportunity_id>", methods=["DELETE"])
@track_activity("delete", "opportunity", severity="medium")
@require_permission("crm.opportunities.delete")
def delete_opportunity(opportunity_id):
    opportunity_service.delete_opportunity(g.tenant_id, opportunity_id)
    return jsonify({"message": "Opportunity deleted", "id": str(opportunity_id)}), 200
