"""
Leads Blueprint.

Endpoints:
    GET/POST        /api/v1/leads
    GET/PUT/DELETE  /api/v1/leads/<id>
    POST            /api/v1/leads/<id>/convert   → Account + Contact (+ Opportunity)
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import lead_service

leads_bp = Blueprint("leads", __name__, url_prefix="/api/v1/leads")


@leads_bp.route("", methods=["GET"])
@require_permission("crm.leads.read")
def list_leads():
    skip, limit = page_params()
    items, total = lead_service.list_leads(
        g.tenant_id,
        skip=skip,
        limit=limit,
        status=request.args.get("status"),
        source=request.args.get("source"),
        search=request.args.get("search") or request.args.get("q"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@leads_bp.route("", methods=["POST"])
@track_activity("create", "lead")
@require_permission("crm.leads.create")
@require_credits("crm.leads.create")
def create_lead():
    lead = lead_service.create_lead(g.tenant_id, json_body(), g.jwt_user_id)
    return jsonify(lead), 201


@leads_bp.route("/<lead_id>", methods=["GET"])
@require_permission("crm.leads.read")
def get_lead(lead_id):
    return jsonify(lead_service.get_lead(g.tenant_id, lead_id)), 200


@leads_bp.route("/<lead_id>", methods=["PUT", "PATCH"])
@track_activity("update", "lead")
@require_permission("crm.leads.update")
@require_credits("crm.leads.update")
def update_lead(lead_id):
    lead = lead_service.update_lead(g.tenant_id, lead_id, json_body(), g.jwt_user_id)
    return jsonify(lead), 200


@leads_bp.route("/<lead_id>", methods=["DELETE"])
@track_activity("delete", "lead", severity="medium")
@require_permission("crm.leads.delete")
def delete_lead(lead_id):
    lead_service.delete_lead(g.tenant_id, lead_id)
    return jsonify({"message": "Lead deleted", "id": str(lead_id)}), 200


@leads_bp.route("/<lead_id>/convert", methods=["POST"])
@track_activity("convert", "lead", severity="medium")
@require_permission("crm.leads.convert")
@require_credits("crm.leads.convert")
def convert_lead(lead_id):
    result = lead_service.convert_lead(g.tenant_id, lead_id, json_body(), g.jwt_user_id)
    return jsonify(result), 200
