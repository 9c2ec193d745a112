"""
Organizations Blueprint — tenant org unit hierarchy.

Endpoints:
    GET/POST  /api/v1/organizations          ?activeOnly=true
    GET       /api/v1/organizations/tree
    GET/PUT   /api/v1/organizations/<id>
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body
from crm.middleware.permission_required import require_permission, track_activity
from crm.services import organization_service
from crm.utils.helpers import boolean

organizations_bp = Blueprint("organizations", __name__, url_prefix="/api/v1/organizations")


@organizations_bp.route("", methods=["GET"])
@require_permission("crm.organizations.read")
def list_organizations():
    items = organization_service.list_organizations(
        g.tenant_id, active_only=boolean(request.args.get("activeOnly", "false")),
    )
    return jsonify({"items": items, "total": len(items)}), 200


@organizations_bp.route("/tree", methods=["GET"])
@require_permission("crm.organizations.read")
def organization_tree():
    return jsonify({"items": organization_service.get_organization_tree(g.tenant_id)}), 200


@organizations_bp.route("", methods=["POST"])
@track_activity("create", "organization", severity="medium")
@require_permission("crm.organizations.create")
def create_organization():
    return jsonify(organization_service.create_organization(g.tenant_id, json_body())), 201


@organizations_bp.route("/<org_id>", methods=["GET"])
@require_permission("crm.organizations.read")
def get_organization(org_id):
    return jsonify(organization_service.get_organization(g.tenant_id, org_id)), 200


@organizations_bp.route("/<org_id>", methods=["PUT", "PATCH"])
@track_activity("update", "organization", severity="medium")
@require_permission("crm.organizations.update")
def update_organization(org_id):
    return jsonify(organization_service.update_organization(g.tenant_id, org_id, json_body())), 200
