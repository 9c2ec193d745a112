"""
Contacts Blueprint.

Endpoints:
    GET/POST        /api/v1/contacts
    GET/PUT/DELETE  /api/v1/contacts/<id>

List filters: accountId, status, search. Pagination: skip/limit.
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import contact_service

contacts_bp = Blueprint("contacts", __name__, url_prefix="/api/v1/contacts")


@contacts_bp.route("", methods=["GET"])
@require_permission("crm.contacts.read")
def list_contacts():
    skip, limit = page_params()
    items, total = contact_service.list_contacts(
        g.tenant_id,
        skip=skip,
        limit=limit,
        account_id=request.args.get("accountId") or request.args.get("account_id"),
        status=request.args.get("status"),
        search=request.args.get("search") or request.args.get("q"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@contacts_bp.route("", methods=["POST"])
@track_activity("create", "contact")
@require_permission("crm.contacts.create")
@require_credits("crm.contacts.create")
def create_contact():
    contact = contact_service.create_contact(g.tenant_id, json_body(), g.jwt_user_id)
    return jsonify(contact), 201


@contacts_bp.route("/<contact_id>", methods=["GET"])
@require_permission("crm.contacts.read")
def get_contact(contact_id):
    return jsonify(contact_service.get_contact(g.tenant_id, contact_id)), 200


@contacts_bp.route("/<contact_id>", methods=["PUT", "PATCH"])
@track_activity("update", "contact")
@require_permission("crm.contacts.update")
@require_credits("crm.contacts.update")
def update_contact(contact_id):
    contact = contact_service.update_contact(g.tenant_id, contact_id, json_body(), g.jwt_user_id)
    return jsonify(contact), 200


@contacts_bp.route("/<contact_id>", methods=["DELETE"])
@track_activity("delete", "contact", severity="medium")
@require_permission("crm.contacts.delete")
def delete_contact(contact_id):
    contact_service.delete_contact(g.tenant_id, contact_id)
    return jsonify({"message": "Contact deleted", "id": str(contact_id)}), 200
