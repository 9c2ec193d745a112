"""
Accounts Blueprint.

Endpoints:
    GET/POST        /api/v1/accounts
    GET/PUT/DELETE  /api/v1/accounts/<id>

List filters: status, industry, search. Pagination: skip/limit.
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import account_service

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/v1/accounts")


@accounts_bp.route("", methods=["GET"])
@require_permission("crm.accounts.read")
def list_accounts():
    skip, limit = page_params()
    items, total = account_service.list_accounts(
        g.tenant_id,
        skip=skip,
        limit=limit,
        status=request.args.get("status"),
        industry=request.args.get("industry"),
        search=request.args.get("search") or request.args.get("q"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@accounts_bp.route("", methods=["POST"])
@track_activity("create", "account")
@require_permission("crm.accounts.create")
@require_credits("crm.accounts.create")
def create_account():
    account = account_service.create_account(g.tenant_id, json_body(), g.jwt_user_id)
    return jsonify(account), 201


@accounts_bp.route("/<account_id>", methods=["GET"])
@require_permission("crm.accounts.read")
def get_account(account_id):
    return jsonify(account_service.get_account(g.tenant_id, account_id)), 200


@accounts_bp.route("/<account_id>", methods=["PUT", "PATCH"])
@track_activity("update", "account")
@require_permission("crm.accounts.update")
@require_credits("crm.accounts.update")
def update_account(account_id):
    account = account_service.update_account(g.tenant_id, account_id, json_body(), g.jwt_user_id)
    return jsonify(account), 200


@accounts_bp.route("/<account_id>", methods=["DELETE"])
@track_activity("delete", "account", severity="medium")
@require_permission("crm.accounts.delete")
def delete_account(account_id):
    account_service.delete_account(g.tenant_id, account_id)
    return jsonify({"message": "Account deleted", "id": str(account_id)}), 200
