"""
Credits Blueprint — tenant credit balance and ledger.

Endpoints:
    GET   /api/v1/credits/balance
    POST  /api/v1/credits/allocate       { "amount": 100, "description": "..." }
    GET   /api/v1/credits/transactions
"""

from flask import Blueprint, g, jsonify

from crm.blueprints import json_body, page_body, page_params
from crm.core.exceptions import ValidationError
from crm.middleware.permission_required import require_permission, track_activity
from crm.services import credit_service
from crm.utils.helpers import to_float

credits_bp = Blueprint("credits", __name__, url_prefix="/api/v1/credits")


@credits_bp.route("/balance", methods=["GET"])
@require_permission("crm.credits.read")
def balance():
    return jsonify(credit_service.get_balance(g.tenant_id).to_dict()), 200


@credits_bp.route("/allocate", methods=["POST"])
@track_activity("update", "credits", severity="high")
@require_permission("crm.credits.allocate")
def allocate():
    data = json_body()
    amount = to_float(data.get("amount"), default=None)
    if amount is None:
        raise ValidationError("amount is required", details={"amount": "required"})
    row = credit_service.allocate_credits(
        g.tenant_id, amount, user_id=g.jwt_user_id, description=data.get("description"),
    )
    return jsonify(row.to_dict()), 200


@credits_bp.route("/transactions", methods=["GET"])
@require_permission("crm.credits.read")
def transactions():
    skip, limit = page_params()
    items, total = credit_service.list_transactions(g.tenant_id, skip=skip, limit=limit)
    return jsonify(page_body(items, total, skip, limit)), 200
