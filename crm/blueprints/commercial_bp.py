"""
Commercial documents Blueprint — quotations, sales orders and invoices.

Endpoints:
    GET/POST        /api/v1/quotations
    GET/PUT/DELETE  /api/v1/quotations/<id>

    GET/POST        /api/v1/sales-orders
    GET/PUT/DELETE  /api/v1/sales-orders/<id>

    GET/POST        /api/v1/invoices
    GET/PUT/DELETE  /api/v1/invoices/<id>
    POST            /api/v1/invoices/<id>/payments

Totals (subtotal, gstTotal, total, balance) are always recomputed from the
line items; totals sent by the client are ignored.
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import commercial_service

quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/v1/quotations")
sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/v1/sales-orders")
invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/v1/invoices")


def _account_filter():
    return request.args.get("accountId") or request.args.get("account_id")


# ═══════════════════════════════════════════════════════════════
# Quotations
# ═══════════════════════════════════════════════════════════════


@quotations_bp.route("", methods=["GET"])
@require_permission("crm.quotations.read")
def list_quotations():
    skip, limit = page_params()
    items, total = commercial_service.list_quotations(
        g.tenant_id,
        skip=skip,
        limit=limit,
        status=request.args.get("status"),
        account_id=_account_filter(),
        search=request.args.get("search") or request.args.get("q"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@quotations_bp.route("", methods=["POST"])
@track_activity("create", "quotation")
@require_permission("crm.quotations.create")
@require_credits("crm.quotations.create")
def create_quotation():
    return jsonify(commercial_service.create_quotation(g.tenant_id, json_body(), g.jwt_user_id)), 201


@quotations_bp.route("/<quotation_id>", methods=["GET"])
@require_permission("crm.quotations.read")
def get_quotation(quotation_id):
    return jsonify(commercial_service.get_quotation(g.tenant_id, quotation_id)), 200


@quotations_bp.route("/<quotation_id>", methods=["PUT", "PATCH"])
@track_activity("update", "quotation")
@require_permission("crm.quotations.update")
@require_credits("crm.quotations.update")
def update_quotation(quotation_id):
    quotation = commercial_service.update_quotation(g.tenant_id, quotation_id, json_body(), g.jwt_user_id)
    return jsonify(quotation), 200


@quotations_bp.route("/<quotation_id>", methods=["DELETE"])
@track_activity("delete", "quotation", severity="medium")
@require_permission("crm.quotations.delete")
def delete_quotation(quotation_id):
    commercial_service.delete_quotation(g.tenant_id, quotation_id)
    return jsonify({"message": "Quotation deleted", "id": str(quotation_id)}), 200


# ═══════════════════════════════════════════════════════════════
# Sales orders
# ═══════════════════════════════════════════════════════════════


@sales_orders_bp.route("", methods=["GET"])
@require_permission("crm.sales_orders.read")
def list_sales_orders():
    skip, limit = page_params()
    items, total = commercial_service.list_sales_orders(
        g.tenant_id,
        skip=skip,
        limit=limit,
        status=request.args.get("status"),
        account_id=_account_filter(),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@sales_orders_bp.route("", methods=["POST"])
@track_activity("create", "sales_order")
@require_permission("crm.sales_orders.create")
@require_credits("crm.sales_orders.create")
def create_sales_order():
    return jsonify(commercial_service.create_sales_order(g.tenant_id, json_body(), g.jwt_user_id)), 201


@sales_orders_bp.route("/<order_id>", methods=["GET"])
@require_permission("crm.sales_orders.read")
def get_sales_order(order_id):
    return jsonify(commercial_service.get_sales_order(g.tenant_id, order_id)), 200


@sales_orders_bp.route("/<order_id>", methods=["PUT", "PATCH"])
@track_activity("update", "sales_order")
@require_permission("crm.sales_orders.update")
@require_credits("crm.sales_orders.update")
def update_sales_order(order_id):
    order = commercial_service.update_sales_order(g.tenant_id, order_id, json_body(), g.jwt_user_id)
    return jsonify(order), 200


@sales_orders_bp.route("/<order_id>", methods=["DELETE"])
@track_activity("delete", "sales_order", severity="medium")
@require_permission("crm.sales_orders.delete")
def delete_sales_order(order_id):
    commercial_service.delete_sales_order(g.tenant_id, order_id)
    return jsonify({"message": "Sales order deleted", "id": str(order_id)}), 200


# ═══════════════════════════════════════════════════════════════
# Invoices
# ═══════════════════════════════════════════════════════════════


@invoices_bp.route("", methods=["GET"])
@require_permission("crm.invoices.read")
def list_invoices():
    skip, limit = page_params()
    items, total = commercial_service.list_invoices(
        g.tenant_id,
        skip=skip,
        limit=limit,
        status=request.args.get("status"),
        account_id=_account_filter(),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@invoices_bp.route("", methods=["POST"])
@track_activity("create", "invoice")
@require_permission("crm.invoices.create")
@require_credits("crm.invoices.create")
def create_invoice():
    return jsonify(commercial_service.create_invoice(g.tenant_id, json_body(), g.jwt_user_id)), 201


@invoices_bp.route("/<invoice_id>", methods=["GET"])
@require_permission("crm.invoices.read")
def get_invoice(invoice_id):
    return jsonify(commercial_service.get_invoice(g.tenant_id, invoice_id)), 200


@invoices_bp.route("/<invoice_id>", methods=["PUT", "PATCH"])
@track_activity("update", "invoice")
@require_permission("crm.invoices.update")
@require_credits("crm.invoices.update")
def update_invoice(invoice_id):
    invoice = commercial_service.update_invoice(g.tenant_id, invoice_id, json_body(), g.jwt_user_id)
    return jsonify(invoice), 200


@invoices_bp.route("/<invoice_id>", methods=["DELETE"])
@track_activity("delete", "invoice", severity="medium")
@require_permission("crm.invoices.delete")
def delete_invoice(invoice_id):
    commercial_service.delete_invoice(g.tenant_id, invoice_id)
    return jsonify({"message": "Invoice deleted", "id": str(invoice_id)}), 200


@invoices_bp.route("/<invoice_id>/payments", methods=["POST"])
@track_activity("payment", "invoice", severity="medium")
@require_permission("crm.invoices.update")
def record_payment(invoice_id):
    invoice = commercial_service.record_payment(g.tenant_id, invoice_id, json_body(), g.jwt_user_id)
    return jsonify(invoice), 201
