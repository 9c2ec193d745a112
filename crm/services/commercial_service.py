"""
Commercial Document Service — quotations, sales orders, invoices.

Totals are never taken from the client: ``subtotal``, ``gstTotal``,
``total`` (and for invoices ``totalDue``/``balance``) are recomputed from
the line items by the model's save hook. Any such keys in the payload are
ignored. Negative quantities, prices, GST rates, freight or discounts,
and a negative resulting total, are rejected with a 400.

Functions:
    Quotations:    create_quotation, list_quotations, get_quotation,
                   update_quotation, delete_quotation
    Sales orders:  create_sales_order, list_sales_orders, get_sales_order,
                   update_sales_order, delete_sales_order
    Invoices:      create_invoice, list_invoices, get_invoice,
                   update_invoice, delete_invoice, record_payment

Numbers (QT-/SO-/INV-) are generated when the payload omits them.
"""

import logging

from sqlalchemy import or_, select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.commercial import (
    INVOICE_STATUSES,
    QUOTATION_STATUSES,
    SALES_ORDER_STATUSES,
    SHIPPING_METHODS,
    Invoice,
    Quotation,
    SalesOrder,
)
from crm.models.sales import Account, Contact, Opportunity
from crm.services.code_generator import (
    generate_invoice_number,
    generate_order_number,
    generate_quotation_number,
)
from crm.utils.helpers import (
    apply_fields,
    db_commit,
    get_for_tenant,
    has_any,
    json_dict,
    number,
    paginate_select,
    parse_date,
    pick,
    require_fields,
    resolve_ref,
    text,
    to_float,
    utcnow,
)

logger = logging.getLogger(__name__)


def _items(value):
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("items must be a list", details={"items": "invalid"})
    return [i for i in value if isinstance(i, dict)]


_COMMON_FIELDS = {
    "items": (("items",), _items),
    "currency": (("currency", "quoteCurrency", "quote_currency"), text(10)),
    "notes": (("notes",), text()),
}

QUOTATION_FIELDS = {
    **_COMMON_FIELDS,
    "quotation_number": (("quotationNumber", "quotation_number"), text(50)),
    "oem": (("oem",), text(100)),
    "issue_date": (("issueDate", "issue_date"), parse_date),
    "valid_until": (("validUntil", "valid_until"), parse_date),
    "currency_rate": (("currencyRate", "currency_rate"), number),
    "terms": (("terms",), json_dict),
    "renewal_term": (("renewalTerm", "renewal_term"), text(100)),
}

SALES_ORDER_FIELDS = {
    **_COMMON_FIELDS,
    "order_number": (("orderNumber", "order_number"), text(50)),
    "oem": (("oem",), text(100)),
    "order_date": (("orderDate", "order_date"), parse_date),
    "expected_delivery_date": (("expectedDeliveryDate", "expected_delivery_date"), parse_date),
    "shipping_method": (("shippingMethod", "shipping_method"), text(30)),
    "freight_terms": (("freightTerms", "freight_terms"), text(200)),
    "freight_charges": (("freightCharges", "freight_charges"), number),
    "billing_address": (("billingAddress", "billing_address"), json_dict),
    "shipping_address": (("shippingAddress", "shipping_address"), json_dict),
    "terms": (("terms",), json_dict),
}

INVOICE_FIELDS = {
    **_COMMON_FIELDS,
    "invoice_number": (("invoiceNumber", "invoice_number"), text(50)),
    "issue_date": (("issueDate", "issue_date"), parse_date),
    "due_date": (("dueDate", "due_date"), parse_date),
    "freight_charges": (("freightCharges", "freight_charges"), number),
    "discounts": (("discounts",), number),
    "billing_address": (("billingAddress", "billing_address"), json_dict),
}

# Payload key aliases → (attribute, model, label) for tenant-checked references
_REFS = {
    "account_id": (("accountId", "account_id"), Account, "Account"),
    "contact_id": (("contactId", "contact_id"), Contact, "Contact"),
    "opportunity_id": (("opportunityId", "opportunity_id"), Opportunity, "Opportunity"),
    "quotation_id": (("quotationId", "quotation_id"), Quotation, "Quotation"),
    "sales_order_id": (("salesOrderId", "sales_order_id"), SalesOrder, "Sales order"),
}


def _apply_refs(doc, tenant_id, data, attrs):
    for attr in attrs:
        names, model, label = _REFS[attr]
        if has_any(data, *names):
            setattr(doc, attr, resolve_ref(model, tenant_id, pick(data, *names), label))


def _check_status(data, allowed):
    status = pick(data, "status")
    if status is not None and status not in allowed:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(allowed))}", details={"status": status},
        )
    return status


def _check_amounts(doc):
    doc.recalculate()
    errors = doc.negative_amounts()
    if errors:
        raise ValidationError("Amounts cannot be negative", details=errors)


def _save(doc, resource, number_attr):
    db_commit(resource, number_attr, getattr(doc, number_attr))


# ── Quotations ───────────────────────────────────────────────────────────────


def _check_quotation_dates(quotation):
    if quotation.issue_date and quotation.valid_until and quotation.valid_until < quotation.issue_date:
        raise ValidationError("validUntil cannot be before issueDate", details={"validUntil": "invalid"})


def create_quotation(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create a quotation.

    Required: oem, issueDate, validUntil. quotationNumber is generated
    when absent.

    Raises:
        ValidationError: missing/invalid fields or foreign references.
        ConflictError: quotationNumber already used in this tenant.
    """
    require_fields(data, "oem", ("issueDate", "issue_date"), ("validUntil", "valid_until"))
    status = _check_status(data, QUOTATION_STATUSES) or "draft"

    quotation = Quotation(tenant_id=tenant_id, created_by=user_id, items=[], currency="INR", currency_rate=1.0)
    apply_fields(quotation, data, QUOTATION_FIELDS)
    if quotation.issue_date is None or quotation.valid_until is None:
        raise ValidationError("issueDate and validUntil must be ISO dates",
                              details={"issueDate": "invalid", "validUntil": "invalid"})
    _check_quotation_dates(quotation)
    quotation.status = status
    _check_amounts(quotation)
    quotation.quotation_number = quotation.quotation_number or generate_quotation_number(tenant_id)
    _apply_refs(quotation, tenant_id, data, ("account_id", "contact_id", "opportunity_id"))

    db.session.add(quotation)
    _save(quotation, "Quotation", "quotation_number")
    logger.info(
        "Quotation created",
        extra={"tenant_id": tenant_id, "quotation_id": quotation.id,
               "number": quotation.quotation_number, "total": quotation.total},
    )
    return quotation.to_dict()


def list_quotations(tenant_id: str, *, skip: int = 0, limit: int = 50,
                    status=None, account_id=None, search=None) -> tuple[list[dict], int]:
    stmt = select(Quotation).where(Quotation.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Quotation.status == status)
    if account_id:
        try:
            stmt = stmt.where(Quotation.account_id == int(account_id))
        except (TypeError, ValueError):
            return [], 0
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(Quotation.quotation_number.ilike(like), Quotation.oem.ilike(like)))
    rows, total = paginate_select(stmt, skip, limit, Quotation.created_at.desc(), Quotation.id.desc())
    return [q.to_dict() for q in rows], total


def get_quotation(tenant_id: str, quotation_id) -> dict:
    return get_for_tenant(Quotation, tenant_id, quotation_id, "Quotation").to_dict()


def update_quotation(tenant_id: str, quotation_id, data: dict, user_id: str) -> dict:
    quotation = get_for_tenant(Quotation, tenant_id, quotation_id, "Quotation")
    status = _check_status(data, QUOTATION_STATUSES)
    changed = apply_fields(quotation, data, QUOTATION_FIELDS)
    for attr in ("quotation_number", "oem", "issue_date", "valid_until"):
        if getattr(quotation, attr) is None:
            raise ValidationError(f"{attr} cannot be empty", details={attr: "required"})
    _check_quotation_dates(quotation)
    if status:
        quotation.status = status
    _apply_refs(quotation, tenant_id, data, ("account_id", "contact_id", "opportunity_id"))
    quotation.updated_by = user_id
    _check_amounts(quotation)
    _save(quotation, "Quotation", "quotation_number")
    logger.info(
        "Quotation updated",
        extra={"tenant_id": tenant_id, "quotation_id": quotation.id, "fields": changed},
    )
    return quotation.to_dict()


def delete_quotation(tenant_id: str, quotation_id) -> None:
    quotation = get_for_tenant(Quotation, tenant_id, quotation_id, "Quotation")
    db.session.delete(quotation)
    db_commit("Quotation")
    logger.info("Quotation deleted", extra={"tenant_id": tenant_id, "quotation_id": quotation_id})


# ── Sales orders ─────────────────────────────────────────────────────────────


def _check_shipping(order):
    if order.shipping_method and order.shipping_method not in SHIPPING_METHODS:
        raise ValidationError(
            f"shippingMethod must be one of: {', '.join(sorted(SHIPPING_METHODS))}",
            details={"shippingMethod": order.shipping_method},
        )


def create_sales_order(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create a sales order; total = subtotal + gstTotal + freightCharges."""
    status = _check_status(data, SALES_ORDER_STATUSES) or "draft"
    order = SalesOrder(
        tenant_id=tenant_id, created_by=user_id, items=[], currency="INR",
        freight_charges=0.0, shipping_method="Courier",
    )
    apply_fields(order, data, SALES_ORDER_FIELDS)
    _check_shipping(order)
    order.status = status
    _check_amounts(order)
    order.order_number = order.order_number or generate_order_number(tenant_id)
    _apply_refs(order, tenant_id, data, ("account_id", "contact_id", "opportunity_id", "quotation_id"))

    db.session.add(order)
    _save(order, "Sales order", "order_number")
    logger.info(
        "Sales order created",
        extra={"tenant_id": tenant_id, "sales_order_id": order.id,
               "number": order.order_number, "total": order.total},
    )
    return order.to_dict()


def list_sales_orders(tenant_id: str, *, skip: int = 0, limit: int = 50,
                      status=None, account_id=None) -> tuple[list[dict], int]:
    stmt = select(SalesOrder).where(SalesOrder.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(SalesOrder.status == status)
    if account_id:
        try:
            stmt = stmt.where(SalesOrder.account_id == int(account_id))
        except (TypeError, ValueError):
            return [], 0
    rows, total = paginate_select(stmt, skip, limit, SalesOrder.created_at.desc(), SalesOrder.id.desc())
    return [o.to_dict() for o in rows], total


def get_sales_order(tenant_id: str, order_id) -> dict:
    return get_for_tenant(SalesOrder, tenant_id, order_id, "Sales order").to_dict()


def update_sales_order(tenant_id: str, order_id, data: dict, user_id: str) -> dict:
    order = get_for_tenant(SalesOrder, tenant_id, order_id, "Sales order")
    status = _check_status(data, SALES_ORDER_STATUSES)
    changed = apply_fields(order, data, SALES_ORDER_FIELDS)
    if not order.order_number:
        raise ValidationError("orderNumber cannot be empty", details={"orderNumber": "required"})
    _check_shipping(order)
    if status:
        order.status = status
    _apply_refs(order, tenant_id, data, ("account_id", "contact_id", "opportunity_id", "quotation_id"))
    order.updated_by = user_id
    _check_amounts(order)
    _save(order, "Sales order", "order_number")
    logger.info(
        "Sales order updated",
        extra={"tenant_id": tenant_id, "sales_order_id": order.id, "fields": changed},
    )
    return order.to_dict()


def delete_sales_order(tenant_id: str, order_id) -> None:
    order = get_for_tenant(SalesOrder, tenant_id, order_id, "Sales order")
    db.session.delete(order)
    db_commit("Sales order")
    logger.info("Sales order deleted", extra={"tenant_id": tenant_id, "sales_order_id": order_id})


# ── Invoices ─────────────────────────────────────────────────────────────────


def create_invoice(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create an invoice.

    total = subtotal + gstTotal + freightCharges − discounts;
    totalDue = total; balance = total − amountPaid (0 on creation).
    """
    status = _check_status(data, INVOICE_STATUSES) or "draft"
    invoice = Invoice(
        tenant_id=tenant_id, created_by=user_id, items=[], currency="INR",
        freight_charges=0.0, discounts=0.0, amount_paid=0.0, payment_history=[],
    )
    apply_fields(invoice, data, INVOICE_FIELDS)
    invoice.status = status
    _check_amounts(invoice)
    invoice.invoice_number = invoice.invoice_number or generate_invoice_number(tenant_id)
    _apply_refs(invoice, tenant_id, data, ("account_id", "sales_order_id"))

    db.session.add(invoice)
    _save(invoice, "Invoice", "invoice_number")
    logger.info(
        "Invoice created",
        extra={"tenant_id": tenant_id, "invoice_id": invoice.id,
               "number": invoice.invoice_number, "total": invoice.total},
    )
    return invoice.to_dict()


def list_invoices(tenant_id: str, *, skip: int = 0, limit: int = 50,
                  status=None, account_id=None) -> tuple[list[dict], int]:
    stmt = select(Invoice).where(Invoice.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Invoice.status == status)
    if account_id:
        try:
            stmt = stmt.where(Invoice.account_id == int(account_id))
        except (TypeError, ValueError):
            return [], 0
    rows, total = paginate_select(stmt, skip, limit, Invoice.created_at.desc(), Invoice.id.desc())
    return [i.to_dict() for i in rows], total


def get_invoice(tenant_id: str, invoice_id) -> dict:
    return get_for_tenant(Invoice, tenant_id, invoice_id, "Invoice").to_dict()


def update_invoice(tenant_id: str, invoice_id, data: dict, user_id: str) -> dict:
    invoice = get_for_tenant(Invoice, tenant_id, invoice_id, "Invoice")
    status = _check_status(data, INVOICE_STATUSES)
    changed = apply_fields(invoice, data, INVOICE_FIELDS)
    if not invoice.invoice_number:
        raise ValidationError("invoiceNumber cannot be empty", details={"invoiceNumber": "required"})
    if status:
        invoice.status = status
    _apply_refs(invoice, tenant_id, data, ("account_id", "sales_order_id"))
    invoice.updated_by = user_id
    _check_amounts(invoice)
    _save(invoice, "Invoice", "invoice_number")
    logger.info(
        "Invoice updated",
        extra={"tenant_id": tenant_id, "invoice_id": invoice.id, "fields": changed},
    )
    return invoice.to_dict()


def delete_invoice(tenant_id: str, invoice_id) -> None:
    invoice = get_for_tenant(Invoice, tenant_id, invoice_id, "Invoice")
    db.session.delete(invoice)
    db_commit("Invoice")
    logger.info("Invoice deleted", extra={"tenant_id": tenant_id, "invoice_id": invoice_id})


def record_payment(tenant_id: str, invoice_id, data: dict, user_id: str) -> dict:
    """Apply a payment to an invoice.

    Appends to payment_history, raises amountPaid and recomputes balance.
    An invoice whose balance reaches zero is marked ``paid``.

    Raises:
        ValidationError: amount not positive, exceeds the open balance, or
            the invoice is cancelled.
    """
    invoice = get_for_tenant(Invoice, tenant_id, invoice_id, "Invoice")
    if invoice.status == "cancelled":
        raise ValidationError("Cannot record a payment on a cancelled invoice")
    amount = to_float(pick(data, "amount"))
    if amount <= 0:
        raise ValidationError("amount must be greater than zero", details={"amount": "invalid"})

    invoice.recalculate()
    if amount > round(invoice.balance, 2) + 0.005:
        raise ValidationError(
            "amount exceeds the outstanding balance",
            details={"amount": amount, "balance": invoice.balance},
        )

    paid_on = parse_date(pick(data, "paymentDate", "payment_date", "date"))
    history = list(invoice.payment_history or [])
    history.append({
        "amount": round(amount, 2),
        "paymentDate": paid_on.isoformat() if paid_on else utcnow().date().isoformat(),
        "method": pick(data, "method", "paymentMethod", "payment_method") or "",
        "reference": pick(data, "reference") or "",
        "recordedBy": user_id,
        "recordedAt": utcnow().isoformat(),
    })
    invoice.payment_history = history
    invoice.amount_paid = round(to_float(invoice.amount_paid) + amount, 2)
    invoice.recalculate()
    if invoice.balance <= 0:
        invoice.status = "paid"
    elif invoice.status == "draft":
        invoice.status = "sent"
    invoice.updated_by = user_id
    db_commit("Invoice")
    logger.info(
        "Invoice payment recorded",
        extra={"tenant_id": tenant_id, "invoice_id": invoice.id,
               "amount": amount, "balance": invoice.balance},
    )
    return invoice.to_dict()
