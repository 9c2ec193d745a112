"""
Commercial documents — quotations, sales orders, invoices.

All three carry a JSON list of line items and derived money fields.
``recalculate()`` rebuilds every derived field from the items; a mapper
event runs it before each INSERT and UPDATE, so client-supplied totals
never reach the database.

Line item (stored form):
    {"description", "sku", "quantity", "unitPrice", "gst",
     "amount", "gstAmount", "total"}

``gst`` is a percentage of the line amount for every document type.
"""

from datetime import date

from sqlalchemy import event

from crm.models import db
from crm.models.base import TenantModel
from crm.utils.helpers import to_float

QUOTATION_STATUSES = {"draft", "sent", "accepted", "rejected", "expired"}
SALES_ORDER_STATUSES = {"draft", "pending", "approved", "completed", "cancelled"}
INVOICE_STATUSES = {"draft", "sent", "paid", "overdue", "cancelled"}
SHIPPING_METHODS = {"Courier", "Self Pickup", "Logistics Partner"}

DEFAULT_TERMS = {
    "prices": "Doesn't include any octroi, implementation or training.",
    "boq": "Standard BOQ terms apply.",
    "paymentTerms": "Within 30 days after submission of invoice.",
}


def _money(value) -> float:
    return round(value + 0.0, 2)


def normalize_item(raw: dict) -> dict:
    """Coerce one incoming line item and compute its amounts.

    Accepts camelCase or snake_case keys. Non-numeric quantities and
    prices count as zero.
    """
    quantity = to_float(raw.get("quantity", raw.get("qty")))
    unit_price = to_float(raw.get("unitPrice", raw.get("unit_price")))
    gst = to_float(raw.get("gst", raw.get("gst_rate")))
    amount = quantity * unit_price
    gst_amount = amount * gst / 100
    return {
        "description": raw.get("description") or raw.get("productName") or "",
        "sku": raw.get("sku") or "",
        "quantity": quantity,
        "unitPrice": unit_price,
        "gst": gst,
        "amount": _money(amount),
        "gstAmount": _money(gst_amount),
        "total": _money(amount + gst_amount),
    }


def compute_totals(items) -> tuple[list[dict], float, float]:
    """Return (normalized_items, subtotal, gst_total) for raw items."""
    normalized = [normalize_item(i) for i in (items or []) if isinstance(i, dict)]
    subtotal = sum(i["quantity"] * i["unitPrice"] for i in normalized)
    gst_total = sum(i["quantity"] * i["unitPrice"] * i["gst"] / 100 for i in normalized)
    return normalized, _money(subtotal), _money(gst_total)


def _iso(value):
    return value.isoformat() if value else None


class CommercialDocument(TenantModel):
    """Abstract base: items + subtotal/gst_total/total."""
    __abstract__ = True

    items = db.Column(db.JSON, default=list, nullable=False)
    subtotal = db.Column(db.Float, default=0.0, nullable=False)
    gst_total = db.Column(db.Float, default=0.0, nullable=False)
    total = db.Column(db.Float, default=0.0, nullable=False)
    currency = db.Column(db.String(10), default="INR")
    notes = db.Column(db.Text)
    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100))

    # attribute → payload key of money inputs that may not go below zero
    NON_NEGATIVE = {}

    def _extra_charges(self) -> float:
        return 0.0

    def negative_amounts(self) -> dict:
        """Field → "invalid" for every negative money input or total.

        Expects ``recalculate()`` to have run.
        """
        errors = {}
        for index, item in enumerate(self.items or []):
            for key in ("quantity", "unitPrice", "gst"):
                if item[key] < 0:
                    errors[f"items[{index}].{key}"] = "invalid"
        for attr, key in self.NON_NEGATIVE.items():
            if to_float(getattr(self, attr)) < 0:
                errors[key] = "invalid"
        if (self.total or 0.0) < 0:
            errors["total"] = "invalid"
        return errors

    def recalculate(self):
        items, subtotal, gst_total = compute_totals(self.items)
        self.items = items
        self.subtotal = subtotal
        self.gst_total = gst_total
        self.total = _money(subtotal + gst_total + self._extra_charges())

    def _money_dict(self) -> dict:
        return {
            "items": list(self.items or []),
            "subtotal": self.subtotal or 0.0,
            "gstTotal": self.gst_total or 0.0,
            "total": self.total or 0.0,
            "currency": self.currency or "INR",
        }


@event.listens_for(CommercialDocument, "before_insert", propagate=True)
@event.listens_for(CommercialDocument, "before_update", propagate=True)
def _recalculate_before_save(mapper, connection, target):
    target.recalculate()


class Quotation(CommercialDocument):
    __tablename__ = "quotations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "quotation_number", name="uq_quotation_tenant_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    quotation_number = db.Column(db.String(50), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    opportunity_id = db.Column(db.Integer, db.ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True)
    oem = db.Column(db.String(100), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    valid_until = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")
    currency_rate = db.Column(db.Float, default=1.0)
    terms = db.Column(db.JSON, default=dict)
    renewal_term = db.Column(db.String(100))

    account = db.relationship("Account")
    contact = db.relationship("Contact")

    @property
    def is_expired(self) -> bool:
        if self.status == "accepted" or self.valid_until is None:
            return False
        return self.valid_until < date.today()

    @property
    def days_remaining(self) -> int:
        if self.valid_until is None:
            return 0
        return max((self.valid_until - date.today()).days, 0)

    def to_dict(self):
        return {
            "id": str(self.id),
            "quotationNumber": self.quotation_number,
            "accountId": str(self.account_id) if self.account_id else None,
            "accountName": self.account.company_name if self.account else None,
            "contactId": str(self.contact_id) if self.contact_id else None,
            "opportunityId": str(self.opportunity_id) if self.opportunity_id else None,
            "oem": self.oem,
            "issueDate": _iso(self.issue_date),
            "validUntil": _iso(self.valid_until),
            "status": self.status,
            "quoteCurrency": self.currency or "INR",
            "currencyRate": self.currency_rate or 1.0,
            "terms": {**DEFAULT_TERMS, **(self.terms or {})},
            "renewalTerm": self.renewal_term or "",
            "notes": self.notes or "",
            "isExpired": self.is_expired,
            "daysRemaining": self.days_remaining,
            **self._money_dict(),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class SalesOrder(CommercialDocument):
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_sales_order_tenant_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(50), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    opportunity_id = db.Column(db.Integer, db.ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id", ondelete="SET NULL"), nullable=True)
    oem = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default="draft")
    order_date = db.Column(db.Date, default=date.today)
    expected_delivery_date = db.Column(db.Date)
    shipping_method = db.Column(db.String(30), default="Courier")
    freight_terms = db.Column(db.String(200))
    freight_charges = db.Column(db.Float, default=0.0, nullable=False)
    billing_address = db.Column(db.JSON, default=dict)
    shipping_address = db.Column(db.JSON, default=dict)
    terms = db.Column(db.JSON, default=dict)

    NON_NEGATIVE = {"freight_charges": "freightCharges"}

    account = db.relationship("Account")

    def _extra_charges(self) -> float:
        return to_float(self.freight_charges)

    def to_dict(self):
        return {
            "id": str(self.id),
            "orderNumber": self.order_number,
            "accountId": str(self.account_id) if self.account_id else None,
            "accountName": self.account.company_name if self.account else None,
            "contactId": str(self.contact_id) if self.contact_id else None,
            "opportunityId": str(self.opportunity_id) if self.opportunity_id else None,
            "quotationId": str(self.quotation_id) if self.quotation_id else None,
            "oem": self.oem or "",
            "status": self.status,
            "orderDate": _iso(self.order_date),
            "expectedDeliveryDate": _iso(self.expected_delivery_date),
            "shippingMethod": self.shipping_method or "Courier",
            "freightTerms": self.freight_terms or "",
            "freightCharges": self.freight_charges or 0.0,
            "billingAddress": self.billing_address or {},
            "shippingAddress": self.shipping_address or {},
            "terms": self.terms or {},
            "notes": self.notes or "",
            **self._money_dict(),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Invoice(CommercialDocument):
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_tenant_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft")
    issue_date = db.Column(db.Date, default=date.today)
    due_date = db.Column(db.Date)
    freight_charges = db.Column(db.Float, default=0.0, nullable=False)
    discounts = db.Column(db.Float, default=0.0, nullable=False)
    total_due = db.Column(db.Float, default=0.0, nullable=False)
    amount_paid = db.Column(db.Float, default=0.0, nullable=False)
    balance = db.Column(db.Float, default=0.0, nullable=False)
    payment_history = db.Column(db.JSON, default=list)
    billing_address = db.Column(db.JSON, default=dict)

    NON_NEGATIVE = {"freight_charges": "freightCharges", "discounts": "discounts", "amount_paid": "amountPaid"}

    account = db.relationship("Account")

    def _extra_charges(self) -> float:
        return to_float(self.freight_charges) - to_float(self.discounts)

    def recalculate(self):
        super().recalculate()
        self.total_due = self.total
        self.balance = _money(self.total - to_float(self.amount_paid))

    @property
    def is_overdue(self) -> bool:
        if self.status in ("paid", "cancelled") or self.due_date is None:
            return False
        return self.due_date < date.today() and (self.balance or 0) > 0

    def to_dict(self):
        return {
            "id": str(self.id),
            "invoiceNumber": self.invoice_number,
            "accountId": str(self.account_id) if self.account_id else None,
            "accountName": self.account.company_name if self.account else None,
            "salesOrderId": str(self.sales_order_id) if self.sales_order_id else None,
            "status": self.status,
            "issueDate": _iso(self.issue_date),
            "dueDate": _iso(self.due_date),
            "freightCharges": self.freight_charges or 0.0,
            "discounts": self.discounts or 0.0,
            "totalDue": self.total_due or 0.0,
            "amountPaid": self.amount_paid or 0.0,
            "balance": self.balance or 0.0,
            "isOverdue": self.is_overdue,
            "paymentHistory": list(self.payment_history or []),
            "billingAddress": self.billing_address or {},
            "notes": self.notes or "",
            **self._money_dict(),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
