"""
Document number generator.

Generates tenant-scoped sequential numbers when the client does not
supply one:
  - Quotations:    QT-{seq:05d}   (e.g. QT-00001)
  - Sales orders:  SO-{seq:05d}
  - Invoices:      INV-{seq:05d}

Sequence = count of the tenant's documents + 1, bumped past any number
already taken (imported documents may occupy the next slot).
"""

from sqlalchemy import func, select

from crm.models import db
from crm.models.commercial import Invoice, Quotation, SalesOrder

_MAX_ATTEMPTS = 50


def _generate(model, number_column, prefix: str, tenant_id: str) -> str:
    count = db.session.execute(
        select(func.count(model.id)).where(model.tenant_id == tenant_id)
    ).scalar() or 0
    seq = count + 1
    for _ in range(_MAX_ATTEMPTS):
        code = f"{prefix}-{seq:05d}"
        taken = db.session.execute(
            select(model.id).where(model.tenant_id == tenant_id, number_column == code)
        ).first()
        if taken is None:
            return code
        seq += 1
    return f"{prefix}-{seq:05d}"


def generate_quotation_number(tenant_id: str) -> str:
    """QT-00001, QT-00002, ..."""
    return _generate(Quotation, Quotation.quotation_number, "QT", tenant_id)


def generate_order_number(tenant_id: str) -> str:
    """SO-00001, SO-00002, ..."""
    return _generate(SalesOrder, SalesOrder.order_number, "SO", tenant_id)


def generate_invoice_number(tenant_id: str) -> str:
    """INV-00001, INV-00002, ..."""
    return _generate(Invoice, Invoice.invoice_number, "INV", tenant_id)
