"""
Credit Service — per-operation costs and the tenant balance ledger.

Functions:
    - get_credit_costs:    tenant cost table (defaults + CreditConfig overrides), cached
    - get_credit_cost:     cost of one operation code (unknown → 0)
    - get_balance:         CreditBalance row for a tenant (created empty on demand)
    - check_credits:       raise InsufficientCreditsError when balance < cost
    - consume_credits:     debit + ledger row; only called after a successful operation
    - allocate_credits:    credit + ledger row
    - list_transactions:   newest-first ledger page
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from crm.core.exceptions import InsufficientCreditsError, ValidationError
from crm.models import db
from crm.models.credit import CreditBalance, CreditConfig, CreditTransaction
from crm.services import cache_service

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_COSTS: dict[str, float] = {
    "crm.accounts.create": 1.0,
    "crm.accounts.update": 0.5,
    "crm.contacts.create": 1.0,
    "crm.contacts.update": 0.5,
    "crm.leads.create": 1.0,
    "crm.leads.update": 0.5,
    "crm.leads.convert": 2.0,
    "crm.opportunities.create": 1.0,
    "crm.opportunities.update": 0.5,
    "crm.quotations.create": 2.0,
    "crm.quotations.update": 1.0,
    "crm.invoices.create": 2.0,
    "crm.invoices.update": 1.0,
    "crm.sales_orders.create": 2.0,
    "crm.sales_orders.update": 1.0,
    "crm.documents.create": 0.5,
    "crm.pdf.generate": 3.0,
}


def _load_costs(tenant_id: str) -> dict:
    costs = dict(DEFAULT_CREDIT_COSTS)
    rows = db.session.execute(
        select(CreditConfig).where(CreditConfig.tenant_id == tenant_id)
    ).scalars().all()
    for row in rows:
        if row.is_active:
            costs[row.operation_code] = row.credit_cost
        else:
            costs.pop(row.operation_code, None)
    return costs


def get_credit_costs(tenant_id: str) -> dict:
    return cache_service.get_cached(
        cache_service.credit_costs_key(tenant_id),
        ttl=cache_service.CREDIT_COST_TTL,
        loader=lambda: _load_costs(tenant_id),
    )


def get_credit_cost(tenant_id: str, operation_code: str) -> float:
    return float(get_credit_costs(tenant_id).get(operation_code, 0.0))


def set_credit_cost(tenant_id: str, operation_code: str, cost: float) -> CreditConfig:
    if cost < 0:
        raise ValidationError("creditCost must be >= 0")
    row = db.session.execute(
        select(CreditConfig).where(
            CreditConfig.tenant_id == tenant_id,
            CreditConfig.operation_code == operation_code,
        )
    ).scalar_one_or_none()
    if row is None:
        row = CreditConfig(tenant_id=tenant_id, operation_code=operation_code)
        db.session.add(row)
    row.credit_cost = cost
    row.is_active = True
    db.session.commit()
    cache_service.delete_cached(cache_service.credit_costs_key(tenant_id))
    return row


def get_balance(tenant_id: str) -> CreditBalance:
    balance = db.session.execute(
        select(CreditBalance).where(CreditBalance.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if balance is None:
        balance = CreditBalance(tenant_id=tenant_id, allocated=0.0, consumed=0.0)
        db.session.add(balance)
        db.session.flush()
    return balance


def available_credits(tenant_id: str) -> float:
    row = db.session.execute(
        select(CreditBalance).where(CreditBalance.tenant_id == tenant_id)
    ).scalar_one_or_none()
    return row.available if row is not None else 0.0


def check_credits(tenant_id: str, operation_code: str) -> float:
    """Return the operation cost, or raise when the balance cannot cover it."""
    cost = get_credit_cost(tenant_id, operation_code)
    if cost <= 0:
        return 0.0
    available = available_credits(tenant_id)
    if available < cost:
        logger.warning(
            "Insufficient credits",
            extra={"tenant_id": tenant_id, "operation": operation_code, "status": 402},
        )
        raise InsufficientCreditsError(operation_code, cost, available)
    return cost


def consume_credits(
    tenant_id: str,
    operation_code: str,
    *,
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
) -> float:
    """Debit the operation's cost. Returns the amount consumed (0 for free ops)."""
    cost = get_credit_cost(tenant_id, operation_code)
    if cost <= 0:
        return 0.0
    balance = get_balance(tenant_id)
    balance.consumed = (balance.consumed or 0.0) + cost
    balance.last_consumed_at = datetime.now(timezone.utc)
    db.session.add(CreditTransaction(
        tenant_id=tenant_id,
        transaction_type="consumption",
        operation_code=operation_code,
        amount=cost,
        balance_after=balance.available,
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        description=f"Consumed by {operation_code}",
    ))
    db.session.commit()
    logger.info(
        "Credits consumed",
        extra={"tenant_id": tenant_id, "operation": operation_code, "user_id": user_id},
    )
    return cost


def allocate_credits(tenant_id: str, amount: float, *, user_id: str | None = None,
                     description: str | None = None) -> CreditBalance:
    if amount is None or amount <= 0:
        raise ValidationError("amount must be a positive number")
    balance = get_balance(tenant_id)
    balance.allocated = (balance.allocated or 0.0) + amount
    db.session.add(CreditTransaction(
        tenant_id=tenant_id,
        transaction_type="allocation",
        amount=amount,
        balance_after=balance.available,
        user_id=user_id,
        description=description or "Credit allocation",
    ))
    db.session.commit()
    logger.info("Credits allocated", extra={"tenant_id": tenant_id, "user_id": user_id})
    return balance


def list_transactions(tenant_id: str, skip: int = 0, limit: int = 50) -> tuple[list[dict], int]:
    base = select(CreditTransaction).where(CreditTransaction.tenant_id == tenant_id)
    total = db.session.execute(
        select(func.count()).select_from(base.subquery())
    ).scalar() or 0
    rows = db.session.execute(
        base.order_by(CreditTransaction.timestamp.desc(), CreditTransaction.id.desc())
        .offset(skip).limit(limit)
    ).scalars().all()
    return [r.to_dict() for r in rows], total
