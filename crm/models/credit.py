"""
Credit models — per-tenant metering of API operations.

Models:
    - CreditConfig:       tenant override of an operation's cost
    - CreditBalance:      one row per tenant, allocated vs consumed
    - CreditTransaction:  append-only ledger (allocation | consumption)

Default costs live in ``crm.services.credit_service.DEFAULT_CREDIT_COSTS``.
"""

from datetime import datetime, timezone

from crm.models import db
from crm.models.base import TenantModel


class CreditConfig(TenantModel):
    __tablename__ = "credit_configs"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "operation_code", name="uq_credit_config_tenant_op"),
    )

    id = db.Column(db.Integer, primary_key=True)
    operation_code = db.Column(db.String(100), nullable=False)
    credit_cost = db.Column(db.Float, nullable=False, default=0.0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": str(self.id),
            "operationCode": self.operation_code,
            "creditCost": self.credit_cost,
            "isActive": self.is_active,
        }


class CreditBalance(TenantModel):
    __tablename__ = "credit_balances"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_credit_balance_tenant"),
    )

    id = db.Column(db.Integer, primary_key=True)
    allocated = db.Column(db.Float, nullable=False, default=0.0)
    consumed = db.Column(db.Float, nullable=False, default=0.0)
    last_consumed_at = db.Column(db.DateTime)

    @property
    def available(self) -> float:
        return round((self.allocated or 0.0) - (self.consumed or 0.0), 2)

    def to_dict(self):
        return {
            "tenantId": self.tenant_id,
            "allocatedCredits": self.allocated or 0.0,
            "usedCredits": self.consumed or 0.0,
            "availableCredits": self.available,
            "lastConsumedAt": self.last_consumed_at.isoformat() if self.last_consumed_at else None,
        }


class CreditTransaction(TenantModel):
    __tablename__ = "credit_transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_type = db.Column(db.String(20), nullable=False, comment="allocation | consumption")
    operation_code = db.Column(db.String(100))
    amount = db.Column(db.Float, nullable=False)
    balance_after = db.Column(db.Float, nullable=False)
    user_id = db.Column(db.String(100))
    resource_type = db.Column(db.String(50))
    resource_id = db.Column(db.String(50))
    description = db.Column(db.String(300))
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": str(self.id),
            "transactionType": self.transaction_type,
            "operationCode": self.operation_code,
            "amount": self.amount,
            "balanceAfter": self.balance_after,
            "userId": self.user_id,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "description": self.description or "",
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
