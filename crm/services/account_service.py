"""
Account Service — customer companies.

Functions:
    - create_account:   validate + insert (companyName required)
    - list_accounts:    page with optional status/industry/search filters
    - get_account:      tenant-scoped fetch
    - update_account:   partial update
    - delete_account:   hard delete; contacts keep their row with accountId cleared
"""

import logging

from sqlalchemy import or_, select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.sales import Account
from crm.utils.helpers import (
    apply_fields,
    db_commit,
    get_for_tenant,
    integer,
    json_dict,
    number,
    paginate_select,
    require_fields,
    text,
)

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = {
    "org_code": (("orgCode", "org_code"), text(100)),
    "company_name": (("companyName", "company_name"), text(200)),
    "email": (("email",), text(200)),
    "phone": (("phone",), text(50)),
    "website": (("website",), text(300)),
    "industry": (("industry",), text(100)),
    "account_type": (("accountType", "account_type"), text(50)),
    "status": (("status",), text(30)),
    "zone": (("zone",), text(50)),
    "annual_revenue": (("annualRevenue", "annual_revenue"), number),
    "employees_count": (("employeesCount", "employees_count"), integer),
    "gst_no": (("gstNo", "gst_no"), text(50)),
    "billing_address": (("billingAddress", "billing_address"), json_dict),
    "shipping_address": (("shippingAddress", "shipping_address"), json_dict),
    "description": (("description",), text()),
    "assigned_to": (("assignedTo", "assigned_to"), text(100)),
}


def create_account(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create an account.

    Raises:
        ValidationError: companyName missing.
    """
    require_fields(data, ("companyName", "company_name"))
    account = Account(tenant_id=tenant_id, created_by=user_id, status="active")
    apply_fields(account, data, ACCOUNT_FIELDS)
    db.session.add(account)
    db_commit("Account")
    logger.info(
        "Account created",
        extra={"tenant_id": tenant_id, "account_id": account.id, "user_id": user_id},
    )
    return account.to_dict()


def list_accounts(tenant_id: str, *, skip: int = 0, limit: int = 50,
                  status=None, industry=None, search=None) -> tuple[list[dict], int]:
    stmt = select(Account).where(Account.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Account.status == status)
    if industry:
        stmt = stmt.where(Account.industry == industry)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(Account.company_name.ilike(like), Account.email.ilike(like)))

    rows, total = paginate_select(stmt, skip, limit, Account.created_at.desc(), Account.id.desc())
    return [a.to_dict() for a in rows], total


def get_account(tenant_id: str, account_id) -> dict:
    return get_for_tenant(Account, tenant_id, account_id, "Account").to_dict()


def update_account(tenant_id: str, account_id, data: dict, user_id: str) -> dict:
    account = get_for_tenant(Account, tenant_id, account_id, "Account")
    changed = apply_fields(account, data, ACCOUNT_FIELDS)
    if not account.company_name:
        raise ValidationError("companyName cannot be empty", details={"companyName": "required"})
    account.updated_by = user_id
    db_commit("Account")
    logger.info(
        "Account updated",
        extra={"tenant_id": tenant_id, "account_id": account.id, "fields": changed},
    )
    return account.to_dict()


def delete_account(tenant_id: str, account_id) -> None:
    account = get_for_tenant(Account, tenant_id, account_id, "Account")
    for contact in account.contacts:
        contact.account_id = None
    db.session.delete(account)
    db_commit("Account")
    logger.info("Account deleted", extra={"tenant_id": tenant_id, "account_id": account_id})
