"""
Contact Service — people, optionally attached to an Account.

Functions:
    - create_contact:   firstName required; accountId must belong to the tenant
    - list_contacts:    page with optional accountId/status/search filters
    - get_contact
    - update_contact
    - delete_contact
"""

import logging

from sqlalchemy import or_, select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.sales import Account, Contact
from crm.utils.helpers import (
    apply_fields,
    db_commit,
    get_for_tenant,
    has_any,
    json_dict,
    paginate_select,
    pick,
    require_fields,
    resolve_ref,
    text,
)

logger = logging.getLogger(__name__)

CONTACT_FIELDS = {
    "org_code": (("orgCode", "org_code"), text(100)),
    "first_name": (("firstName", "first_name"), text(100)),
    "last_name": (("lastName", "last_name"), text(100)),
    "email": (("email",), text(200)),
    "phone": (("phone",), text(50)),
    "mobile": (("mobile",), text(50)),
    "job_title": (("jobTitle", "job_title"), text(100)),
    "department": (("department",), text(100)),
    "status": (("status",), text(30)),
    "source": (("source",), text(50)),
    "address": (("address",), json_dict),
    "notes": (("notes",), text()),
    "assigned_to": (("assignedTo", "assigned_to"), text(100)),
}


def _apply_account(contact, tenant_id, data):
    if has_any(data, "accountId", "account_id"):
        contact.account_id = resolve_ref(
            Account, tenant_id, pick(data, "accountId", "account_id"), "Account",
        )


def create_contact(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create a contact.

    Raises:
        ValidationError: firstName missing or accountId unknown in this tenant.
    """
    require_fields(data, ("firstName", "first_name"))
    contact = Contact(tenant_id=tenant_id, created_by=user_id, status="active", last_name="")
    apply_fields(contact, data, CONTACT_FIELDS)
    _apply_account(contact, tenant_id, data)
    db.session.add(contact)
    db_commit("Contact")
    logger.info(
        "Contact created",
        extra={"tenant_id": tenant_id, "contact_id": contact.id, "user_id": user_id},
    )
    return contact.to_dict()


def list_contacts(tenant_id: str, *, skip: int = 0, limit: int = 50,
                  account_id=None, status=None, search=None) -> tuple[list[dict], int]:
    stmt = select(Contact).where(Contact.tenant_id == tenant_id)
    if account_id:
        try:
            stmt = stmt.where(Contact.account_id == int(account_id))
        except (TypeError, ValueError):
            return [], 0
    if status:
        stmt = stmt.where(Contact.status == status)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            Contact.first_name.ilike(like),
            Contact.last_name.ilike(like),
            Contact.email.ilike(like),
        ))
    rows, total = paginate_select(stmt, skip, limit, Contact.created_at.desc(), Contact.id.desc())
    return [c.to_dict() for c in rows], total


def get_contact(tenant_id: str, contact_id) -> dict:
    return get_for_tenant(Contact, tenant_id, contact_id, "Contact").to_dict()


def update_contact(tenant_id: str, contact_id, data: dict, user_id: str) -> dict:
    contact = get_for_tenant(Contact, tenant_id, contact_id, "Contact")
    changed = apply_fields(contact, data, CONTACT_FIELDS)
    if not contact.first_name:
        raise ValidationError("firstName cannot be empty", details={"firstName": "required"})
    _apply_account(contact, tenant_id, data)
    contact.updated_by = user_id
    db_commit("Contact")
    logger.info(
        "Contact updated",
        extra={"tenant_id": tenant_id, "contact_id": contact.id, "fields": changed},
    )
    return contact.to_dict()


def delete_contact(tenant_id: str, contact_id) -> None:
    contact = get_for_tenant(Contact, tenant_id, contact_id, "Contact")
    db.session.delete(contact)
    db_commit("Contact")
    logger.info("Contact deleted", extra={"tenant_id": tenant_id, "contact_id": contact_id})
