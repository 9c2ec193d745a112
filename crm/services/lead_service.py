"""
Lead Service — unqualified prospects.

Functions:
    - create_lead:    firstName, email and companyName required; status starts at "new"
    - list_leads:     page with optional status/source/search filters
    - get_lead
    - update_lead:    a status change appends to status_history
    - delete_lead
    - convert_lead:   create Account + Contact (+ optional Opportunity), mark converted
"""

import logging

from sqlalchemy import or_, select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.sales import LEAD_STATUSES, Account, Contact, Lead, Opportunity
from crm.utils.helpers import (
    apply_fields,
    db_commit,
    get_for_tenant,
    integer,
    json_dict,
    number,
    paginate_select,
    parse_date,
    pick,
    require_fields,
    text,
    utcnow,
)

logger = logging.getLogger(__name__)

LEAD_FIELDS = {
    "org_code": (("orgCode", "org_code"), text(100)),
    "first_name": (("firstName", "first_name"), text(100)),
    "last_name": (("lastName", "last_name"), text(100)),
    "email": (("email",), text(200)),
    "phone": (("phone",), text(50)),
    "company_name": (("companyName", "company_name"), text(200)),
    "industry": (("industry",), text(100)),
    "job_title": (("jobTitle", "job_title"), text(100)),
    "source": (("source",), text(50)),
    "score": (("score",), integer),
    "product": (("product",), text(200)),
    "zone": (("zone",), text(50)),
    "address": (("address",), json_dict),
    "notes": (("notes",), text()),
    "assigned_to": (("assignedTo", "assigned_to"), text(100)),
}


def _validate_status(status):
    if status not in LEAD_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(LEAD_STATUSES))}",
            details={"status": status},
        )


def _record_status(lead, new_status, user_id, note=None):
    """Set lead.status and append the transition to status_history."""
    old_status = lead.status
    if old_status == new_status:
        return
    history = list(lead.status_history or [])
    history.append({
        "from": old_status,
        "to": new_status,
        "changedBy": user_id,
        "changedAt": utcnow().isoformat(),
        "note": note or "",
    })
    lead.status = new_status
    lead.status_history = history


def create_lead(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create a lead.

    Raises:
        ValidationError: a required field is missing or status is unknown.
    """
    require_fields(data, ("firstName", "first_name"), "email", ("companyName", "company_name"))
    status = pick(data, "status") or "new"
    _validate_status(status)

    lead = Lead(tenant_id=tenant_id, created_by=user_id, last_name="", notes="")
    apply_fields(lead, data, LEAD_FIELDS)
    lead.status = status
    lead.status_history = [{
        "from": None,
        "to": status,
        "changedBy": user_id,
        "changedAt": utcnow().isoformat(),
        "note": "created",
    }]
    db.session.add(lead)
    db_commit("Lead")
    logger.info(
        "Lead created",
        extra={"tenant_id": tenant_id, "lead_id": lead.id, "user_id": user_id},
    )
    return lead.to_dict()


def list_leads(tenant_id: str, *, skip: int = 0, limit: int = 50,
               status=None, source=None, search=None) -> tuple[list[dict], int]:
    stmt = select(Lead).where(Lead.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Lead.status == status)
    if source:
        stmt = stmt.where(Lead.source == source)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            Lead.first_name.ilike(like),
            Lead.last_name.ilike(like),
            Lead.email.ilike(like),
            Lead.company_name.ilike(like),
        ))
    rows, total = paginate_select(stmt, skip, limit, Lead.created_at.desc(), Lead.id.desc())
    return [lead.to_dict() for lead in rows], total


def get_lead(tenant_id: str, lead_id) -> dict:
    return get_for_tenant(Lead, tenant_id, lead_id, "Lead").to_dict()


def update_lead(tenant_id: str, lead_id, data: dict, user_id: str) -> dict:
    lead = get_for_tenant(Lead, tenant_id, lead_id, "Lead")
    new_status = pick(data, "status")
    if new_status is not None:
        _validate_status(new_status)
        if new_status == "converted" and lead.status != "converted":
            raise ValidationError("Use the convert endpoint to convert a lead")

    changed = apply_fields(lead, data, LEAD_FIELDS)
    for attr in ("first_name", "email", "company_name"):
        if not getattr(lead, attr):
            raise ValidationError(f"{attr} cannot be empty", details={attr: "required"})
    if new_status is not None:
        _record_status(lead, new_status, user_id, pick(data, "statusNote", "status_note"))
    lead.updated_by = user_id
    db_commit("Lead")
    logger.info(
        "Lead updated",
        extra={"tenant_id": tenant_id, "lead_id": lead.id, "fields": changed},
    )
    return lead.to_dict()


def delete_lead(tenant_id: str, lead_id) -> None:
    lead = get_for_tenant(Lead, tenant_id, lead_id, "Lead")
    db.session.delete(lead)
    db_commit("Lead")
    logger.info("Lead deleted", extra={"tenant_id": tenant_id, "lead_id": lead_id})


def convert_lead(tenant_id: str, lead_id, data: dict, user_id: str) -> dict:
    """Convert a lead into an Account and a Contact.

    An existing account with the same company name is reused. When
    ``createOpportunity`` is true an Opportunity is opened for the account
    (``opportunityName``, ``revenue``, ``expectedCloseDate`` optional).

    Returns:
        {"lead", "account", "contact", "opportunity"} (opportunity may be None)

    Raises:
        ValidationError: the lead was already converted.
    """
    lead = get_for_tenant(Lead, tenant_id, lead_id, "Lead")
    if lead.status == "converted":
        raise ValidationError("Lead is already converted", details={"status": "converted"})

    account = db.session.execute(
        select(Account).where(
            Account.tenant_id == tenant_id,
            Account.company_name == lead.company_name,
        )
    ).scalars().first()
    if account is None:
        account = Account(
            tenant_id=tenant_id,
            org_code=lead.org_code,
            company_name=lead.company_name,
            email=lead.email,
            phone=lead.phone,
            industry=lead.industry,
            zone=lead.zone,
            status="active",
            billing_address=dict(lead.address or {}),
            assigned_to=lead.assigned_to,
            created_by=user_id,
        )
        db.session.add(account)
        db.session.flush()

    contact = Contact(
        tenant_id=tenant_id,
        org_code=lead.org_code,
        first_name=lead.first_name,
        last_name=lead.last_name or "",
        email=lead.email,
        phone=lead.phone,
        job_title=lead.job_title,
        source=lead.source,
        status="customer",
        account_id=account.id,
        address=dict(lead.address or {}),
        assigned_to=lead.assigned_to,
        created_by=user_id,
    )
    db.session.add(contact)
    db.session.flush()

    opportunity = None
    if pick(data, "createOpportunity", "create_opportunity"):
        opportunity = Opportunity(
            tenant_id=tenant_id,
            org_code=lead.org_code,
            name=pick(data, "opportunityName", "opportunity_name") or f"{lead.company_name} - {lead.product or 'New deal'}",
            account_id=account.id,
            contact_id=contact.id,
            stage="prospecting",
            status="prospect",
            revenue=number(pick(data, "revenue")),
            expected_close_date=parse_date(pick(data, "expectedCloseDate", "expected_close_date")),
            stage_history=[{
                "from": None,
                "to": "prospecting",
                "changedBy": user_id,
                "changedAt": utcnow().isoformat(),
            }],
            assigned_to=lead.assigned_to,
            created_by=user_id,
        )
        db.session.add(opportunity)
        db.session.flush()

    lead.converted_account_id = account.id
    lead.converted_contact_id = contact.id
    _record_status(lead, "converted", user_id, "converted")
    lead.updated_by = user_id
    db_commit("Lead")
    logger.info(
        "Lead converted",
        extra={
            "tenant_id": tenant_id, "lead_id": lead.id,
            "account_id": account.id, "contact_id": contact.id,
            "opportunity_id": opportunity.id if opportunity else None,
        },
    )
    return {
        "id": str(lead.id),
        "lead": lead.to_dict(),
        "account": account.to_dict(),
        "contact": contact.to_dict(),
        "opportunity": opportunity.to_dict() if opportunity else None,
    }
