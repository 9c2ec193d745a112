"""
Opportunity Service — pipeline deals.

Functions:
    - create_opportunity:   name defaults to "Opportunity <date>"; stage validated
    - list_opportunities:   page with optional stage/status/accountId filters
    - get_opportunity
    - update_opportunity:   stage changes append to stage_history; closing
                            stages stamp actual_close_date
    - delete_opportunity
"""

import logging
from datetime import date

from sqlalchemy import select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.sales import (
    OPPORTUNITY_STAGES,
    OPPORTUNITY_STATUSES,
    Account,
    Contact,
    Opportunity,
)
from crm.utils.helpers import (
    apply_fields,
    db_commit,
    get_for_tenant,
    has_any,
    integer,
    number,
    paginate_select,
    parse_date,
    pick,
    resolve_ref,
    text,
    utcnow,
)

logger = logging.getLogger(__name__)

_CLOSED_STAGES = {"closed_won", "closed_lost"}

OPPORTUNITY_FIELDS = {
    "org_code": (("orgCode", "org_code"), text(100)),
    "name": (("name",), text(200)),
    "oem": (("oem",), text(100)),
    "status": (("status",), text(20)),
    "opportunity_type": (("type", "opportunityType", "opportunity_type"), text(20)),
    "revenue": (("revenue",), number),
    "profitability": (("profitability",), number),
    "probability": (("probability",), integer),
    "expected_close_date": (("expectedCloseDate", "expected_close_date"), parse_date),
    "actual_close_date": (("actualCloseDate", "actual_close_date"), parse_date),
    "description": (("description",), text()),
    "next_step": (("nextStep", "next_step"), text(300)),
    "assigned_to": (("assignedTo", "assigned_to"), text(100)),
}


def _validate(data):
    stage = pick(data, "stage")
    if stage is not None and stage not in OPPORTUNITY_STAGES:
        raise ValidationError(
            f"stage must be one of: {', '.join(OPPORTUNITY_STAGES)}", details={"stage": stage},
        )
    status = pick(data, "status")
    if status is not None and status not in OPPORTUNITY_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(OPPORTUNITY_STATUSES))}",
            details={"status": status},
        )
    probability = integer(pick(data, "probability"))
    if probability is not None and not 0 <= probability <= 100:
        raise ValidationError("probability must be between 0 and 100", details={"probability": probability})


def _apply_refs(opp, tenant_id, data):
    if has_any(data, "accountId", "account_id"):
        opp.account_id = resolve_ref(Account, tenant_id, pick(data, "accountId", "account_id"), "Account")
    if has_any(data, "contactId", "contact_id"):
        opp.contact_id = resolve_ref(Contact, tenant_id, pick(data, "contactId", "contact_id"), "Contact")


def _move_stage(opp, new_stage, user_id):
    if opp.stage == new_stage:
        return
    history = list(opp.stage_history or [])
    history.append({
        "from": opp.stage,
        "to": new_stage,
        "changedBy": user_id,
        "changedAt": utcnow().isoformat(),
    })
    opp.stage = new_stage
    opp.stage_history = history
    if new_stage in _CLOSED_STAGES:
        opp.actual_close_date = opp.actual_close_date or date.today()
        if new_stage == "closed_won":
            opp.probability = 100
        else:
            opp.probability = 0


def create_opportunity(tenant_id: str, data: dict, user_id: str) -> dict:
    """Create an opportunity.

    Raises:
        ValidationError: unknown stage/status, probability out of range, or a
            referenced account/contact outside the tenant.
    """
    _validate(data)
    stage = pick(data, "stage") or "prospecting"
    opp = Opportunity(
        tenant_id=tenant_id,
        created_by=user_id,
        stage=stage,
        status="prospect",
        opportunity_type="new",
        stage_history=[{
            "from": None,
            "to": stage,
            "changedBy": user_id,
            "changedAt": utcnow().isoformat(),
        }],
    )
    apply_fields(opp, data, OPPORTUNITY_FIELDS)
    if not opp.name:
        opp.name = f"Opportunity {date.today().isoformat()}"
    _apply_refs(opp, tenant_id, data)
    db.session.add(opp)
    db_commit("Opportunity")
    logger.info(
        "Opportunity created",
        extra={"tenant_id": tenant_id, "opportunity_id": opp.id, "stage": stage},
    )
    return opp.to_dict()


def list_opportunities(tenant_id: str, *, skip: int = 0, limit: int = 50,
                       stage=None, status=None, account_id=None) -> tuple[list[dict], int]:
    stmt = select(Opportunity).where(Opportunity.tenant_id == tenant_id)
    if stage:
        stmt = stmt.where(Opportunity.stage == stage)
    if status:
        stmt = stmt.where(Opportunity.status == status)
    if account_id:
        try:
            stmt = stmt.where(Opportunity.account_id == int(account_id))
        except (TypeError, ValueError):
            return [], 0
    rows, total = paginate_select(stmt, skip, limit, Opportunity.created_at.desc(), Opportunity.id.desc())
    return [o.to_dict() for o in rows], total


def get_opportunity(tenant_id: str, opportunity_id) -> dict:
    return get_for_tenant(Opportunity, tenant_id, opportunity_id, "Opportunity").to_dict()


def update_opportunity(tenant_id: str, opportunity_id, data: dict, user_id: str) -> dict:
    opp = get_for_tenant(Opportunity, tenant_id, opportunity_id, "Opportunity")
    _validate(data)
    changed = apply_fields(opp, data, OPPORTUNITY_FIELDS)
    if not opp.name:
        raise ValidationError("name cannot be empty", details={"name": "required"})
    _apply_refs(opp, tenant_id, data)
    stage = pick(data, "stage")
    if stage is not None:
        _move_stage(opp, stage, user_id)
    opp.updated_by = user_id
    db_commit("Opportunity")
    logger.info(
        "Opportunity updated",
        extra={"tenant_id": tenant_id, "opportunity_id": opp.id, "fields": changed},
    )
    return opp.to_dict()


def delete_opportunity(tenant_id: str, opportunity_id) -> None:
    opp = get_for_tenant(Opportunity, tenant_id, opportunity_id, "Opportunity")
    db.session.delete(opp)
    db_commit("Opportunity")
    logger.info("Opportunity deleted", extra={"tenant_id": tenant_id, "opportunity_id": opportunity_id})
