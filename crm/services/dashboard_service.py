"""
Dashboard aggregation — pure folds over API-shaped records.

The same functions back ``GET /api/v1/dashboard/summary`` (over rows read
from the database) and ``CrmClient.dashboard()`` (over lists fetched from
the API), so both sides report identical numbers.

Input records are camelCase dicts as produced by ``to_dict()``. Missing or
non-numeric money fields count as zero; empty input yields zeros.
"""

from collections import OrderedDict

from sqlalchemy import select

from crm.models import db
from crm.models.sales import OPPORTUNITY_STAGES, Contact, Opportunity
from crm.utils.helpers import to_float

RECENT_LIMIT = 5


def _pct(part, whole) -> float:
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, 1)


def _expected_profit(opp: dict) -> float:
    if opp.get("expectedProfit") is not None:
        return to_float(opp.get("expectedProfit"))
    return to_float(opp.get("revenue")) * to_float(opp.get("profitability")) / 100


def _recent(records, limit=RECENT_LIMIT):
    return sorted(records, key=lambda r: r.get("updatedAt") or r.get("createdAt") or "", reverse=True)[:limit]


def group_opportunities_by_stage(opportunities) -> list[dict]:
    """Per-stage count, revenue and expected profit.

    Known stages come first in pipeline order (only those present); any
    unknown stage values follow in first-seen order.
    """
    groups: "OrderedDict[str, list]" = OrderedDict()
    for opp in opportunities or []:
        groups.setdefault(opp.get("stage") or "unknown", []).append(opp)

    ordered = [s for s in OPPORTUNITY_STAGES if s in groups] + [s for s in groups if s not in OPPORTUNITY_STAGES]
    total = sum(len(v) for v in groups.values())
    return [
        {
            "stage": stage,
            "count": len(groups[stage]),
            "value": round(sum(to_float(o.get("revenue")) for o in groups[stage]), 2),
            "expectedProfit": round(sum(_expected_profit(o) for o in groups[stage]), 2),
            "percentage": _pct(len(groups[stage]), total),
        }
        for stage in ordered
    ]


def group_opportunities_by_status(opportunities) -> list[dict]:
    groups: "OrderedDict[str, list]" = OrderedDict()
    for opp in opportunities or []:
        groups.setdefault(opp.get("status") or "unknown", []).append(opp)
    total = sum(len(v) for v in groups.values())
    return [
        {
            "status": status,
            "count": len(opps),
            "value": round(sum(to_float(o.get("revenue")) for o in opps), 2),
            "expectedProfit": round(sum(_expected_profit(o) for o in opps), 2),
            "percentage": _pct(len(opps), total),
        }
        for status, opps in groups.items()
    ]


def group_contacts_by_status(contacts) -> dict:
    """Contact totals by status plus the most recently touched contacts."""
    contacts = list(contacts or [])
    counts: "OrderedDict[str, int]" = OrderedDict()
    for contact in contacts:
        status = contact.get("status") or "unknown"
        counts[status] = counts.get(status, 0) + 1
    return {
        "totalContacts": len(contacts),
        "byStatus": [
            {"status": status, "count": count, "percentage": _pct(count, len(contacts))}
            for status, count in counts.items()
        ],
        "recentContacts": [
            {
                "id": c.get("id"),
                "firstName": c.get("firstName", ""),
                "lastName": c.get("lastName", ""),
                "email": c.get("email", ""),
            }
            for c in _recent(contacts)
        ],
    }


def summarize_pipeline(opportunities) -> dict:
    """Headline pipeline numbers.

    winRate is closed_won as a share of all closed opportunities.
    """
    opportunities = list(opportunities or [])
    won = [o for o in opportunities if o.get("stage") == "closed_won"]
    lost = [o for o in opportunities if o.get("stage") == "closed_lost"]
    open_opps = [o for o in opportunities if o.get("stage") not in ("closed_won", "closed_lost")]
    total_revenue = sum(to_float(o.get("revenue")) for o in opportunities)
    return {
        "totalOpportunities": len(opportunities),
        "openOpportunities": len(open_opps),
        "totalRevenue": round(total_revenue, 2),
        "openPipelineValue": round(sum(to_float(o.get("revenue")) for o in open_opps), 2),
        "totalExpectedProfit": round(sum(_expected_profit(o) for o in opportunities), 2),
        "closedWonRevenue": round(sum(to_float(o.get("revenue")) for o in won), 2),
        "closedWonCount": len(won),
        "closedLostCount": len(lost),
        "winRate": _pct(len(won), len(won) + len(lost)),
        "averageDealSize": round(total_revenue / len(opportunities), 2) if opportunities else 0.0,
        "recentOpportunities": [
            {"id": o.get("id"), "name": o.get("name"), "stage": o.get("stage"), "revenue": to_float(o.get("revenue"))}
            for o in _recent(opportunities)
        ],
    }


def build_summary(opportunities, contacts) -> dict:
    return {
        "pipeline": summarize_pipeline(opportunities),
        "opportunitiesByStage": group_opportunities_by_stage(opportunities),
        "opportunitiesByStatus": group_opportunities_by_status(opportunities),
        "contacts": group_contacts_by_status(contacts),
    }


def get_dashboard_summary(tenant_id: str) -> dict:
    opportunities = db.session.execute(
        select(Opportunity).where(Opportunity.tenant_id == tenant_id)
    ).scalars().all()
    contacts = db.session.execute(
        select(Contact).where(Contact.tenant_id == tenant_id)
    ).scalars().all()
    return build_summary([o.to_dict() for o in opportunities], [c.to_dict() for c in contacts])
