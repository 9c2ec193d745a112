"""
CRM core records — accounts, contacts, leads, opportunities.

Models:
    - Account:      customer company
    - Contact:      person, optionally linked to an Account
    - Lead:         unqualified prospect; keeps status_history, convertible
    - Opportunity:  pipeline deal; keeps stage_history
"""

from crm.models import db
from crm.models.base import TenantModel

LEAD_STATUSES = {"new", "contacted", "qualified", "unqualified", "lost", "converted"}
CONTACT_STATUSES = {"active", "inactive", "prospect", "customer"}
OPPORTUNITY_STAGES = (
    "prospecting", "qualification", "proposal", "negotiation", "closed_won", "closed_lost",
)
OPPORTUNITY_STATUSES = {"commit", "upside", "prospect"}


def _iso(value):
    return value.isoformat() if value else None


class Account(TenantModel):
    __tablename__ = "accounts"
    __table_args__ = (
        TenantModel.tenant_composite_index("accounts", "company_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(100))
    company_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    website = db.Column(db.String(300))
    industry = db.Column(db.String(100))
    account_type = db.Column(db.String(50))
    status = db.Column(db.String(30), default="active")
    zone = db.Column(db.String(50))
    annual_revenue = db.Column(db.Float)
    employees_count = db.Column(db.Integer)
    gst_no = db.Column(db.String(50))
    billing_address = db.Column(db.JSON, default=dict)
    shipping_address = db.Column(db.JSON, default=dict)
    description = db.Column(db.Text)
    assigned_to = db.Column(db.String(100))
    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100))

    contacts = db.relationship("Contact", back_populates="account")

    def to_dict(self):
        return {
            "id": str(self.id),
            "orgCode": self.org_code,
            "companyName": self.company_name,
            "email": self.email or "",
            "phone": self.phone or "",
            "website": self.website or "",
            "industry": self.industry or "",
            "accountType": self.account_type or "",
            "status": self.status or "active",
            "zone": self.zone or "",
            "annualRevenue": self.annual_revenue or 0,
            "employeesCount": self.employees_count or 0,
            "gstNo": self.gst_no or "",
            "billingAddress": self.billing_address or {},
            "shippingAddress": self.shipping_address or {},
            "description": self.description or "",
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Contact(TenantModel):
    __tablename__ = "contacts"
    __table_args__ = (
        TenantModel.tenant_composite_index("contacts", "email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(100))
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), default="")
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    mobile = db.Column(db.String(50))
    job_title = db.Column(db.String(100))
    department = db.Column(db.String(100))
    status = db.Column(db.String(30), default="active")
    source = db.Column(db.String(50))
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    address = db.Column(db.JSON, default=dict)
    notes = db.Column(db.Text)
    assigned_to = db.Column(db.String(100))
    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100))

    account = db.relationship("Account", back_populates="contacts")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name or ''}".strip()

    def to_dict(self):
        return {
            "id": str(self.id),
            "orgCode": self.org_code,
            "firstName": self.first_name,
            "lastName": self.last_name or "",
            "fullName": self.full_name,
            "email": self.email or "",
            "phone": self.phone or "",
            "mobile": self.mobile or "",
            "jobTitle": self.job_title or "",
            "department": self.department or "",
            "status": self.status or "active",
            "source": self.source or "",
            "accountId": str(self.account_id) if self.account_id else None,
            "accountName": self.account.company_name if self.account else None,
            "address": self.address or {},
            "notes": self.notes or "",
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Lead(TenantModel):
    __tablename__ = "leads"
    __table_args__ = (
        TenantModel.tenant_composite_index("leads", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(100))
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), default="")
    email = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(50))
    company_name = db.Column(db.String(200), nullable=False)
    industry = db.Column(db.String(100))
    job_title = db.Column(db.String(100))
    source = db.Column(db.String(50))
    status = db.Column(db.String(30), nullable=False, default="new")
    score = db.Column(db.Integer, default=0)
    product = db.Column(db.String(200))
    zone = db.Column(db.String(50))
    address = db.Column(db.JSON, default=dict)
    notes = db.Column(db.Text, default="")
    status_history = db.Column(db.JSON, default=list)
    converted_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"))
    converted_contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="SET NULL"))
    assigned_to = db.Column(db.String(100))
    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100))

    def to_dict(self):
        return {
            "id": str(self.id),
            "orgCode": self.org_code,
            "firstName": self.first_name,
            "lastName": self.last_name or "",
            "email": self.email,
            "phone": self.phone or "",
            "companyName": self.company_name,
            "industry": self.industry or "",
            "jobTitle": self.job_title or "",
            "source": self.source or "",
            "status": self.status,
            "score": self.score or 0,
            "product": self.product or "",
            "zone": self.zone or "",
            "address": self.address or {},
            "notes": self.notes or "",
            "statusHistory": list(self.status_history or []),
            "convertedAccountId": str(self.converted_account_id) if self.converted_account_id else None,
            "convertedContactId": str(self.converted_contact_id) if self.converted_contact_id else None,
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Opportunity(TenantModel):
    __tablename__ = "opportunities"
    __table_args__ = (
        TenantModel.tenant_composite_index("opportunities", "stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(100))
    name = db.Column(db.String(200), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    oem = db.Column(db.String(100))
    stage = db.Column(db.String(30), nullable=False, default="prospecting")
    status = db.Column(db.String(20), nullable=False, default="prospect")
    opportunity_type = db.Column(db.String(20), default="new")
    revenue = db.Column(db.Float, default=0.0)
    profitability = db.Column(db.Float, default=0.0)
    probability = db.Column(db.Integer, default=0)
    expected_close_date = db.Column(db.Date)
    actual_close_date = db.Column(db.Date)
    description = db.Column(db.Text)
    next_step = db.Column(db.String(300))
    stage_history = db.Column(db.JSON, default=list)
    assigned_to = db.Column(db.String(100))
    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100))

    account = db.relationship("Account")

    @property
    def expected_profit(self) -> float:
        return round((self.revenue or 0) * (self.profitability or 0) / 100, 2)

    def to_dict(self):
        return {
            "id": str(self.id),
            "orgCode": self.org_code,
            "name": self.name,
            "accountId": str(self.account_id) if self.account_id else None,
            "accountName": self.account.company_name if self.account else None,
            "contactId": str(self.contact_id) if self.contact_id else None,
            "oem": self.oem or "",
            "stage": self.stage,
            "status": self.status,
            "type": self.opportunity_type or "new",
            "revenue": self.revenue or 0,
            "profitability": self.profitability or 0,
            "expectedProfit": self.expected_profit,
            "probability": self.probability or 0,
            "expectedCloseDate": _iso(self.expected_close_date),
            "actualCloseDate": _iso(self.actual_close_date),
            "description": self.description or "",
            "nextStep": self.next_step or "",
            "stageHistory": list(self.stage_history or []),
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
