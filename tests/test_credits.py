"""
Credit Gate Tests.

Covers:
  - cost table: defaults, tenant override, unknown operation is free
  - 402 with requiredCredits/availableCredits when the balance is short
  - credits are consumed only when the view succeeds
  - ledger rows for allocation and consumption
  - /credits endpoints (balance, allocate, transactions)
"""

import pytest

from crm.core.exceptions import InsufficientCreditsError, ValidationError
from crm.models import db
from crm.models.credit import CreditTransaction
from crm.services import credit_service


def _balance(client, headers):
    return client.get("/api/v1/credits/balance", headers=headers).get_json()


class TestCreditService:
    def test_default_costs(self, tenant):
        assert credit_service.get_credit_cost("acme", "crm.contacts.create") == 1.0
        assert credit_service.get_credit_cost("acme", "crm.pdf.generate") == 3.0

    def test_unknown_operation_is_free(self, tenant):
        assert credit_service.get_credit_cost("acme", "crm.nothing.here") == 0
        assert credit_service.check_credits("acme", "crm.nothing.here") == 0.0

    def test_tenant_override(self, tenant):
        credit_service.set_credit_cost("acme", "crm.contacts.create", 7.5)
        assert credit_service.get_credit_cost("acme", "crm.contacts.create") == 7.5

    def test_check_raises_when_short(self, tenant):
        credit_service.set_credit_cost("acme", "crm.pdf.generate", 5000)
        with pytest.raises(InsufficientCreditsError) as exc:
            credit_service.check_credits("acme", "crm.pdf.generate")
        assert exc.value.required == 5000
        assert exc.value.available == 1000

    def test_consume_writes_ledger(self, tenant):
        credit_service.consume_credits("acme", "crm.leads.convert", user_id="user-admin")
        assert credit_service.available_credits("acme") == 998.0
        row = db.session.query(CreditTransaction).filter_by(transaction_type="consumption").one()
        assert row.operation_code == "crm.leads.convert"
        assert row.balance_after == 998.0

    def test_allocate_rejects_non_positive(self, tenant):
        with pytest.raises(ValidationError):
            credit_service.allocate_credits("acme", 0)

    def test_balance_created_on_demand(self, app):
        from crm.services import tenant_service
        tenant_service.create_tenant("fresh", "Fresh Co")
        assert credit_service.available_credits("fresh") == 0.0
        assert credit_service.get_balance("fresh").to_dict()["allocatedCredits"] == 0.0


class TestCreditGate:
    def test_success_consumes(self, client, auth_headers):
        res = client.post("/api/v1/contacts", json={"firstName": "Ann"}, headers=auth_headers)
        assert res.status_code == 201
        bal = _balance(client, auth_headers)
        assert bal["usedCredits"] == 1.0
        assert bal["availableCredits"] == 999.0

    def test_failed_view_consumes_nothing(self, client, auth_headers):
        res = client.post("/api/v1/contacts", json={"lastName": "NoFirstName"}, headers=auth_headers)
        assert res.status_code == 400
        assert _balance(client, auth_headers)["usedCredits"] == 0.0

    def test_insufficient_is_402(self, client, auth_headers):
        credit_service.set_credit_cost("acme", "crm.accounts.create", 2000)
        res = client.post("/api/v1/accounts", json={"companyName": "Initech"}, headers=auth_headers)
        assert res.status_code == 402
        body = res.get_json()
        assert body["error"] == "Insufficient credits"
        assert body["requiredCredits"] == 2000
        assert body["availableCredits"] == 1000
        assert client.get("/api/v1/accounts", headers=auth_headers).get_json()["total"] == 0

    def test_free_operation_passes_with_empty_balance(self, client, headers_for, app):
        from crm.services import tenant_service
        tenant_service.create_tenant("acme", "Acme")
        res = client.get("/api/v1/accounts", headers=headers_for())
        assert res.status_code == 200

    def test_consumption_records_resource_id(self, client, auth_headers):
        created = client.post("/api/v1/accounts", json={"companyName": "Initech"}, headers=auth_headers).get_json()
        row = db.session.query(CreditTransaction).filter_by(transaction_type="consumption").one()
        assert row.resource_id == created["id"]
        assert row.resource_type == "accounts"


class TestCreditEndpoints:
    def test_allocate_and_transactions(self, client, auth_headers):
        res = client.post("/api/v1/credits/allocate", json={"amount": 250, "description": "Top-up"},
                          headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["availableCredits"] == 1250.0

        page = client.get("/api/v1/credits/transactions", headers=auth_headers).get_json()
        assert page["total"] == 2
        assert page["items"][0]["transactionType"] == "allocation"
        assert page["items"][0]["amount"] == 250

    def test_allocate_requires_amount(self, client, auth_headers):
        res = client.post("/api/v1/credits/allocate", json={}, headers=auth_headers)
        assert res.status_code == 400

    def test_allocate_requires_permission(self, client, tenant, headers_for):
        res = client.post("/api/v1/credits/allocate", json={"amount": 10},
                          headers=headers_for("user-x", permissions=["crm.credits.read"]))
        assert res.status_code == 403
        assert res.get_json()["requiredPermission"] == "crm.credits.allocate"
