"""
Commercial document API tests — quotations, sales orders, invoices.

Covers:
  - totals recomputed server-side (client totals ignored)
  - the {2 x 100 @ 18%} + {1 x 50 @ 0%} scenario → 250 / 36 / 286
  - freight charges and discounts
  - generated document numbers and duplicate numbers (409)
  - quotation date rules, shipping method validation
  - invoice payments: balance, paid/sent transitions, overpayment
  - negative and non-finite money inputs
  - commit error mapping (unique → 409, other integrity errors propagate)
"""

import pytest
from sqlalchemy.exc import IntegrityError

from crm.core.exceptions import ConflictError
from crm.models import db
from crm.models.commercial import SalesOrder, compute_totals, normalize_item
from crm.utils.helpers import db_commit, is_unique_violation, to_float

ITEMS = [
    {"description": "Router", "quantity": 2, "unitPrice": 100, "gst": 18},
    {"description": "Cable", "quantity": 1, "unitPrice": 50, "gst": 0},
]

QUOTATION = {
    "oem": "Cisco",
    "issueDate": "2026-10-01",
    "validUntil": "2026-10-31",
    "items": ITEMS,
}


def _post(client, path, payload, headers, status=201):
    res = client.post(path, json=payload, headers=headers)
    assert res.status_code == status, res.get_json()
    return res.get_json()


class TestTotals:
    def test_normalize_item_accepts_snake_case(self):
        item = normalize_item({"qty": "3", "unit_price": "10", "gst_rate": 5})
        assert item["amount"] == 30.0
        assert item["gstAmount"] == 1.5
        assert item["total"] == 31.5

    def test_garbage_numbers_count_as_zero(self):
        item = normalize_item({"quantity": "many", "unitPrice": None})
        assert item["total"] == 0.0

    def test_to_float_rejects_non_finite(self):
        assert to_float("NaN") == 0.0
        assert to_float(float("inf"), default=None) is None
        assert to_float("-Infinity") == 0.0
        assert to_float("12.5") == 12.5

    def test_compute_totals(self):
        items, subtotal, gst_total = compute_totals(ITEMS)
        assert (subtotal, gst_total) == (250.0, 36.0)
        assert [i["total"] for i in items] == [236.0, 50.0]

    def test_empty_items(self):
        assert compute_totals([]) == ([], 0.0, 0.0)
        assert compute_totals(None) == ([], 0.0, 0.0)


class TestSalesOrders:
    def test_scenario_totals(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders", {"items": ITEMS}, auth_headers)
        assert order["subtotal"] == 250
        assert order["gstTotal"] == 36
        assert order["total"] == 286

    def test_client_totals_ignored(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders",
                      {"items": ITEMS, "subtotal": 1, "gstTotal": 1, "total": 1}, auth_headers)
        assert order["total"] == 286

    def test_freight_added(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders", {"items": ITEMS, "freightCharges": 14}, auth_headers)
        assert order["total"] == 300

    def test_update_recomputes(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders", {"items": ITEMS}, auth_headers)
        res = client.put(f"/api/v1/sales-orders/{order['id']}",
                         json={"items": [{"quantity": 1, "unitPrice": 10, "gst": 10}], "total": 999},
                         headers=auth_headers)
        body = res.get_json()
        assert (body["subtotal"], body["gstTotal"], body["total"]) == (10, 1, 11)

    def test_generated_numbers(self, client, auth_headers):
        first = _post(client, "/api/v1/sales-orders", {}, auth_headers)
        second = _post(client, "/api/v1/sales-orders", {}, auth_headers)
        assert first["orderNumber"] == "SO-00001"
        assert second["orderNumber"] == "SO-00002"

    def test_invalid_shipping_method(self, client, auth_headers):
        res = client.post("/api/v1/sales-orders", json={"shippingMethod": "Teleport"}, headers=auth_headers)
        assert res.status_code == 400

    def test_links_quotation(self, client, auth_headers):
        quotation = _post(client, "/api/v1/quotations", QUOTATION, auth_headers)
        order = _post(client, "/api/v1/sales-orders", {"quotationId": quotation["id"]}, auth_headers)
        assert order["quotationId"] == quotation["id"]


class TestQuotations:
    def test_create(self, client, auth_headers):
        q = _post(client, "/api/v1/quotations", QUOTATION, auth_headers)
        assert q["quotationNumber"] == "QT-00001"
        assert q["total"] == 286
        assert q["status"] == "draft"
        assert q["issueDate"] == "2026-10-01"

    def test_required_fields(self, client, auth_headers):
        res = client.post("/api/v1/quotations", json={"items": ITEMS}, headers=auth_headers)
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"oem", "issueDate", "validUntil"}

    def test_valid_until_before_issue_date(self, client, auth_headers):
        res = client.post("/api/v1/quotations", json={**QUOTATION, "validUntil": "2026-09-01"},
                          headers=auth_headers)
        assert res.status_code == 400

    def test_duplicate_number_is_409(self, client, auth_headers):
        _post(client, "/api/v1/quotations", {**QUOTATION, "quotationNumber": "Q-1"}, auth_headers)
        res = client.post("/api/v1/quotations", json={**QUOTATION, "quotationNumber": "Q-1"}, headers=auth_headers)
        assert res.status_code == 409

    def test_duplicate_number_not_charged(self, client, auth_headers):
        _post(client, "/api/v1/quotations", {**QUOTATION, "quotationNumber": "Q-1"}, auth_headers)
        client.post("/api/v1/quotations", json={**QUOTATION, "quotationNumber": "Q-1"}, headers=auth_headers)
        balance = client.get("/api/v1/credits/balance", headers=auth_headers).get_json()
        assert balance["usedCredits"] == 2.0

    def test_account_reference(self, client, auth_headers):
        account = _post(client, "/api/v1/accounts", {"companyName": "Initech"}, auth_headers)
        q = _post(client, "/api/v1/quotations", {**QUOTATION, "accountId": account["id"]}, auth_headers)
        assert q["accountName"] == "Initech"
        page = client.get(f"/api/v1/quotations?accountId={account['id']}", headers=auth_headers).get_json()
        assert page["total"] == 1

    def test_delete(self, client, auth_headers):
        q = _post(client, "/api/v1/quotations", QUOTATION, auth_headers)
        assert client.delete(f"/api/v1/quotations/{q['id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/v1/quotations/{q['id']}", headers=auth_headers).status_code == 404


class TestInvoices:
    @pytest.fixture()
    def invoice(self, client, auth_headers):
        return _post(client, "/api/v1/invoices",
                     {"items": ITEMS, "freightCharges": 20, "discounts": 6, "dueDate": "2026-11-30"},
                     auth_headers)

    def test_totals_with_freight_and_discount(self, invoice):
        assert invoice["total"] == 300
        assert invoice["totalDue"] == 300
        assert invoice["balance"] == 300
        assert invoice["amountPaid"] == 0
        assert invoice["invoiceNumber"] == "INV-00001"

    def test_partial_payment(self, client, auth_headers, invoice):
        res = client.post(f"/api/v1/invoices/{invoice['id']}/payments",
                          json={"amount": 100, "method": "bank", "paymentDate": "2026-10-15"},
                          headers=auth_headers)
        assert res.status_code == 201
        body = res.get_json()
        assert body["amountPaid"] == 100
        assert body["balance"] == 200
        assert body["status"] == "sent"
        assert body["paymentHistory"][0]["paymentDate"] == "2026-10-15"

    def test_full_payment_marks_paid(self, client, auth_headers, invoice):
        client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 100}, headers=auth_headers)
        body = client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 200},
                           headers=auth_headers).get_json()
        assert body["balance"] == 0
        assert body["status"] == "paid"
        assert len(body["paymentHistory"]) == 2

    def test_overpayment_is_400(self, client, auth_headers, invoice):
        res = client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 301},
                          headers=auth_headers)
        assert res.status_code == 400

    def test_non_positive_payment_is_400(self, client, auth_headers, invoice):
        res = client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 0},
                          headers=auth_headers)
        assert res.status_code == 400

    def test_balance_follows_item_changes(self, client, auth_headers, invoice):
        client.post(f"/api/v1/invoices/{invoice['id']}/payments", json={"amount": 100}, headers=auth_headers)
        body = client.put(f"/api/v1/invoices/{invoice['id']}",
                          json={"items": [{"quantity": 4, "unitPrice": 100, "gst": 0}]},
                          headers=auth_headers).get_json()
        assert body["total"] == 414
        assert body["balance"] == 314

    def test_unknown_status_is_400(self, client, auth_headers, invoice):
        res = client.put(f"/api/v1/invoices/{invoice['id']}", json={"status": "lost"}, headers=auth_headers)
        assert res.status_code == 400


class TestAmountValidation:
    def test_negative_quantity_rejected(self, client, auth_headers):
        res = client.post("/api/v1/sales-orders",
                          json={"items": [{"quantity": -3, "unitPrice": 100, "gst": 18}]},
                          headers=auth_headers)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"]["items[0].quantity"] == "invalid"
        assert client.get("/api/v1/sales-orders", headers=auth_headers).get_json()["total"] == 0

    def test_negative_price_and_gst_rejected(self, client, auth_headers):
        res = client.post("/api/v1/quotations",
                          json={**QUOTATION, "items": [{"quantity": 1, "unitPrice": -5, "gst": -1}]},
                          headers=auth_headers)
        assert res.status_code == 400
        assert set(res.get_json()["details"]) >= {"items[0].unitPrice", "items[0].gst"}

    def test_negative_freight_rejected(self, client, auth_headers):
        res = client.post("/api/v1/sales-orders", json={"items": ITEMS, "freightCharges": -10},
                          headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"freightCharges": "invalid"}

    def test_discount_larger_than_total_rejected(self, client, auth_headers):
        res = client.post("/api/v1/invoices",
                          json={"items": [{"quantity": 1, "unitPrice": 100, "gst": 0}], "discounts": 500},
                          headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"total": "invalid"}

    def test_negative_discount_rejected(self, client, auth_headers):
        res = client.post("/api/v1/invoices", json={"items": ITEMS, "discounts": -1}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"discounts": "invalid"}

    def test_update_to_negative_rejected_and_rolled_back(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders", {"items": ITEMS}, auth_headers)
        res = client.put(f"/api/v1/sales-orders/{order['id']}",
                         json={"items": [{"quantity": 1, "unitPrice": -100}]}, headers=auth_headers)
        assert res.status_code == 400
        assert client.get(f"/api/v1/sales-orders/{order['id']}", headers=auth_headers).get_json()["total"] == 286

    def test_non_finite_numbers_count_as_zero(self, client, auth_headers):
        order = _post(client, "/api/v1/sales-orders",
                      {"items": [{"quantity": "NaN", "unitPrice": 100}, {"quantity": 1, "unitPrice": "Infinity"}]},
                      auth_headers)
        assert order["subtotal"] == 0
        assert order["total"] == 0
        assert order["orderNumber"] == "SO-00001"


class TestCommit:
    def test_unique_violation_is_conflict(self, tenant):
        db.session.add(SalesOrder(tenant_id="acme", order_number="SO-1", created_by="u"))
        db_commit("Sales order")
        db.session.add(SalesOrder(tenant_id="acme", order_number="SO-1", created_by="u"))
        with pytest.raises(ConflictError):
            db_commit("Sales order", "order_number", "SO-1")

    def test_other_integrity_errors_propagate(self, tenant):
        db.session.add(SalesOrder(tenant_id="acme", order_number="SO-2", created_by=None))
        with pytest.raises(IntegrityError) as excinfo:
            db_commit("Sales order", "order_number", "SO-2")
        assert not is_unique_violation(excinfo.value)
        assert db.session.query(SalesOrder).count() == 0
