"""
Documents and quotation PDF tests.

Covers:
  - document registration, entity listing, creator-only delete
  - multipart upload and download through the local storage route
  - quotation PDF download / saveToStorage / HTML preview
  - money, date and address formatting used by the template
  - renderer failures and timeouts
"""

import io
import time

import pytest

from crm.core.exceptions import PdfRenderError
from crm.models import db
from crm.models.document import Document
from crm.pdf.quotation_template import (
    ADDRESS_FALLBACK,
    build_address,
    build_quotation_context,
    format_currency,
    format_date,
)
from crm.pdf.renderer import PdfRenderer, render_with_timeout
from crm.services import credit_service, pdf_service
from crm.storage import get_storage

DOCUMENT = {
    "name": "Signed NDA.pdf",
    "fileUrl": "https://files.example.com/nda.pdf",
    "fileKey": "acme/documents/account/nda.pdf",
    "fileType": "application/pdf",
    "fileSize": 2048,
    "entityType": "account",
    "entityId": "42",
    "metadata": {"signed": True},
}


def _post(client, path, payload, headers, status=201):
    res = client.post(path, json=payload, headers=headers)
    assert res.status_code == status, res.get_json()
    return res.get_json()


# ── Documents ────────────────────────────────────────────────────────────────


class TestDocuments:
    def test_register_and_list(self, client, auth_headers):
        doc = _post(client, "/api/v1/documents", DOCUMENT, auth_headers)
        assert doc["fileSize"] == 2048
        assert doc["metadata"] == {"signed": True}
        assert doc["createdBy"] == "user-admin"

        listing = client.get("/api/v1/documents/account/42", headers=auth_headers).get_json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == doc["id"]
        assert client.get("/api/v1/documents/account/43", headers=auth_headers).get_json()["total"] == 0

        fetched = client.get(f"/api/v1/documents/{doc['id']}", headers=auth_headers).get_json()
        assert fetched["name"] == "Signed NDA.pdf"

    def test_register_requires_fields(self, client, auth_headers):
        res = client.post("/api/v1/documents", json={"name": "x"}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_only_creator_deletes(self, client, auth_headers, headers_for):
        doc = _post(client, "/api/v1/documents", DOCUMENT, auth_headers)
        res = client.delete(f"/api/v1/documents/{doc['id']}", headers=headers_for("user-other"))
        assert res.status_code == 403

        res = client.delete(f"/api/v1/documents/{doc['id']}", headers=auth_headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/documents/{doc['id']}", headers=auth_headers).status_code == 404

    def test_upload_and_download(self, client, auth_headers):
        res = client.post(
            "/api/v1/documents/upload",
            data={"file": (io.BytesIO(b"meeting notes"), "notes.txt"), "entityType": "lead", "entityId": "7"},
            headers=auth_headers,
            content_type="multipart/form-data",
        )
        assert res.status_code == 201, res.get_json()
        doc = res.get_json()
        assert doc["name"] == "notes.txt"
        assert doc["fileSize"] == len(b"meeting notes")
        assert doc["fileKey"].startswith("acme/documents/lead/")
        assert doc["fileUrl"].startswith("http://testserver/api/v1/documents/files/")

        download = client.get(f"/api/v1/documents/files/{doc['fileKey']}", headers=auth_headers)
        assert download.status_code == 200
        assert download.data == b"meeting notes"

    def test_empty_upload_rejected(self, client, auth_headers):
        res = client.post(
            "/api/v1/documents/upload",
            data={"file": (io.BytesIO(b""), "empty.txt"), "entityType": "lead", "entityId": "7"},
            headers=auth_headers,
            content_type="multipart/form-data",
        )
        assert res.status_code == 400

    def test_download_unknown_key(self, client, auth_headers):
        res = client.get("/api/v1/documents/files/acme/documents/none.txt", headers=auth_headers)
        assert res.status_code == 404


class TestDocumentKeys:
    def _upload(self, client, headers):
        res = client.post(
            "/api/v1/documents/upload",
            data={"file": (io.BytesIO(b"contract"), "contract.txt"), "entityType": "account", "entityId": "1"},
            headers=headers,
            content_type="multipart/form-data",
        )
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    def test_key_outside_tenant_rejected(self, client, auth_headers):
        for key in ("documents/account/nda.pdf", "globex/documents/nda.pdf", "acme/../globex/nda.pdf"):
            res = client.post("/api/v1/documents", json={**DOCUMENT, "fileKey": key}, headers=auth_headers)
            assert res.status_code == 400
            assert res.get_json()["details"] == {"fileKey": "invalid"}

    def test_key_owned_by_another_document_rejected(self, client, auth_headers, headers_for):
        doc = self._upload(client, auth_headers)
        res = client.post("/api/v1/documents", json={**DOCUMENT, "fileKey": doc["fileKey"]},
                          headers=headers_for("user-other"))
        assert res.status_code == 409

        download = client.get(f"/api/v1/documents/files/{doc['fileKey']}", headers=auth_headers)
        assert download.status_code == 200
        assert download.data == b"contract"

    def test_shared_key_survives_deleting_one_row(self, client, auth_headers):
        doc = self._upload(client, auth_headers)
        twin = Document(tenant_id="acme", name="copy", file_key=doc["fileKey"], file_url=doc["fileUrl"],
                        file_type="text/plain", entity_type="account", entity_id="2", created_by="user-admin")
        db.session.add(twin)
        db.session.commit()

        assert client.delete(f"/api/v1/documents/{twin.id}", headers=auth_headers).status_code == 200
        download = client.get(f"/api/v1/documents/files/{doc['fileKey']}", headers=auth_headers)
        assert download.data == b"contract"

        assert client.delete(f"/api/v1/documents/{doc['id']}", headers=auth_headers).status_code == 200
        assert not get_storage().exists(doc["fileKey"])

    def test_missing_file_is_404(self, client, auth_headers):
        _post(client, "/api/v1/documents", DOCUMENT, auth_headers)
        res = client.get(f"/api/v1/documents/files/{DOCUMENT['fileKey']}", headers=auth_headers)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── Template helpers ─────────────────────────────────────────────────────────


class TestFormatting:
    def test_indian_grouping(self):
        assert format_currency(1234567.5) == "₹12,34,567.50"
        assert format_currency(999) == "₹999.00"
        assert format_currency(-50) == "-₹50.00"

    def test_other_currencies(self):
        assert format_currency(1234.5, "USD") == "$1,234.50"
        assert format_currency(1000, "INR", symbol=False) == "INR 1,000.00"
        assert format_currency(10, "JPY") == "JPY 10.00"

    def test_format_date(self):
        assert format_date("2026-10-19") == "19 October 2026"
        assert format_date("soon") == "soon"
        assert format_date(None) == ""

    def test_build_address_fallbacks(self):
        assert build_address(None) == ADDRESS_FALLBACK
        assert build_address({"billingAddress": {}}) == ADDRESS_FALLBACK
        assert build_address({
            "billingAddress": {"street": " "},
            "shippingAddress": {"city": "Pune", "country": "India"},
        }) == "Pune, India"
        assert build_address({"billingAddress": {"street": "1 Main St", "postalCode": "411001"}}) == \
            "1 Main St, 411001"

    def test_context_defaults(self):
        context = build_quotation_context({
            "quotationNumber": "QT-00009",
            "items": [{"description": "Router", "quantity": 2, "unitPrice": 100, "gst": 18}],
        })
        assert context["accountName"] == "Customer Name"
        assert context["contactName"] == "Contact Person"
        assert context["contactEmail"] == "N/A"
        assert context["items"][0]["sku"] == "N/A"
        assert context["items"][0]["gst"] == "18%"
        assert (context["subtotal"], context["gstTotal"], context["total"]) == (200, 36, 236)


# ── Rendering ────────────────────────────────────────────────────────────────


class _SlowRenderer(PdfRenderer):
    name = "slow"

    def render(self, context, options=None):
        time.sleep(0.5)
        return b"%PDF-late"


class _BrokenRenderer(PdfRenderer):
    name = "broken"

    def render(self, context, options=None):
        raise RuntimeError("renderer crashed")


class TestRenderer:
    def test_timeout(self):
        with pytest.raises(PdfRenderError, match="timed out"):
            render_with_timeout(_SlowRenderer(), {}, timeout=0.05)

    def test_failure_wrapped(self):
        with pytest.raises(PdfRenderError, match="renderer crashed"):
            render_with_timeout(_BrokenRenderer(), {})


class TestQuotationPdf:
    @pytest.fixture()
    def quotation(self, client, auth_headers):
        return _post(client, "/api/v1/quotations",
                     {"oem": "Cisco", "issueDate": "2026-10-01", "validUntil": "2026-10-31"}, auth_headers)

    def test_download_pdf(self, client, auth_headers, quotation):
        res = client.post("/api/v1/pdf/quotation", json={"quotationId": quotation["id"]}, headers=auth_headers)
        assert res.status_code == 200
        assert res.mimetype == "application/pdf"
        assert res.data.startswith(b"%PDF")
        assert "Quotation-QT-00001.pdf" in res.headers["Content-Disposition"]
        assert res.headers["Cache-Control"].startswith("no-cache")
        # 2.0 for the quotation, 3.0 for the PDF
        assert credit_service.available_credits("acme") == 995.0

    def test_get_download(self, client, auth_headers, quotation):
        res = client.get(f"/api/v1/pdf/quotation/{quotation['id']}?format=Letter", headers=auth_headers)
        assert res.status_code == 200
        assert res.data.startswith(b"%PDF")

    def test_save_to_storage(self, client, auth_headers, quotation):
        doc = _post(client, "/api/v1/pdf/quotation",
                    {"quotationId": quotation["id"], "saveToStorage": True}, auth_headers)
        assert doc["entityType"] == "quotation"
        assert doc["entityId"] == quotation["id"]
        assert doc["fileType"] == "application/pdf"
        assert doc["fileKey"].startswith("acme/quotations/")
        assert doc["name"] == "Quotation-QT-00001.pdf"
        assert doc["metadata"]["quotationNumber"] == "QT-00001"
        assert doc["metadata"]["issueDate"] == "2026-10-01"

        listing = client.get(f"/api/v1/documents/quotation/{quotation['id']}", headers=auth_headers).get_json()
        assert listing["total"] == 1

    def test_missing_quotation_id(self, client, auth_headers):
        res = client.post("/api/v1/pdf/quotation", json={}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Quotation ID is required"

    def test_unknown_quotation(self, client, auth_headers):
        res = client.post("/api/v1/pdf/quotation", json={"quotationId": "999"}, headers=auth_headers)
        assert res.status_code == 404

    def test_preview_html(self, client, auth_headers, quotation):
        res = client.get(f"/api/v1/pdf/quotation/{quotation['id']}/preview", headers=auth_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/html"
        html = res.get_data(as_text=True)
        assert "QT-00001" in html
        assert "Acme Industries" in html

    def test_render_failure_is_500_without_charge(self, client, auth_headers, quotation, monkeypatch):
        monkeypatch.setattr(pdf_service, "get_renderer", lambda: _BrokenRenderer())
        res = client.post("/api/v1/pdf/quotation", json={"quotationId": quotation["id"]}, headers=auth_headers)
        assert res.status_code == 500
        body = res.get_json()
        assert body["error"] == "Failed to generate PDF"
        assert body["code"] == "ERR_PDF_RENDER"
        assert credit_service.available_credits("acme") == 998.0
