"""
Tenant Context Middleware Tests.

Test blocks:
  1. extract_tenant_id — source precedence (header → JWT → query → body → org claim → subdomain)
  2. validate_tenant_id — format rules
  3. Request chain — 400 before 401, 404 unknown, 403 inactive, g.tenant set
  4. resolve_tenant_for_user — claim walk + development fallback
"""

import pytest

from crm.core.exceptions import TenantContextError
from crm.models import db
from crm.models.tenant import Tenant
from crm.services import tenant_service
from crm.services.tenant_service import extract_tenant_id, resolve_tenant_for_user, validate_tenant_id


# ── 1. extract_tenant_id ────────────────────────────────────────────────────


class TestExtractTenantId:
    def test_header_wins_over_every_other_source(self, app):
        with app.test_request_context(
            "/api/v1/contacts?tenantId=from-query",
            method="POST",
            headers={"X-Tenant-ID": "from-header"},
            json={"tenantId": "from-body"},
        ):
            from flask import request
            assert extract_tenant_id(request, {"tenant_id": "from-jwt"}) == "from-header"

    def test_jwt_claim_before_query(self, app):
        with app.test_request_context("/api/v1/contacts?tenantId=from-query"):
            from flask import request
            assert extract_tenant_id(request, {"tenantId": "from-jwt"}) == "from-jwt"

    def test_query_then_body(self, app):
        with app.test_request_context("/api/v1/contacts?tenant_id=from-query", method="POST",
                                      json={"tenantId": "from-body"}):
            from flask import request
            assert extract_tenant_id(request, None) == "from-query"
        with app.test_request_context("/api/v1/contacts", method="POST", json={"tenant_id": "from-body"}):
            from flask import request
            assert extract_tenant_id(request, None) == "from-body"

    def test_primary_org_claim(self, app):
        with app.test_request_context("/api/v1/contacts"):
            from flask import request
            assert extract_tenant_id(request, {"primaryOrgId": "org-tenant"}) == "org-tenant"

    def test_subdomain_heuristic(self, app):
        with app.test_request_context("/api/v1/contacts", base_url="http://acme.crm.example.com"):
            from flask import request
            assert extract_tenant_id(request, None) == "acme"

    @pytest.mark.parametrize("host", [
        "http://localhost:5000",
        "http://127.0.0.1:5000",
        "http://www.example.com",
        "http://api.example.com",
        "http://crm.example.com",
        "http://intranet",
    ])
    def test_subdomain_ignored_hosts(self, app, host):
        with app.test_request_context("/api/v1/contacts", base_url=host):
            from flask import request
            assert extract_tenant_id(request, None) is None

    def test_blank_header_falls_through(self, app):
        with app.test_request_context("/api/v1/contacts", headers={"X-Tenant-ID": "  "}):
            from flask import request
            assert extract_tenant_id(request, {"tenant_id": "acme"}) == "acme"


# ── 2. validate_tenant_id ───────────────────────────────────────────────────


class TestValidateTenantId:
    @pytest.mark.parametrize("tenant_id", ["acme", "a1b", "acme-corp_01", "A" * 50])
    def test_valid(self, tenant_id):
        assert validate_tenant_id(tenant_id) == tenant_id

    def test_missing(self):
        with pytest.raises(TenantContextError) as exc:
            validate_tenant_id(None)
        assert exc.value.status == 400
        assert str(exc.value) == "Tenant ID is required"

    @pytest.mark.parametrize("tenant_id", ["ab", "-acme", "acme-", "acme corp", "a" * 51, "acme!"])
    def test_invalid_format(self, tenant_id):
        with pytest.raises(TenantContextError) as exc:
            validate_tenant_id(tenant_id)
        assert exc.value.status == 400
        assert str(exc.value) == "Invalid tenant ID format"


# ── 3. Request chain ────────────────────────────────────────────────────────


class TestRequestChain:
    def test_missing_tenant_is_400_even_without_token(self, client, tenant):
        res = client.get("/api/v1/contacts")
        assert res.status_code == 400
        assert res.get_json()["error"] == "Tenant ID is required"

    def test_invalid_tenant_format_is_400(self, client, headers_for, tenant):
        headers = headers_for(tenant_id=None)
        headers["X-Tenant-ID"] = "bad tenant!"
        res = client.get("/api/v1/contacts", headers=headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Invalid tenant ID format"

    def test_tenant_without_user_is_401(self, client, tenant):
        res = client.get("/api/v1/contacts", headers={"X-Tenant-ID": "acme"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "User not authenticated"

    def test_garbage_token_is_401(self, client, tenant):
        res = client.get("/api/v1/contacts",
                         headers={"X-Tenant-ID": "acme", "Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_unknown_tenant_is_404(self, client, headers_for, tenant):
        headers = headers_for(tenant_id=None)
        headers["X-Tenant-ID"] = "ghost-tenant"
        res = client.get("/api/v1/contacts", headers=headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == "Tenant not found"

    def test_unknown_header_falls_back_to_claimed_tenant(self, client, make_token, tenant):
        token = make_token(tenant_id="acme")
        res = client.get("/api/v1/contacts",
                         headers={"Authorization": f"Bearer {token}", "X-Tenant-ID": "ghost-tenant"})
        assert res.status_code == 200

    def test_inactive_tenant_is_403(self, client, auth_headers, tenant):
        tenant.status = "suspended"
        db.session.commit()
        res = client.get("/api/v1/contacts", headers=auth_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Tenant inactive"

    def test_tenant_from_jwt_claim_only(self, client, make_token, tenant):
        token = make_token(tenant_id="acme")
        res = client.get("/api/v1/contacts", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 200
        assert res.get_json()["items"] == []

    def test_health_skips_tenant_chain(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["status"] == "healthy"
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_request_id_echoed(self, client, auth_headers):
        res = client.get("/api/v1/contacts", headers={**auth_headers, "X-Request-ID": "req-123"})
        assert res.headers["X-Request-ID"] == "req-123"
        assert "X-Request-Duration-Ms" in res.headers


# ── 4. resolve_tenant_for_user ──────────────────────────────────────────────


class TestResolveTenantForUser:
    def test_walks_entities_claim(self, app, tenant):
        claims = {"entities": [{"id": "nope"}, {"id": "acme"}]}
        assert resolve_tenant_for_user(claims, "ghost").tenant_id == "acme"

    def test_string_entities(self, app, tenant):
        assert resolve_tenant_for_user({"entities": ["acme"]}).tenant_id == "acme"

    def test_skips_inactive(self, app, tenant):
        tenant_service.create_tenant("dormant", "Dormant Ltd", status="inactive")
        assert resolve_tenant_for_user({"tenant_id": "dormant"}) is None

    def test_dev_fallback_only_when_enabled(self, app, tenant):
        assert resolve_tenant_for_user({}, "ghost") is None
        app.config["TENANT_DEV_FALLBACK"] = True
        try:
            assert resolve_tenant_for_user({}, "ghost").tenant_id == "acme"
        finally:
            app.config["TENANT_DEV_FALLBACK"] = False

    def test_create_tenant_rejects_duplicate(self, app, tenant):
        from crm.core.exceptions import ConflictError
        with pytest.raises(ConflictError):
            tenant_service.create_tenant("acme", "Again")
        assert db.session.query(Tenant).count() == 1
