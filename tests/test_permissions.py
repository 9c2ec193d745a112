"""
Permission Tests.

Test blocks:
  1. permission_matches / has_*_permission — exact, wildcard, system.X ≡ crm.system.X
  2. Role-derived permissions — assignment grants, expiry, revocation, cache invalidation
  3. @require_permission on routes — 403 body carries requiredPermission
"""

from datetime import datetime, timedelta, timezone

import pytest

from crm.models import db
from crm.models.user import CrmRole, RoleAssignment, UserProfile
from crm.services import permission_service, user_service
from crm.services.permission_service import (
    get_effective_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
    normalize_permission,
    permission_matches,
)


# ── 1. Matching ─────────────────────────────────────────────────────────────


class TestPermissionMatching:
    def test_exact(self):
        assert permission_matches("crm.contacts.create", "crm.contacts.create")
        assert not permission_matches("crm.contacts.read", "crm.contacts.create")

    @pytest.mark.parametrize("held", ["*", "crm.*", "crm.contacts.*"])
    def test_wildcards(self, held):
        assert permission_matches(held, "crm.contacts.create")

    def test_module_wildcard_does_not_leak(self):
        assert not permission_matches("crm.contacts.*", "crm.accounts.read")

    @pytest.mark.parametrize("held,required", [
        ("system.audit_read", "crm.system.audit_read"),
        ("crm.system.audit_read", "system.audit_read"),
        ("crm.system.audit_read", "crm.system.audit_read"),
    ])
    def test_system_equivalence(self, held, required):
        assert permission_matches(held, required)
        assert permission_matches(required, held)

    def test_normalize(self):
        assert normalize_permission("crm.system.audit_read") == "system.audit_read"
        assert normalize_permission("crm.contacts.read") == "crm.contacts.read"

    def test_empty_never_matches(self):
        assert not permission_matches("", "crm.contacts.read")
        assert not has_permission([], "crm.contacts.read")
        assert not has_permission(None, "crm.contacts.read")

    def test_any_and_all(self):
        held = ["crm.contacts.read", "system.audit_read"]
        assert has_any_permission(held, ["crm.accounts.read", "crm.system.audit_read"])
        assert not has_any_permission(held, ["crm.accounts.read"])
        assert has_all_permissions(held, ["crm.contacts.read", "crm.system.audit_read"])
        assert not has_all_permissions(held, ["crm.contacts.read", "crm.accounts.read"])


# ── 2. Role-derived permissions ─────────────────────────────────────────────


@pytest.fixture()
def sales_role(tenant):
    return user_service.create_role("acme", {
        "roleId": "sales_rep",
        "name": "Sales Rep",
        "permissions": ["crm.contacts.read", "crm.contacts.create"],
    })


@pytest.fixture()
def profile(tenant):
    return user_service.create_user("acme", {
        "userId": "user-rep",
        "firstName": "Riya",
        "lastName": "Shah",
        "email": "riya@example.com",
    }, "user-admin")


class TestRolePermissions:
    def test_claims_only_without_assignments(self, profile):
        assert get_effective_permissions("acme", "user-rep", ["crm.leads.read"]) == ["crm.leads.read"]

    def test_assignment_grants_role_permissions(self, sales_role, profile):
        user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep"}, "user-admin")
        perms = get_effective_permissions("acme", "user-rep", ["crm.leads.read"])
        assert set(perms) == {"crm.leads.read", "crm.contacts.read", "crm.contacts.create"}

    def test_expired_assignment_ignored(self, sales_role, profile):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep", "expiresAt": past}, "user-admin")
        assert get_effective_permissions("acme", "user-rep") == []

    def test_revocation_invalidates_cache(self, sales_role, profile):
        assignment = user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep"}, "user-admin")
        assert "crm.contacts.read" in get_effective_permissions("acme", "user-rep")
        user_service.revoke_role("acme", profile["id"], assignment["assignmentId"], "user-admin")
        assert get_effective_permissions("acme", "user-rep") == []

    def test_pending_assignment_links_when_role_defined(self, profile):
        user_service.assign_role("acme", profile["id"], {"roleId": "late_role"}, "user-admin")
        assert get_effective_permissions("acme", "user-rep") == []
        user_service.create_role("acme", {"roleId": "late_role", "name": "Late", "permissions": ["crm.leads.read"]})
        assignment = db.session.query(RoleAssignment).filter_by(role_id_string="late_role").one()
        assert assignment.role_ref_id is not None
        assert get_effective_permissions("acme", "user-rep") == ["crm.leads.read"]

    def test_inactive_role_grants_nothing(self, sales_role, profile):
        user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep"}, "user-admin")
        role = db.session.query(CrmRole).filter_by(role_id="sales_rep").one()
        role.is_active = False
        db.session.commit()
        permission_service.invalidate_all_cache()
        assert get_effective_permissions("acme", "user-rep") == []

    def test_roles_are_tenant_scoped(self, sales_role, profile):
        from crm.services import tenant_service
        tenant_service.create_tenant("globex", "Globex")
        other = UserProfile(tenant_id="globex", user_id="user-rep", first_name="Riya", email="riya.globex@example.com")
        db.session.add(other)
        db.session.commit()
        user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep"}, "user-admin")
        assert get_effective_permissions("globex", "user-rep") == []


# ── 3. Route gate ───────────────────────────────────────────────────────────


class TestRequirePermission:
    def test_denied_returns_403_with_required_permission(self, client, tenant, headers_for):
        res = client.post("/api/v1/contacts", json={"firstName": "Ann"},
                          headers=headers_for("user-reader", permissions=["crm.contacts.read"]))
        assert res.status_code == 403
        body = res.get_json()
        assert body["error"] == "Insufficient permissions"
        assert body["requiredPermission"] == "crm.contacts.create"

    def test_read_permission_allows_list(self, client, tenant, headers_for):
        res = client.get("/api/v1/contacts", headers=headers_for("user-reader", permissions=["crm.contacts.read"]))
        assert res.status_code == 200

    def test_role_assignment_opens_route(self, client, tenant, headers_for, sales_role, profile):
        headers = headers_for("user-rep", permissions=[])
        assert client.post("/api/v1/contacts", json={"firstName": "Ann"}, headers=headers).status_code == 403
        user_service.assign_role("acme", profile["id"], {"roleId": "sales_rep"}, "user-admin")
        res = client.post("/api/v1/contacts", json={"firstName": "Ann"}, headers=headers)
        assert res.status_code == 201

    def test_denied_request_is_not_charged(self, client, tenant, headers_for):
        before = client.get("/api/v1/credits/balance", headers=headers_for()).get_json()["availableCredits"]
        client.post("/api/v1/contacts", json={"firstName": "Ann"},
                    headers=headers_for("user-reader", permissions=["crm.contacts.read"]))
        after = client.get("/api/v1/credits/balance", headers=headers_for()).get_json()["availableCredits"]
        assert before == after
