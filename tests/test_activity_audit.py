"""
Activity trail and audit-log tests.

Covers:
  - track_activity rows for successful and failed writes
  - credits consumed recorded on the activity row
  - /activity-logs: own trail vs one entity's trail
  - /audit-logs scoping: userId=me, read vs read_all, admin role, 403
  - date filters and invalid date input
"""

import pytest

from crm.core.exceptions import PermissionDeniedError
from crm.models import db
from crm.services import activity_service


def _log(user_id, resource_type="account", resource_id="1", operation_type="create"):
    activity_service.record_activity(
        tenant_id="acme",
        user_id=user_id,
        operation_type=operation_type,
        resource_type=resource_type,
        resource_id=resource_id,
    )


@pytest.fixture()
def seeded_logs(tenant):
    _log("user-a", resource_id="10")
    _log("user-a", resource_type="lead", resource_id="20")
    _log("user-b", resource_id="10", operation_type="update")
    db.session.commit()


# ── Tracking ─────────────────────────────────────────────────────────────────


class TestTrackActivity:
    def test_successful_create_logged(self, client, auth_headers):
        res = client.post("/api/v1/accounts", json={"companyName": "Initech"}, headers=auth_headers)
        account_id = res.get_json()["id"]

        logs = client.get("/api/v1/activity-logs", headers=auth_headers).get_json()["items"]
        assert len(logs) == 1
        entry = logs[0]
        assert entry["operationType"] == "create"
        assert entry["entityType"] == "account"
        assert entry["entityId"] == account_id
        assert entry["status"] == "success"
        assert entry["creditsConsumed"] == 1.0
        assert entry["operationDetails"]["statusCode"] == 201

    def test_failed_create_logged(self, client, auth_headers):
        res = client.post("/api/v1/accounts", json={}, headers=auth_headers)
        assert res.status_code == 400

        entry = client.get("/api/v1/activity-logs", headers=auth_headers).get_json()["items"][0]
        assert entry["status"] == "failure"
        assert entry["errorCode"] == "HTTP_400"
        assert entry["severity"] == "medium"
        assert entry["creditsConsumed"] == 0.0
        assert "companyName" in entry["errorMessage"]

    def test_update_logs_route_id(self, client, auth_headers):
        account_id = client.post("/api/v1/accounts", json={"companyName": "Initech"},
                                 headers=auth_headers).get_json()["id"]
        client.put(f"/api/v1/accounts/{account_id}", json={"phone": "1"}, headers=auth_headers)

        logs = client.get("/api/v1/activity-logs?operationType=update", headers=auth_headers).get_json()
        assert logs["total"] == 1
        assert logs["items"][0]["entityId"] == account_id
        assert logs["items"][0]["creditsConsumed"] == 0.5


class TestActivityLogs:
    def test_own_activity_only(self, client, headers_for, seeded_logs):
        body = client.get("/api/v1/activity-logs", headers=headers_for("user-a")).get_json()
        assert body["total"] == 2
        assert {e["userId"] for e in body["items"]} == {"user-a"}

    def test_entity_trail_spans_users(self, client, headers_for, seeded_logs):
        body = client.get("/api/v1/activity-logs?entityType=account&entityId=10",
                          headers=headers_for("user-a")).get_json()
        assert body["total"] == 2
        assert {e["userId"] for e in body["items"]} == {"user-a", "user-b"}

    def test_entity_trail_without_audit_permission_is_own_only(self, client, headers_for, seeded_logs):
        headers = headers_for("user-a", permissions=["crm.accounts.read"])
        body = client.get("/api/v1/activity-logs?entityType=account&entityId=10", headers=headers).get_json()
        assert body["total"] == 1
        assert {e["userId"] for e in body["items"]} == {"user-a"}

    def test_entity_trail_for_admin_role(self, client, headers_for, seeded_logs):
        headers = headers_for("user-c", permissions=[], roles=["admin"])
        body = client.get("/api/v1/activity-logs?entityType=account&entityId=10", headers=headers).get_json()
        assert body["total"] == 2


# ── Audit scoping ────────────────────────────────────────────────────────────


class TestAuditScope:
    def test_me_pins_to_caller(self):
        scope = activity_service.resolve_audit_scope(
            ["user-b", "me"], "user-a", ["crm.system.audit_read_all"],
        )
        assert scope == "user-a"

    def test_no_audit_permission_other_user_denied(self):
        with pytest.raises(PermissionDeniedError):
            activity_service.resolve_audit_scope(["user-b"], "user-a", ["crm.accounts.read"])

    def test_no_audit_permission_own_logs(self):
        assert activity_service.resolve_audit_scope([], "user-a", []) == "user-a"
        assert activity_service.resolve_audit_scope(["user-a"], "user-a", []) == "user-a"

    def test_read_without_all_forced_to_self(self):
        scope = activity_service.resolve_audit_scope(["user-b"], "user-a", ["crm.system.audit_read"])
        assert scope == "user-a"

    def test_read_all_may_filter(self):
        perms = ["system.activity_logs_read_all"]
        assert activity_service.resolve_audit_scope(["user-b"], "user-a", perms) == "user-b"
        assert activity_service.resolve_audit_scope([], "user-a", perms) is None

    def test_dotted_audit_permissions(self):
        assert activity_service.resolve_audit_scope(["user-b"], "user-a", ["system.audit.read"]) == "user-a"
        assert activity_service.resolve_audit_scope(["user-b"], "user-a", ["system.audit.read_all"]) == "user-b"
        assert activity_service.resolve_audit_scope([], "user-a", ["system.audit.read_all"]) is None

    def test_admin_role_sees_tenant(self):
        assert activity_service.resolve_audit_scope([], "user-a", [], roles=["admin"]) is None


class TestAuditLogsEndpoint:
    def test_me_returns_own_entries(self, client, headers_for, seeded_logs):
        res = client.get("/api/v1/audit-logs?userId=me", headers=headers_for("user-b", permissions=[]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["userId"] == "user-b"
        assert body["total"] == 1

    def test_other_user_without_audit_permission(self, client, headers_for, seeded_logs):
        res = client.get("/api/v1/audit-logs?userId=user-a",
                         headers=headers_for("user-b", permissions=["crm.accounts.read"]))
        assert res.status_code == 403

    def test_read_all_filters_by_user(self, client, headers_for, seeded_logs):
        headers = headers_for("user-b", permissions=["crm.system.audit_read_all"])
        body = client.get("/api/v1/audit-logs?userId=user-a", headers=headers).get_json()
        assert body["userId"] == "user-a"
        assert body["total"] == 2

    def test_admin_sees_everything(self, client, headers_for, seeded_logs):
        body = client.get("/api/v1/audit-logs",
                          headers=headers_for("user-b", permissions=[], roles=["admin"])).get_json()
        assert body["userId"] is None
        assert body["total"] == 3

    def test_date_filters(self, client, headers_for, seeded_logs):
        headers = headers_for("user-b", permissions=[], roles=["admin"])
        body = client.get("/api/v1/audit-logs?startDate=2000-01-01", headers=headers).get_json()
        assert body["total"] == 3
        body = client.get("/api/v1/audit-logs?startDate=2999-01-01", headers=headers).get_json()
        assert body["total"] == 0
        res = client.get("/api/v1/audit-logs?endDate=yesterday", headers=headers)
        assert res.status_code == 400

    def test_entity_filter(self, client, headers_for, seeded_logs):
        headers = headers_for("user-b", permissions=[], roles=["admin"])
        body = client.get("/api/v1/audit-logs?entityType=lead", headers=headers).get_json()
        assert body["total"] == 1
        assert body["items"][0]["entityId"] == "20"
