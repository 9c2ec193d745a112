"""
User, role and organization API tests.

Covers:
  - user profile CRUD, email validation and duplicate userId (409)
  - /users/me context (404 without a profile)
  - org assignment: primary demotion, unresolved org codes
  - role assignment and revocation feeding effective permissions
  - role definitions linking earlier raw-string assignments
  - organization hierarchy (tree, cycles, duplicate codes)
"""

import pytest

from crm.services import permission_service


def _post(client, path, payload, headers, status=201):
    res = client.post(path, json=payload, headers=headers)
    assert res.status_code == status, res.get_json()
    return res.get_json()


@pytest.fixture()
def rep(client, auth_headers):
    return _post(client, "/api/v1/users", {
        "userId": "user-rep",
        "firstName": "Riya",
        "lastName": "Shah",
        "email": "Riya.Shah@Example.com",
        "department": "Sales",
    }, auth_headers)


# ── Profiles ─────────────────────────────────────────────────────────────────


class TestUserProfiles:
    def test_create_normalizes_email(self, rep):
        assert rep["userId"] == "user-rep"
        assert rep["fullName"] == "Riya Shah"
        assert rep["email"] == "Riya.Shah@example.com"
        assert rep["roleAssignments"] == []
        assert rep["primaryOrgCode"] is None

    def test_invalid_email_rejected(self, client, auth_headers):
        res = client.post("/api/v1/users", json={
            "userId": "user-bad", "firstName": "Bad", "email": "not-an-email",
        }, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"email": "invalid"}

    def test_required_fields(self, client, auth_headers):
        res = client.post("/api/v1/users", json={"userId": "user-x"}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_duplicate_user_id_conflicts(self, client, auth_headers, rep):
        res = client.post("/api/v1/users", json={
            "userId": "user-rep", "firstName": "Other", "email": "other@example.com",
        }, headers=auth_headers)
        assert res.status_code == 409

    def test_list_filters(self, client, auth_headers, rep):
        _post(client, "/api/v1/users", {
            "userId": "user-ops", "firstName": "Omar", "email": "omar@example.com",
            "department": "Operations", "isActive": False,
        }, auth_headers)
        page = client.get("/api/v1/users?department=Sales", headers=auth_headers).get_json()
        assert [u["userId"] for u in page["items"]] == ["user-rep"]
        page = client.get("/api/v1/users?isActive=false", headers=auth_headers).get_json()
        assert [u["userId"] for u in page["items"]] == ["user-ops"]
        page = client.get("/api/v1/users?search=omar", headers=auth_headers).get_json()
        assert page["total"] == 1

    def test_update_and_delete(self, client, auth_headers, rep):
        res = client.put(f"/api/v1/users/{rep['id']}", json={"jobTitle": "Account Executive"},
                         headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["jobTitle"] == "Account Executive"

        res = client.put(f"/api/v1/users/{rep['id']}", json={"firstName": ""}, headers=auth_headers)
        assert res.status_code == 400

        res = client.delete(f"/api/v1/users/{rep['id']}", headers=auth_headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/users/{rep['id']}", headers=auth_headers).status_code == 404


class TestCurrentUser:
    def test_me_without_profile_is_404(self, client, auth_headers):
        res = client.get("/api/v1/users/me", headers=auth_headers)
        assert res.status_code == 404

    def test_me_returns_context(self, client, auth_headers, headers_for):
        _post(client, "/api/v1/organizations", {"orgCode": "WEST", "name": "West Region"}, auth_headers)
        _post(client, "/api/v1/users", {
            "userId": "user-rep", "firstName": "Riya", "email": "riya@example.com", "orgCode": "WEST",
        }, auth_headers)

        res = client.get("/api/v1/users/me", headers=headers_for("user-rep", permissions=["crm.accounts.read"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["tenantId"] == "acme"
        assert body["user"]["userId"] == "user-rep"
        assert body["primaryOrgCode"] == "WEST"
        assert body["permissions"] == ["crm.accounts.read"]
        assert body["credits"]["availableCredits"] == 1000.0


# ── Assignments ──────────────────────────────────────────────────────────────


class TestOrganizationAssignments:
    def test_new_primary_demotes_previous(self, client, auth_headers, rep):
        _post(client, "/api/v1/organizations", {"orgCode": "WEST", "name": "West"}, auth_headers)
        _post(client, "/api/v1/organizations", {"orgCode": "EAST", "name": "East"}, auth_headers)

        first = _post(client, f"/api/v1/users/{rep['id']}/organizations", {"orgCode": "WEST"}, auth_headers)
        assert first["assignmentType"] == "primary"
        assert first["entityId"] is not None
        _post(client, f"/api/v1/users/{rep['id']}/organizations", {"orgCode": "EAST"}, auth_headers)

        user = client.get(f"/api/v1/users/{rep['id']}", headers=auth_headers).get_json()
        assert user["primaryOrgCode"] == "EAST"
        types = {a["entityIdString"]: a["assignmentType"] for a in user["organizationAssignments"]}
        assert types == {"WEST": "secondary", "EAST": "primary"}

    def test_unknown_org_code_kept_as_string(self, client, auth_headers, rep):
        assignment = _post(client, f"/api/v1/users/{rep['id']}/organizations",
                           {"orgCode": "FUTURE", "assignmentType": "temporary"}, auth_headers)
        assert assignment["entityId"] is None
        assert assignment["entityIdString"] == "FUTURE"
        assert assignment["assignmentType"] == "temporary"

    def test_bad_assignment_type(self, client, auth_headers, rep):
        res = client.post(f"/api/v1/users/{rep['id']}/organizations",
                          json={"orgCode": "WEST", "assignmentType": "forever"}, headers=auth_headers)
        assert res.status_code == 400


class TestRoleAssignments:
    def test_assign_and_revoke(self, client, auth_headers, rep):
        _post(client, "/api/v1/roles", {
            "roleId": "sales_rep", "name": "Sales Rep", "permissions": ["crm.leads.*"],
        }, auth_headers)
        assignment = _post(client, f"/api/v1/users/{rep['id']}/roles", {"roleId": "sales_rep"}, auth_headers)
        assert assignment["roleName"] == "Sales Rep"
        assert permission_service.get_role_permissions("acme", "user-rep") == ["crm.leads.*"]

        res = client.delete(f"/api/v1/users/{rep['id']}/roles/{assignment['assignmentId']}",
                            headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["isActive"] is False
        assert permission_service.get_role_permissions("acme", "user-rep") == []

    def test_revoke_unknown_assignment(self, client, auth_headers, rep):
        res = client.delete(f"/api/v1/users/{rep['id']}/roles/role_missing", headers=auth_headers)
        assert res.status_code == 404

    def test_role_defined_later_links_assignment(self, client, auth_headers, rep):
        assignment = _post(client, f"/api/v1/users/{rep['id']}/roles", {"roleId": "auditor"}, auth_headers)
        assert assignment["roleId"] is None
        assert assignment["roleIdString"] == "auditor"
        assert permission_service.get_role_permissions("acme", "user-rep") == []

        _post(client, "/api/v1/roles", {
            "roleId": "auditor", "name": "Auditor", "permissions": ["crm.system.audit_read"],
        }, auth_headers)
        assert permission_service.get_role_permissions("acme", "user-rep") == ["crm.system.audit_read"]


class TestRoles:
    def test_list_roles(self, client, auth_headers):
        _post(client, "/api/v1/roles", {"roleId": "viewer", "name": "Viewer", "permissions": []}, auth_headers)
        body = client.get("/api/v1/roles", headers=auth_headers).get_json()
        assert [r["roleId"] for r in body["items"]] == ["viewer"]

    def test_permissions_must_be_strings(self, client, auth_headers):
        res = client.post("/api/v1/roles", json={"roleId": "x", "name": "X", "permissions": "crm.*"},
                          headers=auth_headers)
        assert res.status_code == 400

    def test_duplicate_role_conflicts(self, client, auth_headers):
        _post(client, "/api/v1/roles", {"roleId": "viewer", "name": "Viewer"}, auth_headers)
        res = client.post("/api/v1/roles", json={"roleId": "viewer", "name": "Viewer 2"}, headers=auth_headers)
        assert res.status_code == 409


# ── Organizations ────────────────────────────────────────────────────────────


class TestOrganizations:
    def test_tree(self, client, auth_headers):
        root = _post(client, "/api/v1/organizations", {"orgCode": "HQ", "name": "Head Office"}, auth_headers)
        _post(client, "/api/v1/organizations",
              {"orgCode": "WEST", "name": "West", "parentId": root["id"]}, auth_headers)

        tree = client.get("/api/v1/organizations/tree", headers=auth_headers).get_json()["items"]
        assert len(tree) == 1
        assert tree[0]["orgCode"] == "HQ"
        assert [c["orgCode"] for c in tree[0]["children"]] == ["WEST"]

        listing = client.get("/api/v1/organizations", headers=auth_headers).get_json()
        assert listing["total"] == 2

    def test_cycle_rejected(self, client, auth_headers):
        root = _post(client, "/api/v1/organizations", {"orgCode": "HQ", "name": "Head Office"}, auth_headers)
        child = _post(client, "/api/v1/organizations",
                      {"orgCode": "WEST", "name": "West", "parentId": root["id"]}, auth_headers)
        res = client.put(f"/api/v1/organizations/{root['id']}", json={"parentId": child["id"]},
                         headers=auth_headers)
        assert res.status_code == 400

    def test_duplicate_code_conflicts(self, client, auth_headers):
        _post(client, "/api/v1/organizations", {"orgCode": "HQ", "name": "Head Office"}, auth_headers)
        res = client.post("/api/v1/organizations", json={"orgCode": "HQ", "name": "Again"}, headers=auth_headers)
        assert res.status_code == 409
