"""
Shared pytest fixtures for the CRM Platform test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite, local storage in a tmp dir)
    - session: Per-test DB reset + cache/consumer reset (autouse)
    - client: Flask test client (function-scoped)
    - tenant: Active tenant "acme" with 1000 credits allocated
    - make_token: JWT factory (user, permissions, roles, extra claims)
    - auth_headers: Bearer + X-Tenant-ID headers for an all-permissions user
"""

import pytest

from crm import create_app
from crm.models import db as _db
from crm.services import cache_service, credit_service, tenant_service
from crm.services.consumer import consumer_manager
from crm.services.jwt_service import generate_access_token

TENANT_ID = "acme"
ADMIN_USER = "user-admin"
ALL_PERMISSIONS = ["crm.*"]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["LOCAL_STORAGE_DIR"] = str(tmp_path_factory.mktemp("storage"))
    application.config["PUBLIC_BASE_URL"] = "http://testserver"
    return application


@pytest.fixture(autouse=True)
def session(app):
    """Per-test: open app context, clear caches, drop and recreate tables after."""
    with app.app_context():
        _db.create_all()
        cache_service.clear_all()
        consumer_manager.clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        cache_service.clear_all()
        consumer_manager.clear()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def tenant():
    """Active tenant with a funded credit balance."""
    t = tenant_service.create_tenant(TENANT_ID, "Acme Industries", plan="pro")
    credit_service.allocate_credits(TENANT_ID, 1000, description="test funding")
    return t


@pytest.fixture()
def make_token():
    """Factory: make_token(user_id, permissions=None, roles=None, tenant_id=TENANT_ID, **claims)."""
    def _make(user_id=ADMIN_USER, permissions=None, roles=None, tenant_id=TENANT_ID, **claims):
        return generate_access_token(
            user_id,
            tenant_id=tenant_id,
            permissions=ALL_PERMISSIONS if permissions is None else permissions,
            roles=roles or [],
            **claims,
        )
    return _make


@pytest.fixture()
def headers_for(make_token):
    """Factory: request headers for a user (bearer + X-Tenant-ID)."""
    def _headers(user_id=ADMIN_USER, permissions=None, roles=None, tenant_id=TENANT_ID):
        token = make_token(user_id, permissions=permissions, roles=roles, tenant_id=tenant_id)
        headers = {"Authorization": f"Bearer {token}"}
        if tenant_id:
            headers["X-Tenant-ID"] = tenant_id
        return headers
    return _headers


@pytest.fixture()
def auth_headers(tenant, headers_for):
    """Headers of an admin user holding every crm permission."""
    return headers_for(ADMIN_USER, roles=["admin"])
