"""
Tenant Context Middleware — resolves and enforces the tenant of every API request.

Chain order:
  timing.py  →  jwt_auth.py  →  tenant_context.py  →  route decorators  →  handler

For each /api/v1/ request (outside TENANT_SKIP_PREFIXES):
  1. extract the tenant id (header → JWT → query → body → primary org → subdomain)
  2. validate its format                                  → 400 on failure
  3. require an authenticated user                        → 401 on failure
  4. load the tenant, falling back to the user's claims   → 404 unknown / 403 inactive
  5. set g.tenant, g.tenant_id, g.tenant_info, g.consumer

Steps 1-3 touch no database, so a request without a usable tenant id is
answered before any data access.
"""

import logging

from flask import g, request

from crm.core.exceptions import TenantContextError
from crm.services.consumer import consumer_manager
from crm.services.tenant_service import extract_tenant_id, load_request_tenant, validate_tenant_id
from crm.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip tenant context
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)

_AUTH_MESSAGES = {
    "expired": "Token expired",
    "invalid": "Invalid token",
}


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.tenant_id = None
        g.tenant_info = None
        g.consumer = None
        g.user_permissions = None
        g.credits_consumed = 0.0

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        claims = getattr(g, "jwt_claims", None)
        tenant_id = extract_tenant_id(request, claims)
        try:
            validate_tenant_id(tenant_id)
        except TenantContextError as exc:
            logger.info("Rejected request without valid tenant: %s", exc,
                        extra={"path": request.path})
            return api_error(exc.code, str(exc), status=exc.status)

        if getattr(g, "jwt_user_id", None) is None:
            reason = getattr(g, "jwt_error", None)
            return api_error(E.UNAUTHENTICATED, _AUTH_MESSAGES.get(reason, "User not authenticated"))

        try:
            tenant = load_request_tenant(tenant_id, claims)
        except TenantContextError as exc:
            logger.warning(
                "Tenant rejected: %s", exc,
                extra={"tenant_id": tenant_id, "user_id": g.jwt_user_id, "status": exc.status},
            )
            return api_error(exc.code, str(exc), status=exc.status)

        g.tenant = tenant
        g.tenant_id = tenant.tenant_id
        g.tenant_info = tenant.context()
        g.consumer = consumer_manager.get(tenant.tenant_id)
        return None

    logger.info("Tenant context middleware installed")
