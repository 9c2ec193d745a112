"""
JWT Auth Middleware — Parses the bearer token, sets g.jwt_*.

Sets, for every /api/v1/ request:
    g.jwt_claims       decoded payload (None when absent/invalid)
    g.jwt_user_id      identity provider subject
    g.jwt_tenant_id    tenant claim
    g.jwt_permissions  permission claim list
    g.jwt_roles        role claim list
    g.jwt_error        "missing" | "expired" | "invalid" | None

This hook never rejects a request itself: the tenant context middleware
runs next and answers 400 for a missing tenant before it answers 401 for
a missing user, so requests without a tenant never reach authentication
or the database.
"""

import logging

import jwt as pyjwt
from flask import g, request

from crm.services.jwt_service import claim_tenant_id, claim_user_id, decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _reset_context():
    g.jwt_claims = None
    g.jwt_user_id = None
    g.jwt_tenant_id = None
    g.jwt_permissions = []
    g.jwt_roles = []
    g.jwt_error = None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        _reset_context()

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            g.jwt_error = "missing"
            return

        token = auth_header[7:].strip()  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "expired"
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token: %s", exc)
            g.jwt_error = "invalid"
            return

        g.jwt_claims = payload
        g.jwt_user_id = claim_user_id(payload)
        g.jwt_tenant_id = claim_tenant_id(payload)
        g.jwt_permissions = list(payload.get("permissions") or [])
        roles = payload.get("roles") or []
        if payload.get("role"):
            roles = list(roles) + [payload["role"]]
        g.jwt_roles = list(roles)
        if g.jwt_user_id is None:
            g.jwt_error = "invalid"
