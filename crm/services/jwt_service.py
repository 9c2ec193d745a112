"""
Bearer token handling for the CRM API.

Access tokens are minted by the external identity provider and signed
with a shared HS256 secret (``JWT_SECRET_KEY``). The API only verifies
them; ``generate_access_token`` is here for local development, the CLI
and the test-suite.

Claims the CRM reads:

    sub                       user id at the identity provider
    tenant_id                 tenant slug
    primary_organization_id   org code (optional)
    entities                  [{"id": ...}, ...] (optional)
    permissions, roles        lists of strings
    type                      "access" (assumed when absent)

Providers disagree on claim casing, so the readers at the bottom accept
snake_case and camelCase spellings alike.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
DEFAULT_ACCESS_EXPIRES = 3600

TENANT_CLAIMS = ("tenant_id", "tenantId")
PRIMARY_ORG_CLAIMS = ("primary_organization_id", "primaryOrganizationId", "primaryOrgId", "orgCode")
USER_CLAIMS = ("sub", "user_id", "userId", "id")


def _secret():
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def generate_access_token(
    user_id: str,
    tenant_id: str | None = None,
    permissions: list[str] | None = None,
    roles: list[str] | None = None,
    **claims,
) -> str:
    """Sign an access token; extra keyword claims are copied in as given."""
    issued = datetime.now(timezone.utc)
    lifetime = current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "permissions": list(permissions or []),
        "roles": list(roles or []),
        "iat": issued,
        "exp": issued + timedelta(seconds=lifetime),
        "jti": uuid.uuid4().hex,
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    payload.update(claims)
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry; raises ``jwt.InvalidTokenError`` subclasses."""
    payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    token_type = payload.get("type", "access")
    if token_type != "access":
        raise jwt.InvalidTokenError(f"Expected an access token, got {token_type!r}")
    return payload


# ── Claim readers ────────────────────────────────────────────────────────


def _first_claim(claims: dict | None, names) -> str | None:
    if not claims:
        return None
    for name in names:
        value = claims.get(name)
        if value:
            return str(value)
    return None


def claim_tenant_id(claims: dict | None) -> str | None:
    return _first_claim(claims, TENANT_CLAIMS)


def claim_primary_org(claims: dict | None) -> str | None:
    return _first_claim(claims, PRIMARY_ORG_CLAIMS)


def claim_user_id(claims: dict | None) -> str | None:
    return _first_claim(claims, USER_CLAIMS)


def claim_entity_ids(claims: dict | None) -> list[str]:
    """Ids listed in the ``entities`` claim (dicts with ``id`` or bare strings)."""
    ids = []
    for entity in (claims or {}).get("entities") or []:
        if isinstance(entity, dict):
            value = entity.get("id") or entity.get("entityId") or entity.get("orgCode")
        else:
            value = entity
        if value:
            ids.append(str(value))
    return ids
