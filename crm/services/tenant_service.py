"""
Tenant Service — tenant id extraction, validation and resolution.

extract_tenant_id tries, in order, and returns the first non-empty value:
    1. X-Tenant-ID header
    2. JWT tenant claim
    3. query parameter ``tenantId`` / ``tenant_id``
    4. JSON body field ``tenantId`` / ``tenant_id``
    5. JWT primary organization claim
    6. subdomain of the Host header

resolve_tenant_for_user is the fallback when the extracted id names no
tenant: it walks the user's claims for the first active tenant.
"""

import logging
import re

from flask import current_app
from sqlalchemy import select

from crm.core.exceptions import ConflictError, TenantContextError, ValidationError
from crm.models import db
from crm.models.tenant import TENANT_STATUSES, Tenant
from crm.services.jwt_service import claim_entity_ids, claim_primary_org, claim_tenant_id
from crm.utils.errors import E

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]{1,48}[a-zA-Z0-9]$")

TENANT_HEADER = "X-Tenant-ID"
_IGNORED_SUBDOMAINS = frozenset({"www", "api", "crm"})
_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


# ── Extraction ───────────────────────────────────────────────────────────


def _subdomain(host: str | None) -> str | None:
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower()
    if hostname in _LOCAL_HOSTS or "." not in hostname:
        return None
    label = hostname.split(".", 1)[0]
    if not label or label in _IGNORED_SUBDOMAINS:
        return None
    return label


def _body_tenant(req) -> str | None:
    if req.method not in ("POST", "PUT", "PATCH"):
        return None
    payload = req.get_json(silent=True)
    if not isinstance(payload, dict):
        return None
    value = payload.get("tenantId") or payload.get("tenant_id")
    return str(value) if value else None


def extract_tenant_id(req, claims: dict | None = None) -> str | None:
    """Return the tenant id of *req*, or None when no source carries one."""
    sources = (
        lambda: req.headers.get(TENANT_HEADER),
        lambda: claim_tenant_id(claims),
        lambda: req.args.get("tenantId") or req.args.get("tenant_id"),
        lambda: _body_tenant(req),
        lambda: claim_primary_org(claims),
        lambda: _subdomain(req.host),
    )
    for source in sources:
        value = source()
        if value and str(value).strip():
            return str(value).strip()
    return None


# ── Validation ───────────────────────────────────────────────────────────


def is_valid_tenant_id(tenant_id) -> bool:
    return bool(tenant_id) and isinstance(tenant_id, str) and bool(TENANT_ID_PATTERN.match(tenant_id))


def validate_tenant_id(tenant_id) -> str:
    """Return *tenant_id* unchanged or raise TenantContextError (400)."""
    if not tenant_id:
        raise TenantContextError("Tenant ID is required", status=400, code=E.TENANT_REQUIRED)
    if not is_valid_tenant_id(tenant_id):
        raise TenantContextError("Invalid tenant ID format", status=400, code=E.TENANT_INVALID)
    return tenant_id


# ── Lookup / resolution ──────────────────────────────────────────────────


def get_tenant(tenant_id: str) -> Tenant | None:
    return db.session.execute(
        select(Tenant).where(Tenant.tenant_id == tenant_id)
    ).scalar_one_or_none()


def _get_active(tenant_id: str | None) -> Tenant | None:
    if not tenant_id or not is_valid_tenant_id(tenant_id):
        return None
    tenant = get_tenant(tenant_id)
    return tenant if tenant is not None and tenant.is_active else None


def resolve_tenant_for_user(claims: dict | None, requested_id: str | None = None) -> Tenant | None:
    """Find the first active tenant the user can be placed in.

    Order: requested id, claimed primary organization, JWT tenant claim,
    each id of the ``entities`` claim. With ``TENANT_DEV_FALLBACK`` on
    (development only) any active tenant is accepted as a last resort.
    """
    candidates = [requested_id, claim_primary_org(claims), claim_tenant_id(claims)]
    candidates.extend(claim_entity_ids(claims))

    seen = set()
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        tenant = _get_active(candidate)
        if tenant is not None:
            if candidate != requested_id:
                logger.info(
                    "Tenant resolved from user claims",
                    extra={"tenant_id": tenant.tenant_id, "requested": requested_id},
                )
            return tenant

    if current_app.config.get("TENANT_DEV_FALLBACK"):
        tenant = db.session.execute(
            select(Tenant).where(Tenant.status == "active").order_by(Tenant.id).limit(1)
        ).scalar_one_or_none()
        if tenant is not None:
            logger.warning(
                "Using development fallback tenant %s for requested %s",
                tenant.tenant_id, requested_id,
            )
            return tenant
    return None


def load_request_tenant(tenant_id: str, claims: dict | None) -> Tenant:
    """Validate *tenant_id* and return the active Tenant serving the request.

    Raises:
        TenantContextError: 400 missing/invalid, 404 unknown, 403 inactive.
    """
    validate_tenant_id(tenant_id)
    tenant = get_tenant(tenant_id)
    if tenant is None:
        tenant = resolve_tenant_for_user(claims, tenant_id)
        if tenant is None:
            raise TenantContextError("Tenant not found", status=404, code=E.TENANT_NOT_FOUND)
    if not tenant.is_active:
        raise TenantContextError("Tenant inactive", status=403, code=E.TENANT_INACTIVE)
    return tenant


# ── Administration (CLI) ─────────────────────────────────────────────────


def create_tenant(tenant_id: str, name: str, plan: str = "trial", status: str = "active") -> Tenant:
    """Create a tenant row. Used by the ``flask create-tenant`` command and tests."""
    if not is_valid_tenant_id(tenant_id):
        raise ValidationError("Invalid tenant ID format", details={"tenantId": tenant_id})
    if status not in TENANT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(TENANT_STATUSES))}")
    if get_tenant(tenant_id) is not None:
        raise ConflictError("Tenant", "tenant_id", tenant_id)
    tenant = Tenant(
        tenant_id=tenant_id,
        name=name,
        status=status,
        settings={},
        subscription={"plan": plan},
    )
    db.session.add(tenant)
    db.session.commit()
    logger.info("Tenant created", extra={"tenant_id": tenant_id})
    return tenant
