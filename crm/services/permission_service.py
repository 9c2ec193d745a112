"""
Permission Service — permission string matching and effective permission lookup.

Permission strings are dotted codenames: ``crm.contacts.create``,
``system.audit_read``. Two historical namings of the system permissions
coexist, ``system.X`` and ``crm.system.X``; both are normalized to
``system.X`` before comparison, so holding either form grants both.

Wildcards:
    "*"             grants everything
    "crm.*"         grants every permission under ``crm.``
    "crm.contacts.*" grants every contacts permission

Effective permissions of a user in a tenant =
    JWT ``permissions`` claim  ∪  permissions of the user's active,
    unexpired role assignments (cached per tenant+user, 5 min TTL).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from crm.models import db
from crm.models.user import CrmRole, RoleAssignment
from crm.services import cache_service
from crm.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_LEGACY_SYSTEM_PREFIX = "crm.system."
_SYSTEM_PREFIX = "system."


def normalize_permission(codename: str) -> str:
    """Map ``crm.system.X`` onto ``system.X``; everything else unchanged."""
    code = (codename or "").strip()
    if code.startswith(_LEGACY_SYSTEM_PREFIX):
        return _SYSTEM_PREFIX + code[len(_LEGACY_SYSTEM_PREFIX):]
    return code


def _required_forms(required: str) -> set[str]:
    normalized = normalize_permission(required)
    forms = {required.strip(), normalized}
    if normalized.startswith(_SYSTEM_PREFIX):
        forms.add("crm." + normalized)
    return forms


def permission_matches(held: str, required: str) -> bool:
    """True when the single permission *held* grants *required*."""
    held = (held or "").strip()
    if not held or not required:
        return False
    if held == "*":
        return True
    if normalize_permission(held) == normalize_permission(required):
        return True
    if held.endswith(".*"):
        prefix = held[:-1]  # keep the trailing dot
        return any(form.startswith(prefix) for form in _required_forms(required))
    return False


def has_permission(permissions, required: str) -> bool:
    """Check one required permission against a list of held permissions."""
    return any(permission_matches(p, required) for p in permissions or ())


def has_any_permission(permissions, required) -> bool:
    """Check if the holder has at least ONE of the listed permissions."""
    return any(has_permission(permissions, r) for r in required)


def has_all_permissions(permissions, required) -> bool:
    """Check if the holder has ALL of the listed permissions."""
    return all(has_permission(permissions, r) for r in required)


# ── Role-derived permissions ─────────────────────────────────────────────


def _load_role_permissions(tenant_id: str, user_id: str) -> list[str]:
    now = datetime.now(timezone.utc)
    stmt = (
        select(RoleAssignment, CrmRole)
        .outerjoin(CrmRole, RoleAssignment.role_ref_id == CrmRole.id)
        .where(
            RoleAssignment.tenant_id == tenant_id,
            RoleAssignment.user_id_string == user_id,
            RoleAssignment.is_active.is_(True),
        )
    )
    perms: set[str] = set()
    for assignment, role in db.session.execute(stmt).all():
        if assignment.expires_at is not None and as_utc(assignment.expires_at) <= now:
            continue
        if role is None:
            # Unresolved reference: fall back to the raw role id string
            role = db.session.execute(
                select(CrmRole).where(
                    CrmRole.tenant_id == tenant_id,
                    CrmRole.role_id == assignment.role_id_string,
                )
            ).scalar_one_or_none()
        if role is None or not role.is_active:
            continue
        perms.update(role.permissions or [])
    return sorted(perms)


def get_role_permissions(tenant_id: str, user_id: str) -> list[str]:
    """Permissions granted through role assignments (cached)."""
    cached = cache_service.get_cached_permissions(tenant_id, user_id)
    if cached is not None:
        return cached
    perms = _load_role_permissions(tenant_id, user_id)
    cache_service.set_cached_permissions(tenant_id, user_id, perms)
    return perms


def get_effective_permissions(tenant_id: str, user_id: str, claim_permissions=None) -> list[str]:
    """JWT claim permissions merged with role-derived permissions."""
    merged = set(claim_permissions or [])
    if user_id:
        merged.update(get_role_permissions(tenant_id, user_id))
    return sorted(merged)


def invalidate_cache(tenant_id: str, user_id: str) -> None:
    cache_service.invalidate_user_cache(tenant_id, user_id)


def invalidate_all_cache() -> None:
    cache_service.clear_all()


def invalidate_tenant_cache(tenant_id: str) -> None:
    cache_service.invalidate_tenant_cache(tenant_id)
