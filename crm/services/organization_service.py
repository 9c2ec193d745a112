"""
Organization Service — per-tenant org unit hierarchy.

Functions:
    - create_organization:  orgCode + name required; parent must be in the tenant
    - list_organizations:   flat list ordered by name
    - get_organization_tree: roots with nested children
    - get_organization
    - update_organization:  re-parenting refuses cycles
"""

import logging

from sqlalchemy import select

from crm.core.exceptions import ValidationError
from crm.models import db
from crm.models.organization import Organization
from crm.utils.helpers import (
    apply_fields,
    boolean,
    db_commit,
    get_for_tenant,
    has_any,
    pick,
    require_fields,
    resolve_ref,
    text,
)

logger = logging.getLogger(__name__)

ORG_FIELDS = {
    "org_code": (("orgCode", "org_code"), text(100)),
    "name": (("name",), text(200)),
    "org_type": (("orgType", "org_type"), text(50)),
    "description": (("description",), text()),
    "is_active": (("isActive", "is_active"), boolean),
}


def _set_parent(org, tenant_id, data):
    if not has_any(data, "parentId", "parent_id"):
        return
    parent_id = resolve_ref(Organization, tenant_id, pick(data, "parentId", "parent_id"), "Parent organization")
    if parent_id is not None and org.id is not None:
        node = db.session.get(Organization, parent_id)
        while node is not None:
            if node.id == org.id:
                raise ValidationError("An organization cannot be its own ancestor",
                                      details={"parentId": str(parent_id)})
            node = node.parent
    org.parent_id = parent_id
    org.parent = db.session.get(Organization, parent_id) if parent_id else None


def create_organization(tenant_id: str, data: dict) -> dict:
    """Create an org unit.

    Raises:
        ValidationError: orgCode/name missing or parent outside the tenant.
        ConflictError: orgCode already used in this tenant.
    """
    require_fields(data, ("orgCode", "org_code"), "name")
    org = Organization(tenant_id=tenant_id, org_type="department", is_active=True)
    apply_fields(org, data, ORG_FIELDS)
    _set_parent(org, tenant_id, data)
    db.session.add(org)
    db_commit("Organization", "orgCode", org.org_code)
    logger.info(
        "Organization created",
        extra={"tenant_id": tenant_id, "org_code": org.org_code, "parent_id": org.parent_id},
    )
    return org.to_dict()


def list_organizations(tenant_id: str, *, active_only: bool = False) -> list[dict]:
    stmt = select(Organization).where(Organization.tenant_id == tenant_id)
    if active_only:
        stmt = stmt.where(Organization.is_active.is_(True))
    rows = db.session.execute(stmt.order_by(Organization.name)).scalars().all()
    return [o.to_dict() for o in rows]


def get_organization_tree(tenant_id: str) -> list[dict]:
    roots = db.session.execute(
        select(Organization)
        .where(Organization.tenant_id == tenant_id, Organization.parent_id.is_(None))
        .order_by(Organization.name)
    ).scalars().all()
    return [r.to_dict(include_children=True) for r in roots]


def get_organization(tenant_id: str, org_id) -> dict:
    return get_for_tenant(Organization, tenant_id, org_id, "Organization").to_dict(include_children=True)


def update_organization(tenant_id: str, org_id, data: dict) -> dict:
    org = get_for_tenant(Organization, tenant_id, org_id, "Organization")
    changed = apply_fields(org, data, ORG_FIELDS)
    if not org.org_code or not org.name:
        raise ValidationError("orgCode and name cannot be empty")
    _set_parent(org, tenant_id, data)
    db_commit("Organization", "orgCode", org.org_code)
    logger.info(
        "Organization updated",
        extra={"tenant_id": tenant_id, "org_code": org.org_code, "fields": changed},
    )
    return org.to_dict()
