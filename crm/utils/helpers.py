"""Shared utility functions used by services and blueprints.

get_for_tenant:   tenant-scoped primary key lookup, raises NotFoundError
pick:             read a payload field under its camelCase or snake_case name
parse_date:       returns None on bad input
to_float:         lenient numeric coercion for money fields
db_commit:        commit, mapping unique violations to ConflictError
"""
import logging
import math
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from crm.core.exceptions import ConflictError, NotFoundError, ValidationError
from crm.models import db

logger = logging.getLogger(__name__)

_MISSING = object()


def get_for_tenant(model, tenant_id, pk, label=None):
    """Fetch a row by primary key inside *tenant_id* or raise NotFoundError.

    A row that exists under another tenant is reported exactly like a
    missing one.
    """
    label = label or model.__name__
    try:
        pk = int(pk)
    except (TypeError, ValueError):
        raise NotFoundError(resource=label, resource_id=pk, tenant_id=tenant_id)
    obj = db.session.get(model, pk)
    if obj is None or obj.tenant_id != tenant_id:
        raise NotFoundError(resource=label, resource_id=pk, tenant_id=tenant_id)
    return obj


def pick(data: dict, *names, default=None):
    """Return the first key of *names* present in *data*.

    Clients send the camelCase contract, scripts tend to send snake_case:
    ``pick(item, "unitPrice", "unit_price")``.
    """
    for name in names:
        value = data.get(name, _MISSING)
        if value is not _MISSING:
            return value
    return default


def has_any(data: dict, *names) -> bool:
    return any(name in data for name in names)


def parse_date(value):
    """Parse a date string (ISO date or ISO datetime) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO datetime (or date) to an aware UTC datetime, None on bad input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_float(value, default=0.0):
    """Coerce to float; None, blanks, garbage, NaN and infinities become *default*."""
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def iso(value):
    """isoformat() or None."""
    return value.isoformat() if value else None


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── Database commit helper ───────────────────────────────────────────────────

_UNIQUE_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when *exc* comes from a UNIQUE constraint (PostgreSQL or SQLite)."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code == _UNIQUE_SQLSTATE
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate key" in message


def db_commit(resource: str = "Record", field: str = "unique key", value=None):
    """Commit the current session.

    Unique-constraint violations → rollback + ConflictError (HTTP 409).
    Other integrity errors (NOT NULL, foreign keys) and anything else
    propagate after rollback.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if not is_unique_violation(exc):
            logger.error("Integrity error on commit: %s", exc.orig)
            raise
        logger.warning("Unique constraint violated on commit: %s", exc.orig)
        raise ConflictError(resource, field, value) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise


# ── Payload → model field mapping ────────────────────────────────────────────

def text(max_len=None):
    """Converter: stripped string (None for blanks), truncated to *max_len*."""
    def convert(value):
        if value is None:
            return None
        value = str(value).strip()
        if not value:
            return None
        return value[:max_len] if max_len else value
    return convert


def number(value):
    return to_float(value)


def integer(value):
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def boolean(value):
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def json_dict(value):
    return dict(value) if isinstance(value, dict) else {}


def apply_fields(obj, data: dict, fields: dict) -> list[str]:
    """Copy payload values onto *obj*.

    *fields* maps attribute name → (payload key aliases, converter). Only
    keys present in *data* are touched. Returns the attributes changed.
    """
    changed = []
    for attr, (names, convert) in fields.items():
        if has_any(data, *names):
            setattr(obj, attr, convert(pick(data, *names)))
            changed.append(attr)
    return changed


def resolve_ref(model, tenant_id, value, label):
    """Turn an incoming reference id into an int PK of a row in *tenant_id*.

    Blank → None. Unknown or foreign id → ValidationError (400).
    """
    if value in (None, ""):
        return None
    try:
        return get_for_tenant(model, tenant_id, value, label).id
    except NotFoundError:
        raise ValidationError(f"{label} not found", details={label: str(value)})


def paginate_select(stmt, skip: int, limit: int, *order_by):
    """Run *stmt* with offset/limit; returns (rows, total)."""
    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    if order_by:
        stmt = stmt.order_by(*order_by)
    rows = db.session.execute(stmt.offset(skip).limit(limit)).scalars().all()
    return rows, total


def require_fields(data: dict, *fields):
    """Raise ValidationError listing every missing field.

    Each field is a key or a tuple of aliases; the first alias names the field.
    """
    missing = []
    for field in fields:
        names = field if isinstance(field, tuple) else (field,)
        value = pick(data, *names)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(names[0])
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={name: "required" for name in missing},
        )
