"""
Route decorators — permission gate, credit gate and activity tracking.

Usage (outermost first):

    @contacts_bp.route("", methods=["POST"])
    @track_activity("create", "contact")
    @require_permission("crm.contacts.create")
    @require_credits("crm.contacts.create")
    def create_contact():
        ...

All decorators expect the tenant context middleware to have run; they
answer 401 when no authenticated user is on the request.

Permission checks use the user's effective permissions (JWT claim ∪ role
assignments) with ``crm.system.X`` ≡ ``system.X`` equivalence.
"""

import functools
import logging
import time

from flask import g, make_response, request

from crm.core.exceptions import (
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    TenantContextError,
    ValidationError,
)
from crm.models import db
from crm.services.jwt_service import claim_primary_org
from crm.services.permission_service import has_permission
from crm.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_permissions() -> list[str]:
    """Effective permissions of the request user (memoized on ``g``)."""
    perms = getattr(g, "user_permissions", None)
    if perms is None:
        consumer = getattr(g, "consumer", None)
        claim_perms = getattr(g, "jwt_permissions", [])
        if consumer is None:
            perms = list(claim_perms)
        else:
            perms = consumer.user_permissions(g.jwt_user_id, claim_perms)
        g.user_permissions = perms
    return perms


def _unauthenticated():
    return api_error(E.UNAUTHENTICATED, "User not authenticated")


def _denied(f, required, **fields):
    logger.warning(
        "User %s denied: missing %s on %s",
        getattr(g, "jwt_user_id", None), required, f.__name__,
        extra={"tenant_id": getattr(g, "tenant_id", None), "status": 403},
    )
    return api_error(E.FORBIDDEN, "Insufficient permissions", **fields)


def require_permission(codename: str):
    """
    Decorator: require the user to hold *codename* (or an equivalent).

    Args:
        codename: Permission codename, e.g. "crm.contacts.create"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if getattr(g, "jwt_user_id", None) is None:
                return _unauthenticated()
            if not has_permission(current_permissions(), codename):
                return _denied(f, codename, requiredPermission=codename)
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── Credits ──────────────────────────────────────────────────────────────


def _response_resource_id(response):
    if not response.is_json:
        return None
    body = response.get_json(silent=True)
    if isinstance(body, dict):
        return body.get("id")
    return None


def require_credits(operation_code: str):
    """
    Decorator: deny with 402 when the tenant cannot afford *operation_code*;
    debit the cost only when the wrapped view succeeds (status < 400).
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            consumer = getattr(g, "consumer", None)
            if consumer is None or getattr(g, "jwt_user_id", None) is None:
                return _unauthenticated()
            try:
                consumer.check_credits(operation_code)
            except InsufficientCreditsError as exc:
                return api_error(
                    E.INSUFFICIENT_CREDITS, "Insufficient credits",
                    operation=operation_code,
                    requiredCredits=exc.required,
                    availableCredits=exc.available,
                )

            response = make_response(f(*args, **kwargs))
            if response.status_code < 400:
                g.credits_consumed = consumer.consume_credits(
                    operation_code,
                    user_id=g.jwt_user_id,
                    resource_type=request.blueprint,
                    resource_id=_response_resource_id(response),
                )
            return response
        return decorated
    return decorator


# ── Activity tracking ────────────────────────────────────────────────────

_EXCEPTION_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (PermissionDeniedError, 403),
    (InsufficientCreditsError, 402),
    (TenantContextError, 400),
)


def _status_for_exception(exc) -> int:
    for exc_type, status in _EXCEPTION_STATUS:
        if isinstance(exc, exc_type):
            return getattr(exc, "status", status) if exc_type is TenantContextError else status
    return 500


def _resource_id_from_kwargs(kwargs):
    for key, value in kwargs.items():
        if key.endswith("_id"):
            return value
    return None


def track_activity(operation_type: str, resource_type: str, severity: str = "low"):
    """
    Decorator: append an ActivityLog row after the view finishes.

    Failures are recorded with status ``failure`` and error code
    ``HTTP_<status>``. Errors while writing the log are logged and never
    alter the response.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            g.credits_consumed = 0.0
            started = time.perf_counter()
            try:
                response = make_response(f(*args, **kwargs))
            except Exception as exc:
                db.session.rollback()
                _write_activity(operation_type, resource_type, severity, kwargs,
                                _status_for_exception(exc), started, None, str(exc))
                raise
            _write_activity(operation_type, resource_type, severity, kwargs,
                            response.status_code, started, response, None)
            return response
        return decorated
    return decorator


def _write_activity(operation_type, resource_type, severity, view_kwargs,
                    status_code, started, response, error_message):
    consumer = getattr(g, "consumer", None)
    user_id = getattr(g, "jwt_user_id", None)
    if consumer is None or user_id is None:
        return
    resource_id = _resource_id_from_kwargs(view_kwargs)
    if resource_id is None and response is not None:
        resource_id = _response_resource_id(response)
    if error_message is None and response is not None and status_code >= 400 and response.is_json:
        body = response.get_json(silent=True) or {}
        error_message = body.get("error") if isinstance(body, dict) else None

    failed = status_code >= 400
    try:
        consumer.log_activity(
            user_id=user_id,
            operation_type=operation_type,
            resource_type=resource_type,
            resource_id=resource_id,
            operation_code=request.endpoint,
            org_code=claim_primary_org(getattr(g, "jwt_claims", None)),
            status="failure" if failed else "success",
            severity="medium" if failed and severity == "low" else severity,
            error_code=f"HTTP_{status_code}" if failed else None,
            error_message=error_message,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 1),
            credits_consumed=getattr(g, "credits_consumed", 0.0),
            details={"method": request.method, "path": request.path, "statusCode": status_code},
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            request_id=getattr(g, "request_id", None),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to record activity for %s %s", request.method, request.path)
