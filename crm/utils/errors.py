"""JSON error bodies for the CRM API.

Every failure leaves the API as ``{"error": <message>, "code": <ERR_*>}``,
optionally with ``details`` and extra top-level keys::

    return api_error(E.NOT_FOUND, "Contact not found")
    return api_error(E.INSUFFICIENT_CREDITS, "Insufficient credits",
                     details={"requiredCredits": 2, "availableCredits": 0})
"""

from __future__ import annotations

from flask import current_app, jsonify


class E:
    """Error codes understood by API clients."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    TENANT_REQUIRED = "ERR_TENANT_REQUIRED"
    TENANT_INVALID = "ERR_TENANT_INVALID"
    TENANT_NOT_FOUND = "ERR_TENANT_NOT_FOUND"
    TENANT_INACTIVE = "ERR_TENANT_INACTIVE"

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    INSUFFICIENT_CREDITS = "ERR_INSUFFICIENT_CREDITS"

    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    PDF_RENDER = "ERR_PDF_RENDER"
    STORAGE = "ERR_STORAGE"


_STATUS_BY_CODE: dict[str, int] = {
    **dict.fromkeys((E.VALIDATION_REQUIRED, E.VALIDATION_INVALID,
                     E.TENANT_REQUIRED, E.TENANT_INVALID), 400),
    E.UNAUTHENTICATED: 401,
    E.INSUFFICIENT_CREDITS: 402,
    **dict.fromkeys((E.FORBIDDEN, E.TENANT_INACTIVE), 403),
    **dict.fromkeys((E.NOT_FOUND, E.TENANT_NOT_FOUND), 404),
    E.CONFLICT_DUPLICATE: 409,
    **dict.fromkeys((E.DATABASE, E.INTERNAL, E.PDF_RENDER, E.STORAGE), 500),
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None, **fields):
    """Build a ``(response, status)`` pair for a Flask view.

    *status* overrides the code's usual HTTP status (400 for unknown codes).
    Keyword *fields* become top-level keys, e.g. ``requiredPermission``.
    """
    body: dict = {"error": message, "code": code, **fields}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def server_error(message: str, exc: Exception | None = None, *, code: str = E.INTERNAL):
    """500 response; the exception text is attached only when
    ``EXPOSE_ERROR_DETAILS`` is enabled for the running config."""
    fields = {}
    if exc is not None and current_app.config.get("EXPOSE_ERROR_DETAILS"):
        fields["detail"] = str(exc)
    return api_error(code, message, status=500, **fields)
