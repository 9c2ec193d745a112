"""
Request id and timing middleware.

Every response carries ``X-Request-ID`` (echoed from the caller when it is
a sane token, generated otherwise) and ``X-Request-Duration-Ms``. Requests
over their blueprint's threshold are logged at WARNING with the tenant
and user attached; health checks are not logged at all.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

DEFAULT_SLOW_MS = 1000
# PDF rendering and uploads legitimately take longer
SLOW_MS_BY_BLUEPRINT = {"pdf": 10000, "documents": 5000}
_QUIET_BLUEPRINTS = frozenset({"health"})


def _request_id() -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_RE.match(incoming):
        return incoming
    return uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _stamp_response(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"
        response.headers[REQUEST_ID_HEADER] = g.request_id

        blueprint = request.blueprint
        if blueprint in _QUIET_BLUEPRINTS:
            return response

        extra = {
            "request_id": g.request_id,
            "tenant_id": getattr(g, "tenant_id", None),
            "user_id": getattr(g, "jwt_user_id", None),
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 1),
        }
        summary = "%s %s -> %d in %.0fms"
        args = (request.method, request.path, response.status_code, elapsed_ms)
        if elapsed_ms > SLOW_MS_BY_BLUEPRINT.get(blueprint, DEFAULT_SLOW_MS):
            logger.warning("Slow request: " + summary, *args, extra=extra)
        elif response.status_code >= 500:
            logger.error("Request failed: " + summary, *args, extra=extra)
        else:
            logger.debug(summary, *args, extra=extra)
        return response
