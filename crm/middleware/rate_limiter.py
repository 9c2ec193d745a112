"""
Rate limiting configuration.

The Limiter instance is created in crm/__init__.py with ``rate_limit_key``
as its key function and no default limits; this module applies limits
per blueprint.

Keys are ``tenant:<tenant id>:<remote ip>`` so one noisy tenant cannot
starve another sharing the same egress IP.

Usage:
    from crm.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

from crm.services.tenant_service import TENANT_HEADER

logger = logging.getLogger(__name__)

# Blueprints with mutation-heavy traffic
_WRITE_BLUEPRINTS = (
    "users", "organizations", "contacts", "accounts", "leads", "opportunities",
    "quotations", "invoices", "sales_orders", "documents", "credits",
)


def rate_limit_key():
    """Limiter key: tenant + client IP.

    Flask-Limiter evaluates limits before the tenant middleware runs, so
    the header is consulted when ``g.tenant_id`` is not set yet.
    """
    tenant_id = getattr(g, "tenant_id", None) or flask_request.headers.get(TENANT_HEADER) or "anonymous"
    return f"tenant:{tenant_id}:{flask_request.remote_addr or 'unknown'}"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant + IP):
        - PDF generation:   10/minute  (rendering is CPU heavy)
        - Write blueprints: 120/minute
        - Activity/audit:   200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("pdf")
    if bp:
        limiter.limit("10/minute")(bp)

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    for bp_name in ("activity", "dashboard"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — pdf: 10/min, write: 120/min, read: 200/min")
