"""
CRM Platform application factory.

    from crm import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event
from werkzeug.exceptions import HTTPException

from crm.config import config
from crm.core.exceptions import (
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    PdfRenderError,
    PermissionDeniedError,
    StorageError,
    TenantContextError,
    ValidationError,
)
from crm.middleware.jwt_auth import init_jwt_middleware
from crm.middleware.logging_config import configure_logging
from crm.middleware.rate_limiter import init_rate_limits, rate_limit_key
from crm.middleware.tenant_context import init_tenant_context
from crm.middleware.timing import init_request_timing
from crm.models import db
from crm.utils.errors import E, api_error, server_error

logger = logging.getLogger(__name__)


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE clauses unless foreign keys are switched on."""
    if "sqlite" not in type(dbapi_conn).__module__:
        return
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


migrate = Migrate()
# limits are applied per blueprint
limiter = Limiter(key_func=rate_limit_key, default_limits=[],
                  storage_uri=os.getenv("REDIS_URL", "memory://"))


def _init_cors(app):
    origins = app.config.get("CORS_ORIGINS", "*")
    if not origins or origins == "*":
        CORS(app)
        return
    CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _blueprints():
    from crm.blueprints.accounts_bp import accounts_bp
    from crm.blueprints.activity_bp import activity_bp
    from crm.blueprints.commercial_bp import invoices_bp, quotations_bp, sales_orders_bp
    from crm.blueprints.contacts_bp import contacts_bp
    from crm.blueprints.credits_bp import credits_bp
    from crm.blueprints.dashboard_bp import dashboard_bp
    from crm.blueprints.documents_bp import documents_bp
    from crm.blueprints.health_bp import health_bp
    from crm.blueprints.leads_bp import leads_bp
    from crm.blueprints.opportunities_bp import opportunities_bp
    from crm.blueprints.organizations_bp import organizations_bp
    from crm.blueprints.pdf_bp import pdf_bp
    from crm.blueprints.users_bp import roles_bp, users_bp

    return (
        health_bp, users_bp, roles_bp, organizations_bp,
        accounts_bp, contacts_bp, leads_bp, opportunities_bp,
        quotations_bp, sales_orders_bp, invoices_bp,
        documents_bp, activity_bp, credits_bp, pdf_bp, dashboard_bp,
    )


def create_app(config_name=None):
    """Build a configured CRM app.

    *config_name* is ``"development"``, ``"testing"`` or ``"production"``;
    ``APP_ENV`` decides when it is omitted.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    config_class = config[config_name]

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig checks its env vars when instantiated
    app.config.from_object(config_class() if config_name == "production" else config_class)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    _init_cors(app)

    # order matters: tenant resolution reads the verified JWT claims
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    # registers every table on db.metadata
    import crm.models.activity      # noqa: F401
    import crm.models.commercial    # noqa: F401
    import crm.models.credit        # noqa: F401
    import crm.models.document      # noqa: F401
    import crm.models.organization  # noqa: F401
    import crm.models.sales         # noqa: F401
    import crm.models.tenant        # noqa: F401
    import crm.models.user          # noqa: F401

    with app.app_context():
        db.create_all()
    logger.info("CRM schema ready", extra={"env": config_name})

    for blueprint in _blueprints():
        app.register_blueprint(blueprint)

    _register_error_handlers(app)
    _register_cli(app)
    init_rate_limits(app, limiter)
    return app


def _register_error_handlers(app):
    """Map service exceptions onto the JSON error contract."""

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        logger.info("Not found: %s", exc, extra={"path": request.path})
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        required = bool(exc.details) and all(v == "required" for v in exc.details.values())
        code = E.VALIDATION_REQUIRED if required else E.VALIDATION_INVALID
        return api_error(code, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(exc), field=exc.field)

    @app.errorhandler(PermissionDeniedError)
    def _forbidden(exc):
        db.session.rollback()
        fields = {"requiredPermission": exc.required} if exc.required else {}
        return api_error(E.FORBIDDEN, str(exc), **fields)

    @app.errorhandler(InsufficientCreditsError)
    def _no_credits(exc):
        db.session.rollback()
        return api_error(
            E.INSUFFICIENT_CREDITS, "Insufficient credits",
            operation=exc.operation,
            requiredCredits=exc.required,
            availableCredits=exc.available,
        )

    @app.errorhandler(TenantContextError)
    def _tenant(exc):
        db.session.rollback()
        return api_error(exc.code or E.TENANT_INVALID, str(exc), status=exc.status)

    @app.errorhandler(PdfRenderError)
    def _pdf_failed(exc):
        db.session.rollback()
        logger.error("PDF rendering failed: %s", exc)
        return server_error("Failed to generate PDF", exc, code=E.PDF_RENDER)

    @app.errorhandler(StorageError)
    def _storage_failed(exc):
        db.session.rollback()
        logger.error("Storage operation failed: %s", exc)
        return server_error("Storage operation failed", exc, code=E.STORAGE)

    @app.errorhandler(404)
    def _route_not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(Exception)
    def _unhandled(exc):
        if isinstance(exc, HTTPException):
            return exc
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return server_error("Internal server error", exc)


def _register_cli(app):
    """``flask create-tenant`` / ``flask allocate-credits``."""

    @app.cli.command("create-tenant")
    @click.argument("tenant_id")
    @click.argument("name")
    @click.option("--plan", default="trial", show_default=True)
    def create_tenant_cmd(tenant_id, name, plan):
        """Create an active tenant."""
        from crm.services.tenant_service import create_tenant

        tenant = create_tenant(tenant_id, name, plan=plan)
        click.echo(f"Created tenant {tenant.tenant_id} ({tenant.name})")

    @app.cli.command("allocate-credits")
    @click.argument("tenant_id")
    @click.argument("amount", type=float)
    @click.option("--description", default=None)
    def allocate_credits_cmd(tenant_id, amount, description):
        """Add credits to a tenant's balance."""
        from crm.services.credit_service import allocate_credits

        balance = allocate_credits(tenant_id, amount, description=description)
        click.echo(f"Tenant {tenant_id}: {balance.available:.2f} credits available")
