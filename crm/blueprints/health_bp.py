"""
Health check blueprint. Exempt from tenant resolution and authentication.

Endpoints:
    GET /api/v1/health/ready   process is up (load balancer check)
    GET /api/v1/health/live    database, cache, storage backend and PDF renderer
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from crm.models import db
from crm.services import cache_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    cfg = current_app.config
    checks = {
        "database": _check_database(),
        "cache": cache_service.health_check(),
        "storage": {"status": "ok", "provider": cfg.get("STORAGE_PROVIDER", "local")},
        "pdf": {"status": "ok", "renderer": "reportlab", "timeout_s": cfg.get("PDF_RENDER_TIMEOUT", 60)},
    }
    # cache and storage degrade gracefully; only the database is fatal
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "service": "crm-platform",
        "checks": checks,
    }), 200 if healthy else 503
