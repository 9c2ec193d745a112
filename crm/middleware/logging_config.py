"""
Logging for the CRM API.

Production writes one JSON object per line; development and tests get a
colored single-line format. Records emitted while a request is active are
stamped with its request id, tenant and user by ``RequestContextFilter``,
so services only pass the extras specific to the event.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Extra fields copied into JSON output when present on the record
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "tenant_id",
    "user_id",
    "operation",
    "resource_type",
    "resource_id",
    "credits",
)


class RequestContextFilter(logging.Filter):
    """Attach request-scoped identifiers to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "tenant_id", None) is None:
                record.tenant_id = getattr(g, "tenant_id", None)
            if getattr(record, "user_id", None) is None:
                record.user_id = getattr(g, "jwt_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for local development."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _scope(record) -> str:
        parts = [getattr(record, "tenant_id", None), getattr(record, "user_id", None)]
        parts = [str(p) for p in parts if p]
        return f" [{'/'.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}{self._scope(record)}: {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if isinstance(duration, (int, float)):
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


_DEFAULT_LEVELS = {"testing": "WARNING", "development": "DEBUG", "production": "INFO"}
_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "azure", "reportlab")


def _environment(app) -> str:
    if app.config.get("TESTING"):
        return "testing"
    return "development" if app.config.get("DEBUG") else "production"


def configure_logging(app):
    """Install one stderr handler on the root logger.

    ``LOG_LEVEL`` overrides the per-environment default; ``LOG_FORMAT=json``
    forces JSON output outside production.
    """
    env = _environment(app)
    level_name = os.getenv("LOG_LEVEL", _DEFAULT_LEVELS[env]).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    use_json = env == "production" or os.getenv("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # repeated create_app() calls in tests must not stack handlers
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if env != "testing":
        app.logger.info("Logging at %s (%s)", level_name, "json" if use_json else "readable")
