"""
CRM Platform settings.

``create_app`` picks a class from ``config`` by name (``APP_ENV`` when no
name is passed). Everything environment-specific is read from env vars
once, at import time.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_flag(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url(var="DATABASE_URL", fallback=None):
    """Read a database URL, rewriting the ``postgres://`` scheme SQLAlchemy rejects."""
    url = os.getenv(var, "")
    if not url:
        return fallback
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    # Bearer tokens come from the identity provider, signed with HS256
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", SECRET_KEY)
    JWT_ACCESS_EXPIRES = _env_int("JWT_ACCESS_EXPIRES", 3600)

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Shared by Flask-Limiter and the permission cache
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Unresolvable requests borrow the first active tenant (development only)
    TENANT_DEV_FALLBACK = False
    EXPOSE_ERROR_DETAILS = False

    # Documents and generated PDFs
    STORAGE_PROVIDER = os.getenv("STORAGE_PROVIDER", "local")
    LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", os.path.join(basedir, "var", "storage"))
    AZURE_BLOB_CONNECTION = os.getenv("AZURE_BLOB_CONNECTION")
    AZURE_BLOB_CONTAINER = os.getenv("AZURE_BLOB_CONTAINER")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")
    STORAGE_URL_EXPIRES = _env_int("STORAGE_URL_EXPIRES", 3600)
    MAX_CONTENT_LENGTH = _env_int("MAX_UPLOAD_MB", 10) * 1024 * 1024

    PDF_RENDER_TIMEOUT = _env_int("PDF_RENDER_TIMEOUT", 60)
    PDF_DEFAULT_FORMAT = "A4"
    PDF_DEFAULT_MARGIN_CM = 1.0


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        fallback="sqlite:///" + os.path.join(basedir, "instance", "crm_dev.db"),
    )
    TENANT_DEV_FALLBACK = _env_flag("TENANT_DEV_FALLBACK", "true")
    EXPOSE_ERROR_DETAILS = True


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret"
    RATELIMIT_ENABLED = False
    EXPOSE_ERROR_DETAILS = True
    STORAGE_PROVIDER = "local"
    PDF_RENDER_TIMEOUT = 30


class ProductionConfig(Config):
    """Instantiated (not just referenced) so missing secrets fail at startup."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    STORAGE_PROVIDER = os.getenv("STORAGE_PROVIDER", "blob")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": _env_int("DB_POOL_SIZE", 5),
        "max_overflow": 10,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    _REQUIRED_ENV = ("DATABASE_URL", "SECRET_KEY", "JWT_SECRET_KEY")

    def __init__(self):
        missing = [name for name in self._REQUIRED_ENV if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
