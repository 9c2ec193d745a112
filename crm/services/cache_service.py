"""
Tenant-scoped cache.

Every key lives under ``crm:<tenant_id>:`` so a tenant can be flushed in
one sweep:

    crm:<tenant>:perm:<user_id>      role-derived permissions (5 min)
    crm:<tenant>:credit_costs        operation cost table (10 min)

Redis is used when ``REDIS_URL`` names a Redis server; otherwise (or when
the server cannot be reached at startup) a process-local store with the
same get/setex/delete/scan_iter surface is used.
"""

import fnmatch
import json
import logging
import os
import threading
import time

import redis

logger = logging.getLogger(__name__)

NAMESPACE = "crm"
PERMISSION_TTL = 300
CREDIT_COST_TTL = 600
DEFAULT_TTL = 300


class _MemoryBackend:
    """Process-local stand-in exposing the subset of the redis client we use."""

    def __init__(self):
        self._store: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires = entry
            if time.monotonic() >= expires:
                del self._store[key]
                return None
            return value

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, time.monotonic() + ttl_seconds)

    def delete(self, *keys):
        with self._lock:
            return sum(1 for k in keys if self._store.pop(k, None) is not None)

    def scan_iter(self, match="*"):
        with self._lock:
            matched = [k for k in self._store if fnmatch.fnmatchcase(k, match)]
        return iter(matched)

    def ping(self):
        return True


_backend = None
_backend_lock = threading.Lock()


def _get_backend():
    global _backend
    if _backend is not None:
        return _backend
    with _backend_lock:
        if _backend is None:
            _backend = _connect(os.getenv("REDIS_URL", ""))
    return _backend


def _connect(redis_url: str):
    if not redis_url or redis_url.startswith("memory://"):
        return _MemoryBackend()
    client = redis.from_url(redis_url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis at %s unreachable (%s); using the in-process cache",
                       redis_url.split("@")[-1], exc)
        return _MemoryBackend()
    logger.info("Cache backend: redis at %s", redis_url.split("@")[-1])
    return client


# ── Keys ─────────────────────────────────────────────────────────────────


def tenant_key(tenant_id, *parts) -> str:
    return ":".join([NAMESPACE, str(tenant_id), *(str(p) for p in parts)])


def permission_key(tenant_id, user_id) -> str:
    return tenant_key(tenant_id, "perm", user_id)


def credit_costs_key(tenant_id) -> str:
    return tenant_key(tenant_id, "credit_costs")


def _delete_matching(pattern: str) -> int:
    backend = _get_backend()
    keys = list(backend.scan_iter(match=pattern))
    return backend.delete(*keys) if keys else 0


# ── Permissions ──────────────────────────────────────────────────────────


def get_cached_permissions(tenant_id, user_id):
    """Cached role-derived permission list, or None on a miss."""
    return get_cached(permission_key(tenant_id, user_id))


def set_cached_permissions(tenant_id, user_id, permissions):
    _get_backend().setex(
        permission_key(tenant_id, user_id), PERMISSION_TTL, json.dumps(sorted(permissions)),
    )


def invalidate_user_cache(tenant_id, user_id):
    _get_backend().delete(permission_key(tenant_id, user_id))


def invalidate_tenant_cache(tenant_id):
    """Drop every cached entry of *tenant_id* (permissions and credit costs)."""
    removed = _delete_matching(tenant_key(tenant_id, "*"))
    logger.debug("Cache flushed for tenant", extra={"tenant_id": tenant_id, "keys": removed})


# ── Generic ──────────────────────────────────────────────────────────────


def get_cached(key, ttl=DEFAULT_TTL, loader=None):
    """Cache-aside read of a JSON value; *loader* fills a miss when given."""
    backend = _get_backend()
    raw = backend.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            backend.delete(key)
    if loader is None:
        return None
    value = loader()
    if value is not None:
        backend.setex(key, ttl, json.dumps(value))
    return value


def delete_cached(key):
    _get_backend().delete(key)


def clear_all():
    """Remove every CRM key (all tenants)."""
    _delete_matching(f"{NAMESPACE}:*")


def health_check() -> dict:
    backend = _get_backend()
    kind = "memory" if isinstance(backend, _MemoryBackend) else "redis"
    try:
        backend.ping()
    except redis.RedisError as exc:
        return {"status": "error", "backend": kind, "detail": str(exc)}
    return {"status": "ok", "backend": kind}
