"""
Query cache for the CRM client.

Keys are tuples, e.g. ``("contacts", "list", (("status", "lead"),))`` or
``("contacts", "detail", "42")``. ``invalidate(prefix)`` drops every key
that starts with the given tuple prefix, so ``invalidate(("contacts",))``
clears both the lists and the details of that entity.
"""

import threading
import time

_MISSING = object()


class QueryCache:
    """Thread-safe tuple-keyed cache with an optional per-entry TTL."""

    def __init__(self, default_ttl: float | None = 300):
        self.default_ttl = default_ttl
        self._entries: dict[tuple, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: tuple, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires = entry
            if expires is not None and time.monotonic() > expires:
                del self._entries[key]
                return default
            return value

    def set(self, key: tuple, value, ttl: float | None = _MISSING):
        ttl = self.default_ttl if ttl is _MISSING else ttl
        expires = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._entries[key] = (value, expires)
        return value

    def update(self, key: tuple, updater):
        """Replace a cached value with ``updater(value)``; returns the previous value.

        Missing keys are left alone and ``None`` is returned.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            self._entries[key] = (updater(value), expires)
            return value

    def keys(self, prefix: tuple = ()) -> list[tuple]:
        with self._lock:
            return [k for k in self._entries if k[:len(prefix)] == prefix]

    def invalidate(self, prefix: tuple = ()) -> int:
        """Drop every entry whose key starts with *prefix*; returns the count."""
        with self._lock:
            doomed = [k for k in self._entries if k[:len(prefix)] == prefix]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __contains__(self, key):
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self):
        with self._lock:
            return len(self._entries)
