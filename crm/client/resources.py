"""
Cached entity resources.

    cache = QueryCache()
    contacts = create_entity_resource(client, cache, "contacts")
    contacts.list(status="customer")            # cache-aside
    contacts.update_optimistic(42, {"status": "inactive"})

Every mutation, successful or not, invalidates the entity's lists plus the
``("activity-logs",)`` and ``("credits", "balance")`` keys: the server
writes an activity row and may debit credits on each write. Optimistic
variants patch the cached detail/list entries first and restore them when
the request fails.
"""

import logging

from crm.client.cache import QueryCache
from crm.client.http import CrmClient

logger = logging.getLogger(__name__)

ACTIVITY_KEY = ("activity-logs",)
CREDIT_BALANCE_KEY = ("credits", "balance")


def _params_key(params: dict) -> tuple:
    return tuple(sorted((k, v) for k, v in params.items() if v is not None))


class EntityResource:
    def __init__(self, client: CrmClient, cache: QueryCache, entity: str, path: str | None = None):
        self.client = client
        self.cache = cache
        self.entity = entity
        self.path = path or f"/{entity}"

    # ── Keys ─────────────────────────────────────────────────────────

    def list_key(self, params: dict | None = None) -> tuple:
        return (self.entity, "list", _params_key(params or {}))

    def detail_key(self, entity_id) -> tuple:
        return (self.entity, "detail", str(entity_id))

    def _settled(self):
        self.cache.invalidate((self.entity, "list"))
        self.cache.invalidate(ACTIVITY_KEY)
        self.cache.invalidate(CREDIT_BALANCE_KEY)

    # ── Reads ────────────────────────────────────────────────────────

    def list(self, **params) -> dict:
        key = self.list_key(params)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        return self.cache.set(key, self.client.get(self.path, params=params or None))

    def get(self, entity_id) -> dict:
        key = self.detail_key(entity_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        return self.cache.set(key, self.client.get(f"{self.path}/{entity_id}"))

    # ── Mutations ────────────────────────────────────────────────────

    def create(self, data: dict) -> dict:
        try:
            created = self.client.post(self.path, json=data)
        finally:
            self._settled()
        if isinstance(created, dict) and created.get("id") is not None:
            self.cache.set(self.detail_key(created["id"]), created)
        return created

    def update(self, entity_id, data: dict) -> dict:
        try:
            updated = self.client.put(f"{self.path}/{entity_id}", json=data)
        except Exception:
            self.cache.invalidate(self.detail_key(entity_id))
            raise
        finally:
            self._settled()
        self.cache.set(self.detail_key(entity_id), updated)
        return updated

    def delete(self, entity_id):
        try:
            return self.client.delete(f"{self.path}/{entity_id}")
        finally:
            self.cache.invalidate(self.detail_key(entity_id))
            self._settled()

    # ── Optimistic mutations ─────────────────────────────────────────

    def _snapshot(self) -> dict:
        return {key: self.cache.get(key) for key in self.cache.keys((self.entity,))}

    def _restore(self, snapshot: dict):
        self.cache.invalidate((self.entity,))
        for key, value in snapshot.items():
            if value is not None:
                self.cache.set(key, value)

    def _patch_lists(self, patch_items):
        for key in self.cache.keys((self.entity, "list")):
            self.cache.update(key, lambda page: {**page, **patch_items(page)} if isinstance(page, dict) else page)

    def update_optimistic(self, entity_id, data: dict) -> dict:
        snapshot = self._snapshot()
        sid = str(entity_id)
        self.cache.update(self.detail_key(entity_id), lambda current: {**current, **data})
        self._patch_lists(lambda page: {
            "items": [{**item, **data} if str(item.get("id")) == sid else item
                      for item in page.get("items", [])],
        })
        try:
            updated = self.client.put(f"{self.path}/{entity_id}", json=data)
        except Exception:
            logger.info("Optimistic update of %s %s rolled back", self.entity, entity_id)
            self._restore(snapshot)
            self._settled()
            raise
        self._settled()
        self.cache.set(self.detail_key(entity_id), updated)
        return updated

    def delete_optimistic(self, entity_id):
        snapshot = self._snapshot()
        sid = str(entity_id)
        self.cache.invalidate(self.detail_key(entity_id))

        def _without(page):
            items = page.get("items", [])
            kept = [item for item in items if str(item.get("id")) != sid]
            return {"items": kept, "total": max(page.get("total", len(items)) - (len(items) - len(kept)), 0)}

        self._patch_lists(_without)
        try:
            result = self.client.delete(f"{self.path}/{entity_id}")
        except Exception:
            logger.info("Optimistic delete of %s %s rolled back", self.entity, entity_id)
            self._restore(snapshot)
            self._settled()
            raise
        self._settled()
        return result


def create_entity_resource(client: CrmClient, cache: QueryCache, entity: str,
                           path: str | None = None) -> EntityResource:
    return EntityResource(client, cache, entity, path)
