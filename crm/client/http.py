"""
HTTP client for the CRM REST API.

Usage:
    client = CrmClient("https://crm.example.com", token, "acme")
    contacts = client.get("/contacts", params={"status": "customer"})
    summary = client.dashboard()
"""

import logging

import requests

from crm.services.dashboard_service import build_summary

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
TENANT_HEADER = "X-Tenant-ID"


class CrmApiError(Exception):
    """Non-2xx response from the CRM API."""

    def __init__(self, status: int, message: str, payload=None):
        self.status = status
        self.message = message
        self.payload = payload
        super().__init__(f"HTTP {status}: {message}")


class CrmClient:
    """Thin ``requests.Session`` wrapper: bearer token + tenant header."""

    def __init__(self, base_url: str, token: str | None, tenant_id: str | None,
                 session=None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.tenant_id = tenant_id
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        if tenant_id:
            self.session.headers[TENANT_HEADER] = tenant_id

    def url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        if not path.startswith(API_PREFIX):
            path = API_PREFIX + path
        return self.base_url + path

    def request(self, method: str, path: str, *, params=None, json=None):
        url = self.url(path)
        response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.warning(
                "CRM API %s %s failed: %s", method, url, response.status_code,
                extra={"tenant_id": self.tenant_id, "status": response.status_code},
            )
            raise CrmApiError(response.status_code, message or response.reason or "Request failed", payload)
        if response.status_code == 204 or not response.content:
            return None
        if "application/json" in response.headers.get("Content-Type", ""):
            return response.json()
        return response.content

    def get(self, path: str, params=None):
        return self.request("GET", path, params=params)

    def post(self, path: str, json=None):
        return self.request("POST", path, json=json)

    def put(self, path: str, json=None):
        return self.request("PUT", path, json=json)

    def delete(self, path: str):
        return self.request("DELETE", path)

    # ── Derived views ────────────────────────────────────────────────

    def fetch_all(self, path: str, params=None, page_size: int = 500) -> list:
        """Walk skip/limit pages until ``total`` items are collected."""
        params = dict(params or {})
        items, skip = [], 0
        while True:
            page = self.get(path, params={**params, "skip": skip, "limit": page_size})
            batch = page.get("items", [])
            items.extend(batch)
            skip += len(batch)
            if not batch or skip >= page.get("total", 0):
                return items

    def dashboard(self) -> dict:
        """Pipeline and contact summary folded client-side from the raw lists."""
        return build_summary(self.fetch_all("/opportunities"), self.fetch_all("/contacts"))
