"""
Per-tenant consumer — one handle per tenant bundling permission, credit
and activity lookups.

The tenant middleware fetches the handle from ``consumer_manager`` and
stores it on ``g.consumer``; decorators and blueprints go through it
instead of reaching for the individual services.

Consumers are cheap and stateless apart from their tenant id, so the
manager caches them for the life of the process.
"""

import logging
import threading

from crm.models.user import UserProfile
from crm.services import activity_service, credit_service, permission_service
from crm.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class TenantConsumer:
    """Service handle scoped to a single tenant."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id

    # ── Permissions ──────────────────────────────────────────────────

    def user_permissions(self, user_id: str, claim_permissions=None) -> list[str]:
        return permission_service.get_effective_permissions(self.tenant_id, user_id, claim_permissions)

    # ── Credits ──────────────────────────────────────────────────────

    def check_credits(self, operation_code: str) -> float:
        return credit_service.check_credits(self.tenant_id, operation_code)

    def consume_credits(self, operation_code: str, **kwargs) -> float:
        return credit_service.consume_credits(self.tenant_id, operation_code, **kwargs)

    # ── Activity ─────────────────────────────────────────────────────

    def log_activity(self, **kwargs):
        return activity_service.record_activity(tenant_id=self.tenant_id, **kwargs)

    # ── User context ─────────────────────────────────────────────────

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        return UserProfile.query_for_tenant(self.tenant_id).filter_by(user_id=user_id).first()

    def user_context(self, user_id: str, claim_permissions=None) -> dict:
        """Profile, effective permissions and credit balance of *user_id*.

        Raises:
            NotFoundError: the user has no profile in this tenant.
        """
        profile = self.get_user_profile(user_id)
        if profile is None:
            raise NotFoundError(resource="User profile", resource_id=user_id, tenant_id=self.tenant_id)
        user = profile.to_dict(include_assignments=True)
        return {
            "tenantId": self.tenant_id,
            "user": user,
            "primaryOrgCode": user.get("primaryOrgCode"),
            "permissions": self.user_permissions(user_id, claim_permissions),
            "credits": credit_service.get_balance(self.tenant_id).to_dict(),
        }

    def __repr__(self):
        return f"<TenantConsumer {self.tenant_id}>"


class ConsumerManager:
    """Process-wide registry of TenantConsumer instances."""

    def __init__(self):
        self._consumers: dict[str, TenantConsumer] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> TenantConsumer:
        with self._lock:
            consumer = self._consumers.get(tenant_id)
            if consumer is None:
                consumer = TenantConsumer(tenant_id)
                self._consumers[tenant_id] = consumer
                logger.debug("Consumer created", extra={"tenant_id": tenant_id})
            return consumer

    def clear(self) -> None:
        with self._lock:
            self._consumers.clear()


consumer_manager = ConsumerManager()
