"""
Activity log model — append-only audit trail.

One row per tracked API operation. Rows are written by the
``track_activity`` decorator (and a few services) and read by the
"my activity" and audit views; nothing updates or deletes them.
"""

import uuid
from datetime import datetime, timezone

from crm.models import db
from crm.models.base import TenantModel

OPERATION_TYPES = {
    "create", "read", "update", "delete", "export", "import",
    "generate", "convert", "payment", "login", "logout", "other",
}
SEVERITIES = {"low", "medium", "high", "critical"}


class ActivityLog(TenantModel):
    """
    Immutable activity trail.

    ``operation_details`` carries the operation code and request summary;
    ``log_metadata`` is free-form context (e.g. quotation number of a PDF).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_tenant_user_ts", "tenant_id", "user_id", "timestamp"),
        db.Index("ix_activity_tenant_resource", "tenant_id", "resource_type", "resource_id"),
        db.Index("ix_activity_tenant_org", "tenant_id", "org_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    log_id = db.Column(
        db.String(40), unique=True, nullable=False,
        default=lambda: f"log_{uuid.uuid4().hex}",
    )
    user_id = db.Column(db.String(100), nullable=False)
    org_code = db.Column(db.String(100))
    operation_type = db.Column(db.String(20), nullable=False)
    operation_code = db.Column(db.String(100))
    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(50))
    operation_details = db.Column(db.JSON, default=dict)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))
    request_id = db.Column(db.String(64))
    severity = db.Column(db.String(10), default="low")
    status = db.Column(db.String(10), nullable=False, default="success")
    error_code = db.Column(db.String(50))
    error_message = db.Column(db.Text)
    processing_time_ms = db.Column(db.Float)
    credits_consumed = db.Column(db.Float, default=0.0)
    log_metadata = db.Column("metadata", db.JSON, default=dict)
    timestamp = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "logId": self.log_id,
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "orgCode": self.org_code,
            "operationType": self.operation_type,
            "operationCode": self.operation_code,
            "entityType": self.resource_type,
            "entityId": self.resource_id,
            "operationDetails": self.operation_details or {},
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "requestId": self.request_id,
            "severity": self.severity,
            "status": self.status,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "processingTimeMs": self.processing_time_ms,
            "creditsConsumed": self.credits_consumed or 0.0,
            "metadata": self.log_metadata or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.log_id}: {self.operation_type} {self.resource_type}/{self.resource_id}>"
