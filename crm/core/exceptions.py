"""
Domain errors raised by CRM services.

Blueprints let these propagate; ``create_app`` registers one handler per
class, which turns them into the JSON error body:

    NotFoundError             404  (also used for other tenants' rows)
    ValidationError           400
    PermissionDeniedError     403
    InsufficientCreditsError  402
    ConflictError             409
    TenantContextError        400 / 403 / 404, carried on the instance
    PdfRenderError            500
    StorageError              500
"""


class NotFoundError(Exception):
    """No row with that id inside the caller's tenant.

    ``resource_id`` and ``tenant_id`` end up in the log line only; the
    response names the resource alone.
    """

    def __init__(self, resource: str, resource_id=None, tenant_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        where = f" id={resource_id}" if resource_id is not None else ""
        scope = f" in tenant {tenant_id}" if tenant_id is not None else ""
        super().__init__(f"{resource}{where} not found{scope}")


class ValidationError(Exception):
    """Bad input. ``details`` maps field name to ``"required"`` or ``"invalid"``."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ConflictError(Exception):
    def __init__(self, resource: str, field: str, value=None) -> None:
        super().__init__(f"{resource} with {field}={value!r} already exists")
        self.resource = resource
        self.field = field
        self.value = value


class PermissionDeniedError(Exception):
    def __init__(self, message: str = "Insufficient permissions", required: str | None = None) -> None:
        super().__init__(message)
        self.required = required


class InsufficientCreditsError(Exception):
    """The tenant balance is below the cost of ``operation``."""

    def __init__(self, operation: str, required: float, available: float) -> None:
        super().__init__(f"Insufficient credits for {operation}: need {required}, have {available}")
        self.operation = operation
        self.required = required
        self.available = available


class TenantContextError(Exception):
    """Tenant resolution failed; ``status`` and ``code`` say how."""

    def __init__(self, message: str, status: int = 400, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class PdfRenderError(Exception):
    """Rendering failed, timed out or produced no bytes."""


class StorageError(Exception):
    """The storage provider rejected a read or write."""
