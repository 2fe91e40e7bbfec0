"""
Domain exceptions for Kitchen Service.

Every client-facing rejection carries an HTTP status, an error type used in the
error envelope, and a context dict (order id, current status) that explains why
the transition was refused.
"""

from typing import Any, Dict, Optional


class KitchenServiceError(Exception):
    """Base class for all Kitchen Service domain errors."""

    status_code: int = 500
    error_type: str = "kitchen_service_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }


class DomainValidationError(KitchenServiceError):
    """Malformed or illegal input, e.g. an unavailable dish or invalid status target."""

    status_code = 400
    error_type = "validation_error"


class AuthorizationError(KitchenServiceError):
    """Wrong owner or wrong role for the requested operation."""

    status_code = 403
    error_type = "authorization_error"


class NotFoundError(KitchenServiceError):
    status_code = 404
    error_type = "not_found"


class ConflictError(KitchenServiceError):
    """The order is not in a state that permits the operation."""

    status_code = 409
    error_type = "conflict"


class OrderNumberGenerationError(ConflictError):
    error_type = "order_number_exhausted"


class ExternalServiceError(KitchenServiceError):
    """The payment processor (or another collaborator) failed or was unreachable."""

    status_code = 502
    error_type = "external_service_error"

    def __init__(
        self, message: str, service: str = "payment_gateway", **context: Any
    ) -> None:
        super().__init__(message, service=service, **context)
        self.service = service


class SideEffectError(KitchenServiceError):
    """Raised inside best-effort side effects; logged by the dispatcher, never surfaced."""

    error_type = "side_effect_error"


class WebhookSignatureError(KitchenServiceError):
    status_code = 400
    error_type = "webhook_signature_error"


class WebhookProcessingError(KitchenServiceError):
    """A verified webhook event could not be applied; the processor should redeliver."""

    error_type = "webhook_processing_error"

    def __init__(self, message: str, event_id: Optional[str] = None) -> None:
        super().__init__(message, event_id=event_id)
        self.event_id = event_id
