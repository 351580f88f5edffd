"""Exception hierarchy for the webhook delivery engine.

Exception Hierarchy:
    WebhookError (base)
    ├── SignatureError - Missing inputs to signing or verification
    ├── UrlSecurityError - Destination rejected by the URL validator
    ├── EndpointValidationError - Invalid endpoint registration input
    ├── UnknownEventError - Event type not declared for an entity kind
    ├── DuplicateIdempotencyKeyError - Idempotency key collision
    ├── DeliveryStateError - Illegal delivery state transition
    ├── RecordNotFoundError - Referenced record does not exist
    └── ConfigurationError - Invalid settings

Transport and HTTP failures are never raised out of the dispatcher; they
are recorded on the delivery instead.
"""

from typing import Any


class WebhookError(Exception):
    """Base exception for all webhook engine errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        recoverable: Whether retrying the operation can succeed.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class SignatureError(WebhookError):
    """Raised when a payload, signature or secret is missing."""


class UrlSecurityError(WebhookError):
    """Raised when a destination URL fails SSRF validation."""

    def __init__(self, reason: str, *, url: str | None = None) -> None:
        super().__init__(reason, details={"url": url} if url else None)
        self.reason = reason
        self.url = url


class EndpointValidationError(WebhookError, ValueError):
    """Raised for invalid endpoint registration input."""


class UnknownEventError(WebhookError, ValueError):
    """Raised when triggering an event that was not declared for a kind."""

    def __init__(self, event_type: str, kind: str) -> None:
        super().__init__(
            f"Event '{event_type}' is not defined for {kind}",
            details={"event_type": event_type, "kind": kind},
        )
        self.event_type = event_type
        self.kind = kind


class DuplicateIdempotencyKeyError(WebhookError):
    """Raised when an event is stored with an idempotency key already in use."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            "Idempotency key has already been taken",
            details={"idempotency_key": idempotency_key},
        )
        self.idempotency_key = idempotency_key


class DeliveryStateError(WebhookError):
    """Raised for a transition the delivery state machine does not allow."""


class RecordNotFoundError(WebhookError):
    """Raised when a referenced record does not exist."""

    def __init__(self, record_type: str, record_id: str) -> None:
        super().__init__(
            f"{record_type} {record_id} not found",
            details={"record_type": record_type, "record_id": record_id},
        )
        self.record_type = record_type
        self.record_id = record_id


class ConfigurationError(WebhookError):
    """Raised for invalid engine settings."""
