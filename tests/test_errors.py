"""Tests for the webhook exception hierarchy."""

from src.errors import (
    DuplicateIdempotencyKeyError,
    EndpointValidationError,
    RecordNotFoundError,
    UnknownEventError,
    UrlSecurityError,
    WebhookError,
)


class TestWebhookErrors:
    """Tests for error attributes and serialization."""

    def test_to_dict(self):
        error = RecordNotFoundError("Endpoint", "whe_1")

        assert error.to_dict() == {
            "error_type": "RecordNotFoundError",
            "message": "Endpoint whe_1 not found",
            "details": {"record_type": "Endpoint", "record_id": "whe_1"},
            "recoverable": False,
        }

    def test_url_security_error(self):
        error = UrlSecurityError("URL resolves to a blocked IP address (127.0.0.1)", url="http://x")

        assert isinstance(error, WebhookError)
        assert error.reason == str(error)
        assert error.details == {"url": "http://x"}

    def test_unknown_event_message(self):
        error = UnknownEventError("shipped", "order")

        assert str(error) == "Event 'shipped' is not defined for order"
        assert isinstance(error, ValueError)

    def test_validation_errors_are_value_errors(self):
        assert isinstance(EndpointValidationError("Events can't be blank"), ValueError)

    def test_duplicate_key(self):
        error = DuplicateIdempotencyKeyError("key-1")

        assert error.idempotency_key == "key-1"
        assert error.details == {"idempotency_key": "key-1"}
