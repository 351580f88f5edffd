"""Webhook delivery engine.

This module provides:
- Signing and verification of webhook requests (HMAC-SHA256)
- UrlValidator: SSRF protection for destination URLs
- Endpoint, Event, Delivery and InboxEntry records
- WebhookDispatcher: Delivery attempts with exponential backoff retry
- EventFanout: Event creation and fan-out to subscribed endpoints
- WebhookService: Facade wiring everything together
"""

from src.webhooks.dispatcher import WebhookDispatcher, build_request
from src.webhooks.fanout import EventFanout
from src.webhooks.inbox import InboxService
from src.webhooks.models import (
    Delivery,
    DeliveryStatus,
    Endpoint,
    EndpointStats,
    Event,
    EventableRef,
    InboxEntry,
)
from src.webhooks.receiver import require_webhook_signature, verify_webhook_request
from src.webhooks.registry import EventRegistry
from src.webhooks.retry import backoff_delay, next_retry_at, should_retry
from src.webhooks.service import WebhookService
from src.webhooks.signing import canonical_json, secure_compare, sign, verify
from src.webhooks.testing import WebhookTestHelper
from src.webhooks.url_validator import UrlValidator, ValidationResult

__all__ = [
    # Models
    "Delivery",
    "DeliveryStatus",
    "Endpoint",
    "EndpointStats",
    "Event",
    "EventableRef",
    "InboxEntry",
    # Signing
    "canonical_json",
    "secure_compare",
    "sign",
    "verify",
    "require_webhook_signature",
    "verify_webhook_request",
    # URL validation
    "UrlValidator",
    "ValidationResult",
    # Retry
    "backoff_delay",
    "next_retry_at",
    "should_retry",
    # Delivery
    "EventFanout",
    "EventRegistry",
    "InboxService",
    "WebhookDispatcher",
    "WebhookService",
    "WebhookTestHelper",
    "build_request",
]
