"""Observability for webhook delivery.

This module contains:
- Instrumentation records (webhook.triggered, webhook.delivered, ...)
- Structured logging configuration
"""

from src.observability.instrumentation import (
    WEBHOOK_DELIVERED,
    WEBHOOK_INBOX_STORED,
    WEBHOOK_TRIGGERED,
    Instrumentation,
    RecordingSubscriber,
    Subscription,
    log_subscriber,
)
from src.observability.logging import configure_logging

__all__ = [
    # Instrumentation
    "Instrumentation",
    "RecordingSubscriber",
    "Subscription",
    "WEBHOOK_DELIVERED",
    "WEBHOOK_INBOX_STORED",
    "WEBHOOK_TRIGGERED",
    "log_subscriber",
    # Logging
    "configure_logging",
]
