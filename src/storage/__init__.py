"""Durable storage for webhook records.

This module provides:
- WebhookStore: Protocol every store implements
- InMemoryWebhookStore: Dictionary-backed store for tests and development
- SQLiteWebhookStore: Persistent store backed by aiosqlite
"""

from src.storage.base import DeliveryMutation, WebhookStore
from src.storage.memory import InMemoryWebhookStore
from src.storage.sqlite import SQLiteWebhookStore

__all__ = [
    "DeliveryMutation",
    "InMemoryWebhookStore",
    "SQLiteWebhookStore",
    "WebhookStore",
]
