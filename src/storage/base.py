"""Durable store interface for webhook records."""

from collections.abc import Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from src.webhooks.models import (
    Delivery,
    DeliveryStatus,
    Endpoint,
    EndpointStats,
    Event,
    InboxEntry,
)

DeliveryMutation = Callable[[Delivery], None]


@runtime_checkable
class WebhookStore(Protocol):
    """Persistence for endpoints, events, deliveries and inbox entries.

    Records returned by a store are copies; changes only persist through
    the store's write methods. ``update_delivery`` is the single atomic
    read-modify-write path for delivery state.
    """

    # Endpoints

    async def save_endpoint(self, endpoint: Endpoint) -> Endpoint: ...

    async def get_endpoint(self, endpoint_id: str) -> Endpoint | None: ...

    async def list_endpoints(self, *, enabled_only: bool = False) -> list[Endpoint]: ...

    async def delete_endpoint(self, endpoint_id: str) -> bool: ...

    async def find_subscribed_endpoints(self, full_event_name: str) -> list[Endpoint]:
        """Enabled endpoints whose subscription set contains the exact name."""
        ...

    # Events

    async def create_event(self, event: Event) -> Event:
        """Persist an event.

        Raises:
            DuplicateIdempotencyKeyError: If the idempotency key is taken.
        """
        ...

    async def get_event(self, event_id: str) -> Event | None: ...

    async def list_events(
        self,
        *,
        event_type: str | None = None,
        eventable_kind: str | None = None,
        eventable_id: str | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Events, newest first."""
        ...

    # Deliveries

    async def create_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]: ...

    async def get_delivery(self, delivery_id: str) -> Delivery | None: ...

    async def update_delivery(
        self, delivery_id: str, mutate: DeliveryMutation
    ) -> Delivery | None:
        """Atomically load, mutate and save one delivery.

        Returns:
            The updated delivery, or None if it does not exist. Exceptions
            raised by ``mutate`` propagate and nothing is saved.
        """
        ...

    async def list_deliveries(
        self,
        *,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int | None = None,
    ) -> list[Delivery]:
        """Deliveries, newest first."""
        ...

    async def find_due_retries(self, now: datetime) -> list[Delivery]:
        """Pending deliveries with ``next_retry_at <= now``."""
        ...

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats: ...

    # Inbox

    async def save_inbox_entry(self, entry: InboxEntry) -> InboxEntry: ...

    async def get_inbox_entry(self, entry_id: str) -> InboxEntry | None: ...

    async def list_inbox_entries(
        self, *, event_type: str | None = None, limit: int | None = None
    ) -> list[InboxEntry]:
        """Inbox entries, newest first."""
        ...

    async def clear_inbox(self) -> int: ...

    async def clear(self) -> None:
        """Delete all events, deliveries and inbox entries."""
        ...
