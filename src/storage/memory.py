"""In-memory webhook store.

Keeps records in dictionaries, like a process-local database. Suitable
for tests and single-process development setups.
"""

import asyncio
from datetime import datetime

import structlog

from src.errors import DuplicateIdempotencyKeyError
from src.storage.base import DeliveryMutation
from src.webhooks.models import (
    Delivery,
    DeliveryStatus,
    Endpoint,
    EndpointStats,
    Event,
    InboxEntry,
)

logger = structlog.get_logger(__name__)


def _limited(items: list, limit: int | None) -> list:
    return items if limit is None else items[:limit]


class InMemoryWebhookStore:
    """Dictionary-backed implementation of ``WebhookStore``."""

    def __init__(self) -> None:
        self._endpoints: dict[str, Endpoint] = {}
        self._events: dict[str, Event] = {}
        self._idempotency_keys: set[str] = set()
        self._deliveries: dict[str, Delivery] = {}
        self._inbox: dict[str, InboxEntry] = {}
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="memory_store")

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def save_endpoint(self, endpoint: Endpoint) -> Endpoint:
        self._endpoints[endpoint.id] = endpoint.model_copy(deep=True)
        return endpoint

    async def get_endpoint(self, endpoint_id: str) -> Endpoint | None:
        endpoint = self._endpoints.get(endpoint_id)
        return endpoint.model_copy(deep=True) if endpoint else None

    async def list_endpoints(self, *, enabled_only: bool = False) -> list[Endpoint]:
        return [
            e.model_copy(deep=True)
            for e in self._endpoints.values()
            if e.enabled or not enabled_only
        ]

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        if endpoint_id not in self._endpoints:
            return False
        async with self._lock:
            del self._endpoints[endpoint_id]
            # Deliveries belong to their endpoint
            for delivery_id in [
                d.id for d in self._deliveries.values() if d.endpoint_id == endpoint_id
            ]:
                del self._deliveries[delivery_id]
        self._logger.debug("endpoint_deleted", endpoint_id=endpoint_id)
        return True

    async def find_subscribed_endpoints(self, full_event_name: str) -> list[Endpoint]:
        return [
            e.model_copy(deep=True)
            for e in self._endpoints.values()
            if e.enabled and e.subscribed_to(full_event_name)
        ]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(self, event: Event) -> Event:
        async with self._lock:
            if event.idempotency_key in self._idempotency_keys:
                raise DuplicateIdempotencyKeyError(event.idempotency_key)
            self._idempotency_keys.add(event.idempotency_key)
            self._events[event.id] = event.model_copy(deep=True)
        return event

    async def get_event(self, event_id: str) -> Event | None:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event else None

    async def list_events(
        self,
        *,
        event_type: str | None = None,
        eventable_kind: str | None = None,
        eventable_id: str | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        events = [
            e.model_copy(deep=True)
            for e in reversed(self._events.values())
            if (event_type is None or e.event_type == event_type)
            and (eventable_kind is None or e.eventable_kind == eventable_kind)
            and (eventable_id is None or e.eventable_id == eventable_id)
        ]
        return _limited(events, limit)

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def create_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]:
        async with self._lock:
            for delivery in deliveries:
                self._deliveries[delivery.id] = delivery.model_copy(deep=True)
        return deliveries

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        delivery = self._deliveries.get(delivery_id)
        return delivery.model_copy(deep=True) if delivery else None

    async def update_delivery(
        self, delivery_id: str, mutate: DeliveryMutation
    ) -> Delivery | None:
        async with self._lock:
            current = self._deliveries.get(delivery_id)
            if current is None:
                return None
            working = current.model_copy(deep=True)
            mutate(working)
            self._deliveries[delivery_id] = working
            return working.model_copy(deep=True)

    async def list_deliveries(
        self,
        *,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int | None = None,
    ) -> list[Delivery]:
        deliveries = [
            d.model_copy(deep=True)
            for d in reversed(self._deliveries.values())
            if (endpoint_id is None or d.endpoint_id == endpoint_id)
            and (event_id is None or d.event_id == event_id)
            and (status is None or d.status == status)
        ]
        return _limited(deliveries, limit)

    async def find_due_retries(self, now: datetime) -> list[Delivery]:
        return [
            d.model_copy(deep=True)
            for d in self._deliveries.values()
            if d.status == DeliveryStatus.PENDING
            and d.next_retry_at is not None
            and d.next_retry_at <= now
        ]

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        stats = EndpointStats(endpoint_id=endpoint_id)
        for delivery in self._deliveries.values():
            if delivery.endpoint_id != endpoint_id:
                continue
            stats.total_deliveries += 1
            if delivery.status == DeliveryStatus.SUCCESS:
                stats.successful_deliveries += 1
            elif delivery.status == DeliveryStatus.FAILED:
                stats.failed_deliveries += 1
            else:
                stats.pending_deliveries += 1
        return stats

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def save_inbox_entry(self, entry: InboxEntry) -> InboxEntry:
        self._inbox[entry.id] = entry.model_copy(deep=True)
        return entry

    async def get_inbox_entry(self, entry_id: str) -> InboxEntry | None:
        entry = self._inbox.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def list_inbox_entries(
        self, *, event_type: str | None = None, limit: int | None = None
    ) -> list[InboxEntry]:
        entries = [
            e.model_copy(deep=True)
            for e in reversed(self._inbox.values())
            if event_type is None or e.event_type == event_type
        ]
        return _limited(entries, limit)

    async def clear_inbox(self) -> int:
        count = len(self._inbox)
        self._inbox.clear()
        return count

    async def clear(self) -> None:
        async with self._lock:
            self._deliveries.clear()
            self._events.clear()
            self._idempotency_keys.clear()
            self._inbox.clear()
