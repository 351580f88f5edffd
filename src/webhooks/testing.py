"""Helpers for tests of applications that trigger webhooks.

Example:
    helper = WebhookTestHelper(service.store)

    await service.trigger("completed", order)
    await helper.assert_webhook_triggered("completed", eventable=order)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.webhooks.models import Delivery, Event, EventableRef

if TYPE_CHECKING:
    from src.storage.base import WebhookStore


class WebhookTestHelper:
    """Assertions over the events and deliveries recorded in a store."""

    def __init__(self, store: WebhookStore) -> None:
        self._store = store

    async def clear_webhooks(self) -> None:
        """Delete all events, deliveries and inbox entries."""
        await self._store.clear()

    async def assert_webhook_triggered(self, event_type: str, *, eventable: Any = None) -> Event:
        """Fail unless a matching event exists, returning the newest match."""
        events = await self._find(event_type, eventable)
        assert events, f"Expected webhook '{event_type}' to be triggered"
        return events[0]

    async def refute_webhook_triggered(self, event_type: str, *, eventable: Any = None) -> None:
        events = await self._find(event_type, eventable)
        assert not events, f"Expected webhook '{event_type}' not to be triggered"

    async def last_webhook_event(self, event_type: str | None = None) -> Event | None:
        events = await self._store.list_events(
            event_type=str(event_type) if event_type else None,
            limit=1,
        )
        return events[0] if events else None

    async def last_webhook_delivery(self) -> Delivery | None:
        deliveries = await self._store.list_deliveries(limit=1)
        return deliveries[0] if deliveries else None

    async def _find(self, event_type: str, eventable: Any) -> list[Event]:
        ref = EventableRef.from_entity(eventable) if eventable is not None else None
        return await self._store.list_events(
            event_type=str(event_type),
            eventable_kind=ref.kind if ref else None,
            eventable_id=ref.id if ref else None,
        )
