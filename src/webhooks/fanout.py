"""Event fan-out to subscribed endpoints.

Creates the event record, one pending delivery per enabled endpoint
subscribed to the event's full name, and enqueues every delivery for
immediate execution.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, TypeAdapter

from src.errors import UnknownEventError
from src.observability.instrumentation import WEBHOOK_TRIGGERED, Instrumentation
from src.webhooks.models import Delivery, Event, EventableRef
from src.webhooks.registry import EventRegistry, PayloadSource

if TYPE_CHECKING:
    from src.jobs.queue import DelayedTaskQueue
    from src.storage.base import WebhookStore

logger = structlog.get_logger(__name__)

_PAYLOAD_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


def default_payload(entity: Any) -> Any:
    """Compute the payload for an entity when none is supplied.

    Order of preference: the entity's ``default_webhook_payload()``,
    a pydantic model dump, a dataclass dump, then public attributes.

    Raises:
        ValueError: If the entity is a bare ``EventableRef``.
    """
    if isinstance(entity, EventableRef):
        raise ValueError("An explicit payload is required when triggering by reference")
    if isinstance(entity, PayloadSource):
        return entity.default_webhook_payload()
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json")
    if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
        return dataclasses.asdict(entity)
    return {key: value for key, value in vars(entity).items() if not key.startswith("_")}


class EventFanout:
    """Turns triggered events into queued deliveries.

    Example:
        fanout = EventFanout(store, queue, registry)
        event = await fanout.trigger("completed", order)
    """

    def __init__(
        self,
        store: WebhookStore,
        queue: DelayedTaskQueue,
        registry: EventRegistry,
        *,
        instrumentation: Instrumentation | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._registry = registry
        self._instrumentation = instrumentation or Instrumentation()
        self._logger = logger.bind(component="event_fanout")

    async def trigger(
        self,
        event_type: str,
        eventable: Any,
        payload: Any = None,
    ) -> Event:
        """Trigger a webhook event for an entity.

        Args:
            event_type: Short event name declared for the entity's kind.
            eventable: Domain entity or ``EventableRef``.
            payload: Explicit payload; the entity's default payload is used
                when None.

        Returns:
            The created event, whether or not any endpoint matched.

        Raises:
            UnknownEventError: If the event is not declared for the kind.
            DuplicateIdempotencyKeyError: If the idempotency key collides.
        """
        event_type = str(event_type)
        ref = EventableRef.from_entity(eventable)

        if not self._registry.is_declared(ref.kind, event_type):
            raise UnknownEventError(event_type, ref.kind)

        body = payload if payload is not None else default_payload(eventable)
        # Stored and sent as plain JSON types, whatever the store backend
        body = _PAYLOAD_ADAPTER.dump_python(body, mode="json")

        event = await self._store.create_event(
            Event(
                event_type=event_type,
                eventable_kind=ref.kind,
                eventable_id=ref.id,
                payload=body,
            )
        )

        endpoints = await self._store.find_subscribed_endpoints(event.full_event_name)
        deliveries = [
            Delivery(event_id=event.id, endpoint_id=endpoint.id) for endpoint in endpoints
        ]
        if deliveries:
            await self._store.create_deliveries(deliveries)
            for delivery in deliveries:
                await self._queue.enqueue(delivery.id)

        self._logger.info(
            "event_triggered",
            event_id=event.id,
            event_name=event.full_event_name,
            delivery_count=len(deliveries),
        )
        self._instrumentation.emit(
            WEBHOOK_TRIGGERED,
            {
                "event_type": event_type,
                "eventable_kind": ref.kind,
                "eventable_id": ref.id,
                "deliveries_count": len(deliveries),
            },
        )
        return event
