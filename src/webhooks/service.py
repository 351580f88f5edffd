"""Webhook engine facade.

Wires the store, queue, validator, dispatcher, fan-out and inbox together
and exposes endpoint management plus event triggering.

Example:
    store = SQLiteWebhookStore("./data/webhooks.db")
    await store.initialize()

    service = WebhookService(store, settings=WebhookSettings.from_env())
    service.start()

    endpoint = await service.register_endpoint(
        "https://api.example.com/hooks",
        events=["order.completed"],
    )
    await service.trigger("completed", order)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.config import WebhookSettings
from src.errors import EndpointValidationError, RecordNotFoundError, UrlSecurityError
from src.jobs.queue import DelayedTaskQueue, InProcessDelayedQueue
from src.observability.instrumentation import Instrumentation
from src.webhooks.dispatcher import WebhookDispatcher
from src.webhooks.fanout import EventFanout
from src.webhooks.inbox import InboxService
from src.webhooks.models import Delivery, DeliveryStatus, Endpoint, EndpointStats, Event, generate_secret
from src.webhooks.registry import EventRegistry
from src.webhooks.url_validator import UrlValidator

if TYPE_CHECKING:
    from src.storage.base import WebhookStore

logger = structlog.get_logger(__name__)


def _validate_events(events: Any) -> list[str]:
    if not events:
        raise EndpointValidationError("Events can't be blank")
    if isinstance(events, str) or not all(isinstance(e, str) and e.strip() for e in events):
        raise EndpointValidationError(
            "Events must be a list of non-empty strings",
            details={"events": events if isinstance(events, str) else list(events)},
        )
    # Keep order, drop duplicates
    return list(dict.fromkeys(e.strip() for e in events))


class WebhookService:
    """Entry point for registering endpoints and triggering events.

    Features:
    - Endpoint registration gated by the URL validator
    - Event fan-out to subscribed, enabled endpoints
    - Background delivery through the delayed-task queue
    - Settings swapped at runtime with ``configure``
    """

    def __init__(
        self,
        store: WebhookStore,
        *,
        queue: DelayedTaskQueue | None = None,
        settings: WebhookSettings | None = None,
        validator: UrlValidator | None = None,
        instrumentation: Instrumentation | None = None,
        registry: EventRegistry | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Durable store for all webhook records.
            queue: Delayed-task queue; an in-process queue if not provided.
            settings: Engine settings (defaults if not provided).
            validator: Destination URL validator.
            instrumentation: Sink for instrumentation records.
            registry: Declared events per entity kind.
        """
        self.settings = settings or WebhookSettings()
        self.store = store
        self.queue = queue or InProcessDelayedQueue(workers=self.settings.WORKERS)
        self.validator = validator or UrlValidator()
        self.instrumentation = instrumentation or Instrumentation()
        self.registry = registry or EventRegistry()

        self.dispatcher = WebhookDispatcher(
            store,
            self.queue,
            settings=self.settings,
            validator=self.validator,
            instrumentation=self.instrumentation,
        )
        self.fanout = EventFanout(
            store,
            self.queue,
            self.registry,
            instrumentation=self.instrumentation,
        )
        self.inbox = InboxService(store, settings=self.settings, validator=self.validator)
        self._logger = logger.bind(component="webhook_service")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start queue workers consuming delivery ids."""
        if isinstance(self.queue, InProcessDelayedQueue):
            self.queue.start(self.dispatcher.attempt)

    async def stop(self) -> None:
        if isinstance(self.queue, InProcessDelayedQueue):
            await self.queue.stop()

    def configure(self, **overrides: Any) -> WebhookSettings:
        """Replace settings for every component.

        Takes effect on the next delivery attempt.

        Raises:
            ConfigurationError: If a key is unknown or a value is invalid.
        """
        settings = self.settings.with_overrides(**overrides)
        self.settings = settings
        self.dispatcher.settings = settings
        self.inbox.settings = settings
        self._logger.info("webhook_settings_updated", changed=sorted(k.upper() for k in overrides))
        return settings

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def register_endpoint(
        self,
        url: str,
        events: list[str],
        *,
        description: str = "",
        metadata: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> Endpoint:
        """Register a new webhook destination.

        Args:
            url: Destination URL; must pass the URL validator.
            events: Full event names, e.g. ["order.completed"].
            description: Human-readable description.
            metadata: Arbitrary data kept with the endpoint.
            enabled: Whether the endpoint receives deliveries.

        Returns:
            The stored endpoint with its generated secret.

        Raises:
            EndpointValidationError: If events are missing or malformed.
            UrlSecurityError: If the URL fails validation.
        """
        subscribed = _validate_events(events)
        await self._check_url(url)

        endpoint = await self.store.save_endpoint(
            Endpoint(
                url=url,
                secret=generate_secret(self.settings.SECRET_BYTES),
                events=subscribed,
                description=description,
                metadata=metadata or {},
                enabled=enabled,
            )
        )
        self._logger.info(
            "endpoint_registered",
            endpoint_id=endpoint.id,
            url=endpoint.url,
            events=endpoint.events,
        )
        return endpoint

    async def get_endpoint(self, endpoint_id: str) -> Endpoint | None:
        return await self.store.get_endpoint(endpoint_id)

    async def list_endpoints(self, *, enabled_only: bool = False) -> list[Endpoint]:
        return await self.store.list_endpoints(enabled_only=enabled_only)

    async def update_endpoint(
        self,
        endpoint_id: str,
        *,
        url: str | None = None,
        events: list[str] | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> Endpoint:
        """Update an endpoint. The secret can never be changed.

        Raises:
            RecordNotFoundError: If the endpoint does not exist.
            EndpointValidationError: If events are malformed.
            UrlSecurityError: If a new URL fails validation.
        """
        endpoint = await self._require_endpoint(endpoint_id)

        if url is not None and url != endpoint.url:
            await self._check_url(url)
            endpoint.url = url
        if events is not None:
            endpoint.events = _validate_events(events)
        if description is not None:
            endpoint.description = description
        if metadata is not None:
            endpoint.metadata = metadata
        if enabled is not None:
            endpoint.enabled = enabled

        endpoint.updated_at = datetime.now(UTC)
        saved = await self.store.save_endpoint(endpoint)
        self._logger.info("endpoint_updated", endpoint_id=endpoint_id)
        return saved

    async def enable_endpoint(self, endpoint_id: str) -> Endpoint:
        return await self.update_endpoint(endpoint_id, enabled=True)

    async def disable_endpoint(self, endpoint_id: str) -> Endpoint:
        return await self.update_endpoint(endpoint_id, enabled=False)

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        """Delete an endpoint together with its deliveries."""
        deleted = await self.store.delete_endpoint(endpoint_id)
        if deleted:
            self._logger.info("endpoint_deleted", endpoint_id=endpoint_id)
        return deleted

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        """Delivery counts and success rate for an endpoint.

        Raises:
            RecordNotFoundError: If the endpoint does not exist.
        """
        await self._require_endpoint(endpoint_id)
        return await self.store.endpoint_stats(endpoint_id)

    # ------------------------------------------------------------------
    # Events and deliveries
    # ------------------------------------------------------------------

    async def trigger(self, event_type: str, eventable: Any, payload: Any = None) -> Event:
        """Trigger an event; see ``EventFanout.trigger``."""
        return await self.fanout.trigger(event_type, eventable, payload)

    async def attempt(self, delivery_id: str) -> Delivery | None:
        """Run one delivery attempt inline; see ``WebhookDispatcher.attempt``."""
        return await self.dispatcher.attempt(delivery_id)

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        return await self.store.get_delivery(delivery_id)

    async def list_deliveries(
        self,
        *,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int | None = 50,
    ) -> list[Delivery]:
        return await self.store.list_deliveries(
            endpoint_id=endpoint_id,
            event_id=event_id,
            status=status,
            limit=limit,
        )

    async def retry_due(self) -> int:
        """Enqueue pending deliveries whose retry time has passed."""
        return await self.dispatcher.requeue_due()

    async def _check_url(self, url: str) -> None:
        validation = await self.validator.validate_async(url)
        if not validation.valid:
            self._logger.warning("endpoint_url_rejected", url=url, reason=validation.reason)
            raise UrlSecurityError(validation.reason or "URL is not allowed", url=url)

    async def _require_endpoint(self, endpoint_id: str) -> Endpoint:
        endpoint = await self.store.get_endpoint(endpoint_id)
        if endpoint is None:
            raise RecordNotFoundError("Endpoint", endpoint_id)
        return endpoint
