"""Webhook delivery attempts.

Executes one attempt for a delivery: re-validates the destination, builds
the signed request, sends it and records the outcome. Failed attempts are
re-enqueued with exponential backoff until the attempt limit is reached.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import structlog

from src.config import WebhookSettings
from src.errors import DeliveryStateError
from src.observability.instrumentation import (
    WEBHOOK_DELIVERED,
    WEBHOOK_INBOX_STORED,
    Instrumentation,
)
from src.webhooks.models import (
    INBOX_RESPONSE_BODY,
    Delivery,
    DeliveryStatus,
    Endpoint,
    Event,
    InboxEntry,
)
from src.webhooks.retry import next_retry_at, should_retry
from src.webhooks.signing import (
    ATTEMPT_HEADER,
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    IDEMPOTENCY_KEY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    canonical_json,
    sign,
)
from src.webhooks.url_validator import UrlValidator

if TYPE_CHECKING:
    from src.jobs.queue import DelayedTaskQueue
    from src.storage.base import DeliveryMutation, WebhookStore

logger = structlog.get_logger(__name__)

# An in-flight attempt stays out of due queries for TIMEOUT times this factor
CLAIM_LEASE_FACTOR = 2


def rfc3339_now() -> str:
    """Current UTC time as an RFC3339 timestamp, e.g. 2024-01-01T00:00:00Z."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_request(
    delivery: Delivery,
    event: Event,
    endpoint: Endpoint,
    *,
    user_agent: str,
) -> tuple[bytes, dict[str, str]]:
    """Build the body and headers for a delivery attempt.

    The signature covers exactly the returned body bytes.

    Returns:
        Tuple of (body, headers).
    """
    body = canonical_json(event.payload)
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        SIGNATURE_HEADER: sign(body, endpoint.secret),
        EVENT_HEADER: event.event_type,
        DELIVERY_ID_HEADER: delivery.id,
        ATTEMPT_HEADER: str(delivery.attempt_count),
        TIMESTAMP_HEADER: rfc3339_now(),
        IDEMPOTENCY_KEY_HEADER: event.idempotency_key,
    }
    return body, headers


class WebhookDispatcher:
    """Runs delivery attempts and drives the delivery state machine.

    Features:
    - Destination re-validated right before every send
    - HMAC-signed requests, redirects never followed
    - Exponential backoff through the delayed-task queue
    - Inbox capture instead of sending in development
    - One instrumentation record per attempt

    The ``settings`` attribute is read at the start of every attempt, so
    assigning new settings takes effect without a restart.
    """

    def __init__(
        self,
        store: WebhookStore,
        queue: DelayedTaskQueue,
        *,
        settings: WebhookSettings | None = None,
        validator: UrlValidator | None = None,
        instrumentation: Instrumentation | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Durable store holding deliveries.
            queue: Queue used to schedule retries.
            settings: Delivery settings (defaults if not provided).
            validator: Destination URL validator.
            instrumentation: Sink for ``webhook.delivered`` records.
        """
        self._store = store
        self._queue = queue
        self.settings = settings or WebhookSettings()
        self._validator = validator or UrlValidator()
        self._instrumentation = instrumentation or Instrumentation()
        self._logger = logger.bind(component="webhook_dispatcher")

    async def attempt(self, delivery_id: str) -> Delivery | None:
        """Make one delivery attempt.

        Safe to call repeatedly for the same id: terminal deliveries and
        deliveries whose retry is not yet due are returned unchanged.

        Args:
            delivery_id: Delivery to attempt.

        Returns:
            The delivery after the attempt, or None if it no longer exists.
        """
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is None:
            self._logger.warning("delivery_not_found", delivery_id=delivery_id)
            return None

        if delivery.is_terminal:
            self._logger.debug(
                "delivery_already_terminal",
                delivery_id=delivery_id,
                status=delivery.status.value,
            )
            return delivery

        if not delivery.is_due():
            self._logger.debug(
                "delivery_not_due",
                delivery_id=delivery_id,
                next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
            )
            return delivery

        endpoint = await self._store.get_endpoint(delivery.endpoint_id)
        event = await self._store.get_event(delivery.event_id)
        if endpoint is None or event is None:
            self._logger.warning(
                "delivery_records_missing",
                delivery_id=delivery_id,
                endpoint_found=endpoint is not None,
                event_found=event is not None,
            )
            return None

        settings = self.settings

        if settings.ENABLE_INBOX:
            return await self._store_in_inbox(delivery, event, endpoint, settings)

        observed_attempts = delivery.attempt_count
        lease_until = datetime.now(UTC) + timedelta(seconds=settings.TIMEOUT * CLAIM_LEASE_FACTOR)
        try:
            claimed = await self._store.update_delivery(
                delivery_id,
                lambda d: d.begin_attempt(
                    expected_attempt_count=observed_attempts,
                    lease_until=lease_until,
                ),
            )
        except DeliveryStateError as e:
            return await self._claim_lost(delivery_id, e)
        if claimed is None:
            self._logger.warning("delivery_not_found", delivery_id=delivery_id)
            return None

        started = time.perf_counter()
        try:
            outcome, updated = await self._send(claimed, event, endpoint, settings)
        except _DeliveryGone:
            return None

        self._instrumentation.emit(
            WEBHOOK_DELIVERED,
            {
                "delivery_id": updated.id,
                "status": updated.status.value,
                "attempt_count": updated.attempt_count,
                "endpoint_id": updated.endpoint_id,
                "event_type": event.event_type,
                "outcome": outcome,
                "duration": time.perf_counter() - started,
            },
        )
        return updated

    async def requeue_due(self, now: datetime | None = None) -> int:
        """Enqueue every pending delivery whose retry time has passed.

        Recovers retries whose queue entries were lost, e.g. after a
        restart with an in-process queue.

        Returns:
            Number of deliveries enqueued.
        """
        due = await self._store.find_due_retries(now or datetime.now(UTC))
        for delivery in due:
            await self._queue.enqueue(delivery.id)

        if due:
            self._logger.info("retrying_due_deliveries", count=len(due))
        return len(due)

    async def _send(
        self,
        delivery: Delivery,
        event: Event,
        endpoint: Endpoint,
        settings: WebhookSettings,
    ) -> tuple[str, Delivery]:
        """Validate, send and record one attempt.

        Returns:
            Tuple of (outcome, updated delivery).
        """
        validation = await self._validator.validate_async(endpoint.url)
        if not validation.valid:
            error_message = f"URL validation failed: {validation.reason}"
            updated = await self._finish(
                delivery.id, lambda d: d.mark_failed(error_message)
            )
            self._logger.error(
                "delivery_blocked_unsafe_url",
                delivery_id=delivery.id,
                endpoint_id=endpoint.id,
                reason=validation.reason,
            )
            return "blocked", updated

        body, headers = build_request(delivery, event, endpoint, user_agent=settings.USER_AGENT)

        self._logger.debug(
            "attempting_delivery",
            delivery_id=delivery.id,
            attempt=delivery.attempt_count,
            url=endpoint.url,
        )

        try:
            async with httpx.AsyncClient(
                timeout=settings.TIMEOUT,
                follow_redirects=False,
            ) as client:
                response = await client.post(endpoint.url, content=body, headers=headers)
        except Exception as e:
            error_message = f"{type(e).__name__}: {e}"
            return await self._handle_failure(delivery, headers, error_message, settings)

        response_headers = dict(response.headers)
        if 200 <= response.status_code < 300:

            def _succeed(d: Delivery) -> None:
                d.request_headers = dict(headers)
                d.mark_success(
                    response_code=response.status_code,
                    response_body=response.text,
                    response_headers=response_headers,
                )

            updated = await self._finish(delivery.id, _succeed)
            self._logger.info(
                "delivery_success",
                delivery_id=delivery.id,
                endpoint_id=endpoint.id,
                status_code=response.status_code,
            )
            return "success", updated

        error_message = f"HTTP {response.status_code}: {response.reason_phrase}"
        return await self._handle_failure(
            delivery,
            headers,
            error_message,
            settings,
            response_code=response.status_code,
            response_body=response.text,
            response_headers=response_headers,
        )

    async def _handle_failure(
        self,
        delivery: Delivery,
        request_headers: dict[str, str],
        error_message: str,
        settings: WebhookSettings,
        *,
        response_code: int | None = None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> tuple[str, Delivery]:
        attempts = delivery.attempt_count

        if should_retry(attempts, settings.MAX_RETRY_ATTEMPTS):
            retry_at = next_retry_at(
                attempts,
                settings.INITIAL_RETRY_DELAY,
                settings.MAX_RETRY_DELAY,
            )

            def _retry(d: Delivery) -> None:
                d.request_headers = dict(request_headers)
                d.schedule_retry(
                    error_message,
                    retry_at,
                    response_code=response_code,
                    response_body=response_body,
                    response_headers=response_headers,
                )

            updated = await self._finish(delivery.id, _retry)
            await self._queue.enqueue(delivery.id, retry_at)
            self._logger.warning(
                "delivery_failed_will_retry",
                delivery_id=delivery.id,
                attempt=attempts,
                next_retry_at=retry_at.isoformat(),
                error=error_message,
            )
            return "retry_scheduled", updated

        def _fail(d: Delivery) -> None:
            d.request_headers = dict(request_headers)
            d.mark_failed(
                error_message,
                response_code=response_code,
                response_body=response_body,
                response_headers=response_headers,
            )

        updated = await self._finish(delivery.id, _fail)
        self._logger.error(
            "delivery_failed_permanently",
            delivery_id=delivery.id,
            endpoint_id=delivery.endpoint_id,
            attempts=attempts,
            error=error_message,
        )
        return "failed", updated

    async def _finish(self, delivery_id: str, mutate: DeliveryMutation) -> Delivery:
        updated = await self._store.update_delivery(delivery_id, mutate)
        if updated is None:
            # Deleted while the request was in flight
            self._logger.warning("delivery_deleted_during_attempt", delivery_id=delivery_id)
            raise _DeliveryGone(delivery_id)
        return updated

    async def _claim_lost(self, delivery_id: str, error: DeliveryStateError) -> Delivery | None:
        """Return the current record after another attempt claimed it first."""
        self._logger.debug(
            "delivery_claimed_elsewhere",
            delivery_id=delivery_id,
            reason=error.message,
        )
        return await self._store.get_delivery(delivery_id)

    async def _store_in_inbox(
        self,
        delivery: Delivery,
        event: Event,
        endpoint: Endpoint,
        settings: WebhookSettings,
    ) -> Delivery | None:
        _, headers = build_request(delivery, event, endpoint, user_agent=settings.USER_AGENT)
        observed_attempts = delivery.attempt_count

        def _captured(d: Delivery) -> None:
            d.ensure_claimable(expected_attempt_count=observed_attempts)
            d.request_headers = dict(headers)
            d.mark_success(response_code=200, response_body=INBOX_RESPONSE_BODY)

        # Claim first so a repeated attempt cannot capture the request twice
        try:
            updated = await self._store.update_delivery(delivery.id, _captured)
        except DeliveryStateError as e:
            return await self._claim_lost(delivery.id, e)
        if updated is None:
            self._logger.warning("delivery_not_found", delivery_id=delivery.id)
            return None

        entry = InboxEntry(
            delivery_id=delivery.id,
            url=endpoint.url,
            payload=event.payload,
            headers=headers,
        )
        await self._store.save_inbox_entry(entry)

        self._logger.debug(
            "delivery_stored_in_inbox",
            delivery_id=delivery.id,
            inbox_entry_id=entry.id,
        )
        self._instrumentation.emit(
            WEBHOOK_INBOX_STORED,
            {
                "delivery_id": delivery.id,
                "inbox_entry_id": entry.id,
                "status": DeliveryStatus.SUCCESS.value,
                "endpoint_id": endpoint.id,
                "event_type": event.event_type,
            },
        )
        return updated


class _DeliveryGone(Exception):
    """A delivery disappeared between claiming and recording the outcome."""
