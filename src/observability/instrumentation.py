"""Instrumentation records for webhook activity.

Components emit named records; subscribers receive the ones whose name
matches their pattern. Record names:

- webhook.triggered: an event was created and fanned out
- webhook.delivered: a delivery attempt finished
- webhook.inbox_stored: a delivery was captured in the inbox
"""

import re
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

WEBHOOK_TRIGGERED = "webhook.triggered"
WEBHOOK_DELIVERED = "webhook.delivered"
WEBHOOK_INBOX_STORED = "webhook.inbox_stored"

DEFAULT_PATTERN = r"^webhook\."

Subscriber = Callable[[str, dict[str, Any]], None]


@dataclass
class Subscription:
    """A subscriber bound to a name pattern."""

    pattern: re.Pattern[str]
    callback: Subscriber
    id: int = field(default=0)

    def matches(self, name: str) -> bool:
        return self.pattern.search(name) is not None


class Instrumentation:
    """Publish/subscribe hub for instrumentation records.

    Example:
        instrumentation = Instrumentation()
        instrumentation.subscribe(lambda name, data: print(name, data))
        instrumentation.emit("webhook.delivered", {"delivery_id": "dlv_1"})
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._next_id = 1
        self._logger = logger.bind(component="instrumentation")

    def subscribe(
        self,
        callback: Subscriber,
        pattern: str | re.Pattern[str] = DEFAULT_PATTERN,
    ) -> Subscription:
        """Register a subscriber for records matching ``pattern``.

        Args:
            callback: Called with ``(name, payload)``.
            pattern: Regular expression matched against record names.

        Returns:
            Subscription handle for ``unsubscribe``.
        """
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        subscription = Subscription(pattern=compiled, callback=callback, id=self._next_id)
        self._next_id += 1
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        """Deliver a record to every matching subscriber.

        Subscriber errors are logged and do not reach the emitter.
        """
        for subscription in list(self._subscriptions):
            if not subscription.matches(name):
                continue
            try:
                subscription.callback(name, dict(payload))
            except Exception as e:
                self._logger.warning(
                    "instrumentation_subscriber_error",
                    record=name,
                    error=str(e),
                )

    @contextmanager
    def instrument(self, name: str, payload: dict[str, Any]) -> Iterator[dict[str, Any]]:
        """Time a block and emit ``payload`` with its duration afterwards.

        The yielded dict may be updated inside the block.
        """
        started = time.perf_counter()
        try:
            yield payload
        finally:
            payload["duration"] = time.perf_counter() - started
            self.emit(name, payload)


def log_subscriber(name: str, payload: dict[str, Any]) -> None:
    """Subscriber that writes every record to the structured log."""
    logger.info(name.replace(".", "_"), **payload)


class RecordingSubscriber:
    """Subscriber that keeps every record it receives."""

    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        self.records.append((name, payload))

    def named(self, name: str) -> list[dict[str, Any]]:
        return [payload for record, payload in self.records if record == name]
