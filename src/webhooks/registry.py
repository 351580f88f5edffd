"""Declared webhook events per entity kind.

Entity kinds declare the events they can trigger once, at import time:

    registry = EventRegistry()

    @registry.webhook_events("completed", "cancelled", "refunded")
    class Order(BaseModel):
        id: str
        status: str

Triggering an undeclared event for a kind is rejected by the fan-out.
"""

from collections.abc import Callable, Iterable
from typing import Any, Protocol, TypeVar, runtime_checkable

import structlog

from src.webhooks.models import underscore

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=type)


@runtime_checkable
class PayloadSource(Protocol):
    """An entity that customizes its default webhook payload."""

    def default_webhook_payload(self) -> Any: ...


class EventRegistry:
    """Mapping of entity kind to the event names it may trigger."""

    def __init__(self) -> None:
        self._events: dict[str, list[str]] = {}

    def register(self, kind: str, *events: str) -> None:
        """Declare events for an entity kind.

        Args:
            kind: Entity kind, e.g. "order".
            events: Short event names, e.g. "completed".
        """
        if not kind:
            raise ValueError("kind cannot be blank")
        declared = self._events.setdefault(kind, [])
        for event in events:
            name = str(event)
            if not name:
                raise ValueError("event name cannot be blank")
            if name not in declared:
                declared.append(name)
        logger.debug("webhook_events_registered", kind=kind, events=list(declared))

    def events_for(self, kind: str) -> list[str]:
        """Return the events declared for a kind."""
        return list(self._events.get(kind, []))

    def is_declared(self, kind: str, event_type: str) -> bool:
        return event_type in self._events.get(kind, [])

    def kinds(self) -> list[str]:
        return sorted(self._events)

    def webhook_events(self, *events: str, kind: str | None = None) -> Callable[[T], T]:
        """Class decorator declaring the events an entity class triggers.

        The kind defaults to the class' ``webhook_kind`` attribute, or its
        name in snake_case, and is stored back on the class.
        """

        def decorator(cls: T) -> T:
            resolved = kind or getattr(cls, "webhook_kind", None) or underscore(cls.__name__)
            cls.webhook_kind = resolved  # type: ignore[attr-defined]
            self.register(resolved, *events)
            return cls

        return decorator

    @classmethod
    def from_mapping(cls, mapping: dict[str, Iterable[str]]) -> "EventRegistry":
        """Build a registry from ``{kind: [events]}``."""
        registry = cls()
        for kind, events in mapping.items():
            registry.register(kind, *events)
        return registry
