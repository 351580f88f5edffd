"""Webhook domain records.

Endpoints, events, deliveries and inbox entries as persisted by a
``WebhookStore``. Delivery state transitions live on the ``Delivery``
model so every store applies them the same way.
"""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.errors import DeliveryStateError

MAX_RESPONSE_BODY_BYTES = 10_000
TRUNCATION_MARKER = "... (truncated)"

INBOX_RESPONSE_BODY = "Stored in inbox (development mode)"


def _now() -> datetime:
    return datetime.now(UTC)


def generate_secret(num_bytes: int = 32) -> str:
    """Generate a random endpoint signing secret."""
    return secrets.token_hex(num_bytes)


def truncate_response(body: str | None, max_bytes: int = MAX_RESPONSE_BODY_BYTES) -> str | None:
    """Cap a response body at ``max_bytes`` UTF-8 bytes.

    Longer bodies are cut and suffixed with the truncation marker.
    """
    if body is None:
        return None
    encoded = body.encode("utf-8")
    if len(encoded) <= max_bytes:
        return body
    head = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return f"{head}{TRUNCATION_MARKER}"


def underscore(name: str) -> str:
    """Convert a class name to a snake_case kind (``LineItem`` -> ``line_item``)."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


class DeliveryStatus(str, Enum):
    """Status of a webhook delivery."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class EventableRef(BaseModel):
    """Reference to the entity an event is about."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., min_length=1, description="Entity kind, e.g. 'order'")
    id: str = Field(..., description="Entity identifier")

    @classmethod
    def from_entity(cls, entity: Any) -> EventableRef:
        """Build a reference from a domain entity.

        The kind is the entity's ``webhook_kind`` attribute when present,
        otherwise its class name in snake_case.
        """
        if isinstance(entity, EventableRef):
            return entity
        kind = getattr(entity, "webhook_kind", None) or underscore(type(entity).__name__)
        entity_id = getattr(entity, "id", None)
        if entity_id is None:
            raise ValueError(f"{type(entity).__name__} has no id")
        return cls(kind=kind, id=str(entity_id))


class Endpoint(BaseModel):
    """A registered webhook destination."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(
        default_factory=lambda: f"whe_{uuid.uuid4().hex[:12]}",
        description="Unique endpoint identifier",
    )
    url: str = Field(..., description="Destination URL")
    secret: str = Field(
        default_factory=generate_secret,
        frozen=True,
        description="HMAC signing secret, immutable after creation",
    )
    events: list[str] = Field(
        default_factory=list,
        description="Full event names subscribed to, e.g. 'order.completed'",
    )
    enabled: bool = Field(default=True, description="Whether endpoint is active")
    description: str = Field(default="", description="Human-readable description")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def subscribed_to(self, full_event_name: str) -> bool:
        """Exact membership check against the subscription set."""
        return full_event_name in self.events


class Event(BaseModel):
    """An immutable record of something that happened."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    event_type: str = Field(..., min_length=1, description="Short event name, e.g. 'completed'")
    eventable_kind: str = Field(..., min_length=1)
    eventable_id: str
    payload: Any = Field(..., description="Event payload sent as the request body")
    idempotency_key: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=_now)

    @property
    def full_event_name(self) -> str:
        """Event name used for subscriptions, e.g. 'order.completed'."""
        return f"{self.eventable_kind}.{self.event_type}"


class Delivery(BaseModel):
    """Attempt series for sending one event to one endpoint."""

    id: str = Field(default_factory=lambda: f"dlv_{uuid.uuid4().hex[:12]}")
    event_id: str
    endpoint_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING

    attempt_count: int = Field(default=0, ge=0)
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None

    response_code: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] = Field(default_factory=dict)
    request_headers: dict[str, str] = Field(default_factory=dict)
    error_message: str | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status != DeliveryStatus.PENDING

    def is_due(self, now: datetime | None = None) -> bool:
        """Check whether a pending delivery may be attempted now."""
        if self.status != DeliveryStatus.PENDING:
            return False
        if self.next_retry_at is None:
            return True
        return self.next_retry_at <= (now or _now())

    def ensure_claimable(
        self,
        now: datetime | None = None,
        *,
        expected_attempt_count: int | None = None,
    ) -> None:
        """Check that this delivery may be claimed for an attempt now.

        Args:
            now: Reference time for the due check.
            expected_attempt_count: Attempt count seen when the caller
                decided to attempt; a different count means another
                attempt got there first.

        Raises:
            DeliveryStateError: If the delivery is terminal, not yet due,
                or was claimed since the caller read it.
        """
        details = {"delivery_id": self.id, "status": self.status.value}
        if self.status != DeliveryStatus.PENDING:
            raise DeliveryStateError(f"Delivery {self.id} is {self.status.value}", details=details)
        if not self.is_due(now):
            raise DeliveryStateError(f"Delivery {self.id} is not due", details=details)
        if expected_attempt_count is not None and self.attempt_count != expected_attempt_count:
            raise DeliveryStateError(
                f"Delivery {self.id} was already attempted",
                details={**details, "attempt_count": self.attempt_count},
            )

    def begin_attempt(
        self,
        now: datetime | None = None,
        *,
        expected_attempt_count: int | None = None,
        lease_until: datetime | None = None,
    ) -> None:
        """Claim a new attempt before its request is sent.

        Args:
            now: Attempt time.
            expected_attempt_count: See ``ensure_claimable``.
            lease_until: Keeps the delivery out of due queries while the
                attempt is in flight. An attempt that never records its
                outcome becomes due again once the lease expires.

        Raises:
            DeliveryStateError: If the delivery cannot be claimed.
        """
        timestamp = now or _now()
        self.ensure_claimable(timestamp, expected_attempt_count=expected_attempt_count)
        self.attempt_count += 1
        self.last_attempt_at = timestamp
        if lease_until is not None:
            self.next_retry_at = lease_until
        self.updated_at = timestamp

    def mark_success(
        self,
        response_code: int,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> None:
        """Mark delivery as successful."""
        timestamp = _now()
        self.status = DeliveryStatus.SUCCESS
        self.response_code = response_code
        self.response_body = truncate_response(response_body)
        self.response_headers = response_headers or {}
        self.last_attempt_at = self.last_attempt_at or timestamp
        self.next_retry_at = None
        self.error_message = None
        self.updated_at = timestamp

    def schedule_retry(
        self,
        error_message: str,
        next_retry_at: datetime,
        *,
        response_code: int | None = None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> None:
        """Record a failed attempt that will be retried."""
        self._record_failure(error_message, response_code, response_body, response_headers)
        self.status = DeliveryStatus.PENDING
        self.next_retry_at = next_retry_at

    def mark_failed(
        self,
        error_message: str,
        *,
        response_code: int | None = None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> None:
        """Record a failed attempt and stop retrying."""
        self._record_failure(error_message, response_code, response_body, response_headers)
        self.status = DeliveryStatus.FAILED
        self.next_retry_at = None

    def _record_failure(
        self,
        error_message: str,
        response_code: int | None,
        response_body: str | None,
        response_headers: dict[str, str] | None,
    ) -> None:
        self.error_message = error_message
        self.response_code = response_code
        self.response_body = truncate_response(response_body)
        self.response_headers = response_headers or {}
        self.updated_at = _now()


class InboxEntry(BaseModel):
    """A captured outbound request stored instead of being sent."""

    id: str = Field(default_factory=lambda: f"inb_{uuid.uuid4().hex[:12]}")
    delivery_id: str | None = None
    url: str
    payload: Any
    headers: dict[str, str] = Field(default_factory=dict)
    replayed_at: datetime | None = None
    replay_response_code: int | None = None
    replay_response_body: str | None = None
    created_at: datetime = Field(default_factory=_now)

    @property
    def event_type(self) -> str | None:
        return self.headers.get("X-Webhook-Event")

    @property
    def signature(self) -> str | None:
        return self.headers.get("X-Webhook-Signature")


class EndpointStats(BaseModel):
    """Delivery outcome counts for an endpoint."""

    endpoint_id: str
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    pending_deliveries: int = 0

    @property
    def success_rate(self) -> float:
        """Successful deliveries as a percentage of all deliveries."""
        if self.total_deliveries == 0:
            return 0.0
        return round(self.successful_deliveries / self.total_deliveries * 100, 2)
