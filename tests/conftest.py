"""Shared test fixtures."""

from datetime import datetime
from ipaddress import ip_address

import pytest

from src.config import WebhookSettings
from src.observability.instrumentation import Instrumentation, RecordingSubscriber
from src.storage.memory import InMemoryWebhookStore
from src.webhooks.url_validator import UrlValidator

PUBLIC_IP = "93.184.216.34"


class FakeResolver:
    """Resolver that never touches DNS.

    IP literals resolve to themselves, hosts in ``addresses`` resolve to
    the configured answer and hosts in ``unresolvable`` fail.
    """

    def __init__(self) -> None:
        self.addresses: dict[str, list[str]] = {}
        self.unresolvable: set[str] = {"does-not-exist.invalid"}
        self.calls: list[str] = []

    def __call__(self, host: str) -> list[str]:
        self.calls.append(host)
        if host in self.unresolvable:
            raise OSError(f"getaddrinfo failed for {host}")
        if host in self.addresses:
            return list(self.addresses[host])
        try:
            ip_address(host)
        except ValueError:
            return [PUBLIC_IP]
        return [host]


class RecordingQueue:
    """Delayed-task queue that only records what was enqueued."""

    def __init__(self) -> None:
        self.items: list[tuple[str, datetime | None]] = []

    async def enqueue(self, delivery_id: str, not_before: datetime | None = None) -> None:
        self.items.append((delivery_id, not_before))

    @property
    def ids(self) -> list[str]:
        return [delivery_id for delivery_id, _ in self.items]


@pytest.fixture
def resolver():
    """Fake DNS resolver."""
    return FakeResolver()


@pytest.fixture
def validator(resolver):
    """URL validator using the fake resolver."""
    return UrlValidator(resolver=resolver)


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryWebhookStore()


@pytest.fixture
def queue():
    """Recording queue."""
    return RecordingQueue()


@pytest.fixture
def settings():
    """Default settings."""
    return WebhookSettings()


@pytest.fixture
def recorder():
    """Subscriber keeping instrumentation records."""
    return RecordingSubscriber()


@pytest.fixture
def instrumentation(recorder):
    """Instrumentation hub with a recording subscriber attached."""
    hub = Instrumentation()
    hub.subscribe(recorder)
    return hub
