"""Tests for the declared event registry."""

import pytest
from pydantic import BaseModel

from src.webhooks.models import EventableRef
from src.webhooks.registry import EventRegistry, PayloadSource


@pytest.fixture
def registry():
    return EventRegistry()


class TestRegister:
    """Tests for declaring events."""

    def test_register_and_lookup(self, registry):
        registry.register("order", "completed", "cancelled")

        assert registry.events_for("order") == ["completed", "cancelled"]
        assert registry.is_declared("order", "completed") is True
        assert registry.is_declared("order", "shipped") is False

    def test_register_is_additive(self, registry):
        registry.register("order", "completed")
        registry.register("order", "refunded", "completed")

        assert registry.events_for("order") == ["completed", "refunded"]

    def test_unknown_kind(self, registry):
        assert registry.events_for("invoice") == []
        assert registry.is_declared("invoice", "paid") is False

    def test_blank_kind_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register("", "completed")

    def test_blank_event_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register("order", "")

    def test_kinds_sorted(self, registry):
        registry.register("order", "completed")
        registry.register("invoice", "paid")

        assert registry.kinds() == ["invoice", "order"]

    def test_from_mapping(self):
        registry = EventRegistry.from_mapping({"order": ["completed"], "user": ["created"]})

        assert registry.is_declared("user", "created") is True


class TestDecorator:
    """Tests for the class decorator."""

    def test_declares_kind_from_class_name(self, registry):
        @registry.webhook_events("completed", "cancelled")
        class PurchaseOrder(BaseModel):
            id: str

        assert PurchaseOrder.webhook_kind == "purchase_order"
        assert registry.events_for("purchase_order") == ["completed", "cancelled"]

    def test_explicit_kind(self, registry):
        @registry.webhook_events("paid", kind="invoice")
        class Bill:
            def __init__(self, id):
                self.id = id

        assert registry.is_declared("invoice", "paid") is True
        assert EventableRef.from_entity(Bill(3)) == EventableRef(kind="invoice", id="3")


class TestPayloadSource:
    """Tests for the payload protocol."""

    def test_detects_custom_payload(self):
        class Custom:
            def default_webhook_payload(self):
                return {"custom": True}

        assert isinstance(Custom(), PayloadSource)

    def test_plain_object(self):
        assert not isinstance(object(), PayloadSource)
