"""Tests for instrumentation records and logging setup."""

import re

import structlog

from src.observability import (
    WEBHOOK_DELIVERED,
    WEBHOOK_TRIGGERED,
    Instrumentation,
    RecordingSubscriber,
    configure_logging,
    log_subscriber,
)

# ============================================================================
# Subscription Tests
# ============================================================================


class TestInstrumentation:
    """Tests for the publish/subscribe hub."""

    def test_default_pattern_matches_webhook_records(self):
        hub = Instrumentation()
        recorder = RecordingSubscriber()
        hub.subscribe(recorder)

        hub.emit(WEBHOOK_TRIGGERED, {"event_type": "completed"})
        hub.emit("cache.hit", {"key": "x"})

        assert recorder.records == [(WEBHOOK_TRIGGERED, {"event_type": "completed"})]

    def test_custom_pattern(self):
        hub = Instrumentation()
        recorder = RecordingSubscriber()
        hub.subscribe(recorder, pattern=re.compile(r"delivered$"))

        hub.emit(WEBHOOK_TRIGGERED, {})
        hub.emit(WEBHOOK_DELIVERED, {"success": True})

        assert recorder.named(WEBHOOK_DELIVERED) == [{"success": True}]
        assert recorder.named(WEBHOOK_TRIGGERED) == []

    def test_unsubscribe(self):
        hub = Instrumentation()
        recorder = RecordingSubscriber()
        subscription = hub.subscribe(recorder)

        hub.unsubscribe(subscription)
        hub.unsubscribe(subscription)
        hub.emit(WEBHOOK_TRIGGERED, {})

        assert recorder.records == []

    def test_subscriber_error_is_contained(self):
        hub = Instrumentation()
        recorder = RecordingSubscriber()

        def broken(name, payload):
            raise RuntimeError("subscriber failed")

        hub.subscribe(broken)
        hub.subscribe(recorder)
        hub.emit(WEBHOOK_TRIGGERED, {"n": 1})

        assert recorder.named(WEBHOOK_TRIGGERED) == [{"n": 1}]

    def test_payload_copied_per_subscriber(self):
        hub = Instrumentation()
        first = RecordingSubscriber()
        second = RecordingSubscriber()

        def mutate(name, payload):
            payload["mutated"] = True

        hub.subscribe(first)
        hub.subscribe(mutate)
        hub.subscribe(second)
        hub.emit(WEBHOOK_TRIGGERED, {"n": 1})

        assert "mutated" not in second.named(WEBHOOK_TRIGGERED)[0]

    def test_instrument_adds_duration(self):
        hub = Instrumentation()
        recorder = RecordingSubscriber()
        hub.subscribe(recorder)

        with hub.instrument(WEBHOOK_DELIVERED, {"delivery_id": "dlv_1"}) as payload:
            payload["success"] = True

        record = recorder.named(WEBHOOK_DELIVERED)[0]
        assert record["success"] is True
        assert record["duration"] >= 0


# ============================================================================
# Logging Tests
# ============================================================================


class TestLogging:
    """Tests for structlog configuration."""

    def test_log_subscriber_writes_event(self):
        with structlog.testing.capture_logs() as logs:
            log_subscriber(WEBHOOK_DELIVERED, {"delivery_id": "dlv_1"})

        assert logs[0]["event"] == "webhook_delivered"
        assert logs[0]["delivery_id"] == "dlv_1"

    def test_configure_logging_json(self, capsys):
        configure_logging("DEBUG", json_output=True)
        try:
            structlog.get_logger("test").info("json_check", value=1)
            out = capsys.readouterr().out
            assert '"event": "json_check"' in out
            assert '"level": "info"' in out
        finally:
            configure_logging()

    def test_unknown_level_falls_back(self, capsys):
        configure_logging("NOT_A_LEVEL", json_output=True)
        try:
            structlog.get_logger("test").debug("hidden")
            structlog.get_logger("test").info("shown")
            out = capsys.readouterr().out
            assert "hidden" not in out
            assert "shown" in out
        finally:
            configure_logging()
