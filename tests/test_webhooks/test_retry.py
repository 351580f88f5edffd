"""Tests for retry scheduling."""

from datetime import UTC, datetime, timedelta

import pytest

from src.webhooks.retry import backoff_delay, next_retry_at, should_retry


class TestShouldRetry:
    """Tests for the attempt limit."""

    def test_below_limit(self):
        assert should_retry(4, 5) is True

    def test_at_limit(self):
        assert should_retry(5, 5) is False

    def test_above_limit(self):
        assert should_retry(6, 5) is False

    def test_first_attempt(self):
        assert should_retry(0, 1) is True


class TestBackoffDelay:
    """Tests for exponential backoff."""

    @pytest.mark.parametrize(
        ("attempt_count", "expected"),
        [(0, 60), (1, 120), (2, 240), (3, 480), (4, 960), (5, 1920), (6, 3600)],
    )
    def test_default_schedule(self, attempt_count, expected):
        assert backoff_delay(attempt_count, 60, 3600) == expected

    def test_capped_at_max(self):
        assert backoff_delay(20, 60, 3600) == 3600

    def test_huge_attempt_count(self):
        """Test very large attempt counts still return the cap."""
        assert backoff_delay(10_000, 60, 3600) == 3600

    def test_custom_delays(self):
        assert backoff_delay(2, 1, 10) == 4
        assert backoff_delay(5, 1, 10) == 10

    def test_zero_initial_delay(self):
        assert backoff_delay(3, 0, 3600) == 0

    def test_negative_attempt_count(self):
        with pytest.raises(ValueError):
            backoff_delay(-1, 60, 3600)


class TestNextRetryAt:
    """Tests for retry timestamps."""

    def test_relative_to_now(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)

        assert next_retry_at(4, 60, 3600, now=now) == now + timedelta(seconds=960)

    def test_defaults_to_current_time(self):
        before = datetime.now(UTC)
        retry_at = next_retry_at(0, 60, 3600)
        after = datetime.now(UTC)

        assert before + timedelta(seconds=60) <= retry_at <= after + timedelta(seconds=60)
