"""Retry scheduling for webhook deliveries.

Pure functions, no I/O. Backoff doubles with every attempt already made
and is capped at the configured maximum:

    delay = min(initial_delay * 2 ** attempt_count, max_delay)
"""

from datetime import UTC, datetime, timedelta


def should_retry(attempt_count: int, max_attempts: int) -> bool:
    """Check whether another attempt is allowed.

    Args:
        attempt_count: Attempts already made.
        max_attempts: Maximum attempts allowed.

    Returns:
        True if attempt_count is below max_attempts.
    """
    return attempt_count < max_attempts


def backoff_delay(attempt_count: int, initial_delay: float, max_delay: float) -> float:
    """Compute the backoff delay in seconds."""
    if attempt_count < 0:
        raise ValueError("attempt_count cannot be negative")
    # Cap the exponent so huge attempt counts don't build huge integers
    exponent = min(attempt_count, 64)
    return float(min(initial_delay * (2**exponent), max_delay))


def next_retry_at(
    attempt_count: int,
    initial_delay: float,
    max_delay: float,
    *,
    now: datetime | None = None,
) -> datetime:
    """Compute when the next attempt becomes eligible.

    Args:
        attempt_count: Attempts already made.
        initial_delay: Base delay in seconds.
        max_delay: Maximum delay in seconds.
        now: Reference time (defaults to the current UTC time).

    Returns:
        Timestamp of the next eligible attempt.
    """
    reference = now or datetime.now(UTC)
    return reference + timedelta(seconds=backoff_delay(attempt_count, initial_delay, max_delay))
