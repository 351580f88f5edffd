"""Delivery engine configuration settings.

This module provides configuration for the webhook delivery engine using
environment variables with sensible defaults. Settings are passed
explicitly to the components that need them; replacing the settings
object on a running dispatcher takes effect on its next attempt.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any

from src.errors import ConfigurationError

VERSION = "0.1.0"

ENV_PREFIX = "WEBHOOK_"


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_number_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be numeric",
            details={"value": value},
        ) from e


@dataclass(frozen=True)
class WebhookSettings:
    """Settings for webhook delivery.

    Attributes:
        MAX_RETRY_ATTEMPTS: Attempts allowed before a delivery is failed.
        INITIAL_RETRY_DELAY: Base backoff delay in seconds.
        MAX_RETRY_DELAY: Upper bound for the backoff delay in seconds.
        TIMEOUT: HTTP request timeout in seconds.
        SECRET_BYTES: Random bytes used for each new endpoint secret.
        ENABLE_INBOX: Capture requests in the inbox instead of sending them.
        USER_AGENT: User-Agent header sent with every delivery.
        LOG_LEVEL: Logging level.
        LOG_JSON: Render logs as JSON lines.
        DB_PATH: SQLite database path used by the API application.
        WORKERS: Concurrent delivery workers in the in-process queue.
    """

    MAX_RETRY_ATTEMPTS: int = 5
    INITIAL_RETRY_DELAY: float = 60
    MAX_RETRY_DELAY: float = 3600
    TIMEOUT: float = 30

    SECRET_BYTES: int = 32

    # Development capture
    ENABLE_INBOX: bool = False

    USER_AGENT: str = f"WebhookEngine/{VERSION}"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    DB_PATH: str = "./data/webhooks.db"
    WORKERS: int = 4

    def __post_init__(self) -> None:
        if self.MAX_RETRY_ATTEMPTS < 1:
            raise ConfigurationError("MAX_RETRY_ATTEMPTS must be at least 1")
        if self.INITIAL_RETRY_DELAY < 0 or self.MAX_RETRY_DELAY < 0:
            raise ConfigurationError("Retry delays cannot be negative")
        if self.TIMEOUT <= 0:
            raise ConfigurationError("TIMEOUT must be positive")
        if self.SECRET_BYTES < 16:
            raise ConfigurationError("SECRET_BYTES must be at least 16")
        if self.WORKERS < 1:
            raise ConfigurationError("WORKERS must be at least 1")

    def with_overrides(self, **overrides: Any) -> "WebhookSettings":
        """Return a copy with the given settings replaced.

        Keys are matched case-insensitively, so ``timeout=5`` and
        ``TIMEOUT=5`` are equivalent.

        Raises:
            ConfigurationError: If a key is unknown or a value is invalid.
        """
        known = {f.name for f in fields(self)}
        normalized: dict[str, Any] = {}
        for key, value in overrides.items():
            name = key.upper()
            if name not in known:
                raise ConfigurationError(f"Unknown setting: {key}")
            normalized[name] = value
        return replace(self, **normalized)

    @classmethod
    def from_env(cls) -> "WebhookSettings":
        """Create settings from environment variables.

        Returns:
            WebhookSettings instance populated from ``WEBHOOK_*`` variables.
        """
        defaults = cls()
        return cls(
            MAX_RETRY_ATTEMPTS=int(
                _get_number_env(f"{ENV_PREFIX}MAX_RETRY_ATTEMPTS", defaults.MAX_RETRY_ATTEMPTS)
            ),
            INITIAL_RETRY_DELAY=_get_number_env(
                f"{ENV_PREFIX}INITIAL_RETRY_DELAY", defaults.INITIAL_RETRY_DELAY
            ),
            MAX_RETRY_DELAY=_get_number_env(
                f"{ENV_PREFIX}MAX_RETRY_DELAY", defaults.MAX_RETRY_DELAY
            ),
            TIMEOUT=_get_number_env(f"{ENV_PREFIX}TIMEOUT", defaults.TIMEOUT),
            SECRET_BYTES=int(_get_number_env(f"{ENV_PREFIX}SECRET_BYTES", defaults.SECRET_BYTES)),
            ENABLE_INBOX=_get_bool_env(f"{ENV_PREFIX}ENABLE_INBOX", default=False),
            USER_AGENT=os.getenv(f"{ENV_PREFIX}USER_AGENT", defaults.USER_AGENT),
            LOG_LEVEL=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", defaults.LOG_LEVEL),
            LOG_JSON=_get_bool_env(f"{ENV_PREFIX}LOG_JSON", default=False),
            DB_PATH=os.getenv(f"{ENV_PREFIX}DB_PATH", defaults.DB_PATH),
            WORKERS=int(_get_number_env(f"{ENV_PREFIX}WORKERS", defaults.WORKERS)),
        )
