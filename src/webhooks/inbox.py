"""Development inbox for captured webhook requests.

When inbox mode is enabled the dispatcher stores each outbound request
here instead of sending it. Captured requests can be inspected and
replayed against their destination later.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
import structlog

from src.config import WebhookSettings
from src.errors import RecordNotFoundError, UrlSecurityError
from src.webhooks.models import InboxEntry, truncate_response
from src.webhooks.signing import canonical_json
from src.webhooks.url_validator import UrlValidator

if TYPE_CHECKING:
    from src.storage.base import WebhookStore

logger = structlog.get_logger(__name__)


class InboxService:
    """Lists, replays and clears captured webhook requests."""

    def __init__(
        self,
        store: WebhookStore,
        *,
        settings: WebhookSettings | None = None,
        validator: UrlValidator | None = None,
    ) -> None:
        self._store = store
        self.settings = settings or WebhookSettings()
        self._validator = validator or UrlValidator()
        self._logger = logger.bind(component="webhook_inbox")

    async def list_entries(
        self,
        event_type: str | None = None,
        limit: int | None = 100,
    ) -> list[InboxEntry]:
        """Return captured requests, newest first."""
        return await self._store.list_inbox_entries(event_type=event_type, limit=limit)

    async def get(self, entry_id: str) -> InboxEntry | None:
        return await self._store.get_inbox_entry(entry_id)

    async def replay(self, entry_id: str) -> bool:
        """Send a captured request to its destination.

        The destination is validated again first. The captured headers are
        sent unchanged, so the original signature still matches the body.

        Args:
            entry_id: Inbox entry to replay.

        Returns:
            True if the destination answered with a 2xx status.

        Raises:
            RecordNotFoundError: If the entry does not exist.
            UrlSecurityError: If the destination is no longer safe.
        """
        entry = await self._store.get_inbox_entry(entry_id)
        if entry is None:
            raise RecordNotFoundError("InboxEntry", entry_id)

        validation = await self._validator.validate_async(entry.url)
        if not validation.valid:
            self._logger.warning(
                "inbox_replay_blocked",
                inbox_entry_id=entry.id,
                reason=validation.reason,
            )
            raise UrlSecurityError(f"URL validation failed: {validation.reason}", url=entry.url)

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.TIMEOUT,
                follow_redirects=False,
            ) as client:
                response = await client.post(
                    entry.url,
                    content=canonical_json(entry.payload),
                    headers=entry.headers,
                )
        except httpx.HTTPError as e:
            self._logger.warning(
                "inbox_replay_failed",
                inbox_entry_id=entry.id,
                error=f"{type(e).__name__}: {e}",
            )
            await self._record_replay(entry, None, f"{type(e).__name__}: {e}")
            return False

        await self._record_replay(entry, response.status_code, response.text)
        success = 200 <= response.status_code < 300
        self._logger.info(
            "inbox_replayed",
            inbox_entry_id=entry.id,
            status_code=response.status_code,
            success=success,
        )
        return success

    async def clear(self) -> int:
        """Delete every captured request and return how many were removed."""
        removed = await self._store.clear_inbox()
        self._logger.info("inbox_cleared", removed=removed)
        return removed

    async def _record_replay(
        self,
        entry: InboxEntry,
        status_code: int | None,
        body: str | None,
    ) -> None:
        entry.replayed_at = datetime.now(UTC)
        entry.replay_response_code = status_code
        entry.replay_response_body = truncate_response(body)
        await self._store.save_inbox_entry(entry)
