"""SQLite-based webhook store.

This module provides persistent storage for webhook records using SQLite
through aiosqlite. Records are stored as JSON documents alongside the
columns needed for lookups, uniqueness and the retry index.
"""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from src.errors import DuplicateIdempotencyKeyError
from src.storage.base import DeliveryMutation
from src.webhooks.models import (
    Delivery,
    DeliveryStatus,
    Endpoint,
    EndpointStats,
    Event,
    InboxEntry,
)

logger = structlog.get_logger(__name__)

# Default database path
DEFAULT_DB_PATH = "./data/webhooks.db"


def _timestamp(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


class SQLiteWebhookStore:
    """SQLite implementation of ``WebhookStore``.

    Example:
        store = SQLiteWebhookStore("./data/webhooks.db")
        await store.initialize()
        await store.save_endpoint(endpoint)
        due = await store.find_due_retries(datetime.now(UTC))
    """

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file.
                    Defaults to WEBHOOK_DB_PATH env var or ./data/webhooks.db
        """
        self._db_path = db_path or os.environ.get("WEBHOOK_DB_PATH", DEFAULT_DB_PATH)
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._logger = logger.bind(component="sqlite_store")

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()
        self._logger.info("webhook_store_initialized", db_path=self._db_path)

    async def _create_tables(self) -> None:
        conn = self._conn

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_endpoints (
                id TEXT PRIMARY KEY,
                enabled INTEGER NOT NULL DEFAULT 1,
                events TEXT NOT NULL DEFAULT '[]',
                data TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_events (
                id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                eventable_kind TEXT NOT NULL,
                eventable_id TEXT NOT NULL,
                idempotency_key TEXT NOT NULL UNIQUE,
                data TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                id TEXT PRIMARY KEY,
                event_id TEXT NOT NULL,
                endpoint_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                next_retry_at REAL,
                data TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_inbox_entries (
                id TEXT PRIMARY KEY,
                delivery_id TEXT,
                event_type TEXT,
                data TEXT NOT NULL
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_retry
            ON webhook_deliveries(status, next_retry_at)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_endpoint ON webhook_deliveries(endpoint_id)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_event ON webhook_deliveries(event_id)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_eventable
            ON webhook_events(eventable_kind, eventable_id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("SQLiteWebhookStore is not initialized")
        return self._connection

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def save_endpoint(self, endpoint: Endpoint) -> Endpoint:
        async with self._write_lock:
            await self._conn.execute(
                """
                INSERT INTO webhook_endpoints (id, enabled, events, data)
                VALUES (?, ?, json(?), ?)
                ON CONFLICT(id) DO UPDATE SET
                    enabled = excluded.enabled,
                    events = excluded.events,
                    data = excluded.data
                """,
                (
                    endpoint.id,
                    int(endpoint.enabled),
                    json.dumps(endpoint.events),
                    endpoint.model_dump_json(),
                ),
            )
            await self._conn.commit()
        return endpoint

    async def get_endpoint(self, endpoint_id: str) -> Endpoint | None:
        cursor = await self._conn.execute(
            "SELECT data FROM webhook_endpoints WHERE id = ?",
            (endpoint_id,),
        )
        row = await cursor.fetchone()
        return Endpoint.model_validate_json(row["data"]) if row else None

    async def list_endpoints(self, *, enabled_only: bool = False) -> list[Endpoint]:
        query = "SELECT data FROM webhook_endpoints"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY rowid"
        cursor = await self._conn.execute(query)
        rows = await cursor.fetchall()
        return [Endpoint.model_validate_json(row["data"]) for row in rows]

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        async with self._write_lock:
            cursor = await self._conn.execute(
                "DELETE FROM webhook_endpoints WHERE id = ?",
                (endpoint_id,),
            )
            deleted = cursor.rowcount > 0
            if deleted:
                await self._conn.execute(
                    "DELETE FROM webhook_deliveries WHERE endpoint_id = ?",
                    (endpoint_id,),
                )
            await self._conn.commit()

        if deleted:
            self._logger.debug("endpoint_deleted", endpoint_id=endpoint_id)
        return deleted

    async def find_subscribed_endpoints(self, full_event_name: str) -> list[Endpoint]:
        cursor = await self._conn.execute(
            """
            SELECT data FROM webhook_endpoints
            WHERE enabled = 1
              AND EXISTS (
                SELECT 1 FROM json_each(webhook_endpoints.events)
                WHERE json_each.value = ?
              )
            ORDER BY rowid
            """,
            (full_event_name,),
        )
        rows = await cursor.fetchall()
        return [Endpoint.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(self, event: Event) -> Event:
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO webhook_events
                    (id, event_type, eventable_kind, eventable_id, idempotency_key, data)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.id,
                        event.event_type,
                        event.eventable_kind,
                        event.eventable_id,
                        event.idempotency_key,
                        event.model_dump_json(),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                await self._conn.rollback()
                raise DuplicateIdempotencyKeyError(event.idempotency_key) from e
            await self._conn.commit()
        return event

    async def get_event(self, event_id: str) -> Event | None:
        cursor = await self._conn.execute(
            "SELECT data FROM webhook_events WHERE id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return Event.model_validate_json(row["data"]) if row else None

    async def list_events(
        self,
        *,
        event_type: str | None = None,
        eventable_kind: str | None = None,
        eventable_id: str | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        conditions: list[str] = []
        params: list[object] = []
        for column, value in (
            ("event_type", event_type),
            ("eventable_kind", eventable_kind),
            ("eventable_id", eventable_id),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)

        query = "SELECT data FROM webhook_events"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [Event.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def create_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]:
        if not deliveries:
            return deliveries
        async with self._write_lock:
            await self._conn.executemany(
                """
                INSERT INTO webhook_deliveries
                (id, event_id, endpoint_id, status, next_retry_at, data)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [self._delivery_row(d) for d in deliveries],
            )
            await self._conn.commit()
        return deliveries

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        cursor = await self._conn.execute(
            "SELECT data FROM webhook_deliveries WHERE id = ?",
            (delivery_id,),
        )
        row = await cursor.fetchone()
        return Delivery.model_validate_json(row["data"]) if row else None

    async def update_delivery(
        self, delivery_id: str, mutate: DeliveryMutation
    ) -> Delivery | None:
        async with self._write_lock:
            delivery = await self.get_delivery(delivery_id)
            if delivery is None:
                return None
            mutate(delivery)
            await self._conn.execute(
                """
                UPDATE webhook_deliveries
                SET status = ?, next_retry_at = ?, data = ?
                WHERE id = ?
                """,
                (
                    delivery.status.value,
                    _timestamp(delivery.next_retry_at),
                    delivery.model_dump_json(),
                    delivery.id,
                ),
            )
            await self._conn.commit()
        return delivery

    async def list_deliveries(
        self,
        *,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int | None = None,
    ) -> list[Delivery]:
        conditions: list[str] = []
        params: list[object] = []
        if endpoint_id is not None:
            conditions.append("endpoint_id = ?")
            params.append(endpoint_id)
        if event_id is not None:
            conditions.append("event_id = ?")
            params.append(event_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)

        query = "SELECT data FROM webhook_deliveries"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [Delivery.model_validate_json(row["data"]) for row in rows]

    async def find_due_retries(self, now: datetime) -> list[Delivery]:
        cursor = await self._conn.execute(
            """
            SELECT data FROM webhook_deliveries
            WHERE status = 'pending'
              AND next_retry_at IS NOT NULL
              AND next_retry_at <= ?
            ORDER BY next_retry_at
            """,
            (now.timestamp(),),
        )
        rows = await cursor.fetchall()
        return [Delivery.model_validate_json(row["data"]) for row in rows]

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        cursor = await self._conn.execute(
            """
            SELECT status, COUNT(*) AS total FROM webhook_deliveries
            WHERE endpoint_id = ?
            GROUP BY status
            """,
            (endpoint_id,),
        )
        counts = {row["status"]: row["total"] for row in await cursor.fetchall()}
        return EndpointStats(
            endpoint_id=endpoint_id,
            total_deliveries=sum(counts.values()),
            successful_deliveries=counts.get(DeliveryStatus.SUCCESS.value, 0),
            failed_deliveries=counts.get(DeliveryStatus.FAILED.value, 0),
            pending_deliveries=counts.get(DeliveryStatus.PENDING.value, 0),
        )

    @staticmethod
    def _delivery_row(delivery: Delivery) -> tuple[object, ...]:
        return (
            delivery.id,
            delivery.event_id,
            delivery.endpoint_id,
            delivery.status.value,
            _timestamp(delivery.next_retry_at),
            delivery.model_dump_json(),
        )

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def save_inbox_entry(self, entry: InboxEntry) -> InboxEntry:
        async with self._write_lock:
            await self._conn.execute(
                """
                INSERT INTO webhook_inbox_entries (id, delivery_id, event_type, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data
                """,
                (entry.id, entry.delivery_id, entry.event_type, entry.model_dump_json()),
            )
            await self._conn.commit()
        return entry

    async def get_inbox_entry(self, entry_id: str) -> InboxEntry | None:
        cursor = await self._conn.execute(
            "SELECT data FROM webhook_inbox_entries WHERE id = ?",
            (entry_id,),
        )
        row = await cursor.fetchone()
        return InboxEntry.model_validate_json(row["data"]) if row else None

    async def list_inbox_entries(
        self, *, event_type: str | None = None, limit: int | None = None
    ) -> list[InboxEntry]:
        query = "SELECT data FROM webhook_inbox_entries"
        params: list[object] = []
        if event_type is not None:
            query += " WHERE event_type = ?"
            params.append(event_type)
        query += " ORDER BY rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [InboxEntry.model_validate_json(row["data"]) for row in rows]

    async def clear_inbox(self) -> int:
        async with self._write_lock:
            cursor = await self._conn.execute("DELETE FROM webhook_inbox_entries")
            await self._conn.commit()
        return cursor.rowcount

    async def clear(self) -> None:
        async with self._write_lock:
            await self._conn.execute("DELETE FROM webhook_deliveries")
            await self._conn.execute("DELETE FROM webhook_events")
            await self._conn.execute("DELETE FROM webhook_inbox_entries")
            await self._conn.commit()
