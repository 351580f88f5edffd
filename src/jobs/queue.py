"""Delayed-task queue for webhook deliveries.

Deliveries are referenced by id and become eligible at their not-before
time. The queue only guarantees "not before"; there is no ordering
between different deliveries.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

DeliveryHandler = Callable[[str], Awaitable[Any]]


@runtime_checkable
class DelayedTaskQueue(Protocol):
    """Queue accepting delivery ids with a not-before time."""

    async def enqueue(self, delivery_id: str, not_before: datetime | None = None) -> None:
        """Schedule a delivery id; ``None`` means run as soon as possible."""
        ...


class InProcessDelayedQueue:
    """Asyncio implementation of ``DelayedTaskQueue`` with a worker pool.

    Features:
    - Heap ordered by not-before time
    - Configurable number of concurrent workers
    - Handler errors are logged and never stop a worker

    Example:
        queue = InProcessDelayedQueue(workers=4)
        queue.start(dispatcher.attempt)
        await queue.enqueue(delivery.id)
        ...
        await queue.stop()
    """

    def __init__(self, *, workers: int = 4) -> None:
        """Initialize the queue.

        Args:
            workers: Number of concurrent consumer tasks.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._worker_count = workers
        self._heap: list[tuple[float, int, str]] = []
        self._counter = itertools.count()
        self._condition = asyncio.Condition()
        self._workers: list[asyncio.Task[None]] = []
        self._handler: DeliveryHandler | None = None
        self._in_flight = 0
        self._logger = logger.bind(component="delayed_queue")

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def __len__(self) -> int:
        return len(self._heap)

    async def enqueue(self, delivery_id: str, not_before: datetime | None = None) -> None:
        """Schedule a delivery id for execution at or after ``not_before``."""
        run_at = (not_before or datetime.now(UTC)).timestamp()
        async with self._condition:
            heapq.heappush(self._heap, (run_at, next(self._counter), delivery_id))
            self._condition.notify_all()

        self._logger.debug(
            "delivery_enqueued",
            delivery_id=delivery_id,
            not_before=not_before.isoformat() if not_before else None,
        )

    def start(self, handler: DeliveryHandler) -> None:
        """Start the worker pool.

        Args:
            handler: Coroutine function called with each due delivery id.
        """
        if self._workers:
            return
        self._handler = handler
        self._workers = [
            asyncio.create_task(self._work(index)) for index in range(self._worker_count)
        ]
        self._logger.info("delayed_queue_started", workers=self._worker_count)

    async def stop(self) -> None:
        """Stop all workers. Items still scheduled stay in the heap."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            self._logger.info("delayed_queue_stopped", remaining=len(self._heap))

    async def join(self, timeout: float | None = None) -> None:
        """Wait until no item is due or running.

        Items scheduled in the future keep ``join`` waiting until they
        have run.
        """

        async def _idle() -> None:
            async with self._condition:
                await self._condition.wait_for(lambda: not self._heap and self._in_flight == 0)

        await asyncio.wait_for(_idle(), timeout=timeout)

    async def _next_due(self) -> str:
        async with self._condition:
            while True:
                if not self._heap:
                    await self._condition.wait()
                    continue
                run_at, _, delivery_id = self._heap[0]
                delay = run_at - datetime.now(UTC).timestamp()
                if delay <= 0:
                    heapq.heappop(self._heap)
                    self._in_flight += 1
                    return delivery_id
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=delay)
                except TimeoutError:
                    pass

    async def _work(self, index: int) -> None:
        assert self._handler is not None
        while True:
            delivery_id = await self._next_due()
            try:
                await self._handler(delivery_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.exception(
                    "delivery_handler_error",
                    worker=index,
                    delivery_id=delivery_id,
                    error=str(e),
                )
            finally:
                async with self._condition:
                    self._in_flight -= 1
                    self._condition.notify_all()
