"""Tests for the in-process delayed queue."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from src.jobs.queue import DelayedTaskQueue, InProcessDelayedQueue


@pytest.fixture
async def queue():
    q = InProcessDelayedQueue(workers=2)
    yield q
    await q.stop()


class TestInProcessDelayedQueue:
    """Tests for InProcessDelayedQueue."""

    def test_implements_protocol(self):
        assert isinstance(InProcessDelayedQueue(), DelayedTaskQueue)

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError, match="at least 1"):
            InProcessDelayedQueue(workers=0)

    async def test_runs_enqueued_ids(self, queue):
        seen = []

        async def handler(delivery_id):
            seen.append(delivery_id)

        queue.start(handler)
        await queue.enqueue("dlv_1")
        await queue.enqueue("dlv_2")
        await queue.join(timeout=2)

        assert sorted(seen) == ["dlv_1", "dlv_2"]
        assert len(queue) == 0

    async def test_enqueue_before_start(self, queue):
        seen = []

        async def handler(delivery_id):
            seen.append(delivery_id)

        await queue.enqueue("dlv_early")
        assert len(queue) == 1

        queue.start(handler)
        await queue.join(timeout=2)

        assert seen == ["dlv_early"]

    async def test_not_before_respected(self, queue):
        ran_at = {}

        async def handler(delivery_id):
            ran_at[delivery_id] = datetime.now(UTC)

        queue.start(handler)
        not_before = datetime.now(UTC) + timedelta(milliseconds=200)
        await queue.enqueue("dlv_later", not_before)
        await queue.enqueue("dlv_now")
        await queue.join(timeout=2)

        assert ran_at["dlv_later"] >= not_before
        assert ran_at["dlv_now"] < ran_at["dlv_later"]

    async def test_future_item_stays_scheduled(self, queue):
        seen = []

        async def handler(delivery_id):
            seen.append(delivery_id)

        queue.start(handler)
        await queue.enqueue("dlv_far", datetime.now(UTC) + timedelta(hours=1))
        await asyncio.sleep(0.05)

        assert seen == []
        assert len(queue) == 1

    async def test_handler_error_does_not_stop_worker(self):
        queue = InProcessDelayedQueue(workers=1)
        seen = []

        async def handler(delivery_id):
            if delivery_id == "dlv_bad":
                raise RuntimeError("boom")
            seen.append(delivery_id)

        queue.start(handler)
        try:
            await queue.enqueue("dlv_bad")
            await queue.enqueue("dlv_good")
            await queue.join(timeout=2)
        finally:
            await queue.stop()

        assert seen == ["dlv_good"]

    async def test_start_stop(self, queue):
        async def handler(delivery_id):
            pass

        assert queue.is_running is False
        queue.start(handler)
        queue.start(handler)
        assert queue.is_running is True

        await queue.stop()

        assert queue.is_running is False

    async def test_concurrent_workers(self):
        queue = InProcessDelayedQueue(workers=3)
        active = 0
        peak = 0

        async def handler(delivery_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.05)
            active -= 1

        queue.start(handler)
        try:
            for i in range(3):
                await queue.enqueue(f"dlv_{i}")
            await queue.join(timeout=2)
        finally:
            await queue.stop()

        assert peak == 3
