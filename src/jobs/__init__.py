"""Background job queue for webhook deliveries.

This module provides:
- DelayedTaskQueue: Protocol for queues with not-before scheduling
- InProcessDelayedQueue: Asyncio worker-pool implementation
"""

from src.jobs.queue import DelayedTaskQueue, DeliveryHandler, InProcessDelayedQueue

__all__ = [
    "DelayedTaskQueue",
    "DeliveryHandler",
    "InProcessDelayedQueue",
]
