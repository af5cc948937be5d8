"""Request Queue
================

Bounded FIFO admission control in front of the model endpoint.

Key Features:
- At most ``max_concurrent`` requests execute at once (default 1, a single
  local inference slot)
- Waiting requests are served strictly in enqueue order
- Beyond ``max_queue_size`` waiting entries, new requests fail fast with
  ``QueueFullError`` instead of blocking
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, TypeVar

from codeforge.errors import QueueFullError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Utilization at which the queue reports itself as overloaded
OVERLOAD_THRESHOLD_PERCENT = 80


class RequestQueue:
    """FIFO request queue with a concurrency cap and a hard size bound.

    Runs on a single event loop; counters are only touched between awaits
    so no lock is needed.
    """

    def __init__(self, max_concurrent: int = 1, max_queue_size: int = 20, name: str = "llm"):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_queue_size < 0:
            raise ValueError("max_queue_size must not be negative")
        self.name = name
        self.max_concurrent = max_concurrent
        self.max_queue_size = max_queue_size
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._stats = {
            'total_requests': 0,
            'completed': 0,
            'failed': 0,
            'rejected': 0,
            'max_observed_pending': 0,
        }

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def run(self, execute: Callable[[], Awaitable[T]]) -> T:
        """Run ``execute`` once a slot is free.

        Args:
            execute: Zero-argument coroutine factory for the actual call

        Returns:
            Whatever ``execute`` returns

        Raises:
            QueueFullError: If all slots are busy and the queue is full
        """
        await self._acquire()
        try:
            result = await execute()
        except BaseException:
            self._stats['failed'] += 1
            raise
        else:
            self._stats['completed'] += 1
            return result
        finally:
            self._release()

    async def _acquire(self) -> None:
        self._stats['total_requests'] += 1
        if self._active < self.max_concurrent and not self._waiters:
            self._active += 1
            return

        if len(self._waiters) >= self.max_queue_size:
            self._stats['rejected'] += 1
            logger.warning(
                f"RequestQueue '{self.name}' full: {len(self._waiters)} pending, "
                f"{self._active} active - rejecting request"
            )
            raise QueueFullError(self.max_queue_size)

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._stats['max_observed_pending'] = max(self._stats['max_observed_pending'], len(self._waiters))
        logger.debug(f"RequestQueue '{self.name}' queued request ({len(self._waiters)} pending)")
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation; pass it on
                self._release()
            else:
                self._remove_waiter(waiter)
            raise

    def _release(self) -> None:
        # Hand the slot straight to the oldest waiter so FIFO order holds
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active = max(0, self._active - 1)

    def _remove_waiter(self, waiter: asyncio.Future) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def get_status(self) -> Dict[str, Any]:
        """Queue occupancy for health endpoints."""
        pending = len(self._waiters)
        utilization = (pending / self.max_queue_size * 100) if self.max_queue_size else 100.0
        return {
            'pending': pending,
            'active': self._active,
            'max_concurrent': self.max_concurrent,
            'max_queue_size': self.max_queue_size,
            'utilization_percent': round(utilization, 1),
            'is_overloaded': utilization >= OVERLOAD_THRESHOLD_PERCENT,
            'is_full': pending >= self.max_queue_size,
        }

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats.update(self.get_status())
        return stats


__all__ = ['RequestQueue', 'OVERLOAD_THRESHOLD_PERCENT']
