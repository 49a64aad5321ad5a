"""
Deduplicating, rate-limited work queue for reconcile requests.

A key is held at most once in the queue. A key added while a worker is
processing it is parked and handed out again once the worker calls done(),
so one resource is never reconciled by two workers at the same time.
"""

import asyncio
import logging
from collections.abc import Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


class WorkQueueShutDown(Exception):
    """Raised by get() once the queue has been shut down."""


class WorkQueue(Generic[K]):
    """Work queue with per-key dedup, delayed adds and exponential backoff."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        """
        Initialize the queue.

        Args:
            base_delay: Backoff for a key's first failure, in seconds
            max_delay: Upper bound for a key's backoff, in seconds
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._waiting: dict[K, asyncio.TimerHandle] = {}
        self._failures: dict[K, int] = {}
        self._shutting_down = False

    def add(self, key: K) -> None:
        """Queue key unless it is already queued."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: K, delay: float) -> None:
        """Queue key after delay seconds; an earlier pending add wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending.when() <= when:
                return
            pending.cancel()
        self._waiting[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: K) -> None:
        self._waiting.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: K) -> None:
        """Queue key after its current backoff, then double the backoff."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        logger.debug(f"Requeueing {key} in {delay:.3f}s (failure {failures + 1})")
        self.add_after(key, delay)

    def forget(self, key: K) -> None:
        """Reset key's backoff."""
        self._failures.pop(key, None)

    def num_requeues(self, key: K) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> K:
        """
        Wait for the next key and mark it as being processed.

        Raises:
            WorkQueueShutDown: If the queue has been shut down
        """
        while True:
            if self._shutting_down:
                raise WorkQueueShutDown()
            key = await self._queue.get()
            if key is None:
                # Shutdown wake-up; pass it on to the next waiting getter
                self._queue.put_nowait(None)
                continue
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: K) -> None:
        """Mark key as processed; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        """Stop handing out keys and drop pending delayed adds."""
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._queue.put_nowait(None)

    def __len__(self) -> int:
        return len(self._dirty - self._processing)
