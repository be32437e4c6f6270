"""A work queue of resource keys for controllers.

The queue has the following properties:

- A key is queued at most once: adding a key that is already waiting is a no-op.
- A key is handed to at most one worker at a time. Adding a key while it is
  being processed marks it dirty and it is queued again when the worker calls
  `done`, so reconciliation of a single key is strictly sequential.
- Delayed adds are coalesced per key. Only the earliest pending deadline is
  kept, and an immediate add replaces a pending delayed one.
- Delays are timers on the event loop and never hold a worker.
"""

import asyncio
from collections.abc import Hashable
import logging
from typing import Generic, TypeVar

from .rate_limiter import RateLimiter

__all__ = ["WorkQueue", "QueueShutDown"]

_LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

_SHUTDOWN = object()


class QueueShutDown(Exception):
    """Raised by `get` once the queue has been shut down."""


class WorkQueue(Generic[K]):
    """Deduplicating, delaying, rate limited queue of keys."""

    def __init__(self, rate_limiter: RateLimiter, name: str = "queue") -> None:
        """Initialize WorkQueue."""
        self._rate_limiter = rate_limiter
        self._name = name
        self._ready: asyncio.Queue[object] = asyncio.Queue()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._deadlines: dict[K, float] = {}
        self._timers: dict[K, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        """Return the number of keys ready to be processed."""
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_idle(self) -> bool:
        """Return True if no key is ready, in progress or scheduled."""
        return not self._dirty and not self._processing and not self._timers

    def add(self, key: K) -> None:
        """Mark the key as needing processing."""
        if self._shutting_down:
            return
        self._cancel_timer(key)
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            _LOGGER.debug("%s: %s is in progress, will requeue when done", self._name, key)
            return
        self._ready.put_nowait(key)

    def add_after(self, key: K, delay: float) -> None:
        """Add the key after the delay, keeping only the earliest pending deadline."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        if (existing := self._deadlines.get(key)) is not None and existing <= deadline:
            return
        self._cancel_timer(key)
        self._deadlines[key] = deadline
        self._timers[key] = loop.call_at(deadline, self._fire, key)

    def add_rate_limited(self, key: K) -> None:
        """Add the key once the rate limiter allows it."""
        self.add_after(key, self._rate_limiter.when(key))

    def forget(self, key: K) -> None:
        """Reset the failure history of the key in the rate limiter."""
        self._rate_limiter.forget(key)

    def num_requeues(self, key: K) -> int:
        return self._rate_limiter.num_requeues(key)

    def _fire(self, key: K) -> None:
        self._deadlines.pop(key, None)
        self._timers.pop(key, None)
        self.add(key)

    def _cancel_timer(self, key: K) -> None:
        self._deadlines.pop(key, None)
        if (timer := self._timers.pop(key, None)) is not None:
            timer.cancel()

    async def get(self) -> K:
        """Wait for the next key and mark it as in progress.

        Raises:
            QueueShutDown: If the queue has been shut down.
        """
        item = await self._ready.get()
        if item is _SHUTDOWN:
            # Wake the next waiting worker as well
            self._ready.put_nowait(_SHUTDOWN)
            raise QueueShutDown(self._name)
        key: K = item  # type: ignore[assignment]
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: K) -> None:
        """Mark the key as no longer in progress, requeueing it if it is dirty."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)

    def shutdown(self) -> None:
        """Stop accepting keys and release all waiting workers."""
        if self._shutting_down:
            return
        _LOGGER.debug("%s: shutting down", self._name)
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._deadlines.clear()
        self._ready.put_nowait(_SHUTDOWN)
