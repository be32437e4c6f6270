"""Rate limiters deciding how long a key waits before it is processed again.

The default policy is the maximum of a per key exponential failure backoff and
a global token bucket. The exponential term grows with the consecutive
failures of a key and is reset with `forget` once the key succeeds. The token
bucket caps the sustained throughput of all keys, which also bounds the write
pressure on the store. Keys are only ever delayed, never dropped.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable
import logging
import time

from kyma_inventory.config import RateLimiterConfig

__all__ = [
    "RateLimiter",
    "ItemExponentialFailureRateLimiter",
    "BucketRateLimiter",
    "MaxOfRateLimiter",
    "default_rate_limiter",
]

_LOGGER = logging.getLogger(__name__)

# Beyond this many failures the exponential delay is always at its cap
_MAX_EXPONENT = 62


class RateLimiter(ABC):
    """Policy returning the delay before a key may be processed again."""

    @abstractmethod
    def when(self, key: Hashable) -> float:
        """Return the delay in seconds for the key and record the attempt."""

    @abstractmethod
    def forget(self, key: Hashable) -> None:
        """Stop tracking the key, e.g. after it was processed successfully."""

    @abstractmethod
    def num_requeues(self, key: Hashable) -> int:
        """Return the number of times the key has been rate limited."""


class ItemExponentialFailureRateLimiter(RateLimiter):
    """Delay of `base_delay * 2^failures` per key, capped at `max_delay`."""

    def __init__(self, base_delay: float, max_delay: float) -> None:
        """Initialize ItemExponentialFailureRateLimiter."""
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        exp = self._failures.get(key, 0)
        self._failures[key] = exp + 1
        if exp > _MAX_EXPONENT:
            return self._max_delay
        return min(self._base_delay * 2**exp, self._max_delay)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)


class BucketRateLimiter(RateLimiter):
    """Global token bucket shared by all keys.

    Each call to `when` reserves one token. While tokens remain the delay is
    zero; once the bucket is drained the delay is the time until the reserved
    token has been refilled at `qps` tokens per second.
    """

    def __init__(
        self,
        qps: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize BucketRateLimiter."""
        if qps <= 0:
            raise ValueError(f"qps must be positive, got {qps}")
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, key: Hashable) -> float:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._qps)
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._qps

    def forget(self, key: Hashable) -> None:
        pass

    def num_requeues(self, key: Hashable) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    """Combines rate limiters by returning the longest of their delays."""

    def __init__(self, *limiters: RateLimiter) -> None:
        """Initialize MaxOfRateLimiter."""
        if not limiters:
            raise ValueError("At least one rate limiter is required")
        self._limiters = limiters

    def when(self, key: Hashable) -> float:
        # Every limiter must record the attempt, so no short circuit here
        return max([limiter.when(key) for limiter in self._limiters])

    def forget(self, key: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return max(limiter.num_requeues(key) for limiter in self._limiters)


def default_rate_limiter(
    config: RateLimiterConfig | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RateLimiter:
    """Return the controller retry policy: max(exponential backoff, token bucket)."""
    config = config or RateLimiterConfig()
    _LOGGER.debug("Creating rate limiter with %s", config)
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(config.base_delay, config.max_delay),
        BucketRateLimiter(config.qps, config.burst, clock=clock),
    )
