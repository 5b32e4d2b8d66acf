"""Storage backends for the fixed-window rate limiter."""

import math
import time
from abc import ABC, abstractmethod
from typing import Optional

from abouttown.app.core.cache import Cache
from abouttown.app.core.counter_store import Clock, TimedCounterStore
from abouttown.app.core.logging import get_logger
from abouttown.app.middleware.rate_limit.models import RateLimitBucket

logger = get_logger(__name__)


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    @abstractmethod
    async def hit(self, key: str, window_seconds: float) -> RateLimitBucket:
        """Count one request for ``key`` and return the bucket after counting.

        Args:
            key: Rate limit key
            window_seconds: Window length used when a new bucket is opened

        Returns:
            RateLimitBucket with the updated count and window bounds
        """
        pass

    @abstractmethod
    async def refund(self, key: str, window_start: float) -> None:
        """Take back one request, but only within the same window."""
        pass

    @abstractmethod
    async def reset(self, key: Optional[str] = None) -> None:
        """Clear one bucket, or every bucket when ``key`` is None."""
        pass

    def sweep(self) -> int:
        """Clean up expired buckets, returning how many were removed."""
        return 0


class InMemoryRateLimitBackend(RateLimitBackend):
    """In-memory fixed-window backend.

    Suitable for single-instance deployments. Each process keeps its own
    counts.
    """

    def __init__(self, clock: Clock = time.time, store: Optional[TimedCounterStore] = None) -> None:
        self._store = store or TimedCounterStore(clock=clock)

    @property
    def store(self) -> TimedCounterStore:
        return self._store

    async def hit(self, key: str, window_seconds: float) -> RateLimitBucket:
        count = self._store.increment(key, window_seconds)
        record = self._store.get(key)
        return RateLimitBucket(
            key=key,
            count=count,
            reset_at=record.window_end,
            window_start=record.window_start,
        )

    async def refund(self, key: str, window_start: float) -> None:
        self._store.decrement(key, window_start=window_start)

    async def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._store.clear()
        else:
            self._store.reset(key)

    def sweep(self) -> int:
        return self._store.sweep()


class CacheRateLimitBackend(RateLimitBackend):
    """Backend on top of ``Cache.incr``/``Cache.ttl``.

    Counts are shared across processes when the cache has a remote backend,
    and fall back to the cache's in-process counters otherwise. Refunds are
    not supported.
    """

    def __init__(self, cache: Cache, clock: Clock = time.time) -> None:
        self._cache = cache
        self._clock = clock

    async def hit(self, key: str, window_seconds: float) -> RateLimitBucket:
        ttl_seconds = max(1, math.ceil(window_seconds))
        count = await self._cache.incr(key, ttl_seconds)
        remaining = await self._cache.ttl(key)
        now = self._clock()
        if remaining <= 0:
            remaining = ttl_seconds
        reset_at = now + remaining
        return RateLimitBucket(
            key=key,
            count=count,
            reset_at=reset_at,
            window_start=reset_at - ttl_seconds,
        )

    async def refund(self, key: str, window_start: float) -> None:
        logger.debug(f"Refund for {key} ignored, cache-backed limiter does not support refunds")

    async def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            # Remote counters cannot be enumerated; they expire on their own.
            self._cache.memory.clear_counters()
            return
        await self._cache.delete_counter(key)
