"""Cache abstraction layer with remote backends and an in-process fallback.

``Cache`` is the only entry point callers use. Every operation tries the
configured remote backend first (Upstash-style Redis REST, or native Redis)
and falls back to ``InMemoryCache`` whenever the remote call fails or times
out. The decision is made per call, so a backend that comes back is picked
up again on the next operation.

Values are JSON-serialised on both paths so remote and in-memory reads
return the same shapes.
"""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from abouttown.app.core.config import Settings
from abouttown.app.core.counter_store import Clock, TimedCounterStore
from abouttown.app.core.http_client import create_http_client
from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.exceptions import CacheBackendError, ConfigurationError

logger = get_logger(__name__)

# Redis TTL reply for a key that exists but has no expiry
NO_EXPIRY = -1

T = TypeVar("T")


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: str
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        if self.expires_at is None:
            return False
        return now > self.expires_at


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"  # no remote backend configured
    ERROR = "error"        # remote backend failed, local state used


@dataclass(frozen=True)
class CacheOutcome(Generic[T]):
    """Result of one attempted remote cache operation."""

    operation: str
    kind: OutcomeKind
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


class CacheBackend(ABC):
    """Abstract base class for remote cache backends.

    Implementations raise on any failure. ``Cache`` turns those failures
    into local fallbacks.
    """

    name: str = "remote"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Retrieve a raw string value, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store a raw string value with a TTL in seconds (SET ... EX)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment a counter and return the new value."""
        pass

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> None:
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds remaining; Redis semantics (-2 missing, -1 no expiry)."""
        pass

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


class RestRedisCache(CacheBackend):
    """Redis REST backend (Upstash-compatible).

    Each command is POSTed as a JSON array to the endpoint with a bearer
    token, and the reply is read from the ``result`` field. Failed commands
    are retried with exponential backoff.

    Example:
        >>> backend = RestRedisCache("https://eu1-xyz.upstash.io", "token")
        >>> await backend.set("abouttown:k", '"v"', ttl=300)
    """

    name = "redis-rest"

    def __init__(
        self,
        url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = 2,
        backoff: float = 0.1,
        settings: Optional[Settings] = None,
    ) -> None:
        if not url or not token:
            raise ConfigurationError("RestRedisCache requires both a URL and a token")
        self._url = url.rstrip("/")
        self._token = token
        self._client = client
        self._owns_client = False
        self._retries = retries
        self._backoff = backoff
        self._settings = settings

    def attach_client(self, client: httpx.AsyncClient) -> None:
        """Use a shared, externally managed HTTP client."""
        self._client = client
        self._owns_client = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self._settings)
            self._owns_client = True
        return self._client

    async def _command(self, *command: Any) -> Any:
        client = self._get_client()
        payload = [str(part) for part in command]
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        for attempt in range(self._retries + 1):
            try:
                response = await client.post(self._url, json=payload, headers=headers)
                if response.status_code >= 400:
                    raise CacheBackendError(f"Redis REST error: HTTP {response.status_code}")
                try:
                    data = response.json()
                except ValueError as exc:
                    raise CacheBackendError("Redis REST returned a non-JSON body") from exc
                if not isinstance(data, dict) or "result" not in data:
                    raise CacheBackendError("Redis REST reply has no result field")
                return data["result"]
            except (httpx.HTTPError, CacheBackendError):
                if attempt == self._retries:
                    raise
                await asyncio.sleep(self._backoff * (2 ** attempt))

    async def get(self, key: str) -> str | None:
        result = await self._command("GET", key)
        if result is not None and not isinstance(result, str):
            raise CacheBackendError("Redis REST GET returned a non-string value")
        return result

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._command("SET", key, value, "EX", ttl)

    async def delete(self, key: str) -> None:
        await self._command("DEL", key)

    async def incr(self, key: str) -> int:
        result = await self._command("INCR", key)
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise CacheBackendError("Redis REST INCR returned a non-integer") from exc

    async def expire(self, key: str, ttl: int) -> None:
        await self._command("EXPIRE", key, ttl)

    async def ttl(self, key: str) -> int:
        result = await self._command("TTL", key)
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise CacheBackendError("Redis REST TTL returned a non-integer") from exc

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._owns_client = False


class RedisCache(CacheBackend):
    """Native Redis backend using ``redis.asyncio``.

    Example:
        >>> backend = RedisCache("redis://localhost:6379/0")
        >>> await backend.incr("abouttown:ratelimit:burst:1.2.3.4")
    """

    name = "redis"

    def __init__(self, redis_url: str, client: Optional[Any] = None) -> None:
        if client is None and not redis_url:
            raise ConfigurationError("RedisCache requires a redis_url when no client is given")
        self._redis_url = redis_url
        self._redis = client

    async def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def get(self, key: str) -> str | None:
        client = await self._get_client()
        value = await client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        client = await self._get_client()
        await client.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def incr(self, key: str) -> int:
        client = await self._get_client()
        return int(await client.incr(key))

    async def expire(self, key: str, ttl: int) -> None:
        client = await self._get_client()
        await client.expire(key, ttl)

    async def ttl(self, key: str) -> int:
        client = await self._get_client()
        return int(await client.ttl(key))

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class InMemoryCache:
    """In-process cache used when no remote backend is reachable.

    Values live in a plain dict with lazy TTL expiry. Counters live in a
    ``TimedCounterStore`` so the first increment fixes the expiry and later
    increments never extend it.

    Note: This cache is not distributed and data is lost when the
    process restarts.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._data: Dict[str, _CacheEntry] = {}
        self._counters = TimedCounterStore(clock=clock)

    def __len__(self) -> int:
        return len(self._data) + len(self._counters)

    def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        return entry.value

    def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._counters.reset(key)

    def incr(self, key: str, ttl: int) -> int:
        return self._counters.increment(key, ttl)

    def ttl(self, key: str) -> int:
        record = self._counters.get(key)
        if record is None:
            return 0
        return max(0, math.ceil(record.window_end - self._clock()))

    def clear(self) -> None:
        self._data.clear()
        self._counters.clear()

    def clear_counters(self) -> None:
        self._counters.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries and counters.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired_keys = [key for key, entry in list(self._data.items()) if entry.is_expired(now)]
        for key in expired_keys:
            self._data.pop(key, None)
        return len(expired_keys) + self._counters.sweep()


class Cache:
    """Key/value cache with TTL, remote first and in-process on failure.

    Remote failures never reach the caller: they are logged as warnings and
    the operation is served from ``InMemoryCache``. Only argument errors
    (empty key, non-positive TTL) raise.

    Without a shared remote backend every process has its own memory store,
    so values and counters are per process.
    """

    def __init__(
        self,
        remote: Optional[CacheBackend] = None,
        memory: Optional[InMemoryCache] = None,
        prefix: str = "abouttown",
        default_ttl: int = 300,
        timeout: float = 0.5,
        clock: Clock = time.time,
    ) -> None:
        self.remote = remote
        self.memory = memory or InMemoryCache(clock=clock)
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.timeout = timeout
        self.last_outcome: Optional[CacheOutcome[Any]] = None
        self.outcomes: List[CacheOutcome[Any]] = []

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    def _value_key(self, key: str) -> str:
        if not key:
            raise ValueError("Cache key must be a non-empty string")
        return f"{self.prefix}:{key}"

    def _counter_key(self, key: str) -> str:
        if not key:
            raise ValueError("Cache key must be a non-empty string")
        return f"{self.prefix}:ratelimit:{key}"

    @staticmethod
    def _check_ttl(ttl_seconds: int) -> int:
        if ttl_seconds is None or ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")
        return int(math.ceil(ttl_seconds))

    def _record(self, outcome: CacheOutcome[Any]) -> CacheOutcome[Any]:
        self.last_outcome = outcome
        self.outcomes.append(outcome)
        # Keep a short history for auditing without growing unbounded.
        if len(self.outcomes) > 100:
            del self.outcomes[:-100]
        return outcome

    async def _attempt(
        self,
        operation: str,
        call: Callable[[CacheBackend], Awaitable[T]],
    ) -> CacheOutcome[T]:
        """Run one remote operation under the hard timeout."""
        if self.remote is None:
            return self._record(CacheOutcome(operation, OutcomeKind.FALLBACK))

        try:
            value = await asyncio.wait_for(call(self.remote), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                f"Cache {operation} timed out after {self.timeout}s, falling back to memory",
                extra=get_log_context(reason="cache-timeout", backend=self.remote.name),
            )
            return self._record(CacheOutcome(operation, OutcomeKind.ERROR, error=exc))
        except (httpx.HTTPError, RedisError, CacheBackendError, OSError, ValueError) as exc:
            logger.warning(
                f"Cache {operation} failed, falling back to memory: {exc}",
                extra=get_log_context(reason="cache-error", backend=self.remote.name),
            )
            return self._record(CacheOutcome(operation, OutcomeKind.ERROR, error=exc))
        except Exception as exc:
            logger.exception(
                f"Unexpected cache {operation} error, falling back to memory",
                extra=get_log_context(reason="cache-error", backend=self.remote.name),
            )
            return self._record(CacheOutcome(operation, OutcomeKind.ERROR, error=exc))

        return self._record(CacheOutcome(operation, OutcomeKind.SUCCESS, value=value))

    async def get(self, key: str) -> Any:
        """Get a value, or None if absent or expired."""
        full_key = self._value_key(key)

        async def _get(backend: CacheBackend) -> Any:
            raw = await backend.get(full_key)
            return None if raw is None else json.loads(raw)

        outcome = await self._attempt("get", _get)
        if outcome.ok:
            return outcome.value

        raw = self.memory.get(full_key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Set a value with a TTL in seconds (default ``default_ttl``)."""
        full_key = self._value_key(key)
        ttl = self._check_ttl(self.default_ttl if ttl_seconds is None else ttl_seconds)
        serialized = json.dumps(value)

        outcome = await self._attempt("set", lambda backend: backend.set(full_key, serialized, ttl))
        if outcome.ok:
            return
        self.memory.set(full_key, serialized, ttl)

    async def delete(self, key: str) -> None:
        full_key = self._value_key(key)
        await self._attempt("delete", lambda backend: backend.delete(full_key))
        self.memory.delete(full_key)

    async def incr(self, key: str, ttl_seconds: int = 60) -> int:
        """Increment a counter, setting its expiry when it is created.

        A remote counter left without an expiry (the EXPIRE after its first
        INCR failed) gets one on the next increment.

        Returns:
            The counter value after this increment
        """
        full_key = self._counter_key(key)
        ttl = self._check_ttl(ttl_seconds)

        async def _incr(backend: CacheBackend) -> int:
            count = await backend.incr(full_key)
            if count == 1 or await backend.ttl(full_key) == NO_EXPIRY:
                await backend.expire(full_key, ttl)
            return count

        outcome = await self._attempt("incr", _incr)
        if outcome.ok:
            return outcome.value
        return self.memory.incr(full_key, ttl)

    async def ttl(self, key: str) -> int:
        """Seconds remaining on a counter created by ``incr`` (0 if absent)."""
        full_key = self._counter_key(key)

        outcome = await self._attempt("ttl", lambda backend: backend.ttl(full_key))
        if outcome.ok:
            return max(0, outcome.value)
        return self.memory.ttl(full_key)

    async def delete_counter(self, key: str) -> None:
        """Drop a counter created by ``incr`` from both stores."""
        full_key = self._counter_key(key)
        await self._attempt("delete", lambda backend: backend.delete(full_key))
        self.memory.delete(full_key)

    def status(self) -> Dict[str, Any]:
        """Report which backend is configured and the memory store size."""
        return {
            "type": self.remote.name if self.remote is not None else "memory",
            "configured": self.remote is not None,
            "memorySize": len(self.memory),
        }

    def clear_memory(self) -> None:
        self.memory.clear()

    def sweep(self) -> int:
        return self.memory.cleanup_expired()

    def attach_http_client(self, client: httpx.AsyncClient) -> None:
        if isinstance(self.remote, RestRedisCache):
            self.remote.attach_client(client)

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()


def create_cache(settings: Settings, clock: Clock = time.time) -> Cache:
    """Build a ``Cache`` for the given settings.

    The REST backend wins when both URL and token are set; native Redis is
    used when ``redis_enabled``; otherwise the cache is memory-only.
    """
    remote: Optional[CacheBackend] = None
    if settings.rest_cache_configured:
        remote = RestRedisCache(
            settings.upstash_redis_rest_url,
            settings.upstash_redis_rest_token,
            retries=settings.cache_remote_retries,
            backoff=settings.cache_retry_backoff,
            settings=settings,
        )
    elif settings.redis_enabled:
        remote = RedisCache(settings.redis_url)

    if remote is None:
        logger.info("No remote cache configured, using in-memory cache")
    else:
        logger.info(f"Using {remote.name} cache backend with in-memory fallback")

    return Cache(
        remote=remote,
        memory=InMemoryCache(clock=clock),
        prefix=settings.cache_key_prefix,
        default_ttl=settings.cache_default_ttl,
        timeout=settings.cache_remote_timeout,
        clock=clock,
    )
