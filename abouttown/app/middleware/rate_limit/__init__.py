"""Fixed-window rate limiting.

A ``RateLimiter`` counts requests per key in fixed windows and refuses the
request once the count passes ``max_requests``. It plugs into the admission
pipeline through ``stage()`` or into a single route through
``dependency()``.
"""

import time
from typing import Any, Callable, Optional, Sequence

from fastapi import Request, Response

from abouttown.app.core.counter_store import Clock
from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.core.sweep import Sweeper
from abouttown.app.core.utils import get_client_ip
from abouttown.app.exceptions import RateLimitExceeded
from abouttown.app.middleware.pipeline import AdmissionStage

# Re-export models
from abouttown.app.middleware.rate_limit.models import (
    DEFAULT_MESSAGE,
    RateLimitBucket,
    RateLimitOptions,
    RateLimitResult,
)

# Re-export backends
from abouttown.app.middleware.rate_limit.backends import (
    CacheRateLimitBackend,
    InMemoryRateLimitBackend,
    RateLimitBackend,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "DEFAULT_MESSAGE",
    "RateLimitOptions",
    "RateLimitBucket",
    "RateLimitResult",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimitBackend",
    "CacheRateLimitBackend",
    # Main classes
    "RateLimiter",
    "RateLimitStage",
]


class RateLimiter:
    """Fixed-window limiter over a pluggable backend.

    Example:
        >>> limiter = RateLimiter(RateLimitOptions(window_seconds=60, max_requests=5))
        >>> result = await limiter.check(request)
        >>> result.allowed, result.remaining
        (True, 4)
    """

    def __init__(
        self,
        options: RateLimitOptions,
        backend: Optional[RateLimitBackend] = None,
        sweeper: Optional[Sweeper] = None,
        clock: Clock = time.time,
    ):
        """Initialize the limiter.

        Args:
            options: Window, limit, key generator and denial message
            backend: Counter storage (default: in-memory)
            sweeper: Decides when expired buckets are cleaned up
            clock: Time source, injectable for tests
        """
        self.options = options
        self._clock = clock
        self._backend = backend or InMemoryRateLimitBackend(clock=clock)
        self._sweeper = sweeper

    @property
    def name(self) -> str:
        return self.options.name

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    def key_for(self, request: Request) -> str:
        """Storage key for a request, namespaced by limiter name."""
        generator = self.options.key_generator or get_client_ip
        return f"{self.options.name}:{generator(request)}"

    async def hit(self, key: str) -> RateLimitResult:
        """Count one request against ``key`` without raising."""
        if self._sweeper is not None:
            self._sweeper.maybe_sweep(self._backend.sweep)

        bucket = await self._backend.hit(key, self.options.window_seconds)
        return RateLimitResult.from_bucket(bucket, self.options.max_requests, self._clock())

    async def check(self, request: Request) -> RateLimitResult:
        return await self.hit(self.key_for(request))

    async def enforce(self, request: Request) -> RateLimitResult:
        """Count the request and raise if it is over the limit.

        Raises:
            RateLimitExceeded: With the rate limit headers attached
        """
        result = await self.check(request)
        if not result.allowed:
            raise self._exceeded(request, result)
        return result

    def _exceeded(self, request: Request, result: RateLimitResult) -> RateLimitExceeded:
        logger.warning(
            f"Rate limit '{self.name}' exceeded",
            extra=get_log_context(
                client_ip=get_client_ip(request),
                path=request.url.path,
                reason=f"rate-limit:{self.name}",
            ),
        )
        return RateLimitExceeded(
            self.options.message,
            retry_after=result.retry_after,
            limit=result.limit,
            window_ms=self.options.window_ms,
            headers=result.headers(),
        )

    async def refund(self, result: RateLimitResult) -> None:
        """Give back one unit for an admitted request, same window only."""
        await self._backend.refund(result.key, result.window_start)

    async def reset(self, key: Optional[str] = None) -> None:
        """Clear the bucket for a raw client key, or every bucket."""
        if key is None:
            await self._backend.reset()
        else:
            await self._backend.reset(f"{self.options.name}:{key}")

    def stage(self, prefixes: Optional[Sequence[str]] = None) -> "RateLimitStage":
        return RateLimitStage(self, prefixes=prefixes)

    def dependency(self) -> Callable[..., Any]:
        """FastAPI dependency enforcing this limiter on one route.

        The result is kept on ``request.state.route_rate_limit`` so pipeline
        limiters leave this route limiter's headers in place.

        Example:
            >>> @router.get("/status", dependencies=[Depends(limiter.dependency())])
        """
        async def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult:
            result = await self.check(request)
            request.state.route_rate_limit = result
            if not result.allowed:
                raise self._exceeded(request, result)
            for header, value in result.headers().items():
                response.headers[header] = value
            return result

        return enforce_rate_limit


class RateLimitStage(AdmissionStage):
    """Admission stage wrapping one ``RateLimiter``."""

    def __init__(self, limiter: RateLimiter, prefixes: Optional[Sequence[str]] = None):
        super().__init__(prefixes)
        self.limiter = limiter
        self.name = f"rate-limit:{limiter.name}"

    async def admit(self, request: Request) -> RateLimitResult:
        return await self.limiter.enforce(request)

    async def on_response(self, request: Request, response: Response, token: RateLimitResult) -> None:
        # A route limiter is more specific; its headers stay.
        if getattr(request.state, "route_rate_limit", None) is None:
            for header, value in token.headers().items():
                response.headers[header] = value

        if self.limiter.options.skip_successful_requests and response.status_code < 400:
            await self.limiter.refund(token)
