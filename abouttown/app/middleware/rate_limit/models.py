"""Rate limiting data models.

This module contains dataclasses for limiter options, bucket state and
check results.
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from starlette.requests import Request

from abouttown.app.core.utils import iso_utc

DEFAULT_MESSAGE = "Too many requests, please try again later."

KeyGenerator = Callable[[Request], str]


@dataclass
class RateLimitOptions:
    """Configuration of a single fixed-window limiter."""
    window_seconds: float
    max_requests: int
    key_generator: Optional[KeyGenerator] = None
    message: str = DEFAULT_MESSAGE
    skip_successful_requests: bool = False
    name: str = "default"

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds!r}")
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {self.max_requests!r}")

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)


@dataclass
class RateLimitBucket:
    """Counter state for one key after a hit."""
    key: str
    count: int
    reset_at: float
    window_start: float


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int
    key: str
    window_start: float

    @classmethod
    def from_bucket(cls, bucket: RateLimitBucket, limit: int, now: float) -> "RateLimitResult":
        return cls(
            allowed=bucket.count <= limit,
            limit=limit,
            remaining=max(0, limit - bucket.count),
            reset_at=bucket.reset_at,
            retry_after=max(1, math.ceil(bucket.reset_at - now)),
            key=bucket.key,
            window_start=bucket.window_start,
        )

    def headers(self) -> Dict[str, str]:
        """Rate limit headers carried by every response, allowed or denied."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": iso_utc(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers
