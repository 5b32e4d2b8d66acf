"""Named limiter presets built from settings."""

import time
from typing import Callable, Dict, Optional

from starlette.requests import Request

from abouttown.app.core.cache import Cache
from abouttown.app.core.config import Settings
from abouttown.app.core.counter_store import Clock
from abouttown.app.core.sweep import Sweeper
from abouttown.app.core.utils import get_client_ip
from abouttown.app.middleware.rate_limit import (
    CacheRateLimitBackend,
    InMemoryRateLimitBackend,
    RateLimitBackend,
    RateLimiter,
    RateLimitOptions,
)

PRESET_MESSAGES: Dict[str, str] = {
    "api": "Too many API requests. Please try again in 15 minutes.",
    "strict": "Rate limit exceeded. Please slow down.",
    "auth": "Too many authentication attempts. Please try again later.",
    "sensitive": "Access to this resource is rate limited. Please try again later.",
    "burst": "Too many requests in a short time. Please slow down.",
}

PRESET_NAMES = tuple(PRESET_MESSAGES)


def auth_key(request: Request) -> str:
    return f"auth:{get_client_ip(request)}"


_KEY_GENERATORS: Dict[str, Callable[[Request], str]] = {
    "auth": auth_key,
}


def preset_options(name: str, settings: Settings) -> RateLimitOptions:
    """Options for a named preset, with window and limit from settings.

    Raises:
        ValueError: If ``name`` is not a known preset
    """
    if name not in PRESET_MESSAGES:
        raise ValueError(f"Unknown rate limit preset: {name!r}")
    return RateLimitOptions(
        window_seconds=getattr(settings, f"rate_limit_{name}_window_seconds"),
        max_requests=getattr(settings, f"rate_limit_{name}_max_requests"),
        key_generator=_KEY_GENERATORS.get(name),
        message=PRESET_MESSAGES[name],
        name=name,
    )


def create_backend(settings: Settings, cache: Optional[Cache] = None, clock: Clock = time.time) -> RateLimitBackend:
    """Backend selected by ``settings.rate_limit_backend``."""
    if settings.rate_limit_backend == "cache" and cache is not None:
        return CacheRateLimitBackend(cache, clock=clock)
    return InMemoryRateLimitBackend(clock=clock)


def create_preset(
    name: str,
    settings: Settings,
    cache: Optional[Cache] = None,
    sweeper: Optional[Sweeper] = None,
    clock: Clock = time.time,
) -> RateLimiter:
    return RateLimiter(
        preset_options(name, settings),
        backend=create_backend(settings, cache, clock),
        sweeper=sweeper,
        clock=clock,
    )
