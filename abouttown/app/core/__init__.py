"""Core utilities for the About Town application."""

from abouttown.app.core.cache import (
    Cache,
    CacheBackend,
    CacheOutcome,
    InMemoryCache,
    OutcomeKind,
    RedisCache,
    RestRedisCache,
    create_cache,
)
from abouttown.app.core.config import Settings, get_settings
from abouttown.app.core.counter_store import CounterRecord, TimedCounterStore
from abouttown.app.core.logging import get_logger, setup_logging

__all__ = [
    "Cache",
    "CacheBackend",
    "CacheOutcome",
    "InMemoryCache",
    "OutcomeKind",
    "RedisCache",
    "RestRedisCache",
    "create_cache",
    "Settings",
    "get_settings",
    "CounterRecord",
    "TimedCounterStore",
    "get_logger",
    "setup_logging",
]
