import json
import re
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(raw: Any) -> list[str]:
    """Parse a list setting from JSON, comma or whitespace separated text."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate plain values so a misconfigured deployment
    # still starts.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part in seen:
            continue
        seen.add(part)
        result.append(part)
    return result


def _parse_cors_origins(raw: Any) -> list[str]:
    origins = _parse_list(raw)
    if "*" in origins:
        return ["*"]
    expanded: list[str] = []
    for origin in origins:
        if "://" in origin:
            expanded.append(origin)
            continue
        # Browsers include the scheme in the Origin header.
        expanded.append(f"http://{origin}")
        expanded.append(f"https://{origin}")
    return expanded


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every value has a default that runs the admission pipeline fully in
    memory. Setting UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN (or
    REDIS_ENABLED + REDIS_URL) turns on the shared cache backend.
    """

    # Debug mode - unhandled errors report their type and message (no traceback)
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    # Cache settings
    cache_key_prefix: str = "abouttown"
    cache_default_ttl: int = 300  # 5 minutes
    cache_remote_timeout: float = 0.5  # Hard cap per remote call, seconds
    cache_remote_retries: int = 2
    cache_retry_backoff: float = 0.1  # Base delay for exponential backoff

    # Upstash-compatible Redis REST backend
    upstash_redis_rest_url: str = Field(default="", validation_alias="UPSTASH_REDIS_REST_URL")
    upstash_redis_rest_token: str = Field(default="", validation_alias="UPSTASH_REDIS_REST_TOKEN")

    # Native Redis backend (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Rate limiting settings
    rate_limit_backend: Literal["memory", "cache"] = "memory"
    rate_limit_api_window_seconds: float = 15 * 60
    rate_limit_api_max_requests: int = 30
    rate_limit_burst_enabled: bool = True
    rate_limit_burst_window_seconds: float = 10
    rate_limit_burst_max_requests: int = 5
    rate_limit_strict_window_seconds: float = 60
    rate_limit_strict_max_requests: int = 5
    rate_limit_auth_window_seconds: float = 15 * 60
    rate_limit_auth_max_requests: int = 3
    rate_limit_sensitive_window_seconds: float = 60 * 60
    rate_limit_sensitive_max_requests: int = 10

    # Bot detection settings
    bot_block_bots: bool = True
    bot_allow_search_engines: bool = True
    bot_strict_mode: bool = True
    bot_log_suspicious: bool = True
    bot_min_user_agent_length: int = 10
    bot_max_query_params: int = 15
    bot_max_url_length: int = 2000
    bot_protected_prefixes: Annotated[list[str], NoDecode] = ["/api"]

    # Suspicion ledger settings
    suspicion_block_threshold: int = 10
    suspicion_block_duration_seconds: float = 60 * 60  # 1 hour
    suspicion_idle_eviction_seconds: float = 2 * 60 * 60  # 2 hours

    # Request fingerprinting
    fingerprint_window_seconds: float = 60
    fingerprint_max_identical_requests: int = 20

    # Honeypot endpoints
    honeypot_enabled: bool = True
    honeypot_delay_seconds: float = 3.0
    honeypot_multiplier: int = 3

    # Cleanup of expired in-process state. Sweeps only ever run on a request;
    # no background timers are started.
    cleanup_strategy: Literal["every_request", "probabilistic", "interval"] = "interval"
    cleanup_probability: float = 0.01
    cleanup_interval_seconds: float = 60

    # HTTP client settings (used by the REST cache backend)
    httpx_connect_timeout: float = 0.5
    httpx_read_timeout: float = 0.5
    httpx_write_timeout: float = 0.5
    httpx_pool_timeout: float = 0.5
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 50
    httpx_max_keepalive_connections: int = 10

    @property
    def rest_cache_configured(self) -> bool:
        """Whether the Upstash-style REST backend has both URL and token."""
        return bool(self.upstash_redis_rest_url and self.upstash_redis_rest_token)

    @property
    def remote_cache_configured(self) -> bool:
        return self.rest_cache_configured or self.redis_enabled

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("bot_protected_prefixes", mode="before")
    @classmethod
    def decode_protected_prefixes(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator(
        "rate_limit_api_max_requests",
        "rate_limit_burst_max_requests",
        "rate_limit_strict_max_requests",
        "rate_limit_auth_max_requests",
        "rate_limit_sensitive_max_requests",
        "suspicion_block_threshold",
        "fingerprint_max_identical_requests",
        "bot_max_query_params",
        "bot_max_url_length",
    )
    @classmethod
    def validate_limit_positive(cls, v: int) -> int:
        """Validate request and threshold limits are positive."""
        if v < 1:
            raise ValueError("Limits and thresholds must be at least 1")
        return v

    @field_validator(
        "rate_limit_api_window_seconds",
        "rate_limit_burst_window_seconds",
        "rate_limit_strict_window_seconds",
        "rate_limit_auth_window_seconds",
        "rate_limit_sensitive_window_seconds",
        "suspicion_block_duration_seconds",
        "suspicion_idle_eviction_seconds",
        "fingerprint_window_seconds",
        "cleanup_interval_seconds",
        "cache_remote_timeout",
    )
    @classmethod
    def validate_window_positive(cls, v: float) -> float:
        """Validate windows and durations are positive."""
        if v <= 0:
            raise ValueError("Windows and durations must be positive")
        return v

    @field_validator("cleanup_probability")
    @classmethod
    def validate_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("cleanup_probability must be between 0 and 1")
        return v

    @field_validator("honeypot_delay_seconds", "cache_retry_backoff")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays must not be negative")
        return v

    @field_validator("cache_remote_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("cache_remote_retries must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
    """Return the process settings, loaded once from the environment."""
    return Settings()
