"""Tests for the fixed-window rate limiter."""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.responses import Response

from abouttown.app.core.cache import Cache, InMemoryCache
from abouttown.app.core.config import Settings
from abouttown.app.core.sweep import EveryRequestSweeper
from abouttown.app.exceptions import PolicyViolation, RateLimitExceeded
from abouttown.app.middleware.rate_limit import (
    DEFAULT_MESSAGE,
    CacheRateLimitBackend,
    InMemoryRateLimitBackend,
    RateLimiter,
    RateLimitOptions,
)
from abouttown.app.middleware.rate_limit.presets import (
    PRESET_MESSAGES,
    create_backend,
    create_preset,
    preset_options,
)


class TestRateLimitOptions:
    """Validation of limiter options."""

    def test_defaults(self):
        options = RateLimitOptions(window_seconds=60, max_requests=5)
        assert options.message == DEFAULT_MESSAGE
        assert options.window_ms == 60000
        assert options.skip_successful_requests is False

    @pytest.mark.parametrize(("window", "limit"), [(0, 5), (-1, 5), (60, 0)])
    def test_invalid_options_rejected(self, window, limit):
        with pytest.raises(ValueError):
            RateLimitOptions(window_seconds=window, max_requests=limit)


class TestRateLimiterWindow:
    """Fixed-window counting."""

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=5, name="test"),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_exactly_max_requests_pass(self, limiter, make_request):
        request = make_request()
        for expected_remaining in (4, 3, 2, 1, 0):
            result = await limiter.check(request)
            assert result.allowed is True
            assert result.remaining == expected_remaining

        result = await limiter.check(request)
        assert result.allowed is False
        assert result.remaining == 0
        assert 0 < result.retry_after <= 60

    @pytest.mark.asyncio
    async def test_window_restarts_after_expiry(self, limiter, make_request, clock):
        request = make_request()
        for _ in range(6):
            await limiter.check(request)

        clock.advance(61)
        result = await limiter.check(request)
        assert result.allowed is True
        assert result.remaining == 4

    @pytest.mark.asyncio
    async def test_retry_after_counts_down(self, limiter, make_request, clock):
        request = make_request()
        for _ in range(5):
            await limiter.check(request)

        clock.advance(45.5)
        result = await limiter.check(request)
        assert result.retry_after == 15

    @pytest.mark.asyncio
    async def test_retry_after_is_at_least_one(self, limiter, make_request, clock):
        request = make_request()
        for _ in range(5):
            await limiter.check(request)

        clock.advance(60)
        result = await limiter.check(request)
        assert result.allowed is False
        assert result.retry_after == 1

    @pytest.mark.asyncio
    async def test_clients_are_independent(self, limiter, make_request):
        for _ in range(6):
            await limiter.check(make_request(client_ip="198.51.100.1"))

        result = await limiter.check(make_request(client_ip="198.51.100.2"))
        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_forwarded_for_first_hop_is_the_key(self, limiter, make_request):
        request = make_request(headers={"X-Forwarded-For": "192.0.2.7, 10.0.0.1"}, client_ip="10.0.0.1")
        assert limiter.key_for(request) == "test:192.0.2.7"

    @pytest.mark.asyncio
    async def test_custom_key_generator(self, clock, make_request):
        limiter = RateLimiter(
            RateLimitOptions(
                window_seconds=60,
                max_requests=1,
                key_generator=lambda request: "everyone",
                name="shared",
            ),
            clock=clock,
        )
        await limiter.check(make_request(client_ip="198.51.100.1"))
        result = await limiter.check(make_request(client_ip="198.51.100.2"))
        assert result.allowed is False

    @pytest.mark.asyncio
    async def test_reset_single_key_and_all(self, limiter, make_request):
        first = make_request(client_ip="198.51.100.1")
        second = make_request(client_ip="198.51.100.2")
        for _ in range(6):
            await limiter.check(first)
            await limiter.check(second)

        await limiter.reset("198.51.100.1")
        assert (await limiter.check(first)).allowed is True
        assert (await limiter.check(second)).allowed is False

        await limiter.reset()
        assert (await limiter.check(second)).allowed is True

    @pytest.mark.asyncio
    async def test_sweeper_cleans_expired_buckets(self, clock, make_request):
        backend = InMemoryRateLimitBackend(clock=clock)
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=10, max_requests=5),
            backend=backend,
            sweeper=EveryRequestSweeper(),
            clock=clock,
        )
        await limiter.check(make_request(client_ip="198.51.100.1"))
        clock.advance(11)
        await limiter.check(make_request(client_ip="198.51.100.2"))

        assert len(backend.store) == 1


class TestEnforceAndHeaders:
    """Denials and response headers."""

    @pytest.mark.asyncio
    async def test_enforce_raises_with_body_and_headers(self, clock, make_request):
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=900, max_requests=1, message="Slow down", name="api"),
            clock=clock,
        )
        request = make_request()
        await limiter.enforce(request)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.enforce(request)

        exc = exc_info.value
        assert exc.status_code == 429
        assert exc.body() == {"error": "Slow down", "retryAfter": 900, "limit": 1, "windowMs": 900000}
        assert exc.headers["X-RateLimit-Remaining"] == "0"
        assert exc.headers["Retry-After"] == "900"

    @pytest.mark.asyncio
    async def test_reset_header_is_iso_utc(self, clock, make_request):
        clock.now = 1_700_000_000.0
        limiter = RateLimiter(RateLimitOptions(window_seconds=60, max_requests=5), clock=clock)

        headers = (await limiter.check(make_request())).headers()
        assert headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "2023-11-14T22:14:20.000Z",
        }


class TestRateLimitStage:
    """The limiter as an admission stage."""

    @pytest.mark.asyncio
    async def test_on_response_sets_headers(self, clock, make_request):
        limiter = RateLimiter(RateLimitOptions(window_seconds=60, max_requests=5), clock=clock)
        stage = limiter.stage()
        request = make_request()

        token = await stage.admit(request)
        response = Response("ok")
        await stage.on_response(request, response, token)

        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    @pytest.mark.asyncio
    async def test_route_limiter_headers_are_kept(self, clock, make_request):
        pipeline_limiter = RateLimiter(RateLimitOptions(window_seconds=60, max_requests=5), clock=clock)
        route_limiter = RateLimiter(
            RateLimitOptions(window_seconds=3600, max_requests=2, name="sensitive"),
            clock=clock,
        )
        stage = pipeline_limiter.stage()
        request = make_request()

        token = await stage.admit(request)
        response = Response("ok")
        await route_limiter.dependency()(request, response)
        await stage.on_response(request, response, token)

        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_successful_requests_are_refunded(self, clock, make_request):
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=2, skip_successful_requests=True),
            clock=clock,
        )
        stage = limiter.stage()
        request = make_request()

        for _ in range(5):
            token = await stage.admit(request)
            await stage.on_response(request, Response("ok", status_code=200), token)

        result = await limiter.check(request)
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_failed_requests_are_not_refunded(self, clock, make_request):
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=2, skip_successful_requests=True),
            clock=clock,
        )
        stage = limiter.stage()
        request = make_request()

        for _ in range(2):
            token = await stage.admit(request)
            await stage.on_response(request, Response("bad", status_code=400), token)

        with pytest.raises(RateLimitExceeded):
            await stage.admit(request)

    @pytest.mark.asyncio
    async def test_refund_ignores_previous_window(self, clock, make_request):
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=10, max_requests=2, skip_successful_requests=True),
            clock=clock,
        )
        stage = limiter.stage()
        request = make_request()

        stale = await stage.admit(request)
        clock.advance(11)
        await stage.admit(request)
        await stage.admit(request)

        await stage.on_response(request, Response("ok"), stale)
        with pytest.raises(RateLimitExceeded):
            await stage.admit(request)

    def test_stage_prefixes(self, clock, make_request):
        limiter = RateLimiter(RateLimitOptions(window_seconds=60, max_requests=5), clock=clock)
        stage = limiter.stage(["/api"])

        assert stage.applies(make_request(path="/api/bills"))
        assert stage.applies(make_request(path="/api"))
        assert not stage.applies(make_request(path="/apiary"))
        assert not stage.applies(make_request(path="/health"))


class TestCacheBackend:
    """Limiter counting through the cache."""

    @pytest.mark.asyncio
    async def test_counts_through_cache(self, clock, make_request):
        cache = Cache(memory=InMemoryCache(clock=clock), clock=clock)
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=2, name="api"),
            backend=CacheRateLimitBackend(cache, clock=clock),
            clock=clock,
        )
        request = make_request(client_ip="198.51.100.9")

        assert (await limiter.check(request)).allowed is True
        clock.advance(20)
        second = await limiter.check(request)
        assert second.allowed is True
        assert second.retry_after == 40
        assert (await limiter.check(request)).allowed is False
        assert cache.memory.ttl("abouttown:ratelimit:api:198.51.100.9") == 40

    @pytest.mark.asyncio
    async def test_refund_is_ignored(self, clock, make_request):
        cache = Cache(memory=InMemoryCache(clock=clock), clock=clock)
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=1, name="api"),
            backend=CacheRateLimitBackend(cache, clock=clock),
            clock=clock,
        )
        request = make_request()
        result = await limiter.check(request)
        await limiter.refund(result)

        assert (await limiter.check(request)).allowed is False

    @pytest.mark.asyncio
    async def test_reset_key(self, clock, make_request):
        cache = Cache(memory=InMemoryCache(clock=clock), clock=clock)
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=1, name="api"),
            backend=CacheRateLimitBackend(cache, clock=clock),
            clock=clock,
        )
        request = make_request(client_ip="198.51.100.9")
        await limiter.check(request)
        await limiter.reset("198.51.100.9")

        assert (await limiter.check(request)).allowed is True


class TestPresets:
    """Named presets built from settings."""

    @pytest.mark.parametrize(
        ("name", "window", "limit"),
        [
            ("api", 900, 30),
            ("strict", 60, 5),
            ("auth", 900, 3),
            ("sensitive", 3600, 10),
            ("burst", 10, 5),
        ],
    )
    def test_preset_defaults(self, settings, name, window, limit):
        options = preset_options(name, settings)
        assert options.window_seconds == window
        assert options.max_requests == limit
        assert options.message == PRESET_MESSAGES[name]
        assert options.name == name

    def test_unknown_preset(self, settings):
        with pytest.raises(ValueError):
            preset_options("nope", settings)

    def test_auth_preset_key(self, settings, make_request):
        limiter = create_preset("auth", settings)
        assert limiter.key_for(make_request(client_ip="192.0.2.1")) == "auth:auth:192.0.2.1"

    def test_backend_selection(self, clock):
        cache = Cache(clock=clock)
        memory_settings = Settings(_env_file=None)
        cache_settings = Settings(_env_file=None, rate_limit_backend="cache")

        assert isinstance(create_backend(memory_settings, cache), InMemoryRateLimitBackend)
        assert isinstance(create_backend(cache_settings, cache), CacheRateLimitBackend)


class TestDependency:
    """The limiter as a per-route FastAPI dependency."""

    def test_route_dependency_limits_and_sets_headers(self, clock):
        limiter = RateLimiter(
            RateLimitOptions(window_seconds=60, max_requests=2, message="Route limit", name="route"),
            clock=clock,
        )
        app = FastAPI()

        @app.exception_handler(PolicyViolation)
        async def handle(request, exc: PolicyViolation):
            return exc.to_response()

        @app.get("/limited", dependencies=[Depends(limiter.dependency())])
        async def limited():
            return {"ok": True}

        client = TestClient(app)
        first = client.get("/limited")
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "1"

        client.get("/limited")
        denied = client.get("/limited")
        assert denied.status_code == 429
        assert denied.json()["error"] == "Route limit"
        assert denied.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in denied.headers
