"""
Unit tests for rate limiting.

Tests tier selection, fixed-window counting, and the middleware's 429
responses and client-address handling.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mdb_proxy.auth.rate_limiter import (
    FixedWindowRateLimitStore,
    RateLimit,
    RateLimitMiddleware,
    default_tiers,
    tiers_for,
)
from mdb_proxy.config import ProxyConfig


@pytest.mark.unit
class TestTiersFor:
    @pytest.mark.parametrize(
        "method, path, expected",
        [
            ("GET", "/", []),
            ("GET", "/apiary", []),
            ("GET", "/api/status", ["api"]),
            ("POST", "/api/connect", ["api", "connect"]),
            ("GET", "/api/connect", ["api"]),
            ("POST", "/api/documents", ["api", "mutation"]),
            ("PUT", "/api/documents/abc", ["api", "mutation"]),
            ("DELETE", "/api/documents/abc", ["api", "mutation"]),
            ("POST", "/api/documents/bulk", ["api", "mutation"]),
            ("GET", "/api/documents", ["api"]),
            ("POST", "/api/import", ["api", "mutation"]),
            ("POST", "/api/aggregate", ["api"]),
        ],
    )
    def test_tiers(self, method, path, expected):
        assert tiers_for(method, path) == expected


@pytest.mark.unit
class TestDefaultTiers:
    def test_defaults(self):
        tiers = default_tiers()
        assert tiers["api"].max_attempts == 100
        assert tiers["connect"].max_attempts == 5
        assert tiers["mutation"].max_attempts == 30
        assert tiers["connect"].message == (
            "Too many connection attempts. Please try again in a minute."
        )

    def test_from_config(self):
        config = ProxyConfig(
            session_secret="x" * 32, connect_rate_limit=2, rate_limit_window_seconds=10
        )
        tiers = default_tiers(config)
        assert tiers["connect"].max_attempts == 2
        assert tiers["api"].window_seconds == 10


@pytest.mark.unit
class TestFixedWindowStore:
    @pytest.mark.asyncio
    async def test_counts_within_window(self, manual_clock):
        store = FixedWindowRateLimitStore(clock=manual_clock)
        limit = RateLimit(max_attempts=3, window_seconds=60)

        results = [await store.hit("connect:1.2.3.4", limit) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].reset_after == 60

    @pytest.mark.asyncio
    async def test_window_resets(self, manual_clock):
        store = FixedWindowRateLimitStore(clock=manual_clock)
        limit = RateLimit(max_attempts=1, window_seconds=60)

        assert (await store.hit("k", limit)).allowed
        assert not (await store.hit("k", limit)).allowed
        manual_clock.advance(60)
        assert (await store.hit("k", limit)).allowed

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, manual_clock):
        store = FixedWindowRateLimitStore(clock=manual_clock)
        limit = RateLimit(max_attempts=1)

        assert (await store.hit("a", limit)).allowed
        assert (await store.hit("b", limit)).allowed
        assert not (await store.hit("a", limit)).allowed

    @pytest.mark.asyncio
    async def test_cleanup(self, manual_clock):
        store = FixedWindowRateLimitStore(clock=manual_clock)
        limit = RateLimit(max_attempts=5)
        await store.hit("a", limit)
        await store.hit("b", limit)

        manual_clock.advance(61)
        assert store.cleanup(60) == 2
        assert len(store) == 0


def _app(tiers, trust_proxy=False):
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        store=FixedWindowRateLimitStore(),
        tiers=tiers,
        trust_proxy=trust_proxy,
    )

    @app.get("/api/ping")
    async def ping():
        return {"success": True}

    @app.post("/api/connect")
    async def connect():
        return {"success": True}

    @app.get("/")
    async def root():
        return {"success": True}

    return app


@pytest.mark.unit
class TestRateLimitMiddleware:
    def test_429_envelope_and_headers(self):
        tiers = {
            "api": RateLimit(max_attempts=100),
            "connect": RateLimit(max_attempts=2, message="Too many connection attempts."),
        }
        client = TestClient(_app(tiers))

        assert client.post("/api/connect").status_code == 200
        ok = client.post("/api/connect")
        assert ok.status_code == 200
        assert ok.headers["RateLimit-Limit"] == "2"
        assert ok.headers["RateLimit-Remaining"] == "0"

        refused = client.post("/api/connect")
        assert refused.status_code == 429
        assert refused.json() == {"success": False, "error": "Too many connection attempts."}
        assert int(refused.headers["Retry-After"]) >= 1

        # Other tiers are unaffected.
        assert client.get("/api/ping").status_code == 200

    def test_non_api_paths_not_limited(self):
        client = TestClient(_app({"api": RateLimit(max_attempts=1)}))
        for _ in range(3):
            response = client.get("/")
            assert response.status_code == 200
            assert "RateLimit-Limit" not in response.headers

    def test_forwarded_for_ignored_without_trust(self):
        client = TestClient(_app({"api": RateLimit(max_attempts=1)}))
        assert client.get("/api/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
        assert client.get("/api/ping", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 429

    def test_forwarded_for_used_behind_trusted_proxy(self):
        client = TestClient(_app({"api": RateLimit(max_attempts=1)}, trust_proxy=True))
        assert client.get("/api/ping", headers={"X-Forwarded-For": "9.9.9.9, 1.1.1.1"}).status_code == 200
        assert client.get("/api/ping", headers={"X-Forwarded-For": "9.9.9.9, 2.2.2.2"}).status_code == 200
        assert client.get("/api/ping", headers={"X-Forwarded-For": "8.8.8.8, 1.1.1.1"}).status_code == 429
