"""
Travel Booking Backend — Middleware & Health Tests
====================================================

What:  Sliding-window counting, 429 responses on /api/ paths, the access-log
       level mapping and the health probe's two outcomes.
How:   The counter gets a fake clock; the middleware is mounted on a small
       FastAPI app so no database is involved.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.middleware.logging import level_for_status
from app.middleware.rate_limit import RateLimitMiddleware, SlidingWindowCounter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowCounter:

    def setup_method(self):
        self.clock = FakeClock()
        self.counter = SlidingWindowCounter(limit=3, window=60, clock=self.clock)

    def test_allows_up_to_limit(self):
        assert [self.counter.hit("10.0.0.1") for _ in range(3)] == [None, None, None]

    def test_rejects_over_limit_with_retry_after(self):
        for _ in range(3):
            self.counter.hit("10.0.0.1")
        self.clock.now += 20

        assert self.counter.hit("10.0.0.1") == 41

    def test_keys_are_independent(self):
        for _ in range(3):
            self.counter.hit("10.0.0.1")
        assert self.counter.hit("10.0.0.2") is None

    def test_window_slides(self):
        for _ in range(3):
            self.counter.hit("10.0.0.1")
        self.clock.now += 60

        assert self.counter.hit("10.0.0.1") is None

    def test_rejected_request_not_recorded(self):
        for _ in range(3):
            self.counter.hit("10.0.0.1")
        self.counter.hit("10.0.0.1")
        self.clock.now += 60

        assert [self.counter.hit("10.0.0.1") for _ in range(3)] == [None, None, None]

    def test_prune_drops_idle_keys(self):
        self.counter.hit("10.0.0.1")
        self.clock.now += 30
        self.counter.hit("10.0.0.2")
        self.clock.now += 31

        self.counter.prune()
        assert len(self.counter) == 1


class TestRateLimitMiddleware:

    def setup_method(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, limit=2, window=60)

        @app.get("/api/ping")
        async def ping():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"ok": True}

        self.app = app

    @pytest.mark.asyncio
    async def test_third_api_request_is_429(self):
        transport = ASGITransport(app=self.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/api/ping")).status_code == 200
            assert (await client.get("/api/ping")).status_code == 200
            response = await client.get("/api/ping")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert int(response.headers["Retry-After"]) > 0

    @pytest.mark.asyncio
    async def test_forwarded_clients_counted_separately(self):
        transport = ASGITransport(app=self.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for _ in range(2):
                await client.get("/api/ping", headers={"X-Forwarded-For": "203.0.113.5"})
            response = await client.get(
                "/api/ping", headers={"X-Forwarded-For": "203.0.113.6"}
            )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_non_api_paths_unlimited(self):
        transport = ASGITransport(app=self.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            statuses = [(await client.get("/health")).status_code for _ in range(5)]

        assert statuses == [200] * 5


@pytest.mark.parametrize(
    "status, level",
    [(200, "INFO"), (302, "INFO"), (404, "WARNING"), (429, "WARNING"), (503, "ERROR")],
)
def test_level_for_status(status, level):
    assert level_for_status(status) == getattr(logging, level)


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        with patch("app.routes.health.database_reachable", AsyncMock(return_value=True)):
            response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"

    @pytest.mark.asyncio
    async def test_database_down_is_503(self, test_client):
        with patch("app.routes.health.database_reachable", AsyncMock(return_value=False)):
            response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
