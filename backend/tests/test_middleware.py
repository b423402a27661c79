"""
Stage Tracker Backend — Middleware & Health Tests
====================================================

What:  Tests for the request id and rate limit middleware and the health
       endpoint.
How:   Rate limiting runs on a minimal FastAPI app with a tiny limit; the
       health check patches the database check.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var


def _limited_app(max_requests: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, max_requests=max_requests, window_seconds=60)

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


class TestRateLimitMiddleware:

    @pytest.mark.asyncio
    async def test_blocks_after_limit(self):
        transport = ASGITransport(app=_limited_app(max_requests=2))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/ping")).status_code == 200
            assert (await client.get("/ping")).status_code == 200
            blocked = await client.get("/ping")

        assert blocked.status_code == 429
        assert blocked.json()["error"] == "rate_limit_exceeded"
        assert 1 <= int(blocked.headers["retry-after"]) <= 61

    @pytest.mark.asyncio
    async def test_health_is_not_limited(self):
        transport = ASGITransport(app=_limited_app(max_requests=1))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            for _ in range(3):
                assert (await client.get("/health")).status_code == 200


class TestRequestIDMiddleware:

    @pytest.mark.asyncio
    async def test_generates_and_exposes_id(self):
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)

        @app.get("/whoami")
        async def whoami():
            return {"request_id": request_id_var.get()}

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            generated = await client.get("/whoami")
            echoed = await client.get("/whoami", headers={"X-Request-ID": "given-id"})

        assert generated.headers["x-request-id"] == generated.json()["request_id"]
        assert len(generated.headers["x-request-id"]) == 8
        assert echoed.json()["request_id"] == "given-id"


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        with patch("app.routes.health.check_database", AsyncMock(return_value=True)):
            response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    @pytest.mark.asyncio
    async def test_database_down_returns_503(self, test_client):
        with patch("app.routes.health.check_database", AsyncMock(return_value=False)):
            response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
