"""Integration tests for health endpoints."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from captiongate import __version__
from captiongate.app import create_app
from tests.factories import REMOTE_URL, StubCaptionBackend, unreachable_session_factory


@pytest.mark.integration
class TestHealth:
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/admin/v1/health/live")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert "x-captiongate-latency-ms" in response.headers

    async def test_readiness(self, client: AsyncClient) -> None:
        response = await client.get("/admin/v1/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"] == "connected"
        assert data["redis"] == "unused"
        assert data["degraded"] == []

    async def test_readiness_reports_degraded_components(
        self, app: FastAPI, client: AsyncClient
    ) -> None:
        await app.state.components.health.mark_degraded("quota", "Database unavailable")

        response = await client.get("/admin/v1/health/ready")
        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["degraded"] == ["quota"]
        quota = next(c for c in data["components"] if c["component"] == "quota")
        assert quota["last_error"] == "Database unavailable"

    async def test_request_id_is_echoed(self, client: AsyncClient) -> None:
        response = await client.get(
            "/admin/v1/health/live", headers={"x-request-id": "req-from-proxy"}
        )
        assert response.headers["x-request-id"] == "req-from-proxy"


@pytest.mark.integration
class TestDegradedMode:
    async def test_unreachable_database_serves_from_memory(
        self, settings, test_engine, clock, user_headers: dict
    ) -> None:
        app = create_app(
            settings,
            engine=test_engine,
            session_factory=unreachable_session_factory(),
            caption_backend=StubCaptionBackend(),
            clock=clock,
        )
        transport = ASGITransport(app=app, client=("203.0.113.7", 51000))
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            body = {"image": REMOTE_URL, "mood": "happy"}
            first = await c.post("/v1/captions", headers=user_headers, json=body)
            second = await c.post("/v1/captions", headers=user_headers, json=body)
            ready = await c.get("/admin/v1/health/ready")

        assert first.status_code == 200
        assert second.headers["x-captiongate-cache"] == "HIT"
        assert second.headers["x-ratelimit-remaining-generations"] == "23"

        assert ready.status_code == 503
        data = ready.json()
        assert data["database"] == "disconnected"
        assert data["degraded"] == ["abuse", "cache", "quota"]
