"""Tests for request id propagation, error shaping, rate limiting, CORS and log redaction."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bountyboard.config import Settings
from bountyboard.middleware.cors import setup_cors
from bountyboard.middleware.logging import mask_license_key, redact_secrets
from bountyboard.middleware.rate_limit import RateLimitMiddleware


class TestRequestId:
    async def test_generated_when_absent(self, client: AsyncClient):
        response = await client.get("/health")
        assert len(response.headers["X-Request-Id"]) == 36

    async def test_propagated_when_present(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"


class TestErrorShape:
    async def test_validation_errors_are_400_with_fields(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/login", json={"username": ""})
        assert response.status_code == 400
        body = response.json()
        assert body["detail"] == "Validation failed"
        fields = {err["field"] for err in body["errors"]}
        assert {"username", "password"} <= fields

    async def test_unknown_route_is_json_404(self, client: AsyncClient):
        response = await client.get("/api/v1/nothing-here")
        assert response.status_code == 404
        assert response.json() == {"detail": "Not Found"}


class TestRateLimit:
    def _middleware(self, limit: int = 2) -> RateLimitMiddleware:
        return RateLimitMiddleware(app=MagicMock(), requests_per_window=limit, window_seconds=60)

    async def test_passes_through_without_redis(self):
        assert await self._middleware()._hit("1.2.3.4") is None

    async def test_counts_hits(self, monkeypatch):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[3, True])
        redis = MagicMock()
        redis.pipeline.return_value = pipe
        monkeypatch.setattr("bountyboard.middleware.rate_limit.get_redis", lambda: redis)

        assert await self._middleware()._hit("1.2.3.4") == 3
        key = pipe.incr.call_args.args[0]
        assert key.startswith("ratelimit:1.2.3.4:")

    async def test_health_paths_are_never_throttled(self, client: AsyncClient, monkeypatch):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1000, True])
        redis = MagicMock()
        redis.pipeline.return_value = pipe
        monkeypatch.setattr("bountyboard.middleware.rate_limit.get_redis", lambda: redis)

        assert (await client.get("/version")).status_code == 200
        throttled = await client.get("/api/v1/auth/me")
        assert throttled.status_code == 429
        assert throttled.headers["X-RateLimit-Remaining"] == "0"


async def _preflight(origins: list[str]) -> dict[str, str]:
    app = FastAPI()

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"pong": "ok"}

    setup_cors(app, Settings(cors_origins=origins))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.options(
            "/ping",
            headers={"Origin": "http://board.example", "Access-Control-Request-Method": "GET"},
        )
    return dict(response.headers)


class TestCors:
    async def test_explicit_origin_allows_credentials(self):
        headers = await _preflight(["http://board.example"])
        assert headers["access-control-allow-origin"] == "http://board.example"
        assert headers["access-control-allow-credentials"] == "true"

    async def test_wildcard_origin_drops_credentials(self):
        headers = await _preflight(["*"])
        assert headers["access-control-allow-origin"] == "*"
        assert "access-control-allow-credentials" not in headers


class TestLogRedaction:
    def test_secrets_are_masked(self):
        event = redact_secrets(None, "info", {"event": "login", "password": "hunter22", "token": "eyJ..."})
        assert event == {"event": "login", "password": "***", "token": "***"}

    def test_license_keys_keep_last_four(self):
        event = redact_secrets(None, "info", {"event": "license_bound", "license_key": "TEAM-ALPHA-2099"})
        assert event["license_key"] == "***2099"

    @pytest.mark.parametrize(("key", "masked"), [("ABCD", "***"), ("", "***"), ("K-12345", "***2345")])
    def test_mask_license_key(self, key, masked):
        assert mask_license_key(key) == masked
