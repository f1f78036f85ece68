"""Request ids, CORS and rate limiting."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from coremine.middleware import rate_limit


def _fake_redis(count: int | None = None, error: Exception | None = None) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True], side_effect=error)
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.mark.asyncio
async def test_request_id_is_generated(client) -> None:
    response = await client.get("/health")
    assert len(response.headers["X-Request-Id"]) == 36


@pytest.mark.asyncio
async def test_request_id_is_propagated(client) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "trace-123"})
    assert response.headers["X-Request-Id"] == "trace-123"


@pytest.mark.asyncio
async def test_cors_preflight(client) -> None:
    response = await client.options(
        "/mining-rewards",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_unknown_origin_is_not_allowed(client) -> None:
    response = await client.get("/health", headers={"Origin": "https://evil.example"})
    assert "access-control-allow-origin" not in response.headers


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_without_redis_requests_pass(self, client) -> None:
        response = await client.get("/mining-rewards")
        assert response.status_code == 401
        assert "X-RateLimit-Limit" not in response.headers

    @pytest.mark.asyncio
    async def test_under_the_limit(self, client, monkeypatch) -> None:
        monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(count=3))
        response = await client.get("/mining-rewards")
        assert response.headers["X-RateLimit-Remaining"] == "97"

    @pytest.mark.asyncio
    async def test_over_the_limit(self, client, monkeypatch) -> None:
        monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(count=101))
        response = await client.get("/mining-rewards")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_probes_are_exempt(self, client, monkeypatch) -> None:
        monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(count=10_000))
        assert (await client.get("/health")).status_code == 200

    @pytest.mark.asyncio
    async def test_redis_failure_fails_open(self, client, monkeypatch) -> None:
        monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(error=RedisConnectionError("down")))
        response = await client.get("/mining-rewards")
        assert response.status_code == 401
