"""
Unit tests for the Redis rate limiting middleware.

Tests coverage:
- Requests under the limit pass and carry X-RateLimit-Remaining
- Window TTL set on the first request only
- 429 with Retry-After once the limit is exceeded
- Redis failures never block requests
- /health is exempt
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware.rate_limiting import RateLimitMiddleware
from shared.config import get_settings


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return TestClient(app)


@pytest.fixture
def redis_mock():
    redis = AsyncMock()
    with patch("api.middleware.rate_limiting.get_redis_client", return_value=redis):
        yield redis


class TestRateLimitMiddleware:
    def test_first_request_sets_window_ttl(self, client, redis_mock):
        redis_mock.incr.return_value = 1

        response = client.get("/ping")

        assert response.status_code == 200
        settings = get_settings()
        assert response.headers["X-RateLimit-Remaining"] == str(settings.RATE_LIMIT_MAX_REQUESTS - 1)
        key = redis_mock.incr.await_args.args[0]
        assert key.startswith("rate_limit:")
        redis_mock.expire.assert_awaited_once_with(key, settings.RATE_LIMIT_WINDOW_SECONDS)

    def test_later_requests_keep_ttl(self, client, redis_mock):
        redis_mock.incr.return_value = 5

        assert client.get("/ping").status_code == 200
        redis_mock.expire.assert_not_awaited()

    def test_limit_exceeded(self, client, redis_mock):
        settings = get_settings()
        redis_mock.incr.return_value = settings.RATE_LIMIT_MAX_REQUESTS + 1

        response = client.get("/ping")

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMITED"
        assert response.headers["Retry-After"] == str(settings.RATE_LIMIT_WINDOW_SECONDS)

    def test_forwarded_for_identifies_client(self, client, redis_mock):
        redis_mock.incr.return_value = 1

        client.get("/ping", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert redis_mock.incr.await_args.args[0].startswith("rate_limit:203.0.113.7:")

    def test_redis_failure_lets_request_through(self, client, redis_mock):
        redis_mock.incr.side_effect = ConnectionError("redis down")

        response = client.get("/ping")

        assert response.status_code == 200
        assert "X-RateLimit-Remaining" not in response.headers

    def test_health_is_exempt(self, client, redis_mock):
        assert client.get("/health").status_code == 200
        redis_mock.incr.assert_not_awaited()
