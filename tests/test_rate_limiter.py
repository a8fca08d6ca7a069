"""
Tests for the Redis-backed rate limiting middleware.

Redis is a MagicMock: the pipeline result decides how many requests are
already in the window.
"""
from unittest.mock import MagicMock

import pytest
import redis
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from redis_rate_limiter import RedisRateLimiter


def window_result(count):
    """Pipeline result: zremrangebyscore, zcard, zadd, expire."""
    return [0, count, 1, True]


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.pipeline.return_value.execute.return_value = window_result(0)
    client.zcount.return_value = 1
    return client


@pytest.fixture
def client(redis_client):
    app = FastAPI()
    app.add_middleware(
        RedisRateLimiter,
        redis_client=redis_client,
        requests_per_minute_ip=10,
        requests_per_minute_user=5,
    )

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.get("/private")
    async def private():
        raise HTTPException(status_code=401, detail="Invalid token")

    return TestClient(app)


class TestRateLimits:
    """Tests for the IP and user tiers."""

    def test_under_limit(self, client):
        assert client.get("/ping").status_code == 200

    def test_ip_limit(self, client, redis_client):
        redis_client.pipeline.return_value.execute.return_value = window_result(10)

        response = client.get("/ping")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert "IP" in response.json()["detail"]

    def test_user_limit(self, client, redis_client):
        redis_client.pipeline.return_value.execute.side_effect = [window_result(0), window_result(5)]

        response = client.get("/ping", headers={"Authorization": "Bearer user-token-123"})

        assert response.status_code == 429
        assert "user" in response.json()["detail"]
        pipe = redis_client.pipeline.return_value
        keys = [call.args[0] for call in pipe.zcard.call_args_list]
        assert keys == ["rate:ip:testclient", "rate:user:user_user-token"]

    def test_forwarded_for_is_used_as_client_ip(self, client, redis_client):
        client.get("/ping", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        pipe = redis_client.pipeline.return_value
        assert pipe.zcard.call_args.args[0] == "rate:ip:203.0.113.7"

    def test_exempt_path(self, client, redis_client):
        assert client.get("/health").status_code == 200
        redis_client.pipeline.assert_not_called()

    def test_redis_failure_fails_open(self, client, redis_client):
        redis_client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")

        assert client.get("/ping").status_code == 200


class TestSuspiciousActivity:
    """Tests for failure tracking."""

    def test_unauthorized_responses_are_tracked(self, client, redis_client):
        assert client.get("/private").status_code == 401

        keys = {call.args[0] for call in redis_client.zadd.call_args_list}
        assert keys == {"suspicious:401:testclient", "suspicious:4xx:testclient"}

    def test_success_is_not_tracked(self, client, redis_client):
        client.get("/ping")
        redis_client.zadd.assert_not_called()

    def test_tracking_errors_do_not_fail_request(self, client, redis_client):
        redis_client.zadd.side_effect = redis.ConnectionError("down")

        assert client.get("/private").status_code == 401
