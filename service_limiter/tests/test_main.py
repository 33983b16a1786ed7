"""
Unit tests for the limiter service.
"""

import time
import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from service_limiter.app.main import LimiterService
from service_limiter.app.ratelimit.bucket_store import bucket_keys
from service_limiter.app.ratelimit.routes import build_route_limits
from shared.errors import RemoteUnavailable

ROUTES = {
    "limited_1": {"max_tokens": 5, "refill_window_seconds": 30, "fail_mode": "open"},
    "limited": {"max_tokens": 2, "refill_window_seconds": 30, "fail_mode": "closed"},
}


class TestLimiterService:
    """Test cases for LimiterService."""

    @pytest.fixture
    def service(self, fake_redis):
        """Create LimiterService backed by fake Redis."""
        return LimiterService(redis_client=fake_redis, route_limits=build_route_limits(ROUTES))

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as client:
            yield client

    def _get(self, client, path, ip):
        return client.get(path, headers={"X-Forwarded-For": ip})

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "limiter"
        assert data["routes"] == ["limited", "limited_1"]

    def test_public_route_has_no_limit(self, client):
        for _ in range(20):
            response = self._get(client, "/public", "4.4.4.4")
            assert response.status_code == 200
        assert response.json() == {"success": True, "message": "This route has no limit"}

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "service": "limiter",
            "status": "ok",
            "dependencies": {"redis": "ok"},
        }

    def test_health_reports_degraded_redis(self, service, client):
        with patch.object(service.redis, "ping", new=AsyncMock(side_effect=RedisConnectionError("down"))):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {"redis": "degraded"}

    def test_rate_limits_endpoint(self, client):
        response = client.get("/api/v1/rate-limits")
        assert response.status_code == 200
        data = response.json()
        assert data["atomic_strategy"] == "script"
        assert data["routes"]["limited"]["max_tokens"] == 2
        assert data["routes"]["limited_1"]["fail_mode"] == "open"

    def test_limited_1_allows_five_then_blocks(self, client):
        for i in range(1, 6):
            response = self._get(client, "/limited_1", "9.9.9.9")
            assert response.status_code == 200
            assert response.json()["remaining"] == 5 - i

        blocked = self._get(client, "/limited_1", "9.9.9.9")
        assert blocked.status_code == 429
        assert blocked.json() == {
            "success": False,
            "message": "Too many requests. Please try again later.",
            "limiter": "remote",
        }

    def test_limited_allows_two_then_blocks(self, client):
        for _ in range(2):
            assert self._get(client, "/limited", "1.1.1.1").status_code == 200
        assert self._get(client, "/limited", "1.1.1.1").status_code == 429

    def test_users_have_independent_limits(self, client):
        for _ in range(3):
            self._get(client, "/limited", "2.2.2.2")

        for _ in range(2):
            assert self._get(client, "/limited", "3.3.3.3").status_code == 200
        assert self._get(client, "/limited", "3.3.3.3").status_code == 429

    def test_limits_are_route_specific(self, client):
        for _ in range(2):
            assert self._get(client, "/limited", "5.5.5.5").status_code == 200
        assert self._get(client, "/limited", "5.5.5.5").status_code == 429

        for _ in range(5):
            assert self._get(client, "/limited_1", "5.5.5.5").status_code == 200
        assert self._get(client, "/limited_1", "5.5.5.5").status_code == 429

    def test_tokens_reset_after_refill_window(self, client, service):
        ip = "7.7.7.7"
        for _ in range(2):
            self._get(client, "/limited", ip)
        assert self._get(client, "/limited", ip).status_code == 429

        _, last_refill_key = bucket_keys("limited", ip)
        client.portal.call(service.redis.set, last_refill_key, int(time.time()) - 31)

        assert self._get(client, "/limited", ip).status_code == 200

    def test_fallback_fail_open_when_redis_crashes(self, client, service):
        crashed = AsyncMock(side_effect=RemoteUnavailable("Redis crashed!"))

        with patch.object(service.store, "evaluate", new=crashed):
            responses = [self._get(client, "/limited_1", "9.9.9.9") for _ in range(10)]

        assert all(r.status_code == 200 for r in responses)
        assert responses[-1].headers["X-RateLimit-Source"] == "local-open"

    def test_fallback_fail_closed_when_redis_crashes(self, client, service):
        crashed = AsyncMock(side_effect=RemoteUnavailable("Redis crashed!"))

        with patch.object(service.store, "evaluate", new=crashed):
            responses = [self._get(client, "/limited", "1.1.1.1") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 429]
        assert responses[0].headers["X-RateLimit-Source"] == "local"
        assert responses[2].json()["limiter"] == "local-closed"

    def test_metrics_endpoint(self, client):
        self._get(client, "/limited", "8.8.8.8")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'rate_limit_decisions_total{allowed="true",route="limited",source="remote"} 1.0' in response.text


class TestLimiterServiceConfiguration:
    """Service wiring driven by environment configuration."""

    def test_watch_strategy(self, monkeypatch, fake_redis):
        monkeypatch.setenv("LIMITER_ATOMIC_STRATEGY", "watch")
        service = LimiterService(redis_client=fake_redis, route_limits=build_route_limits(ROUTES))

        with TestClient(service.app) as client:
            assert client.get("/api/v1/rate-limits").json()["atomic_strategy"] == "watch"
            statuses = [client.get("/limited", headers={"X-Forwarded-For": "6.6.6.6"}).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_routes_from_file(self, monkeypatch, tmp_path, fake_redis):
        path = tmp_path / "limits.yaml"
        path.write_text("routes:\n  search:\n    max_tokens: 1\n    refill_window_seconds: 60\n    fail_mode: closed\n")
        monkeypatch.setenv("LIMITER_RATE_LIMITS_FILE", str(path))
        service = LimiterService(redis_client=fake_redis)

        with TestClient(service.app) as client:
            assert client.get("/search").status_code == 200
            assert client.get("/search").status_code == 429
            assert client.get("/limited").status_code == 404
