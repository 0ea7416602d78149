"""Tests for the health endpoint and limiter lifecycle."""

from unittest.mock import Mock

from fastapi.testclient import TestClient

from ai_gateway.adapters.rate_limit.base import RateLimiterConfig
from ai_gateway.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ai_gateway.adapters.rate_limit.redis_store import (
    RedisRateLimiterConfig,
    RedisSlidingWindowRateLimiter,
)
from ai_gateway.core.app_factory import create_app
from ai_gateway.core.config import RateLimitSettings, Settings


def _enabled_settings() -> Settings:
    return Settings(rate_limit=RateLimitSettings(enabled=True))


def test_health_without_rate_limiting():
    client = TestClient(create_app(Settings(rate_limit=RateLimitSettings(enabled=False))))

    data = client.get("/health").json()

    assert data["status"] == "ok"
    assert "timestamp" in data
    assert data["rate_limit"] == {"enabled": False, "backend": None, "healthy": None}


def test_health_reports_local_limiter():
    limiter = InMemoryFixedWindowRateLimiter(
        RateLimiterConfig(max_requests=1, window_ms=1000),
        cleanup_interval_seconds=None,
    )
    client = TestClient(create_app(_enabled_settings(), rate_limiter=limiter))

    data = client.get("/health").json()

    assert data["rate_limit"] == {"enabled": True, "backend": "local", "healthy": True}


def test_health_stays_ok_when_store_is_down(unreachable_redis):
    limiter = RedisSlidingWindowRateLimiter(
        RedisRateLimiterConfig(max_requests=1, window_ms=1000, redis_url="redis://cache:6379/0"),
        client=unreachable_redis,
    )
    client = TestClient(create_app(_enabled_settings(), rate_limiter=limiter))

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["rate_limit"] == {"enabled": True, "backend": "shared", "healthy": False}


def test_limiter_is_closed_on_shutdown():
    limiter = InMemoryFixedWindowRateLimiter(
        RateLimiterConfig(max_requests=1, window_ms=1000),
        cleanup_interval_seconds=None,
    )
    limiter.close = Mock(wraps=limiter.close)

    with TestClient(create_app(_enabled_settings(), rate_limiter=limiter)) as client:
        client.get("/health")
        limiter.close.assert_not_called()

    limiter.close.assert_called_once()


def test_health_reports_backend_declared_by_limiter():
    class ReplicatedLimiter(InMemoryFixedWindowRateLimiter):
        backend = "replicated"

    limiter = ReplicatedLimiter(
        RateLimiterConfig(max_requests=1, window_ms=1000),
        cleanup_interval_seconds=None,
    )
    app = create_app(_enabled_settings(), rate_limiter=limiter)

    data = TestClient(app).get("/health").json()

    assert app.state.rate_limit_backend == "replicated"
    assert data["rate_limit"]["backend"] == "replicated"
