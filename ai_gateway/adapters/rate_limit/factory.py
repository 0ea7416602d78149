"""Factory for creating rate limiter instances."""

from __future__ import annotations

import logging

from ai_gateway.adapters.rate_limit.base import AbstractRateLimiter, RateLimiterConfig
from ai_gateway.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ai_gateway.adapters.rate_limit.redis_store import (
    RedisRateLimiterConfig,
    RedisSlidingWindowRateLimiter,
)
from ai_gateway.core.config import Settings, settings as default_settings
from ai_gateway.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)

LOCAL_BACKEND = InMemoryFixedWindowRateLimiter.backend
SHARED_BACKEND = RedisSlidingWindowRateLimiter.backend
SUPPORTED_BACKENDS = (LOCAL_BACKEND, SHARED_BACKEND)


def create_rate_limiter(
    backend: str,
    config: RateLimiterConfig,
    *,
    cleanup_interval_seconds: float | None = 60.0,
) -> AbstractRateLimiter:
    """Instantiate the limiter for ``backend``.

    Args:
        backend: "local" (in-process fixed window) or "shared" (Redis sliding log).
        config: Limiter configuration. The shared backend requires a
            RedisRateLimiterConfig with a Redis URL.
        cleanup_interval_seconds: Sweep interval for the local backend.

    Returns:
        AbstractRateLimiter: Configured limiter instance.

    Raises:
        ConfigurationAppError: If the backend is unknown or its requirements
            are not met.
    """
    if backend == LOCAL_BACKEND:
        logger.info("rate_limit.factory.created", extra={"backend": backend})
        return InMemoryFixedWindowRateLimiter(
            config,
            cleanup_interval_seconds=cleanup_interval_seconds,
        )

    if backend == SHARED_BACKEND:
        if not isinstance(config, RedisRateLimiterConfig) or not config.redis_url:
            raise ConfigurationAppError(
                message="Shared rate limiter requires a Redis URL",
                details={"backend": backend, "hint": "Set REDIS_URL or use RATE_LIMIT_BACKEND=local"},
            )
        logger.info("rate_limit.factory.created", extra={"backend": backend})
        return RedisSlidingWindowRateLimiter(config)

    raise ConfigurationAppError(
        message=(
            f"Unknown rate limiter backend: '{backend}'. "
            f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
        ),
        details={"backend": backend},
    )


def create_rate_limiter_from_settings(
    app_settings: Settings | None = None,
) -> AbstractRateLimiter | None:
    """Build the limiter described by settings.

    Reads configuration from ai_gateway.core.config.settings unless another
    Settings instance is passed.

    Returns:
        The configured limiter, or None when rate limiting is disabled.

    Raises:
        ConfigurationAppError: If the configured backend cannot be built.
    """
    cfg = app_settings or default_settings
    rl = cfg.rate_limit

    if not rl.enabled:
        logger.info("rate_limit.disabled")
        return None

    if rl.backend == SHARED_BACKEND:
        if not cfg.redis.url:
            raise ConfigurationAppError(
                message="RATE_LIMIT_BACKEND=shared requires REDIS_URL to be set",
                details={"backend": rl.backend, "hint": "Set REDIS_URL or use RATE_LIMIT_BACKEND=local"},
            )
        config: RateLimiterConfig = RedisRateLimiterConfig(
            max_requests=rl.max_requests,
            window_ms=rl.window_ms,
            key_prefix=rl.key_prefix,
            redis_url=cfg.redis.url,
            password=cfg.redis.password,
            db=cfg.redis.db,
            connect_timeout_seconds=cfg.redis.connect_timeout_seconds,
            operation_timeout_seconds=cfg.redis.operation_timeout_seconds,
        )
    else:
        config = RateLimiterConfig(
            max_requests=rl.max_requests,
            window_ms=rl.window_ms,
            key_prefix=rl.key_prefix,
        )

    return create_rate_limiter(
        rl.backend,
        config,
        cleanup_interval_seconds=rl.cleanup_interval_seconds,
    )
