"""Rate limiting adapters.

This package provides a small abstraction layer so the gateway can run with an
in-process limiter on a single instance and with Redis when several instances
must share one budget, without changing the admission gate.
"""

from ai_gateway.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterConfig,
    RateLimitResult,
)
from ai_gateway.adapters.rate_limit.factory import (
    create_rate_limiter,
    create_rate_limiter_from_settings,
)
from ai_gateway.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ai_gateway.adapters.rate_limit.redis_store import (
    RedisRateLimiterConfig,
    RedisSlidingWindowRateLimiter,
)

__all__ = [
    "AbstractRateLimiter",
    "InMemoryFixedWindowRateLimiter",
    "RateLimitResult",
    "RateLimiterConfig",
    "RedisRateLimiterConfig",
    "RedisSlidingWindowRateLimiter",
    "create_rate_limiter",
    "create_rate_limiter_from_settings",
]
