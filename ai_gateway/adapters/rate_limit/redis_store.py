"""Redis-backed sliding-log rate limiter.

Every request for a key is stored as a member of a per-key sorted set scored
by its timestamp in milliseconds. Pruning, counting, inserting and refreshing
the TTL run inside a single Lua script, so gateway instances sharing the same
Redis never race between reading the count and recording the request.

Fail-open policy:
    If Redis is unreachable, slow, or returns an error, ``consume`` and
    ``get_state`` report the request as allowed (``current = 0``) and log a
    ``rate_limit.store_unavailable`` warning.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from redis.asyncio import Redis

from ai_gateway.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterConfig,
    RateLimitResult,
    build_result,
    build_state_result,
    build_uncharged_result,
)
from ai_gateway.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# KEYS[1] = limiter key
# ARGV = now_ms, window_start_ms, window_ms, member
# Returns {count_before_insert, oldest_score}
CONSUME_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window_start = tonumber(ARGV[2])
local window_ms = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, 0, window_start)
local current = redis.call('ZCARD', key)
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window_ms)

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return {current, oldest[2] or false}
"""

# Read-only: counts entries newer than window_start without pruning.
# KEYS[1] = limiter key
# ARGV = window_start_ms
# Returns {count, oldest_score or nil}
STATE_SCRIPT = """
local key = KEYS[1]
local lower = '(' .. ARGV[1]

local current = redis.call('ZCOUNT', key, lower, '+inf')
local oldest = redis.call('ZRANGEBYSCORE', key, lower, '+inf', 'WITHSCORES', 'LIMIT', 0, 1)
return {current, oldest[2] or false}
"""


@dataclass(frozen=True)
class RedisRateLimiterConfig(RateLimiterConfig):
    """Limiter configuration plus Redis connection parameters."""

    redis_url: str = ""
    password: str | None = None
    db: int | None = None
    connect_timeout_seconds: float = 2.0
    operation_timeout_seconds: float = 2.0

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be > 0")
        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")


def build_redis_client(config: RedisRateLimiterConfig) -> Redis:
    """Create the asyncio Redis client used by the shared limiter.

    Raises:
        ValueError: If no Redis URL is configured.
    """
    if not config.redis_url:
        raise ValueError("redis_url is required for the Redis rate limiter")

    options: dict[str, Any] = {
        "decode_responses": True,
        "socket_connect_timeout": config.connect_timeout_seconds,
        "socket_timeout": config.operation_timeout_seconds,
    }
    if config.password is not None:
        options["password"] = config.password
    if config.db is not None:
        options["db"] = config.db
    return Redis.from_url(config.redis_url, **options)


class RedisSlidingWindowRateLimiter(AbstractRateLimiter):
    """Distributed rate limiter using a sliding log in Redis sorted sets.

    No counts are cached in-process; every decision is made by Redis.
    """

    backend = "shared"

    def __init__(
        self,
        config: RedisRateLimiterConfig,
        *,
        client: Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis rate limiter.

        Args:
            config: Limiter and connection configuration.
            client: Optional pre-built client. When provided the caller keeps
                ownership and ``close`` leaves it open.
            clock: Time source function returning UNIX time in seconds.
        """
        super().__init__(config)
        self._timeout = config.operation_timeout_seconds
        self._clock = clock
        self._owns_client = client is None
        self._client = client if client is not None else build_redis_client(config)
        self._consume_script = self._client.register_script(CONSUME_SCRIPT)
        self._state_script = self._client.register_script(STATE_SCRIPT)
        self._closed = False

        logger.debug(
            "rate_limit.redis.initialized",
            extra={
                "max_requests": config.max_requests,
                "window_ms": config.window_ms,
                "operation_timeout_s": self._timeout,
            },
        )

    @property
    def client(self) -> Redis:
        """Underlying Redis client (for advanced operations)."""
        return self._client

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _call_store(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one store call under the operation timeout.

        Raises:
            StoreUnavailableError: On any Redis error, I/O error or timeout.
        """
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except Exception as exc:
            raise StoreUnavailableError(
                message=f"Rate limit store unavailable during {operation}",
                details={"backend": "redis", "hint": type(exc).__name__},
            ) from exc

    def _fail_open(self, operation: str, exc: StoreUnavailableError) -> RateLimitResult:
        """Apply the fail-open policy: log the failure and allow the request."""
        cause = exc.__cause__ or exc
        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "operation": operation,
                "error_type": type(cause).__name__,
                "error_msg": str(cause),
                "fail_open": True,
            },
        )
        return build_uncharged_result(self.limit)

    def _reset_time_ms(self, oldest_score: Any, now_ms: int) -> int:
        if oldest_score is None or oldest_score is False:
            return 0
        oldest_ms = float(oldest_score)
        return max(0, int(self._config.window_ms - (now_ms - oldest_ms)))

    async def consume(self, key: str) -> RateLimitResult:
        if await self._should_skip(key):
            return build_uncharged_result(self.limit)

        prefixed_key = self._prefixed_key(key)
        now_ms = self._now_ms()
        window_start = now_ms - self._config.window_ms
        member = f"{now_ms}-{uuid.uuid4().hex}"

        try:
            count_before, oldest = await self._call_store(
                "consume",
                lambda: self._consume_script(
                    keys=[prefixed_key],
                    args=[now_ms, window_start, self._config.window_ms, member],
                ),
            )
        except StoreUnavailableError as exc:
            return self._fail_open("consume", exc)

        result = build_result(
            current=int(count_before) + 1,
            limit=self.limit,
            reset_time_ms=self._reset_time_ms(oldest, now_ms),
        )
        logger.debug(
            "rate_limit.redis.checked",
            extra={
                "allowed": result.allowed,
                "current": result.current,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return result

    async def get_state(self, key: str) -> RateLimitResult:
        prefixed_key = self._prefixed_key(key)
        now_ms = self._now_ms()
        window_start = now_ms - self._config.window_ms

        try:
            current, oldest = await self._call_store(
                "get_state",
                lambda: self._state_script(keys=[prefixed_key], args=[window_start]),
            )
        except StoreUnavailableError as exc:
            return self._fail_open("get_state", exc)

        return build_state_result(
            current=int(current),
            limit=self.limit,
            reset_time_ms=self._reset_time_ms(oldest, now_ms),
        )

    async def reset(self, key: str) -> None:
        prefixed_key = self._prefixed_key(key)
        try:
            await self._call_store("reset", lambda: self._client.delete(prefixed_key))
        except StoreUnavailableError as exc:
            cause = exc.__cause__ or exc
            logger.error(
                "rate_limit.redis.reset_failed",
                extra={"error_type": type(cause).__name__, "error_msg": str(cause)},
            )
            return
        logger.debug("rate_limit.redis.reset")

    async def health_check(self) -> bool:
        """PING Redis with the operation timeout; False on any failure."""
        if self._closed:
            return False
        try:
            pong = await self._call_store("health_check", self._client.ping)
        except StoreUnavailableError as exc:
            cause = exc.__cause__ or exc
            logger.warning(
                "rate_limit.redis.health_check_failed",
                extra={"error_type": type(cause).__name__},
            )
            return False
        return bool(pong)

    async def close(self) -> None:
        """Close the Redis connection pool if this limiter created it."""
        if self._closed:
            return
        self._closed = True
        if not self._owns_client:
            return
        try:
            await self._client.aclose()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "rate_limit.redis.close_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
        logger.debug("rate_limit.redis.closed")
