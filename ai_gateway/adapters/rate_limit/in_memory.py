"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis limiter when the gateway runs as several instances.
- Thread-safe: uses a lock around shared state, so the counting contract holds
  even if requests are served from several threads.
- A daemon thread owned by the limiter sweeps expired windows on a fixed
  interval, independent of request traffic.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ai_gateway.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterConfig,
    RateLimitResult,
    build_result,
    build_state_result,
    build_uncharged_result,
)

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0


@dataclass
class _WindowState:
    window_start_ms: int
    count: int


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per key.

    A window opens on the first request for a key and lasts ``window_ms``.
    Once it has elapsed the next request opens a fresh window with a count of
    one, regardless of how saturated the previous window was. Adjacent windows
    can therefore admit up to ``2 * max_requests`` around a boundary.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    backend = "local"

    def __init__(
        self,
        config: RateLimiterConfig,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: float | None = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            config: Limit, window, key prefix and optional skip predicate.
            clock: Time source function returning UNIX time in seconds.
            cleanup_interval_seconds: Sweep interval for expired windows.
                ``None`` disables the background sweep (``cleanup`` can still
                be called directly).

        Raises:
            ValueError: If cleanup_interval_seconds is not positive.
        """
        super().__init__(config)
        if cleanup_interval_seconds is not None and cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")

        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}
        self._stop_event = threading.Event()
        self._cleanup_thread: threading.Thread | None = None

        if cleanup_interval_seconds is not None:
            self._cleanup_thread = threading.Thread(
                target=self._run_cleanup,
                args=(cleanup_interval_seconds,),
                name="rate-limit-cleanup",
                daemon=True,
            )
            self._cleanup_thread.start()

        logger.debug(
            "rate_limit.memory.initialized",
            extra={
                "max_requests": config.max_requests,
                "window_ms": config.window_ms,
                "cleanup_interval_s": cleanup_interval_seconds,
            },
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, state: _WindowState, now_ms: int) -> bool:
        return now_ms - state.window_start_ms >= self._config.window_ms

    def _remaining_ms(self, state: _WindowState, now_ms: int) -> int:
        return self._config.window_ms - (now_ms - state.window_start_ms)

    async def consume(self, key: str) -> RateLimitResult:
        """Charge one request for ``key``.

        Rejected requests are still counted: the budget tracks attempts.

        Raises:
            ValueError: If key is empty.
        """
        if await self._should_skip(key):
            return build_uncharged_result(self.limit)

        prefixed_key = self._prefixed_key(key)

        with self._lock:
            now_ms = self._now_ms()
            state = self._state_by_key.get(prefixed_key)

            if state is None or self._is_expired(state, now_ms):
                self._state_by_key[prefixed_key] = _WindowState(window_start_ms=now_ms, count=1)
                return build_result(
                    current=1,
                    limit=self.limit,
                    reset_time_ms=self._config.window_ms,
                )

            state.count += 1
            result = build_result(
                current=state.count,
                limit=self.limit,
                reset_time_ms=self._remaining_ms(state, now_ms),
            )

        logger.debug(
            "rate_limit.memory.checked",
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

        with self._lock:
            now_ms = self._now_ms()
            state = self._state_by_key.get(prefixed_key)
            if state is None or self._is_expired(state, now_ms):
                return build_state_result(current=0, limit=self.limit, reset_time_ms=0)

            return build_state_result(
                current=state.count,
                limit=self.limit,
                reset_time_ms=self._remaining_ms(state, now_ms),
            )

    async def reset(self, key: str) -> None:
        prefixed_key = self._prefixed_key(key)
        with self._lock:
            self._state_by_key.pop(prefixed_key, None)
        logger.debug("rate_limit.memory.reset")

    async def close(self) -> None:
        """Stop the cleanup thread and drop all windows. Safe to call twice."""
        self._stop_event.set()
        thread = self._cleanup_thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            await asyncio.to_thread(thread.join, 5)
        self._cleanup_thread = None

        with self._lock:
            self._state_by_key.clear()
        logger.debug("rate_limit.memory.closed")

    def cleanup(self) -> int:
        """Evict every window that has fully elapsed.

        Returns:
            Number of evicted keys.
        """
        with self._lock:
            now_ms = self._now_ms()
            expired_keys = [
                k for k, state in self._state_by_key.items() if self._is_expired(state, now_ms)
            ]
            for k in expired_keys:
                del self._state_by_key[k]
            remaining = len(self._state_by_key)

        if expired_keys:
            logger.debug(
                "rate_limit.memory.cleanup",
                extra={"removed": len(expired_keys), "remaining": remaining},
            )
        return len(expired_keys)

    def storage_size(self) -> int:
        """Number of keys currently tracked (for tests and monitoring)."""
        with self._lock:
            return len(self._state_by_key)

    def _run_cleanup(self, interval_seconds: float) -> None:
        while not self._stop_event.wait(interval_seconds):
            try:
                self.cleanup()
            except Exception:  # noqa: BLE001
                logger.exception("rate_limit.memory.cleanup_failed")
