"""Rate limiter interfaces.

The admission gate depends on this abstraction (not a concrete backend) so the
in-process and Redis-backed limiters stay interchangeable. Both backends share
the same contract:

- ``consume`` charges one request (even when it ends up rejected).
- ``get_state`` reports the window without charging.
- ``reset`` forgets a key.
- ``close`` releases owned resources.
"""

from __future__ import annotations

import inspect
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

SkipPredicate = Callable[[str], bool | Awaitable[bool]]

DEFAULT_KEY_PREFIX = "rl:"


@dataclass(frozen=True)
class RateLimiterConfig:
    """Immutable per-limiter configuration.

    Attributes:
        max_requests: Maximum requests allowed per window.
        window_ms: Window duration in milliseconds.
        key_prefix: Namespace prepended to every caller key.
        skip: Optional predicate; when it returns True for a key the request
            is allowed without being charged.
    """

    max_requests: int
    window_ms: int
    key_prefix: str = DEFAULT_KEY_PREFIX
    skip: SkipPredicate | None = None

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a consume/get_state operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        current: Requests counted in the window (including this one on consume).
        limit: Max requests per window.
        remaining: Remaining requests in the window, never negative.
        reset_time_ms: Milliseconds until the window resets.
    """

    allowed: bool
    current: int
    limit: int
    remaining: int
    reset_time_ms: int

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds a rejected caller should wait."""
        return max(0, math.ceil(self.reset_time_ms / 1000))

    def reset_at(self, now: datetime | None = None) -> datetime:
        """Absolute UTC time at which the window resets."""
        base = now or datetime.now(timezone.utc)
        return base + timedelta(milliseconds=self.reset_time_ms)

    def as_details(self) -> dict[str, int]:
        """Machine-readable details attached to a 429 response."""
        return {
            "limit": self.limit,
            "current": self.current,
            "resetTime": self.reset_time_ms,
        }


def build_result(*, current: int, limit: int, reset_time_ms: int) -> RateLimitResult:
    """Build a charged result where ``allowed = current <= limit``."""
    return RateLimitResult(
        allowed=current <= limit,
        current=current,
        limit=limit,
        remaining=max(0, limit - current),
        reset_time_ms=max(0, int(reset_time_ms)),
    )


def build_state_result(*, current: int, limit: int, reset_time_ms: int) -> RateLimitResult:
    """Build an uncharged state result where ``allowed`` means "next one fits"."""
    return RateLimitResult(
        allowed=current < limit,
        current=current,
        limit=limit,
        remaining=max(0, limit - current),
        reset_time_ms=max(0, int(reset_time_ms)),
    )


def build_uncharged_result(limit: int) -> RateLimitResult:
    """Result for skipped keys and fail-open paths: allowed, nothing counted."""
    return RateLimitResult(
        allowed=True,
        current=0,
        limit=limit,
        remaining=limit,
        reset_time_ms=0,
    )


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    #: Backend name reported by the health endpoint ("local" or "shared").
    backend: str = ""

    def __init__(self, config: RateLimiterConfig) -> None:
        self._config = config

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def limit(self) -> int:
        return self._config.max_requests

    def _prefixed_key(self, key: str) -> str:
        if not key:
            raise ValueError("key must be a non-empty string")
        return f"{self._config.key_prefix}{key}"

    async def _should_skip(self, key: str) -> bool:
        """Evaluate the skip predicate, awaiting it when asynchronous."""
        if self._config.skip is None:
            return False
        outcome = self._config.skip(key)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return bool(outcome)

    @abstractmethod
    async def consume(self, key: str) -> RateLimitResult:
        """Charge one request for ``key`` and report the window.

        Args:
            key: Unique caller identifier (e.g., "user:42", "ip:10.0.0.1").

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_state(self, key: str) -> RateLimitResult:
        """Report the current window for ``key`` without charging it."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Clear all state recorded for ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release connections, timers, and stored state."""
        raise NotImplementedError

    async def health_check(self) -> bool:
        """Return True when the limiter can serve requests."""
        return True
