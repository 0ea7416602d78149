"""Request admission (rate limiting) dependency for FastAPI.

This module wires a rate limiter into the HTTP layer.

Design goals:
- Minimal coupling: the app depends on a dependency callable only.
- Swap-friendly: the limiter backend (in-memory or Redis) hides behind
  AbstractRateLimiter.
- Availability first: only an exceeded budget rejects a request. Any failure
  inside the gate itself lets the request through.

Keying strategy:
- ``user:<id>`` when the identity resolver placed ``user_id`` on
  ``request.state``.
- Otherwise ``ip:<address>`` of the client.
"""

import hashlib
import inspect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import Request, Response

from ai_gateway.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from ai_gateway.core.config import RateLimitSettings
from ai_gateway.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Too many requests, please try again later"

KeyExtractor = Callable[[Request], str]
RequestSkip = Callable[[Request], bool | Awaitable[bool]]
LimitReachedHandler = Callable[[Request, str], Awaitable[None] | None]
AdmissionDependency = Callable[[Request, Response], Awaitable[None]]


def default_key_extractor(request: Request) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Namespaced limiter key.
    """

    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    client_host = request.client.host if request.client else None
    if not client_host:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()
    if not client_host:
        client_host = request.headers.get("x-real-ip")
    return f"ip:{client_host or 'unknown'}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing identities."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def build_path_skip(paths: set[str]) -> RequestSkip:
    """Request skip predicate matching exact request paths (e.g., health checks)."""

    def _skip(request: Request) -> bool:
        return request.url.path in paths

    return _skip


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class AdmissionGate:
    """FastAPI dependency enforcing per-caller rate limits.

    Usage:
        gate = AdmissionGate(limiter)
        app = FastAPI(dependencies=[Depends(gate)])
    """

    def __init__(
        self,
        limiter: AbstractRateLimiter,
        *,
        key_extractor: KeyExtractor = default_key_extractor,
        message: str = DEFAULT_MESSAGE,
        include_headers: bool = True,
        skip: RequestSkip | None = None,
        on_limit_reached: LimitReachedHandler | None = None,
    ) -> None:
        self.limiter = limiter
        self.key_extractor = key_extractor
        self.message = message
        self.include_headers = include_headers
        self.skip = skip
        self.on_limit_reached = on_limit_reached

    def _rate_limit_headers(self, result: RateLimitResult) -> dict[str, str]:
        reset_at = result.reset_at(datetime.now(timezone.utc))
        return {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": reset_at.isoformat().replace("+00:00", "Z"),
        }

    async def _notify_limit_reached(self, request: Request, key: str) -> None:
        if self.on_limit_reached is None:
            return
        try:
            await _maybe_await(self.on_limit_reached(request, key))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "rate_limit.on_limit_reached_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )

    async def __call__(self, request: Request, response: Response) -> None:
        """Charge the caller and reject with 429 when over budget.

        Raises:
            RateLimitExceededError: When the caller exceeded its budget.
        """

        try:
            if self.skip is not None and await _maybe_await(self.skip(request)):
                return

            key = self.key_extractor(request)
            result = await self.limiter.consume(key)

            headers = self._rate_limit_headers(result) if self.include_headers else {}
            for name, value in headers.items():
                response.headers[name] = value

            key_hash = _hash_limiter_key(key)
            if result.allowed:
                logger.debug(
                    "rate_limit.allowed",
                    extra={
                        "key_hash": key_hash,
                        "current": result.current,
                        "limit": result.limit,
                        "remaining": result.remaining,
                    },
                )
                return

            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": key_hash,
                    "current": result.current,
                    "limit": result.limit,
                    "path": request.url.path,
                    "method": request.method,
                },
            )

            await self._notify_limit_reached(request, key)

            headers["Retry-After"] = str(result.retry_after_seconds)
            error = RateLimitExceededError(
                message=self.message,
                details=result.as_details(),
                headers=headers,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "rate_limit.gate_error",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "path": request.url.path,
                },
            )
            return

        raise error


def _pass_through() -> AdmissionDependency:
    async def _no_limit(request: Request, response: Response) -> None:
        return None

    return _no_limit


def create_admission_gate(
    limiter: AbstractRateLimiter | None,
    rate_limit_settings: RateLimitSettings | None = None,
    **options,
) -> AdmissionDependency:
    """Create the admission dependency for ``limiter``.

    With no limiter (rate limiting disabled) the returned dependency is a
    no-op: no headers, no rejections.

    Args:
        limiter: Limiter instance, or None when disabled.
        rate_limit_settings: Optional settings providing message, header and
            skip-path defaults.
        **options: Overrides forwarded to AdmissionGate.

    Returns:
        Dependency callable suitable for ``Depends``.
    """

    if limiter is None:
        logger.info("rate_limit.gate_disabled")
        return _pass_through()

    if rate_limit_settings is not None:
        options.setdefault("message", rate_limit_settings.message)
        options.setdefault("include_headers", rate_limit_settings.include_headers)
        skip_paths = rate_limit_settings.skip_path_set
        if skip_paths:
            options.setdefault("skip", build_path_skip(skip_paths))

    return AdmissionGate(limiter, **options)
