"""Gateway error types.

Every error the gateway raises deliberately is an AppError carrying the HTTP
status and headers the exception handlers should respond with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Optional structured context serialized under ``error.details``."""

    limit: int
    current: int
    resetTime: int
    hint: str
    backend: str
    context: dict[str, Any]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        message: Human-readable error message.
        details: Optional structured details for clients/observability.
        status_code: HTTP status used when the error reaches the client.
        headers: Optional response headers to send with the error.
    """

    message: str
    details: ErrorDetails | None = None
    status_code: int = 500
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the admission gate when a caller exceeds its budget."""

    status_code: int = 429


@dataclass
class ConfigurationAppError(AppError):
    """Raised at startup when the limiter configuration is invalid."""


@dataclass
class StoreUnavailableError(AppError):
    """Raised when the shared limiter store cannot be reached.

    Never surfaced to clients: the shared limiter converts it into an
    allowed result.
    """

    status_code: int = 503
