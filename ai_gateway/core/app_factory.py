"""Application factory for the FastAPI app.

Centralizes app construction (logging, rate limiting, middleware, handlers,
routers) to improve testability compared to a monolithic main.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI

from ai_gateway.adapters.rate_limit import (
    AbstractRateLimiter,
    create_rate_limiter_from_settings,
)
from ai_gateway.api.routes import health_router
from ai_gateway.core.config import Settings, settings
from ai_gateway.core.exception_handlers import setup_exception_handlers
from ai_gateway.core.logging import configure_logging
from ai_gateway.core.middleware import request_id_middleware
from ai_gateway.core.rate_limit import create_admission_gate

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
    **gate_options: Any,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        rate_limiter: Pre-built limiter. When omitted one is created from
            settings (or none, when rate limiting is disabled).
        **gate_options: Overrides forwarded to the admission gate
            (e.g., key_extractor, on_limit_reached).

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If the configured limiter cannot be built.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    limiter = rate_limiter if rate_limiter is not None else create_rate_limiter_from_settings(cfg)
    admission_gate = create_admission_gate(limiter, cfg.rate_limit, **gate_options)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if limiter is not None:
                await limiter.close()
                logger.info("rate_limit.closed")

    app = FastAPI(
        title=cfg.app.name,
        description=(
            "Provider-agnostic AI gateway. Requests are admitted per caller "
            "(authenticated user or client IP) against a time-windowed budget."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
        dependencies=[Depends(admission_gate)],
    )
    app.state.rate_limiter = limiter
    app.state.rate_limit_backend = limiter.backend if limiter is not None else None

    if limiter is not None:
        logger.info(
            "rate_limit.enabled",
            extra={
                "backend": app.state.rate_limit_backend,
                "max_requests": limiter.config.max_requests,
                "window_ms": limiter.config.window_ms,
            },
        )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)

    return app
