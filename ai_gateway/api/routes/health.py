from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports service liveness and, when rate limiting is enabled, whether the
    limiter backend is reachable. A failing shared store does not make the
    service unhealthy: the limiter fails open.

    Returns:
        dict: Status, timestamp and rate limiter status.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    rate_limit: dict = {"enabled": limiter is not None, "backend": None, "healthy": None}
    if limiter is not None:
        rate_limit["backend"] = getattr(request.app.state, "rate_limit_backend", None)
        rate_limit["healthy"] = await limiter.health_check()

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "rate_limit": rate_limit,
    }
