from __future__ import annotations

from ai_gateway.api.routes.health import router as health_router

__all__ = ["health_router"]
