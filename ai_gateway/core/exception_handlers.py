"""Exception handlers producing the gateway's JSON error envelope.

Response shape:
    {"success": false, "error": {"code": <http status>, "message": str,
     "details": {...}, "request_id": str | null}}

AppError subclasses carry their own status code and headers (429 plus
``Retry-After`` for throttled callers). Anything else becomes a generic 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ai_gateway.core.errors import AppError
from ai_gateway.core.logging import get_request_id

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def build_error_body(code: int, message: str, details: dict | None = None) -> dict:
    error: dict = {"code": code, "message": message, "request_id": get_request_id()}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Serialize an AppError using its status code, details and headers."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "http.app_error",
        extra={
            "error_type": type(exc).__name__,
            "status_code": exc.status_code,
            "path": request.url.path,
            "has_details": exc.details is not None,
        },
    )

    body = build_error_body(exc.status_code, exc.message, dict(exc.details or {}))
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler; the client only ever sees a generic message."""
    logger.error(
        "http.unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(status_code=500, content=build_error_body(500, GENERIC_ERROR_MESSAGE))


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the AppError and catch-all handlers on ``app``."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
