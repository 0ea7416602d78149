"""Request correlation middleware.

Each request gets a correlation id (taken from the incoming header or freshly
generated) that is echoed back on the response and attached to every log
record emitted while the request runs, including admission decisions.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from ai_gateway.core.config import settings
from ai_gateway.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

DURATION_HEADER = "X-Request-Duration-ms"
MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(request: Request, header_name: str) -> str | None:
    value = (request.headers.get(header_name) or "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LENGTH:
        return None
    return value


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id and timing header to the response.

    The header name comes from ``LOG_REQUEST_ID_HEADER`` (default
    ``X-Request-ID``). Oversized or blank incoming ids are replaced by a
    new UUID.
    """

    header_name = settings.log.request_id_header
    request_id = _incoming_request_id(request, header_name) or str(uuid.uuid4())
    set_request_id(request_id)

    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(elapsed_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{elapsed_ms:.2f}")
    return response
