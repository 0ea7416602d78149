"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ai_gateway.core.errors import (
    AppError,
    ConfigurationAppError,
    RateLimitExceededError,
)
from ai_gateway.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_rate_limit_error_returns_429_with_headers(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify RateLimitExceededError keeps its status, details and headers."""
        @app_with_handlers.get("/throttled")
        async def throttled():
            raise RateLimitExceededError(
                message="Too many requests, please try again later",
                details={"limit": 3, "current": 4, "resetTime": 900},
                headers={"Retry-After": "1"},
            )

        response = client.get("/throttled")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == 429
        assert data["error"]["details"] == {"limit": 3, "current": 4, "resetTime": 900}

    def test_configuration_error_defaults_to_500(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify errors without an explicit status map to HTTP 500."""
        @app_with_handlers.get("/misconfigured")
        async def misconfigured():
            raise ConfigurationAppError(message="Shared rate limiter requires a Redis URL")

        response = client.get("/misconfigured")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == 500

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise AppError(message="test", status_code=400)

        data = client.get("/test-format").json()

        assert data["success"] is False
        assert set(data["error"]) == {"code", "message", "request_id"}


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_generic_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/boom")
        async def boom():
            raise RuntimeError("redis password is hunter2")

        response = client.get("/boom")

        assert response.status_code == 500
        assert "hunter2" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        from ai_gateway.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert data["error"]["code"] == 500
        assert "Traceback" not in response_body.decode()
        assert "ValueError" not in response_body.decode()


def test_setup_exception_handlers_registers_handlers(app_with_handlers: FastAPI):
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
