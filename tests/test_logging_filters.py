"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from ai_gateway.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


@pytest.fixture
def log_stream():
    logger = logging.getLogger("test_gateway_logging")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def test_redacts_store_credentials(log_stream):
    logger, stream = log_stream

    logger.info(
        "rate_limit.redis.initialized",
        extra={
            "redis_url": "redis://:s3cret@cache:6379/0",
            "password": "s3cret",
            "max_requests": 100,
        },
    )

    output = stream.getvalue()
    assert "s3cret" not in output
    assert "[REDACTED]" in output
    assert json.loads(output)["max_requests"] == 100


def test_redacts_raw_caller_keys_and_headers(log_stream):
    logger, stream = log_stream

    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key": "user:alice",
            "headers": {"Authorization": "Bearer abc", "user-agent": "pytest"},
            "key_hash": "0f3a",
        },
    )

    output = stream.getvalue()
    assert "user:alice" not in output
    assert "Bearer abc" not in output
    assert "pytest" in output
    assert "0f3a" in output


def test_safe_fields_pass_through(log_stream):
    logger, stream = log_stream

    logger.info(
        "rate_limit.allowed",
        extra={"current": 2, "limit": 5, "remaining": 3, "path": "/v1/ai/request"},
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "rate_limit.allowed"
    assert payload["level"] == "info"
    assert payload["remaining"] == 3
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context(log_stream):
    logger, stream = log_stream
    set_request_id("req-123")

    logger.info("rate_limit.allowed")

    assert json.loads(stream.getvalue())["request_id"] == "req-123"
