"""Structured JSON logging for the gateway.

Log calls use event-style messages with structured ``extra`` fields, e.g.::

    logger.warning("rate_limit.exceeded", extra={"key_hash": h, "current": 4})

Handlers installed by :func:`configure_logging` attach the current request
id and scrub fields that may hold credentials, raw caller identities or AI
payloads before a record is written.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from ai_gateway.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

_current_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

# Caller keys are logged as key_hash; the raw "user:"/"ip:" value never is.
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "authorization",
        "x-api-key",
        "api_key",
        "token",
        "secret",
        "password",
        "redis_password",
        "redis_url",
        "url",
        "cookie",
        "set-cookie",
        "key",
        "caller_key",
        "prompt",
        "messages",
        "completion",
    }
)

# Attributes every LogRecord has; anything else on a record came from extra=
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def set_request_id(request_id: str | None) -> None:
    _current_request_id.set(request_id)


def get_request_id() -> str | None:
    return _current_request_id.get()


def clear_request_id() -> None:
    _current_request_id.set(None)


def _normalize_keys(keys: Iterable[str] | None) -> frozenset[str]:
    return frozenset(k.lower() for k in (keys or SENSITIVE_KEYS_DEFAULT))


def redact(value: Any, sensitive_keys: frozenset[str] | set[str]) -> Any:
    """Mask sensitive entries of nested mappings, lists and tuples."""
    if isinstance(value, Mapping):
        masked = {}
        for name, item in value.items():
            hidden = str(name).lower() in sensitive_keys
            masked[name] = REDACTED if hidden else redact(item, sensitive_keys)
        return masked
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, sensitive_keys) for item in value)
    return value


def extract_extras(record: LogRecord, sensitive_keys: frozenset[str] | set[str]) -> dict[str, Any]:
    """Collect the ``extra=`` fields of ``record``, masked."""
    extras = {
        name: value
        for name, value in vars(record).items()
        if name not in _RESERVED_ATTRS and not name.startswith("_")
    }
    return redact(extras, sensitive_keys)


class RequestIdFilter(logging.Filter):
    """Stamp records with the request id of the current context."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask sensitive ``extra`` fields in place, for any formatter."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = _normalize_keys(sensitive_keys)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        record.__dict__.update(extract_extras(record, self.sensitive_keys))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: base fields, request id, masked extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = _normalize_keys(sensitive_keys)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        extras = extract_extras(record, self.sensitive_keys)
        request_id = extras.pop("request_id", None) or get_request_id()

        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if request_id:
            payload["request_id"] = request_id
        payload.update(extras)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    log_file = Path(log_settings.file_path or "logs/gateway.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(log_file, encoding="utf-8")
    return RotatingFileHandler(
        log_file,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single redacting handler on the root logger.

    Args:
        log_settings: Logging configuration; the global ``settings.log`` when
            omitted.
    """
    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers; keep its records out of the root one
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
