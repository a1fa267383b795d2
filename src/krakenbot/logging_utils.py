from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import IO, Any

from krakenbot.logging_context import CORRELATION_FIELDS, get_logging_context
from krakenbot.security.redaction import redact_data

# (logger name, env override); httpx logs one INFO line per request.
_HTTP_LOGGERS = (("httpx", "HTTPX_LOG_LEVEL"), ("httpcore", "HTTPCORE_LOG_LEVEL"))


class JsonFormatter(logging.Formatter):
    """One redacted JSON object per record.

    Structured data passed as ``extra={"extra": {...}}`` is merged at the top
    level; correlation fields are always present, ``null`` when unbound.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        structured = getattr(record, "extra", None)
        if isinstance(structured, dict):
            payload.update(structured)

        correlation = get_logging_context()
        payload.update({name: correlation.get(name) for name in CORRELATION_FIELDS})

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__
            payload["error_message"] = "" if exc_value is None else str(exc_value)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(redact_data(payload), default=str)


def parse_level(value: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    if value is None or not str(value).strip():
        return default
    resolved = logging.getLevelName(str(value).strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None, *, stream: IO[str] | None = None) -> None:
    """Route the root logger through ``JsonFormatter``.

    ``level`` falls back to ``LOG_LEVEL``. HTTP client loggers follow the root
    level only in DEBUG runs and otherwise stay at WARNING, unless overridden
    by their env vars.
    """
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)

    root_level = parse_level(level if level is not None else os.getenv("LOG_LEVEL"))
    root.setLevel(root_level)

    http_default = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for logger_name, env_name in _HTTP_LOGGERS:
        logging.getLogger(logger_name).setLevel(parse_level(os.getenv(env_name), http_default))
