"""Logging for MISP MCP.

Records are written to stderr (stdout carries the MCP protocol), either as
one JSON object per line or as plain text.

JSON records have a fixed top level (timestamp, level, logger, message,
service, request_id) plus:

- ``http``: method, path, status, bytes, elapsed_ms and error_type of a
  MISP exchange, gathered from the extras the transport attaches
- ``error``: type, message and HTTP status of an attached exception
- ``context``: any other extras, with credential-like keys redacted

The request id lives in a context variable, so ``asyncio.to_thread``
workers started by a tool call log under that call's id.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from .validation import sanitize_for_log

SERVICE_NAME = "misp-mcp"

# Extras describing one HTTP exchange with MISP
HTTP_FIELDS = ("method", "path", "status", "bytes", "elapsed_ms", "error_type")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "request_id",
}

_request_id: ContextVar[str | None] = ContextVar("misp_mcp_request_id", default=None)


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON object."""

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id

        # config.py also logs a "path" (the key file), so only records
        # naming a method are treated as exchanges
        if "method" in extras:
            entry["http"] = {
                key: _json_safe(extras.pop(key)) for key in HTTP_FIELDS if key in extras
            }

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
            status_code = getattr(exc, "status_code", None)
            if status_code is not None:
                error["status_code"] = status_code
            entry["error"] = error

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"

        if extras:
            entry["context"] = {
                key: _json_safe(value) for key, value in sanitize_for_log(extras).items()
            }

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain-text lines with the request id and exchange summary appended."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        request_id = getattr(record, "request_id", None)
        if request_id:
            line += f" [{request_id}]"
        method = getattr(record, "method", None)
        if method:
            line += f" ({method} {getattr(record, 'path', '')}"
            status = getattr(record, "status", None)
            if status is not None:
                line += f" -> {status}"
            line += ")"
        return line


class RequestContextFilter(logging.Filter):
    """Stamp each record with the current tool call's request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def setup_logging(
    level: int = logging.INFO,
    json_format: bool = True,
    service_name: str = SERVICE_NAME,
) -> None:
    """Send the misp_mcp logger tree to stderr.

    Args:
        level: Logging level (default: INFO)
        json_format: JSON lines when true, plain text otherwise
        service_name: Value of the ``service`` field in JSON records
    """
    logger = logging.getLogger("misp_mcp")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        StructuredFormatter(service_name) if json_format else TextFormatter()
    )
    handler.addFilter(RequestContextFilter())
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the misp_mcp tree."""
    return logging.getLogger(f"misp_mcp.{name}")


def set_request_id(request_id: str | None = None) -> str:
    """Start correlating records in the current context under ``request_id``."""
    if request_id is None:
        request_id = uuid.uuid4().hex[:8]
    _request_id.set(request_id)
    return request_id


def get_request_id() -> str | None:
    return _request_id.get()


def clear_request_id() -> None:
    _request_id.set(None)
