"""
logging_config.py — Root logger setup and the per-request SOS log context.

Every record written while a request is in flight can be traced back to
the caller and, once a handler has resolved it, to the alert it touched:

    Field        Bound by
    ──────────   ──────────────────────────────────────────────────
    request_id   RequestLoggingMiddleware (X-Request-ID or generated)
    user_id      RequestLoggingMiddleware (X-User-Id header)
    method       RequestLoggingMiddleware
    endpoint     RequestLoggingMiddleware
    alert_id     AlertLifecycleManager, as soon as the alert is known

Production writes one flat JSON object per line. Development gets a
coloured line tagged with the short request and alert ids.

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("SMS queued", extra={"phone": phone})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "sos_request_context", default=None
)

# Attributes passed via extra= that belong in structured output
RECORD_FIELDS = (
    "alert_id", "user_id", "status", "phone", "notification_status",
    "recipient_count", "status_code", "duration_ms",
)


def set_request_context(**fields: Any) -> None:
    """Start a fresh context for one request. No arguments clears it."""
    seeded = {k: v for k, v in fields.items() if v is not None}
    _request_context.set(seeded if fields else None)


def bind_request_context(**fields: Any) -> None:
    """
    Add fields to the context of the request in flight.

    The dict is shared with the middleware task, so anything bound in a
    handler shows up on the access line written after it returns.
    Outside a request this does nothing.
    """
    ctx = _request_context.get()
    if ctx is not None:
        ctx.update({k: v for k, v in fields.items() if v is not None})


def get_request_context() -> Dict[str, Any]:
    return dict(_request_context.get() or {})


def _structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Request context first; explicit extra= values on the record win."""
    fields = get_request_context()
    for key in RECORD_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One flat JSON object per record, for the log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_structured_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def tags(fields: Dict[str, Any]) -> str:
        parts = []
        if fields.get("request_id"):
            parts.append(str(fields["request_id"])[:8])
        if fields.get("alert_id"):
            parts.append(f"alert={str(fields['alert_id'])[:8]}")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{self.tags(_structured_fields(record))} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # uvicorn's own access log duplicates RequestLoggingMiddleware
    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
