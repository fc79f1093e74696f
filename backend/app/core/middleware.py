"""
middleware.py — Access log and correlation for SOS API requests.

Each request gets a log context seeded with its request id and the
caller's X-User-Id. Handlers bind the alert they act on, so the access
line written here names it:

    POST /api/v1/sos/create → 201 (12.3ms) user=u-alice alert=5f2c9e01...

Responses carry X-Request-ID and X-Process-Time, plus X-Alert-ID when a
handler bound one.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import get_request_context, set_request_context

logger = logging.getLogger(__name__)

# Successful hits on these are not logged
QUIET_PATHS = ("/health/live", "/docs", "/redoc", "/openapi.json", "/favicon.ico")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _log_access(
    method: str, path: str, status_code: int, duration_ms: float, ctx: Dict[str, Any],
) -> None:
    if status_code < 400 and path.startswith(QUIET_PATHS):
        return
    who = "".join(
        f" {label}={ctx[key]}"
        for key, label in (("user_id", "user"), ("alert_id", "alert"))
        if ctx.get(key)
    )
    logger.log(
        _level_for(status_code),
        "%s %s → %d (%.1fms)%s",
        method, path, status_code, duration_ms, who,
        extra={
            "status_code": status_code,
            "duration_ms": round(duration_ms, 1),
            "alert_id": ctx.get("alert_id"),
            "user_id": ctx.get("user_id"),
        },
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line per request, tagged with caller and alert."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        set_request_context(
            request_id=request_id,
            user_id=request.headers.get("X-User-Id"),
            method=request.method,
            endpoint=request.url.path,
        )

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            ctx = get_request_context()
            _log_access(request.method, request.url.path, status_code, duration_ms, ctx)
            set_request_context()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        if ctx.get("alert_id"):
            response.headers["X-Alert-ID"] = ctx["alert_id"]
        return response
