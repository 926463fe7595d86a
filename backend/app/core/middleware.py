"""
Request middleware - correlation IDs, caller tagging, timing.

Every request gets:
    • an X-Request-ID (echoed from the client or freshly generated)
    • an X-Process-Time response header
    • a log context holding request id, route and the upstream caller identity
      (X-User-Email / X-User-Uid), so broadcast logs can be traced to an admin
    • one access log line, except for docs and liveness polling
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _caller_tag(request: Request):
    email = (request.headers.get("X-User-Email") or "").strip()
    return email or (request.headers.get("X-User-Uid") or "").strip() or None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag, time and log each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path
        set_request_context(
            request_id=request_id,
            method=request.method,
            endpoint=path,
            user=_caller_tag(request),
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed after %.1fms",
                request.method, path, (time.perf_counter() - started) * 1000,
                extra={"status_code": 500},
            )
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

        if not path.startswith(_UNLOGGED_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s -> %d (%.1fms)",
                request.method, path, response.status_code, elapsed_ms,
                extra={"duration_ms": elapsed_ms, "status_code": response.status_code},
            )

        set_request_context()
        return response
