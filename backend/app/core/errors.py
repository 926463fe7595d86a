"""
Centralised error handling - exception hierarchy + FastAPI handlers.

Every error leaves the API in one envelope:

    {"error": {"code": "VALIDATION_ERROR", "message": "...", "status": 400,
               "details": {...}, "path": "...", "method": "..."}}

``path``/``method`` are only included outside production. Malformed request
bodies (pydantic's RequestValidationError) are folded into the same envelope
as a 400 so clients see one shape for every rejected broadcast.

Only caller-input problems are raised as exceptions. Per-recipient delivery
problems during a broadcast are reported inside the BroadcastResult instead.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class MessagingAPIError(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}


class ValidationError(MessagingAPIError):
    """Caller input rejected (400)."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)


class NoRecipientsError(ValidationError):
    """Recipient resolution produced nobody to message (400)."""

    error_code = "NO_RECIPIENTS"

    def __init__(self, message: str = "No recipients resolved for the provided criteria"):
        super().__init__(message)


class ForbiddenError(MessagingAPIError):
    """Caller lacks the admin role (403)."""

    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class NotFoundError(MessagingAPIError):
    """Resource not found (404)."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


# ═══════════════════════════════════════════════════════════════════════════
# Error Envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if request is not None and not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return {"error": error}


def _respond(status_code: int, *args: Any, **kwargs: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(status_code, *args, **kwargs))


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(MessagingAPIError)
    async def handle_messaging_error(request: Request, exc: MessagingAPIError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "Rejected [%s]: %s %s", exc.error_code, exc.message, exc.details or "")
        return _respond(exc.status_code, exc.error_code, exc.message, exc.details, request)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "issue": err.get("msg")}
            for err in exc.errors()
        ]
        logger.warning("Malformed request body: %s", problems)
        return _respond(
            400, "VALIDATION_ERROR", "Request body is invalid", {"errors": problems}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception: %s\n%s", exc, traceback.format_exc())
        if settings.DEBUG:
            return _respond(
                500, "INTERNAL_ERROR", str(exc),
                {"traceback": traceback.format_exc().splitlines()}, request,
            )
        return _respond(500, "INTERNAL_ERROR", "Internal server error", None, request)
