"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Usage:
    from backend.app.core.errors import (
        NightSafetyError,
        NotFoundError,
        ValidationError,
        ConfirmationConflictError,
        register_error_handlers,
    )

    raise ValidationError("Route start and end coincide", field="end")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class NightSafetyError(Exception):
    """Base exception for all engine errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(NightSafetyError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class ValidationError(NightSafetyError, ValueError):
    """Input rejected before any computation began (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ConfirmationConflictError(NightSafetyError):
    """
    Optimistic-concurrency retries exhausted (409).

    The report was changed by other writers on every attempt. Nothing was
    written; the caller may safely retry the whole confirmation.
    """

    retryable = True

    def __init__(self, report_id: str, user_id: str, attempts: int):
        super().__init__(
            message=(
                f"Confirmation of report {report_id} conflicted "
                f"{attempts} times; retry later"
            ),
            status_code=409,
            error_code="CONFIRMATION_CONFLICT",
            details={
                "report_id": report_id,
                "user_id": user_id,
                "attempts": attempts,
                "retryable": True,
            },
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    The JSON envelope every error response uses.

    {"error": {"code", "message", "status", "details"?, "request_id"?}}
    """
    error: Dict[str, Any] = {
        "code": error_code,
        "message": message,
        "status": status_code,
    }
    if details:
        error["details"] = details

    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _respond(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = error_body(status_code, error_code, message, details)
    if not settings.is_production:
        body["error"]["path"] = request.url.path
    return JSONResponse(status_code=status_code, content=body)


def _schema_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors to {field, message} pairs."""
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Route every failure through the shared error envelope."""

    @app.exception_handler(NightSafetyError)
    async def handle_engine_error(request: Request, exc: NightSafetyError):
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "%s [%s]: %s",
            type(exc).__name__, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return _respond(request, exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_schema_error(request: Request, exc: RequestValidationError):
        errors = _schema_errors(exc)
        logger.info("Rejected request body: %s", errors)
        return _respond(
            request, 422, "VALIDATION_ERROR", "Request failed schema validation",
            {"errors": errors},
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return _respond(request, 422, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled %s on %s\n%s",
            type(exc).__name__, request.url.path, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _respond(request, 500, "INTERNAL_ERROR", message)
