"""Exception handlers that keep internal details out of responses."""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from attendance_api.config import get_settings
from attendance_api.exceptions import (
    AttendanceAPIError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from attendance_api.utils.secure_logging import log_error

logger = logging.getLogger(__name__)

# Safe error messages that can be shown to users
SAFE_ERROR_MESSAGES = {
    400: "Invalid request",
    404: "Resource not found",
    405: "Method not allowed",
    409: "Conflict with existing resource",
    422: "Invalid input data",
    500: "Internal server error",
    503: "Service temporarily unavailable",
}


def sanitize_error_detail(detail: Any, status_code: int) -> str:
    """Reduce an error detail to something safe to return.

    Validation error lists keep only field names and messages.
    """
    if isinstance(detail, list):
        safe_errors = []
        for error in detail:
            if isinstance(error, dict):
                loc = error.get("loc", [])
                msg = error.get("msg", "Invalid value")
                field = loc[-1] if loc else "field"
                if isinstance(field, str) and not field.startswith("_"):
                    safe_errors.append(f"{field}: {msg}")
        if safe_errors:
            return "; ".join(safe_errors[:3])
    return SAFE_ERROR_MESSAGES.get(status_code, "Request failed")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with sanitized messages."""
    if get_settings().debug:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    detail = exc.detail if exc.status_code < 500 and isinstance(exc.detail, str) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail or sanitize_error_detail(exc.detail, exc.status_code)},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with field-level messages only."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": sanitize_error_detail(exc.errors(), status.HTTP_422_UNPROCESSABLE_ENTITY)},
    )


async def domain_exception_handler(request: Request, exc: AttendanceAPIError) -> JSONResponse:
    """Map domain errors to HTTP responses.

    Domain messages are written for operators and carry no internals, so
    404 and 400 pass them through.
    """
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})
    if isinstance(exc, ConfigurationError):
        log_error(logger, "Request failed on missing configuration", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": SAFE_ERROR_MESSAGES[503]},
        )
    log_error(logger, f"Unhandled domain error on {request.url.path}", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": SAFE_ERROR_MESSAGES[500]},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors without leaking SQL."""
    log_error(logger, f"Database error on {request.url.path}", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": SAFE_ERROR_MESSAGES[503]},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle anything else as a generic 500."""
    log_error(logger, f"Unhandled error on {request.url.path}", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": SAFE_ERROR_MESSAGES[500]},
    )
