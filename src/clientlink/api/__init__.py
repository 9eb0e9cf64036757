"""FastAPI routes and API modules for clientlink.

Provides common response models, error handlers, and utilities.
"""

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..errors import (
    ConfigurationError,
    LinkingError,
    NetworkError,
    NotFoundError,
    PersistenceError,
)
from ..logging import get_logger

logger = get_logger(__name__)


# =========================
# Response Models
# =========================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    field: str | None = None
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    error_code: str
    details: list[ErrorDetail] | None = None


# =========================
# Exception Classes
# =========================


class APIError(HTTPException):
    """Base API error with structured response."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: list[ErrorDetail] | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class ValidationError(APIError):
    """Request validation error."""

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(
            status_code=422,
            error_code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


# Domain error -> (status code, error code)
_LINKING_ERROR_STATUS: list[tuple[type[LinkingError], int, str]] = [
    (NotFoundError, 404, "NOT_FOUND"),
    (ConfigurationError, 503, "NOT_CONFIGURED"),
    (NetworkError, 502, "UPSTREAM_ERROR"),
    (PersistenceError, 500, "PERSISTENCE_ERROR"),
]


# =========================
# Exception Handlers
# =========================


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details=exc.details,
        ).model_dump(),
        headers={"X-Error-Code": exc.error_code},
    )


async def linking_error_handler(request: Request, exc: LinkingError) -> JSONResponse:
    """Map pipeline errors onto structured HTTP responses."""
    status_code, error_code = 409, "LINKING_ERROR"
    for error_type, code, name in _LINKING_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code, error_code = code, name
            break

    if status_code >= 500:
        logger.error(f"Linking request failed: {exc}", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=str(exc), error_code=error_code).model_dump(),
        headers={"X-Error-Code": error_code},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            error_code="HTTP_ERROR",
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="An unexpected error occurred",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(LinkingError, linking_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
