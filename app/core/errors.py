"""
app/core/errors.py

Purpose: HTTP error mapping

- NutriPalError subclasses keep their own status and code
- Framework 404/405 and body validation errors share the same envelope
- Anything else is a 500; its message is hidden in production
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import NutriPalError
from app.schemas.response import ErrorResponse
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("errors")


def error_response(status_code: int, error: str, code: str, details: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, code=code, details=details).model_dump(),
    )


def add_exception_handlers(app: FastAPI):
    """
    Registers exception handlers with the FastAPI app.
    """
    @app.exception_handler(NutriPalError)
    async def nutripal_exception_handler(request: Request, exc: NutriPalError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
            extra={"error_kind": exc.code}
        )
        message = exc.message
        if exc.status_code >= 500 and settings.is_production:
            message = "An internal error occurred. Please try again later."
        return error_response(exc.status_code, message, exc.code, exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Malformed webhook bodies end up here.
        """
        logger.warning(f"Rejected request body on {request.url.path}")
        return error_response(422, "Input validation failed", "VALIDATION_ERROR", exc.errors())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else "unknown"
            },
            exc_info=True
        )

        message = "An internal error occurred. Please try again later." if settings.is_production else str(exc)
        return error_response(500, message, "INTERNAL_ERROR")
