"""
Global exception handlers — every HTTP failure leaves as ``{detail, success: false}``.

Store failures are logged server-side and reported without internals.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class AuthorizationError(Exception):
    """Raised when an actor lacks the role or ownership an action needs."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def _failure(status_code: int, detail: object, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "success": False},
        headers=headers,
    )


async def _on_http_exception(_request: Request, exc: HTTPException) -> JSONResponse:
    return _failure(exc.status_code, exc.detail, getattr(exc, "headers", None))


async def _on_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # First problem only; clients fix one field at a time.
    errors = exc.errors()
    return _failure(400, errors[0].get("msg", "Bad request") if errors else "Bad request")


async def _on_authorization_error(_request: Request, exc: AuthorizationError) -> JSONResponse:
    return _failure(403, exc.detail)


async def _on_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Constraint violation on %s %s: %s", request.method, request.url.path, exc.orig)
    return _failure(409, "Conflicts with an existing record")


async def _on_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return _failure(500, "Record store unavailable")


async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _failure(500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    handlers = {
        HTTPException: _on_http_exception,
        RequestValidationError: _on_validation_error,
        AuthorizationError: _on_authorization_error,
        RateLimitExceeded: _rate_limit_exceeded_handler,
        IntegrityError: _on_integrity_error,
        SQLAlchemyError: _on_store_error,
        Exception: _on_unhandled,
    }
    for exc_class, handler in handlers.items():
        app.add_exception_handler(exc_class, handler)  # type: ignore[arg-type]
