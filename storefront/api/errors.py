"""
Exception handlers.

Every error response has the shape
``{"error": {"message", "code", "details"?, "stack"?}}``; ``stack`` is only
included outside production.
"""
import traceback
from typing import Any, Dict, List

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.exceptions import InternalError, StorefrontError, ValidationError

from .dependencies import get_trace_context

logger = structlog.get_logger(__name__)


def _include_stack(request: Request) -> bool:
    return request.app.state.settings.expose_stack_traces


def _error_response(request: Request, exc: StorefrontError) -> JSONResponse:
    ctx = get_trace_context(request)
    ctx.record_error(exc)

    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "request_error",
        error_code=exc.error_code,
        error=exc.message,
        status_code=exc.http_status,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(include_stack=_include_stack(request)),
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Domain errors map to their own status and code."""
    return _error_response(request, exc)


def _validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies / params become 400 VALIDATION_ERROR."""
    error = ValidationError("Invalid request", details=_validation_details(exc))
    return _error_response(request, error)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and other framework-level HTTP errors."""
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": {
                    "message": "Resource not found",
                    "code": "NOT_FOUND",
                    "path": request.url.path,
                }
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"message": str(exc.detail), "code": "HTTP_ERROR"}},
        headers=getattr(exc, "headers", None),
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures are internal errors; the driver message stays in the logs."""
    logger.error("database_error", error=str(exc), error_type=type(exc).__name__)
    error = InternalError("Database error")
    get_trace_context(request).record_error(exc)
    return _error_response(request, error)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    get_trace_context(request).record_error(exc)

    body: Dict[str, Any] = {
        "message": "An unexpected error occurred",
        "code": InternalError.error_code,
    }
    if _include_stack(request):
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": body})


def register_exception_handlers(app: FastAPI) -> None:
    """Attach every handler to ``app``."""
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
