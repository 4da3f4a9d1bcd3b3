"""Standard error body for tenancy errors.

Every TenancyError renders as::

    {
        "error": {
            "status_code": 404,
            "error_code": "tenant_not_found",
            "message": "No organisation found for domain 'unknown.example.com'",
            "details": {"domain": "unknown.example.com"},
            "path": "/api/v1/users"
        }
    }

The tenant middleware renders resolution errors itself with
``error_response`` (exceptions raised in a BaseHTTPMiddleware never reach
FastAPI's exception handlers); errors raised by route handlers go through
the handler registered by ``register_exception_handlers``.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.saas.core.exceptions import TenancyError

logger = structlog.get_logger(__name__)


def error_response(exc: TenancyError, path: str | None = None) -> JSONResponse:
    """Build the JSON error response for ``exc``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request.tenancy_error",
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=path,
        details=exc.details,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "status_code": exc.status_code,
                "error_code": exc.error_code,
                "message": exc.message,
                "details": exc.details,
                "path": path,
            }
        },
    )


async def tenancy_exception_handler(request: Request, exc: TenancyError) -> JSONResponse:
    return error_response(exc, request.url.path)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TenancyError, tenancy_exception_handler)
