"""Translation of domain exceptions into HTTP responses.

    ValidationError   -> 400
    NotFoundError     -> 404
    InvalidStateError -> 409
    ProviderError     -> 502 (body carries the provider's structured error)
    anything else     -> 500
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from botforge.core.errors import (
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)

log = structlog.get_logger(__name__)


async def _validation_error(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_state(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    log.warning(
        "api.provider_error",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.error,
    )
    return JSONResponse(
        status_code=502,
        content={
            "detail": str(exc),
            "provider_status_code": exc.status_code,
            "error": exc.error,
        },
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "app.unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(InvalidStateError, _invalid_state)
    app.add_exception_handler(ProviderError, _provider_error)
    app.add_exception_handler(Exception, _unhandled)
