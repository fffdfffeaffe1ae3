"""
Exception handlers translating data source errors into HTTP responses.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from collector_nexus.core.exceptions import (
    DataSourceError,
    NoSourceAvailableError,
    RateLimitedError,
    SourceCapabilityError,
    SourceNotFoundError,
)

logger = structlog.get_logger()


def _status_for(exc: DataSourceError) -> int:
    if isinstance(exc, RateLimitedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_502_BAD_GATEWAY


async def data_source_error_handler(request: Request, exc: DataSourceError) -> JSONResponse:
    logger.warning(
        "Data source error",
        path=request.url.path,
        source=exc.source_id,
        category=exc.category,
        error=exc.message,
    )
    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=_status_for(exc),
        content={"detail": str(exc), "error": exc.to_dict()},
        headers=headers,
    )


async def source_not_found_handler(request: Request, exc: SourceNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def no_source_handler(request: Request, exc: NoSourceAvailableError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


async def capability_handler(request: Request, exc: SourceCapabilityError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DataSourceError, data_source_error_handler)
    app.add_exception_handler(SourceNotFoundError, source_not_found_handler)
    app.add_exception_handler(NoSourceAvailableError, no_source_handler)
    app.add_exception_handler(SourceCapabilityError, capability_handler)
