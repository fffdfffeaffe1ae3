"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from collector_nexus import __version__
from collector_nexus.api import api_router
from collector_nexus.api.errors import register_exception_handlers
from collector_nexus.core.config import settings
from collector_nexus.core.logging import setup_logging
from collector_nexus.db.session import async_session_maker, init_db
from collector_nexus.repositories.record_repo import RecordStorage
from collector_nexus.services.acquisition.queue import CeleryJobQueue
from collector_nexus.services.acquisition.scheduler import AcquisitionScheduler
from collector_nexus.services.processing.pipeline import ProcessingPipeline
from collector_nexus.services.sources.registry import build_manager

setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the data source manager and the services around it, and starts
    the sync scheduler.
    """
    from collector_nexus.tasks.celery_app import celery_app

    logger.info("Starting Collector Nexus API", version=__version__, debug=settings.api_debug)

    await init_db()
    manager = build_manager(settings)
    await manager.initialize()
    scheduler = AcquisitionScheduler(
        manager,
        CeleryJobQueue(celery_app),
        max_retries=settings.mtg_max_retries,
        retry_delay_ms=settings.mtg_retry_delay_ms,
    )

    app.state.manager = manager
    app.state.pipeline = ProcessingPipeline()
    app.state.storage = RecordStorage(async_session_maker)
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start()

    yield

    logger.info("Shutting down Collector Nexus API")
    await scheduler.stop()
    await manager.close()


app = FastAPI(
    title=settings.app_name,
    description="Collector Nexus - aggregated card data, prices and marketplace listings",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(api_router, prefix=settings.api_prefix)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.debug("Request", method=request.method, path=request.url.path)
    response = await call_next(request)
    logger.debug(
        "Response",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "collector_nexus.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
