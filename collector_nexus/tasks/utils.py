"""
Shared utilities for Celery tasks.
"""
import asyncio
from typing import Any, Coroutine

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from collector_nexus.core.config import settings
from collector_nexus.db.session import engine_options


def create_task_session_maker():
    """
    Create a new async engine and session maker for the current event loop.

    Each task runs in its own event loop (see ``run_async``), so it needs
    its own engine; connections cannot be shared across loops.

    Returns:
        Tuple of (async_sessionmaker, engine). Dispose the engine when done.
    """
    engine = create_async_engine(
        settings.database_url_computed,
        echo=settings.api_debug,
        **engine_options(settings.database_url_computed),
    )
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    ), engine


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """
    Run async function in sync context (for Celery tasks).

    Args:
        coro: Async coroutine to execute.

    Returns:
        Result of the coroutine execution.
    """
    return asyncio.run(coro)
