"""
Database session management.

Provides the async engine, session factory and the FastAPI dependency.
"""
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from collector_nexus.core.config import settings

logger = structlog.get_logger()


def engine_options(url: str) -> dict[str, Any]:
    """Pool and driver settings for ``url``. SQLite gets the driver defaults."""
    if not url.startswith("postgresql"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 1800,
        "pool_timeout": 20,
        "connect_args": {
            "server_settings": {
                "statement_timeout": "25000",
                "application_name": "collector_nexus",
            },
            "command_timeout": 25,
        },
    }


engine = create_async_engine(
    settings.database_url_computed,
    echo=settings.api_debug,
    **engine_options(settings.database_url_computed),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides an async database session.

    Commits on success and rolls back on error.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                "Database session error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise


async def init_db() -> None:
    """Create missing tables. Existing tables are left untouched."""
    from collector_nexus.db.base import Base
    import collector_nexus.models  # noqa: F401  registers the mapped tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
