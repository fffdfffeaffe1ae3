"""
Health check endpoints.
"""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from collector_nexus.api.deps import get_manager
from collector_nexus.db.session import get_db
from collector_nexus.schemas.sources import HealthResponse
from collector_nexus.services.sources.manager import DataSourceManager, ManagerState

router = APIRouter(tags=["Health"])
logger = structlog.get_logger()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    manager: DataSourceManager = Depends(get_manager),
):
    """
    Health check endpoint.

    Returns service status, database connectivity and data source manager state.
    """
    db_ok = False
    try:
        await db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning("Health check: database connection failed", error=str(e))

    sources_ok = manager.state == ManagerState.READY and bool(manager.get_all_sources())

    return {
        "status": "healthy" if db_ok and sources_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "ok",
            "database": "ok" if db_ok else "error",
            "sources": "ok" if sources_ok else manager.state.value,
        },
    }
