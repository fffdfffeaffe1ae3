"""
Data source status endpoint.
"""
from fastapi import APIRouter, Depends

from collector_nexus.api.deps import get_manager
from collector_nexus.schemas.sources import SourcesStatusResponse
from collector_nexus.services.sources.manager import DataSourceManager

router = APIRouter(prefix="/sources", tags=["Sources"])


@router.get("/status", response_model=SourcesStatusResponse)
async def sources_status(manager: DataSourceManager = Depends(get_manager)):
    """Status and rate-limit budget of every registered source."""
    return await manager.get_status()
