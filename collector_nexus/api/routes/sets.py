"""
Card set endpoints.
"""
from fastapi import APIRouter, Depends, Query

from collector_nexus.api.deps import get_manager
from collector_nexus.schemas.sources import CardSetResponse
from collector_nexus.services.sources.manager import DataSourceManager

router = APIRouter(prefix="/sets", tags=["Sets"])


@router.get("", response_model=list[CardSetResponse])
async def list_sets(
    source: str | None = Query(None, description="Source id; defaults to the default source"),
    manager: DataSourceManager = Depends(get_manager),
):
    """List every set known to a source."""
    return await manager.get_sets(source_id=source)
