"""
Sync trigger endpoints. Jobs are queued, not run inline.
"""
from fastapi import APIRouter, Depends, Query, status

from collector_nexus.api.deps import get_scheduler
from collector_nexus.schemas.sources import SyncResponse
from collector_nexus.services.acquisition.scheduler import AcquisitionScheduler
from collector_nexus.services.sources.base import SyncKind

router = APIRouter(prefix="/sync", tags=["Sync"])


async def _queue(scheduler: AcquisitionScheduler, kind: SyncKind, source: str | None, force: bool) -> dict:
    if source:
        jobs = {source: await scheduler.sync_source(source, kind, force)}
    else:
        jobs = await scheduler.sync_all(kind, force)
    return {"kind": kind, "jobs": jobs}


@router.post("/data", response_model=SyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def sync_data(
    source: str | None = Query(None, description="Source id; omitted syncs every source"),
    force: bool = Query(False, description="Sync even if the source is disabled"),
    scheduler: AcquisitionScheduler = Depends(get_scheduler),
):
    """Queue a full data sync."""
    return await _queue(scheduler, "data", source, force)


@router.post("/prices", response_model=SyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def sync_prices(
    source: str | None = Query(None, description="Source id; omitted syncs every source"),
    force: bool = Query(False, description="Sync even if the source is disabled"),
    scheduler: AcquisitionScheduler = Depends(get_scheduler),
):
    """Queue a price sync."""
    return await _queue(scheduler, "prices", source, force)
