"""
Stored record endpoints: inspect failed records and retry them.
"""
from fastapi import APIRouter, Depends, Query

from collector_nexus.api.deps import get_pipeline, get_storage
from collector_nexus.repositories.record_repo import RecordStorage, StorageQuery
from collector_nexus.schemas.sources import RetryResponse, StoredRecordResponse
from collector_nexus.services.acquisition.runner import retry_failed_records
from collector_nexus.services.processing.pipeline import ProcessingPipeline

router = APIRouter(prefix="/records", tags=["Records"])


@router.get("/failed", response_model=list[StoredRecordResponse])
async def list_failed_records(
    source: str | None = Query(None, description="Only records from this source"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    storage: RecordStorage = Depends(get_storage),
):
    """Failed records, most recently updated first."""
    filter = {"status": "failed"}
    if source:
        filter["source"] = source
    return await storage.find_items(StorageQuery(filter=filter, limit=limit, offset=offset))


@router.post("/retry", response_model=RetryResponse)
async def retry_failed(
    source: str | None = Query(None, description="Only records from this source"),
    limit: int = Query(100, ge=1, le=1000),
    pipeline: ProcessingPipeline = Depends(get_pipeline),
    storage: RecordStorage = Depends(get_storage),
):
    """Reprocess failed records from their stored payloads."""
    return await retry_failed_records(pipeline, storage, source_id=source, limit=limit)
