"""
Sync job execution: pull batches from a source, process and store them.
"""
from typing import Any

import structlog

from collector_nexus.core.exceptions import SourceNotFoundError
from collector_nexus.repositories.record_repo import RecordStorage, StorageQuery
from collector_nexus.services.processing.pipeline import ProcessingPipeline
from collector_nexus.services.processing.records import DataRecord
from collector_nexus.services.sources.base import SyncKind
from collector_nexus.services.sources.manager import DataSourceManager

logger = structlog.get_logger()


async def _as_attempt(storage: RecordStorage, record: DataRecord) -> DataRecord:
    """Continue the retry count of a previously failed record with the same key."""
    stored = await storage.find_item_by_id(record.key)
    if stored is None or stored["status"] != "failed":
        return record
    return DataRecord.from_stored(stored).retry(data=record.data)


async def _process_and_save(
    pipeline: ProcessingPipeline,
    storage: RecordStorage,
    record: DataRecord,
    stats: dict[str, Any],
) -> None:
    record = pipeline.process(record)
    await storage.save_record(record)
    stats["total"] += 1
    if record.status == "failed":
        stats["failed"] += 1
    else:
        stats["processed"] += 1


async def run_sync_job(
    manager: DataSourceManager,
    pipeline: ProcessingPipeline,
    storage: RecordStorage,
    source_id: str,
    kind: SyncKind = "data",
) -> dict[str, Any]:
    """
    Run one sync job to completion.

    Records that fail processing are stored with ``status="failed"`` and
    counted; they do not fail the job. A record whose previous attempt failed
    is stored as the next attempt, with its retry count incremented. Errors
    raised by the source itself propagate so the queue can retry the job.

    Returns:
        ``{"source", "kind", "total", "processed", "failed"}``
    """
    await manager.initialize()
    source = manager.get_source(source_id)
    if source is None:
        raise SourceNotFoundError(source_id)
    stats = {"source": source_id, "kind": kind, "total": 0, "processed": 0, "failed": 0}

    logger.info("Sync job started", source=source_id, kind=kind)
    async for batch in source.iter_sync_batches(kind):
        for item in batch:
            record = await _as_attempt(storage, DataRecord.from_item(item, source_id, source.provider))
            await _process_and_save(pipeline, storage, record, stats)
        logger.debug("Sync batch stored", **stats)

    logger.info("Sync job finished", **stats)
    return stats


async def retry_failed_records(
    pipeline: ProcessingPipeline,
    storage: RecordStorage,
    source_id: str | None = None,
    limit: int = 100,
) -> dict[str, Any]:
    """
    Reprocess stored failed records from their stored payloads.

    Each record is retried as a new attempt. Records that fail again stay
    failed with a higher retry count.

    Returns:
        ``{"source", "total", "processed", "failed"}``
    """
    filter: dict[str, Any] = {"status": "failed"}
    if source_id is not None:
        filter["source"] = source_id
    items = await storage.find_items(StorageQuery(filter=filter, limit=limit))
    stats: dict[str, Any] = {"source": source_id, "total": 0, "processed": 0, "failed": 0}

    for item in items:
        await _process_and_save(pipeline, storage, DataRecord.from_stored(item).retry(), stats)

    logger.info("Failed records retried", **stats)
    return stats
