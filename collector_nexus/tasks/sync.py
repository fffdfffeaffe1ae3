"""
Source synchronization task.

Runs one sync job enqueued by the acquisition scheduler: builds the sources
from configuration, pulls every batch from the requested source, runs each
record through the processing pipeline and stores it.
"""
from typing import Any

import structlog
from celery import shared_task

from collector_nexus.core.config import settings
from collector_nexus.core.exceptions import SourceNotFoundError
from collector_nexus.repositories.record_repo import RecordStorage
from collector_nexus.services.acquisition.queue import SYNC_TASK_NAME
from collector_nexus.services.acquisition.runner import run_sync_job
from collector_nexus.services.processing.pipeline import ProcessingPipeline
from collector_nexus.services.sources.registry import build_manager
from collector_nexus.tasks.error_handlers import TaskWithDLQ
from collector_nexus.tasks.utils import create_task_session_maker, run_async

logger = structlog.get_logger()


def retry_countdown(retry_delay_ms: int, attempt: int) -> float:
    """Exponential backoff in seconds: base delay doubled per attempt."""
    return retry_delay_ms / 1000 * 2 ** attempt


@shared_task(name=SYNC_TASK_NAME, bind=True, base=TaskWithDLQ, max_retries=3)
def sync_source_data(
    self,
    source_id: str,
    kind: str = "data",
    max_retries: int | None = None,
    retry_delay_ms: int | None = None,
) -> dict[str, Any]:
    """
    Sync one source.

    Args:
        source_id: Registered source id.
        kind: ``data`` or ``prices``.
        max_retries: Attempt cap; defaults to ``mtg_max_retries``.
        retry_delay_ms: Base backoff delay; defaults to ``mtg_retry_delay_ms``.

    Returns:
        Job statistics from ``run_sync_job``.
    """
    max_retries = settings.mtg_max_retries if max_retries is None else max_retries
    retry_delay_ms = settings.mtg_retry_delay_ms if retry_delay_ms is None else retry_delay_ms
    try:
        return run_async(_sync_source_data_async(source_id, kind))
    except SourceNotFoundError:
        raise
    except Exception as exc:
        attempt = self.request.retries
        if attempt >= max_retries:
            raise
        countdown = retry_countdown(retry_delay_ms, attempt)
        logger.warning(
            "Sync job failed, retrying",
            source=source_id,
            kind=kind,
            attempt=attempt + 1,
            countdown=countdown,
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_retries)


async def _sync_source_data_async(source_id: str, kind: str) -> dict[str, Any]:
    session_maker, engine = create_task_session_maker()
    manager = build_manager(settings)
    try:
        return await run_sync_job(
            manager,
            ProcessingPipeline(),
            RecordStorage(session_maker),
            source_id,
            kind,
        )
    finally:
        await manager.close()
        await engine.dispose()
