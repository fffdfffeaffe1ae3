"""
Acquisition scheduler.

Decides when a source should be synchronized and enqueues the sync job; the
job itself runs in a worker (see ``runner.run_sync_job``). Periodic ticks run
as one asyncio task per source and sync kind.
"""
import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from collector_nexus.core.exceptions import SourceNotFoundError
from collector_nexus.services.acquisition.queue import JobQueue
from collector_nexus.services.sources.base import DataSource, SyncKind
from collector_nexus.services.sources.manager import DataSourceManager

logger = structlog.get_logger()


class AcquisitionScheduler:
    """
    Enqueues sync jobs for registered sources, on demand or on a timer.

    Args:
        manager: Source registry the scheduler reads sources from.
        queue: Job queue collaborator.
        max_retries: Attempt cap passed with every job.
        retry_delay_ms: Base delay of the exponential backoff.
        clock: Wall clock in seconds, used for job ids.
    """

    def __init__(
        self,
        manager: DataSourceManager,
        queue: JobQueue,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.manager = manager
        self.queue = queue
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def sync_source(self, source_id: str, kind: SyncKind = "data", force: bool = False) -> str | None:
        """
        Enqueue a sync job for one source.

        Returns:
            The job id, or None when the source is disabled (and not forced)
            or its rate-limit budget is exhausted.

        Raises:
            SourceNotFoundError: No source with that id is registered.
        """
        source = self.manager.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)

        if not source.enabled and not force:
            logger.warning("Data source is disabled, skipping sync", source=source_id, kind=kind)
            return None

        rate_limit = source.get_rate_limit_status()
        if rate_limit is not None and rate_limit.is_exhausted():
            logger.warning(
                "Rate limit exhausted, skipping sync",
                source=source_id,
                kind=kind,
                reset_at=rate_limit.reset_at.isoformat(),
            )
            return None

        job_id = f"sync-{source_id}-{int(self._clock() * 1000)}"
        await self.queue.enqueue(
            f"sync-{kind}",
            {"source_id": source_id, "kind": kind},
            job_id=job_id,
            retries=self.max_retries,
            backoff={"type": "exponential", "delay": self.retry_delay_ms},
        )
        source.config.last_sync = datetime.now(timezone.utc)
        logger.info("Sync job queued", source=source_id, kind=kind, job_id=job_id)
        return job_id

    async def sync_all(self, kind: SyncKind = "data", force: bool = False) -> dict[str, str | None]:
        """Enqueue a sync for every registered source. Failures map to None."""
        jobs: dict[str, str | None] = {}
        for source in self.manager.get_all_sources():
            try:
                jobs[source.id] = await self.sync_source(source.id, kind, force)
            except Exception as e:
                logger.error("Failed to queue sync job", source=source.id, kind=kind, error=str(e))
                jobs[source.id] = None
        return jobs

    def start(self) -> None:
        """Start one periodic loop per enabled source and sync kind with an interval."""
        if self._tasks:
            return
        self._stop_event = asyncio.Event()
        for source in self.manager.get_all_sources():
            if not source.enabled:
                continue
            intervals: list[tuple[SyncKind, float | None]] = [
                ("data", source.config.sync_interval_minutes),
                ("prices", source.config.price_sync_interval_minutes),
            ]
            for kind, minutes in intervals:
                if not minutes:
                    continue
                self._tasks.append(asyncio.create_task(self._run_periodic(source, kind, minutes * 60)))
                logger.info("Scheduled sync", source=source.id, kind=kind, every_minutes=minutes)

    async def _run_periodic(self, source: DataSource, kind: SyncKind, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.sync_source(source.id, kind)
            except Exception as e:
                logger.error("Scheduled sync failed", source=source.id, kind=kind, error=str(e))

    async def stop(self) -> None:
        """Stop future ticks. A tick already running is allowed to finish."""
        self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Sync scheduler stopped", loops=len(tasks))
