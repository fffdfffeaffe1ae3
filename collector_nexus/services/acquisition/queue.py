"""
Job queue contract used by the acquisition scheduler.

The scheduler only issues jobs; persistence, retries and dead-lettering are
the queue backend's business (Celery in production).
"""
from abc import ABC, abstractmethod
from typing import Any

import structlog
from celery import Celery

logger = structlog.get_logger()

SYNC_TASK_NAME = "collector_nexus.tasks.sync.sync_source_data"

# Job name -> Celery task name
JOB_TASKS = {
    "sync-data": SYNC_TASK_NAME,
    "sync-prices": SYNC_TASK_NAME,
}


class JobQueue(ABC):
    @abstractmethod
    async def enqueue(
        self,
        job_name: str,
        payload: dict[str, Any],
        *,
        job_id: str,
        retries: int = 3,
        backoff: dict[str, Any] | None = None,
    ) -> str:
        """
        Submit a job.

        Args:
            job_name: Logical job name, e.g. ``sync-data``.
            payload: JSON-serializable job arguments.
            job_id: Unique id; backends that deduplicate by id use it.
            retries: Attempt cap for failed executions.
            backoff: ``{"type": "exponential", "delay": <base ms>}``.

        Returns:
            The id the job was queued under.
        """


class CeleryJobQueue(JobQueue):
    """Sends jobs to Celery workers on the ``ingestion`` queue."""

    def __init__(self, celery_app: Celery, queue: str = "ingestion"):
        self._app = celery_app
        self._queue = queue

    async def enqueue(
        self,
        job_name: str,
        payload: dict[str, Any],
        *,
        job_id: str,
        retries: int = 3,
        backoff: dict[str, Any] | None = None,
    ) -> str:
        task_name = JOB_TASKS.get(job_name)
        if task_name is None:
            raise ValueError(f"Unknown job: {job_name}")
        backoff = backoff or {"type": "exponential", "delay": 1000}
        self._app.send_task(
            task_name,
            kwargs={
                **payload,
                "max_retries": retries,
                "retry_delay_ms": backoff.get("delay", 1000),
            },
            task_id=job_id,
            queue=self._queue,
        )
        logger.info("Job queued", job=job_name, job_id=job_id, task=task_name)
        return job_id
