"""
Celery task error handling with dead letter queue.

Sync jobs that fail after their last retry are recorded in a Redis list,
newest first, for inspection and manual retry.
"""
import json
from datetime import datetime, timezone
from typing import Any

import redis
import structlog
from celery import Task

from collector_nexus.core.config import settings

logger = structlog.get_logger()

DLQ_KEY = "collector_nexus:sync_dlq"
DLQ_MAX_SIZE = 1000


def get_redis() -> redis.Redis:
    return redis.from_url(settings.redis_url)


class TaskWithDLQ(Task):
    """
    Base task class that sends permanently failed tasks to the DLQ.

    Usage:
        @shared_task(base=TaskWithDLQ, bind=True)
        def my_task(self):
            ...
    """

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Called when the task fails after all retries."""
        kwargs = kwargs or {}
        logger.error(
            "Task failed permanently",
            task_id=task_id,
            task_name=self.name,
            source_id=kwargs.get("source_id"),
            kind=kwargs.get("kind"),
            error=str(exc),
            error_type=type(exc).__name__,
        )

        entry = {
            "task_id": task_id,
            "task_name": self.name,
            "args": list(args) if args else [],
            "kwargs": kwargs,
            "source_id": kwargs.get("source_id"),
            "kind": kwargs.get("kind"),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "traceback": str(einfo) if einfo else None,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            r = get_redis()
            r.lpush(DLQ_KEY, json.dumps(entry))
            r.ltrim(DLQ_KEY, 0, DLQ_MAX_SIZE - 1)
            logger.info("Task added to DLQ", task_id=task_id, task_name=self.name)
        except redis.RedisError as e:
            logger.error("Failed to add task to DLQ", error=str(e), task_id=task_id)

        super().on_failure(exc, task_id, args, kwargs, einfo)


def get_dlq_entries(limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    """
    Get entries from the dead letter queue.

    Args:
        limit: Maximum number of entries to return
        offset: Number of entries to skip

    Returns:
        List of DLQ entries, newest first
    """
    entries = get_redis().lrange(DLQ_KEY, offset, offset + limit - 1)
    return [json.loads(e) for e in entries]


def get_dlq_count() -> int:
    return get_redis().llen(DLQ_KEY)


def _resubmit(r: redis.Redis, entry_json: bytes | str) -> bool:
    from collector_nexus.tasks.celery_app import celery_app

    entry = json.loads(entry_json)
    task = celery_app.tasks.get(entry["task_name"])
    if task is None:
        logger.error("Task not found for DLQ retry", task_name=entry["task_name"])
        return False

    task.apply_async(args=entry["args"], kwargs=entry["kwargs"])
    r.lrem(DLQ_KEY, 1, entry_json)
    logger.info("DLQ entry retried", task_id=entry["task_id"], task_name=entry["task_name"])
    return True


def retry_dlq_entry(index: int) -> bool:
    """
    Resubmit a DLQ entry by index (0 = newest) and remove it from the DLQ.

    Returns:
        True if the task was resubmitted.
    """
    r = get_redis()
    entry_json = r.lindex(DLQ_KEY, index)
    if not entry_json:
        logger.warning("DLQ entry not found", index=index)
        return False
    return _resubmit(r, entry_json)


def retry_dlq_entry_by_task_id(task_id: str) -> bool:
    """Resubmit the DLQ entry recorded for ``task_id``."""
    r = get_redis()
    for entry_json in r.lrange(DLQ_KEY, 0, DLQ_MAX_SIZE - 1):
        if json.loads(entry_json).get("task_id") == task_id:
            return _resubmit(r, entry_json)
    logger.warning("DLQ entry not found by task_id", task_id=task_id)
    return False


def remove_dlq_entry(index: int) -> bool:
    """Drop a DLQ entry without retrying it."""
    r = get_redis()
    entry_json = r.lindex(DLQ_KEY, index)
    if not entry_json:
        logger.warning("DLQ entry not found for removal", index=index)
        return False
    r.lrem(DLQ_KEY, 1, entry_json)
    entry = json.loads(entry_json)
    logger.info("DLQ entry removed", task_id=entry.get("task_id"), task_name=entry.get("task_name"))
    return True


def clear_dlq() -> int:
    """
    Clear all entries from the DLQ.

    Returns:
        Number of removed entries
    """
    r = get_redis()
    count = r.llen(DLQ_KEY)
    r.delete(DLQ_KEY)
    logger.info("DLQ cleared", count=count)
    return count
