"""
Celery application configuration.

Sync jobs are enqueued by the acquisition scheduler running in the API
process; workers consume them from the ``ingestion`` queue.
"""
from celery import Celery

from collector_nexus.core.config import settings
from collector_nexus.core.logging import setup_logging

setup_logging()

celery_app = Celery(
    "collector_nexus",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "collector_nexus.tasks.sync",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # A job is acknowledged only after it ran, so a lost worker requeues it
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    # Sync jobs are long and rate limited; one at a time per worker process
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    task_routes={
        "collector_nexus.tasks.sync.*": {"queue": "ingestion"},
    },
    task_default_queue="default",
)
