"""
Sync scheduling and job execution.
"""
from collector_nexus.services.acquisition.queue import CeleryJobQueue, JobQueue
from collector_nexus.services.acquisition.runner import run_sync_job
from collector_nexus.services.acquisition.scheduler import AcquisitionScheduler

__all__ = ["AcquisitionScheduler", "CeleryJobQueue", "JobQueue", "run_sync_job"]
