"""
API dependencies: the services built by the application lifespan.
"""
from fastapi import Request

from collector_nexus.repositories.record_repo import RecordStorage
from collector_nexus.services.processing.pipeline import ProcessingPipeline
from collector_nexus.services.acquisition.scheduler import AcquisitionScheduler
from collector_nexus.services.sources.manager import DataSourceManager


def get_manager(request: Request) -> DataSourceManager:
    return request.app.state.manager


def get_scheduler(request: Request) -> AcquisitionScheduler:
    return request.app.state.scheduler


def get_storage(request: Request) -> RecordStorage:
    return request.app.state.storage


def get_pipeline(request: Request) -> ProcessingPipeline:
    return request.app.state.pipeline
