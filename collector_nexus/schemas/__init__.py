"""
Pydantic schemas for API responses.
"""
from collector_nexus.schemas.sources import (
    CardSetResponse,
    FetchPageResponse,
    HealthResponse,
    PriceResponse,
    SourceHitResponse,
    SourcesStatusResponse,
    SyncResponse,
)

__all__ = [
    "CardSetResponse",
    "FetchPageResponse",
    "HealthResponse",
    "PriceResponse",
    "SourceHitResponse",
    "SourcesStatusResponse",
    "SyncResponse",
]
