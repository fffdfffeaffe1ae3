"""
Response schemas for card, set, price, sync and status endpoints.
"""
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class FetchPageResponse(BaseModel):
    """One page of records from a single source."""
    data: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class SourceHitResponse(BaseModel):
    """A single record and the source that returned it."""
    source: str
    data: dict[str, Any]


class PriceResponse(BaseModel):
    card_id: str
    source: str
    price: Optional[float] = None
    foil_price: Optional[float] = None
    currency: str = "USD"
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CardSetResponse(BaseModel):
    code: str
    name: str
    source: str
    id: Optional[str] = None
    released_at: Optional[str] = None
    set_type: Optional[str] = None
    card_count: Optional[int] = None
    parent_set_code: Optional[str] = None
    digital: bool = False
    foil_only: bool = False
    nonfoil_only: bool = False
    icon_svg_uri: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SyncResponse(BaseModel):
    """Jobs queued by a sync request, keyed by source id. None means skipped."""
    kind: Literal["data", "prices"]
    jobs: dict[str, Optional[str]]


class SourceStatusEntry(BaseModel):
    id: str
    status: str
    message: Optional[str] = None
    metrics: dict[str, Any] = Field(default_factory=dict)


class SourcesStatusResponse(BaseModel):
    timestamp: datetime
    state: str
    default_source: Optional[str] = None
    sources: list[SourceStatusEntry]


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    timestamp: datetime
    services: dict[str, str]


class StoredRecordResponse(BaseModel):
    """A record as held in storage."""
    key: str
    id: str
    source: str
    provider: str
    type: str
    status: str
    error: Optional[str] = None
    data: dict[str, Any]
    metadata: dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RetryResponse(BaseModel):
    source: Optional[str] = None
    total: int
    processed: int
    failed: int
