"""
Data source contract and the record types every adapter produces.

The interfaces here are deliberately narrow: they list the operations a
source must provide and nothing else. Shared behaviour (pricing defaults,
filtering, status derivation) lives in ``helpers`` as plain functions that
adapters call explicitly.
"""
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

SourceType = Literal["api", "scraper", "feed", "manual"]
SyncKind = Literal["data", "prices"]
StatusValue = Literal["ok", "degraded", "unavailable", "error"]


@dataclass(frozen=True)
class RateLimit:
    """A fixed request budget: ``requests`` per ``per_seconds``."""
    requests: int
    per_seconds: float

    @property
    def delay_seconds(self) -> float:
        """Minimum spacing between requests implied by the budget."""
        return self.per_seconds / self.requests


@dataclass
class SourceConfig:
    """
    Configuration for a data source.

    Only ``enabled`` and ``last_sync`` change after the adapter is built.
    """
    id: str
    name: str
    type: SourceType = "api"
    enabled: bool = True
    priority: int = 1
    rate_limit: RateLimit | None = None
    base_url: str = ""
    timeout_seconds: float = 30.0
    bulk_timeout_seconds: float = 60.0
    batch_size: int = 100
    sync_interval_minutes: float | None = None
    price_sync_interval_minutes: float | None = None
    last_sync: datetime | None = None
    user_agent: str = "CollectorNexus/1.0"
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalCard:
    """Provider-agnostic card snapshot. ``(source, id)`` is globally unique."""
    id: str
    source: str
    name: str
    set_code: str | None = None
    set_name: str | None = None
    collector_number: str | None = None
    rarity: str | None = None
    oracle_text: str | None = None
    type_line: str | None = None
    mana_cost: str | None = None
    cmc: float | None = None
    power: str | None = None
    toughness: str | None = None
    colors: tuple[str, ...] = ()
    color_identity: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    images: dict[str, str] = field(default_factory=dict)
    prices: dict[str, float | None] = field(default_factory=dict)
    legalities: dict[str, str] = field(default_factory=dict)
    purchase_links: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("colors", "color_identity", "keywords"):
            data[key] = list(data[key])
        return data


@dataclass(frozen=True)
class CardSet:
    """A card set (expansion) as reported by a source."""
    code: str
    name: str
    source: str
    id: str | None = None
    released_at: str | None = None
    set_type: str | None = None
    card_count: int | None = None
    parent_set_code: str | None = None
    digital: bool = False
    foil_only: bool = False
    nonfoil_only: bool = False
    icon_svg_uri: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PriceData:
    """Current price point for one card from one source."""
    card_id: str
    source: str
    price: float | None
    foil_price: float | None = None
    currency: str = "USD"
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class MarketListing:
    """A marketplace listing (auction or fixed price) for a card."""
    id: str
    source: str
    title: str
    price: float | None = None
    currency: str = "USD"
    condition: str | None = None
    url: str | None = None
    image_url: str | None = None
    category: str | None = None
    seller_name: str | None = None
    seller_rating: float | None = None
    shipping_cost: float | None = None
    location: str | None = None
    buying_options: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["buying_options"] = list(data["buying_options"])
        return data


@dataclass
class FetchOptions:
    """
    Query options accepted by ``DataSource.fetch``.

    ``filters`` maps a field to ``{operator: value}`` where the operator is one
    of ``eq ne gt gte lt lte in contains``. ``sort`` maps a field to 1 or -1.
    """
    query: str | None = None
    filters: dict[str, dict[str, Any]] = field(default_factory=dict)
    limit: int = 20
    offset: int = 0
    sort: dict[str, int] = field(default_factory=dict)

    @classmethod
    def for_page(cls, query: str | None, page: int = 1, page_size: int = 20, **kwargs) -> "FetchOptions":
        """Build options from 1-based page numbering."""
        page = max(page, 1)
        return cls(query=query, limit=page_size, offset=(page - 1) * page_size, **kwargs)


@dataclass
class FetchResult:
    """
    A normalized page of records from one source.

    ``has_more`` is derived from ``offset``, the number of returned records and
    ``total``; callers never set it.
    """
    data: list[Any]
    total: int
    limit: int
    offset: int
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    has_more: bool = field(init=False)

    def __post_init__(self):
        self.has_more = self.offset + len(self.data) < self.total

    @classmethod
    def degraded(cls, source: str, options: FetchOptions, error: Exception | str) -> "FetchResult":
        """Placeholder entry for a source that failed during a fan-out."""
        return cls(
            data=[],
            total=0,
            limit=options.limit,
            offset=options.offset,
            source=source,
            error=str(error),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [record_to_dict(item) for item in self.data],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
            "source": self.source,
            "metadata": self.metadata,
            "error": self.error,
        }


@dataclass
class AuthToken:
    """OAuth access token held in adapter memory only."""
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, payload: dict[str, Any], now: datetime | None = None) -> "AuthToken":
        now = now or datetime.now(timezone.utc)
        return cls(
            access_token=payload["access_token"],
            expires_at=now + timedelta(seconds=int(payload.get("expires_in", 3600))),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type", "Bearer"),
        )

    def is_valid(self, margin_seconds: float = 60.0, now: datetime | None = None) -> bool:
        """True while more than ``margin_seconds`` of validity remain."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now > timedelta(seconds=margin_seconds)

    @property
    def authorization(self) -> str:
        return f"{self.token_type.capitalize()} {self.access_token}"


@dataclass
class RateLimitStatus:
    """Remaining request budget for a source."""
    remaining: int
    limit: int
    reset_at: datetime

    def is_exhausted(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.remaining <= 0 and self.reset_at > now

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat(),
        }


@dataclass
class SourceStatus:
    status: StatusValue
    message: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.message:
            data["message"] = self.message
        if self.metrics:
            data["metrics"] = self.metrics
        return data


def record_to_dict(item: Any) -> Any:
    to_dict = getattr(item, "to_dict", None)
    return to_dict() if callable(to_dict) else item


class DataSource(ABC):
    """
    Operations every data source must provide.

    ``provider`` names the provider family (used to pick the field mapping
    table during normalization); ``config.id`` names this instance.
    """

    provider: str = "generic"

    def __init__(self, config: SourceConfig):
        self.config = config

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the source (authenticate, warm caches)."""

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""

    @abstractmethod
    async def fetch(self, options: FetchOptions) -> FetchResult:
        """Return one normalized page of records."""

    @abstractmethod
    async def fetch_by_id(self, record_id: str) -> Any | None:
        """Return one record, or None when the provider reports it missing."""

    @abstractmethod
    async def fetch_batch(self, ids: list[str]) -> list[Any]:
        """Return the records found for ``ids``. Missing ids are omitted."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap reachability check."""

    @abstractmethod
    async def get_status(self) -> SourceStatus:
        pass

    @abstractmethod
    def get_rate_limit_status(self) -> RateLimitStatus | None:
        pass

    @abstractmethod
    def iter_sync_batches(self, kind: SyncKind = "data") -> AsyncIterator[list[Any]]:
        """Yield batches of records for a full synchronization run."""


class CardDataSource(DataSource):
    """A data source that also serves card, set and price lookups."""

    @abstractmethod
    async def search_cards(self, query: str, options: FetchOptions | None = None) -> FetchResult:
        pass

    @abstractmethod
    async def get_sets(self) -> list[CardSet]:
        pass

    @abstractmethod
    async def get_set_by_code(self, code: str) -> CardSet | None:
        pass

    @abstractmethod
    async def get_cards_in_set(self, set_code: str, options: FetchOptions | None = None) -> FetchResult:
        pass

    @abstractmethod
    async def get_card_price(self, card_id: str) -> PriceData | None:
        pass

    @abstractmethod
    async def get_card_prices(self, card_ids: list[str]) -> list[PriceData]:
        pass

    @abstractmethod
    async def get_price_history(self, card_id: str, days: int = 30) -> list[PriceData]:
        pass

    @abstractmethod
    async def get_bulk_data(self, kind: str = "default_cards") -> list[CanonicalCard]:
        pass
