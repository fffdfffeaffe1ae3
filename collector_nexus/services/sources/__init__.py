"""
Card data sources and the manager that routes requests between them.
"""
from collector_nexus.services.sources.base import (
    AuthToken,
    CanonicalCard,
    CardDataSource,
    CardSet,
    DataSource,
    FetchOptions,
    FetchResult,
    MarketListing,
    PriceData,
    RateLimit,
    RateLimitStatus,
    SourceConfig,
    SourceStatus,
)
from collector_nexus.services.sources.manager import (
    BatchResult,
    DataSourceManager,
    ManagerState,
    SourceHit,
)
from collector_nexus.services.sources.registry import (
    build_manager,
    build_sources,
    create_source,
    get_source_class,
    list_source_types,
    register_source_type,
)

__all__ = [
    "AuthToken",
    "BatchResult",
    "CanonicalCard",
    "CardDataSource",
    "CardSet",
    "DataSource",
    "DataSourceManager",
    "FetchOptions",
    "FetchResult",
    "ManagerState",
    "MarketListing",
    "PriceData",
    "RateLimit",
    "RateLimitStatus",
    "SourceConfig",
    "SourceHit",
    "SourceStatus",
    "build_manager",
    "build_sources",
    "create_source",
    "get_source_class",
    "list_source_types",
    "register_source_type",
]
