"""
Source type registry and construction from settings.

Maps provider slugs to adapter classes and builds the enabled sources from
environment configuration. A source whose configuration is incomplete is
skipped with a warning; the remaining sources still start.
"""
from typing import Type

import structlog

from collector_nexus.core.config import Settings
from collector_nexus.core.exceptions import ConfigurationError
from collector_nexus.services.sources.base import DataSource, RateLimit, SourceConfig
from collector_nexus.services.sources.cardtrader import CardTraderSource
from collector_nexus.services.sources.ebay import EbaySource
from collector_nexus.services.sources.manager import DataSourceManager
from collector_nexus.services.sources.mtgjson import MTGJSONSource
from collector_nexus.services.sources.scryfall import ScryfallSource

logger = structlog.get_logger()

_SOURCE_REGISTRY: dict[str, Type[DataSource]] = {
    "scryfall": ScryfallSource,
    "mtgjson": MTGJSONSource,
    "cardtrader": CardTraderSource,
    "ebay": EbaySource,
}


def register_source_type(slug: str, source_class: Type[DataSource]) -> None:
    """
    Register a new source type.

    Args:
        slug: Unique identifier for the provider.
        source_class: The adapter class to register.
    """
    _SOURCE_REGISTRY[slug] = source_class
    logger.info("Registered data source type", slug=slug, source=source_class.__name__)


def get_source_class(slug: str) -> Type[DataSource]:
    if slug not in _SOURCE_REGISTRY:
        raise ValueError(f"Unknown data source type: {slug}. Available: {list(_SOURCE_REGISTRY.keys())}")
    return _SOURCE_REGISTRY[slug]


def list_source_types() -> list[str]:
    return list(_SOURCE_REGISTRY.keys())


def create_source(slug: str, config: SourceConfig) -> DataSource:
    """Instantiate the adapter registered under ``slug``."""
    return get_source_class(slug)(config)


def build_source_configs(settings: Settings) -> dict[str, SourceConfig]:
    """
    Source configurations for every provider, keyed by slug.

    Sync intervals arrive in milliseconds and are converted to minutes.
    """
    common = {
        "timeout_seconds": settings.external_api_timeout,
        "bulk_timeout_seconds": settings.bulk_download_timeout,
        "batch_size": settings.mtg_batch_size,
        "sync_interval_minutes": settings.full_sync_interval_minutes,
        "price_sync_interval_minutes": settings.price_sync_interval_minutes,
        "user_agent": settings.user_agent,
    }
    return {
        "scryfall": SourceConfig(
            id="scryfall",
            name="Scryfall API",
            type="api",
            enabled=settings.enable_scryfall,
            priority=1,
            base_url=settings.scryfall_base_url,
            rate_limit=RateLimit(settings.scryfall_rate_limit_requests, settings.scryfall_rate_limit_seconds),
            **common,
        ),
        "mtgjson": SourceConfig(
            id="mtgjson",
            name="MTGJSON",
            type="feed",
            enabled=settings.enable_mtgjson,
            priority=2,
            base_url=settings.mtgjson_base_url,
            rate_limit=RateLimit(settings.mtgjson_rate_limit_requests, settings.mtgjson_rate_limit_seconds),
            extra={"api_key": settings.mtgjson_api_key},
            **common,
        ),
        "cardtrader": SourceConfig(
            id="cardtrader",
            name="CardTrader API",
            type="api",
            enabled=settings.enable_cardtrader,
            priority=3,
            base_url=settings.cardtrader_base_url,
            rate_limit=RateLimit(settings.cardtrader_rate_limit_requests, settings.cardtrader_rate_limit_seconds),
            extra={
                "client_id": settings.cardtrader_client_id,
                "client_secret": settings.cardtrader_client_secret,
                "auth_url": settings.cardtrader_auth_url,
                "marketplace_id": settings.cardtrader_marketplace_id,
            },
            **common,
        ),
        "ebay": SourceConfig(
            id="ebay",
            name="eBay Browse API",
            type="api",
            enabled=settings.enable_ebay,
            priority=4,
            base_url=settings.ebay_base_url,
            rate_limit=RateLimit(settings.ebay_rate_limit_requests, settings.ebay_rate_limit_seconds),
            extra={
                "app_id": settings.ebay_app_id,
                "cert_id": settings.ebay_cert_id,
                "auth_url": settings.ebay_auth_url,
                "marketplace_id": settings.ebay_marketplace_id,
            },
            **common,
        ),
    }


def build_sources(settings: Settings) -> list[DataSource]:
    """
    Construct every enabled source, in priority order.

    Sources that fail construction with a ConfigurationError are skipped.
    """
    sources: list[DataSource] = []
    configs = sorted(build_source_configs(settings).items(), key=lambda item: item[1].priority)
    for slug, config in configs:
        if not config.enabled:
            logger.debug("Data source disabled", source=slug)
            continue
        try:
            sources.append(create_source(slug, config))
        except ConfigurationError as e:
            logger.warning("Data source not registered", source=slug, error=e.message)
    return sources


def build_manager(settings: Settings) -> DataSourceManager:
    """Build a manager holding every enabled source; honours ``mtg_source_default``."""
    manager = DataSourceManager()
    for source in build_sources(settings):
        manager.register_source(source, set_as_default=source.id == settings.mtg_source_default)
    return manager
