"""
Shared behaviour for data sources.

Adapters compose these functions explicitly instead of inheriting defaults.
"""
import asyncio
from collections.abc import Awaitable, Callable, Iterable, Iterator
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog

from collector_nexus.services.sources.base import (
    CanonicalCard,
    FetchOptions,
    PriceData,
    RateLimitStatus,
    SourceStatus,
)

logger = structlog.get_logger()

T = TypeVar("T")

SCRYFALL_IMAGE_BASE = "https://cards.scryfall.io"
SCRYFALL_IMAGE_SIZES = ("small", "normal", "large", "png", "art_crop", "border_crop")


def parse_price(value: Any) -> float | None:
    """Convert a provider price (string, number or None) to a float."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def price_from_card(card: CanonicalCard, currency: str = "USD") -> PriceData:
    """Current price of a card taken from its embedded price map."""
    key = currency.lower()
    return PriceData(
        card_id=card.id,
        source=card.source,
        price=card.prices.get(key),
        foil_price=card.prices.get(f"{key}_foil"),
        currency=currency,
    )


def prices_from_cards(cards: Iterable[CanonicalCard], currency: str = "USD") -> list[PriceData]:
    return [price_from_card(card, currency) for card in cards]


def price_history_of_one(current: PriceData | None) -> list[PriceData]:
    """History for sources without historical data: the current price alone."""
    return [current] if current is not None else []


def scryfall_image_uris(scryfall_id: str | None) -> dict[str, str]:
    """Build Scryfall CDN image URLs from a Scryfall card id."""
    if not scryfall_id or len(scryfall_id) < 2:
        return {}
    return {
        size: f"{SCRYFALL_IMAGE_BASE}/{size}/front/{scryfall_id[0]}/{scryfall_id[1]}/{scryfall_id}.jpg"
        for size in SCRYFALL_IMAGE_SIZES
    }


def _field_value(record: Any, field_name: str) -> Any:
    if isinstance(record, dict):
        return record.get(field_name)
    return getattr(record, field_name, None)


def _compare(value: Any, operator: str, expected: Any) -> bool:
    if operator == "eq":
        return value == expected
    if operator == "ne":
        return value != expected
    if operator == "in":
        return value in expected
    if operator == "contains":
        if value is None:
            return False
        if isinstance(value, str):
            return str(expected).lower() in value.lower()
        return expected in value
    if value is None:
        return False
    if operator == "gt":
        return value > expected
    if operator == "gte":
        return value >= expected
    if operator == "lt":
        return value < expected
    if operator == "lte":
        return value <= expected
    raise ValueError(f"Unsupported filter operator: {operator}")


def matches_filters(record: Any, filters: dict[str, dict[str, Any]]) -> bool:
    """True if ``record`` satisfies every ``field -> {operator: value}`` filter."""
    for field_name, conditions in filters.items():
        value = _field_value(record, field_name)
        for operator, expected in conditions.items():
            if not _compare(value, operator, expected):
                return False
    return True


def matches_query(card: CanonicalCard, query: str | None) -> bool:
    """Case-insensitive name match used by sources without server-side search."""
    if not query:
        return True
    return query.lower() in card.name.lower()


def apply_sort(records: list[T], sort: dict[str, int]) -> list[T]:
    """Stable multi-key sort; ``None`` values sort last."""
    result = list(records)
    for field_name, direction in reversed(list(sort.items())):
        present = [r for r in result if _field_value(r, field_name) is not None]
        missing = [r for r in result if _field_value(r, field_name) is None]
        present.sort(key=lambda r: _field_value(r, field_name), reverse=direction < 0)
        result = present + missing
    return result


def select_page(records: list[T], options: FetchOptions) -> tuple[list[T], int]:
    """Filter, sort and slice an in-memory record list. Returns (page, total)."""
    selected = [r for r in records if matches_filters(r, options.filters)]
    if options.sort:
        selected = apply_sort(selected, options.sort)
    return selected[options.offset:options.offset + options.limit], len(selected)


def chunked(items: list[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def best_effort_batch(
    source_id: str,
    ids: list[str],
    fetch_one: Callable[[str], Awaitable[T | None]],
    concurrency: int = 10,
) -> list[T]:
    """
    Fetch ``ids`` one by one, ``concurrency`` at a time.

    Failed lookups are logged and omitted, as are ids the provider does not
    know. The result keeps the order of ``ids``.
    """
    results: list[T] = []
    for chunk in chunked(ids, concurrency):
        outcomes = await asyncio.gather(*(fetch_one(i) for i in chunk), return_exceptions=True)
        for record_id, outcome in zip(chunk, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "Batch item fetch failed",
                    source=source_id,
                    record_id=record_id,
                    error=str(outcome),
                )
                continue
            if outcome is not None:
                results.append(outcome)
    return results


def derive_status(
    available: bool,
    rate_limit: RateLimitStatus | None,
    metrics: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> SourceStatus:
    """
    Status for a source: unavailable when unreachable, degraded while its
    rate-limit budget is exhausted, ok otherwise.
    """
    metrics = dict(metrics or {})
    if rate_limit is not None:
        metrics["rate_limit"] = rate_limit.to_dict()
    if not available:
        return SourceStatus(status="unavailable", message="Source is not reachable", metrics=metrics)
    if rate_limit is not None and rate_limit.is_exhausted(now or datetime.now(timezone.utc)):
        return SourceStatus(status="degraded", message="Rate limit budget exhausted", metrics=metrics)
    return SourceStatus(status="ok", metrics=metrics)
