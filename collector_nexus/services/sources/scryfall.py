"""
Scryfall data source.

Scryfall is a public REST card database. No authentication is required;
requests are limited to roughly 10 per second. Search results come in
native pages of 175 cards which are re-windowed to the caller's
``limit``/``offset``.
"""
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import Any

import httpx
import structlog

from collector_nexus.core.exceptions import DataSourceError
from collector_nexus.services.sources.base import (
    CanonicalCard,
    CardDataSource,
    CardSet,
    FetchOptions,
    FetchResult,
    PriceData,
    RateLimit,
    RateLimitStatus,
    SourceConfig,
    SourceStatus,
    SyncKind,
)
from collector_nexus.services.sources.helpers import (
    chunked,
    derive_status,
    matches_filters,
    parse_price,
    price_from_card,
    price_history_of_one,
    prices_from_cards,
)
from collector_nexus.services.sources.http import request_json
from collector_nexus.services.sources.rate_limit import RateLimiter

logger = structlog.get_logger()

PAGE_SIZE = 175
COLLECTION_MAX_IDENTIFIERS = 75
DEFAULT_QUERY = "game:paper"
PRICE_KEYS = ("usd", "usd_foil", "usd_etched", "eur", "eur_foil", "tix")
SORT_ORDERS = {
    "name": "name",
    "set_code": "set",
    "released_at": "released",
    "rarity": "rarity",
    "cmc": "cmc",
    "price": "usd",
    "power": "power",
    "toughness": "toughness",
}


class ScryfallSource(CardDataSource):
    """
    Card data source backed by the Scryfall API.

    Batch lookups use the native ``/cards/collection`` endpoint, so a failing
    batch raises one error for the whole chunk.
    """

    provider = "scryfall"
    BASE_URL = "https://api.scryfall.com"

    def __init__(self, config: SourceConfig):
        if not config.base_url:
            config.base_url = self.BASE_URL
        if config.rate_limit is None:
            config.rate_limit = RateLimit(requests=10, per_seconds=1.0)
        super().__init__(config)
        self._client: httpx.AsyncClient | None = None
        self._limiter = RateLimiter(config.id, config.rate_limit)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/json",
                },
                follow_redirects=True,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any | None:
        client = await self._get_client()
        return await request_json(
            client,
            method,
            path,
            source_id=self.id,
            limiter=self._limiter,
            **kwargs,
        )

    async def initialize(self) -> None:
        await self._get_client()
        logger.info("Scryfall source initialized", source=self.id)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def is_available(self) -> bool:
        try:
            return await self._request("GET", "/sets/lea") is not None
        except DataSourceError as e:
            logger.warning("Scryfall availability check failed", source=self.id, error=str(e))
            return False

    async def get_status(self) -> SourceStatus:
        return derive_status(await self.is_available(), self.get_rate_limit_status())

    def get_rate_limit_status(self) -> RateLimitStatus | None:
        return self._limiter.status()

    async def fetch(self, options: FetchOptions) -> FetchResult:
        """
        Search cards and return the ``limit``/``offset`` window.

        Structured filters are applied to the returned window; ``total`` is
        Scryfall's own match count.
        """
        params: dict[str, Any] = {
            "q": options.query or DEFAULT_QUERY,
            "page": options.offset // PAGE_SIZE + 1,
        }
        if options.sort:
            field_name, direction = next(iter(options.sort.items()))
            if field_name in SORT_ORDERS:
                params["order"] = SORT_ORDERS[field_name]
                params["dir"] = "asc" if direction >= 0 else "desc"

        payload = await self._request("GET", "/cards/search", params=params)
        if payload is None:
            # Scryfall answers 404 when a search matches nothing
            return FetchResult(data=[], total=0, limit=options.limit, offset=options.offset, source=self.id)

        total = int(payload.get("total_cards", 0))
        start = options.offset % PAGE_SIZE
        cards = [self._to_card(c) for c in payload.get("data", [])][start:]
        while len(cards) < options.limit and payload.get("has_more"):
            params["page"] += 1
            payload = await self._request("GET", "/cards/search", params=params)
            if payload is None:
                break
            cards.extend(self._to_card(c) for c in payload.get("data", []))
        cards = cards[:options.limit]

        metadata: dict[str, Any] = {"query": params["q"]}
        if options.filters:
            cards = [c for c in cards if matches_filters(c, options.filters)]
            metadata["warnings"] = ["filters applied to the returned page only"]

        return FetchResult(
            data=cards,
            total=total,
            limit=options.limit,
            offset=options.offset,
            source=self.id,
            metadata=metadata,
        )

    async def fetch_by_id(self, record_id: str) -> CanonicalCard | None:
        payload = await self._request("GET", f"/cards/{record_id}")
        return self._to_card(payload) if payload else None

    async def fetch_batch(self, ids: list[str]) -> list[CanonicalCard]:
        """Look up cards through ``/cards/collection``, 75 identifiers per call."""
        cards: list[CanonicalCard] = []
        for chunk in chunked(ids, COLLECTION_MAX_IDENTIFIERS):
            payload = await self._request(
                "POST",
                "/cards/collection",
                json={"identifiers": [{"id": card_id} for card_id in chunk]},
            )
            if not payload:
                continue
            if payload.get("not_found"):
                logger.debug(
                    "Scryfall collection lookup missed ids",
                    source=self.id,
                    missing=len(payload["not_found"]),
                )
            cards.extend(self._to_card(c) for c in payload.get("data", []))
        return cards

    async def search_cards(self, query: str, options: FetchOptions | None = None) -> FetchResult:
        options = replace(options or FetchOptions(), query=query)
        return await self.fetch(options)

    async def get_sets(self) -> list[CardSet]:
        payload = await self._request("GET", "/sets")
        if not payload:
            return []
        return [self._to_set(s) for s in payload.get("data", [])]

    async def get_set_by_code(self, code: str) -> CardSet | None:
        payload = await self._request("GET", f"/sets/{code.lower()}")
        return self._to_set(payload) if payload else None

    async def get_cards_in_set(self, set_code: str, options: FetchOptions | None = None) -> FetchResult:
        options = replace(options or FetchOptions(limit=PAGE_SIZE), query=f"set:{set_code.lower()}")
        return await self.fetch(options)

    async def get_card_price(self, card_id: str) -> PriceData | None:
        card = await self.fetch_by_id(card_id)
        return price_from_card(card) if card else None

    async def get_card_prices(self, card_ids: list[str]) -> list[PriceData]:
        return prices_from_cards(await self.fetch_batch(card_ids))

    async def get_price_history(self, card_id: str, days: int = 30) -> list[PriceData]:
        return price_history_of_one(await self.get_card_price(card_id))

    async def get_bulk_data(self, kind: str = "default_cards") -> list[CanonicalCard]:
        """
        Download a Scryfall bulk data file.

        Args:
            kind: Bulk file type (default_cards, all_cards, oracle_cards).
        """
        index = await self._request("GET", "/bulk-data")
        items = (index or {}).get("data", [])
        entry = next((item for item in items if item.get("type") == kind), None)
        if entry is None:
            logger.warning("Scryfall bulk data type not found", source=self.id, kind=kind)
            return []

        logger.info("Downloading Scryfall bulk data", source=self.id, kind=kind, size=entry.get("size"))
        payload = await self._request(
            "GET",
            entry["download_uri"],
            timeout=self.config.bulk_timeout_seconds,
        )
        return [self._to_card(c) for c in payload or []]

    async def iter_sync_batches(self, kind: SyncKind = "data") -> AsyncIterator[list[Any]]:
        """Sets first, then bulk cards; price syncs yield price points only."""
        if kind == "data":
            sets = await self.get_sets()
            if sets:
                yield sets
        cards = await self.get_bulk_data("default_cards")
        for chunk in chunked(cards, self.config.batch_size):
            yield chunk if kind == "data" else prices_from_cards(chunk)

    def _to_card(self, card: dict[str, Any]) -> CanonicalCard:
        """Map a Scryfall card object to a CanonicalCard."""
        # Double-faced cards carry images on the first face
        image_uris = card.get("image_uris") or {}
        if not image_uris and card.get("card_faces"):
            image_uris = card["card_faces"][0].get("image_uris") or {}

        prices = card.get("prices") or {}
        return CanonicalCard(
            id=card["id"],
            source=self.id,
            name=card.get("name", ""),
            set_code=(card.get("set") or "").upper() or None,
            set_name=card.get("set_name"),
            collector_number=card.get("collector_number"),
            rarity=card.get("rarity"),
            oracle_text=card.get("oracle_text"),
            type_line=card.get("type_line"),
            mana_cost=card.get("mana_cost"),
            cmc=card.get("cmc"),
            power=card.get("power"),
            toughness=card.get("toughness"),
            colors=tuple(card.get("colors") or ()),
            color_identity=tuple(card.get("color_identity") or ()),
            keywords=tuple(card.get("keywords") or ()),
            images=dict(image_uris),
            prices={key: parse_price(prices.get(key)) for key in PRICE_KEYS},
            legalities=dict(card.get("legalities") or {}),
            purchase_links=dict(card.get("purchase_uris") or {}),
        )

    def _to_set(self, data: dict[str, Any]) -> CardSet:
        return CardSet(
            id=data.get("id"),
            code=(data.get("code") or "").upper(),
            name=data.get("name", ""),
            source=self.id,
            released_at=data.get("released_at"),
            set_type=data.get("set_type"),
            card_count=data.get("card_count"),
            parent_set_code=(data.get("parent_set_code") or "").upper() or None,
            digital=bool(data.get("digital")),
            foil_only=bool(data.get("foil_only")),
            nonfoil_only=bool(data.get("nonfoil_only")),
            icon_svg_uri=data.get("icon_svg_uri"),
        )
