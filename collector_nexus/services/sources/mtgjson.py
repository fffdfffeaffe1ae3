"""
MTGJSON data source.

MTGJSON publishes bulk JSON files rather than a query API, so this source
downloads ``AllPrintings.json`` / ``AllPrices.json`` once, keeps them in
memory, and answers searches and lookups locally. Rate limit: 10 requests per
minute.
"""
from collections.abc import AsyncIterator
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from collector_nexus.core.exceptions import DataSourceError, ProviderError
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
    matches_query,
    scryfall_image_uris,
    select_page,
)
from collector_nexus.services.sources.http import request_json
from collector_nexus.services.sources.rate_limit import RateLimiter

logger = structlog.get_logger()

# Retail price vendors in order of preference, with their currency
PRICE_VENDORS = (("tcgplayer", "USD"), ("cardmarket", "EUR"), ("cardkingdom", "USD"))


def _latest(series: dict[str, float] | None) -> tuple[str, float] | None:
    """Most recent ``(date, price)`` of an MTGJSON date-keyed series."""
    if not series:
        return None
    day = max(series)
    return day, float(series[day])


class MTGJSONSource(CardDataSource):
    """
    Card data source backed by MTGJSON bulk files.

    ``fetch_batch`` reads from the bulk file; a failed download raises one
    error for the whole batch.
    """

    provider = "mtgjson"
    BASE_URL = "https://mtgjson.com/api/v5"

    def __init__(self, config: SourceConfig):
        if not config.base_url:
            config.base_url = self.BASE_URL
        if config.rate_limit is None:
            config.rate_limit = RateLimit(requests=10, per_seconds=60.0)
        super().__init__(config)
        self.api_key: str = config.extra.get("api_key") or ""
        self._client: httpx.AsyncClient | None = None
        self._limiter = RateLimiter(config.id, config.rate_limit)
        self._all_printings: dict[str, Any] | None = None
        self._all_prices: dict[str, Any] | None = None
        self._cards_by_uuid: dict[str, CanonicalCard] | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"User-Agent": self.config.user_agent, "Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=headers,
                follow_redirects=True,
            )
        return self._client

    async def _request(self, path: str, bulk: bool = False) -> Any | None:
        client = await self._get_client()
        return await request_json(
            client,
            "GET",
            path,
            source_id=self.id,
            limiter=self._limiter,
            timeout=self.config.bulk_timeout_seconds if bulk else None,
        )

    async def _load_all_printings(self) -> dict[str, Any]:
        """Download AllPrintings once and keep it in memory."""
        if self._all_printings is None:
            logger.info("Downloading MTGJSON AllPrintings", source=self.id)
            payload = await self._request("/AllPrintings.json", bulk=True)
            if payload is None:
                raise ProviderError(self.id, "AllPrintings.json not available")
            self._all_printings = payload.get("data", {})
            self._cards_by_uuid = None
        return self._all_printings

    async def _load_all_prices(self) -> dict[str, Any]:
        """Download AllPrices once and keep it in memory."""
        if self._all_prices is None:
            logger.info("Downloading MTGJSON AllPrices", source=self.id)
            payload = await self._request("/AllPrices.json", bulk=True)
            if payload is None:
                raise ProviderError(self.id, "AllPrices.json not available")
            self._all_prices = payload.get("data", {})
        return self._all_prices

    async def _card_index(self) -> dict[str, CanonicalCard]:
        if self._cards_by_uuid is None:
            printings = await self._load_all_printings()
            self._cards_by_uuid = {
                card["uuid"]: self._to_card(card, set_data)
                for set_data in printings.values()
                for card in set_data.get("cards", [])
                if card.get("uuid")
            }
            logger.debug("MTGJSON card index built", source=self.id, cards=len(self._cards_by_uuid))
        return self._cards_by_uuid

    async def initialize(self) -> None:
        await self._get_client()
        logger.info("MTGJSON source initialized", source=self.id)

    async def close(self) -> None:
        """Close the HTTP client and drop cached bulk files."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._all_printings = None
        self._all_prices = None
        self._cards_by_uuid = None

    async def is_available(self) -> bool:
        try:
            return await self._request("/Meta.json") is not None
        except DataSourceError as e:
            logger.warning("MTGJSON availability check failed", source=self.id, error=str(e))
            return False

    async def get_status(self) -> SourceStatus:
        metrics = {"bulk_loaded": self._all_printings is not None}
        return derive_status(await self.is_available(), self.get_rate_limit_status(), metrics)

    def get_rate_limit_status(self) -> RateLimitStatus | None:
        return self._limiter.status()

    async def fetch(self, options: FetchOptions) -> FetchResult:
        """Search the in-memory card index by name, then filter, sort and page."""
        index = await self._card_index()
        cards = [card for card in index.values() if matches_query(card, options.query)]
        page, total = select_page(cards, options)
        return FetchResult(
            data=page,
            total=total,
            limit=options.limit,
            offset=options.offset,
            source=self.id,
        )

    async def fetch_by_id(self, record_id: str) -> CanonicalCard | None:
        return (await self._card_index()).get(record_id)

    async def fetch_batch(self, ids: list[str]) -> list[CanonicalCard]:
        index = await self._card_index()
        return [index[card_id] for card_id in ids if card_id in index]

    async def search_cards(self, query: str, options: FetchOptions | None = None) -> FetchResult:
        return await self.fetch(replace(options or FetchOptions(), query=query))

    async def get_sets(self) -> list[CardSet]:
        payload = await self._request("/SetList.json")
        if not payload:
            return []
        return [self._to_set(s) for s in payload.get("data", [])]

    async def get_set_by_code(self, code: str) -> CardSet | None:
        payload = await self._request(f"/{code.upper()}.json")
        if not payload or not payload.get("data"):
            return None
        return self._to_set(payload["data"])

    async def get_cards_in_set(self, set_code: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or FetchOptions(limit=500)
        payload = await self._request(f"/{set_code.upper()}.json")
        set_data = (payload or {}).get("data") or {}
        cards = [self._to_card(card, set_data) for card in set_data.get("cards", [])]
        page, total = select_page(cards, options)
        return FetchResult(data=page, total=total, limit=options.limit, offset=options.offset, source=self.id)

    async def get_card_price(self, card_id: str) -> PriceData | None:
        prices = await self._load_all_prices()
        return self._latest_price(card_id, prices.get(card_id))

    async def get_card_prices(self, card_ids: list[str]) -> list[PriceData]:
        prices = await self._load_all_prices()
        results = []
        for card_id in card_ids:
            price = self._latest_price(card_id, prices.get(card_id))
            if price is not None:
                results.append(price)
        return results

    async def get_price_history(self, card_id: str, days: int = 30) -> list[PriceData]:
        """
        Daily retail history from AllPrices (MTGJSON keeps about 90 days).

        Returns:
            PriceData points oldest first, one per day with a price.
        """
        prices = await self._load_all_prices()
        vendor = self._pick_vendor(prices.get(card_id))
        if vendor is None:
            return []
        _, currency, retail = vendor
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).date().isoformat()
        normal = retail.get("normal") or {}
        foil = retail.get("foil") or {}
        history = []
        for day in sorted(set(normal) | set(foil)):
            if day < cutoff:
                continue
            history.append(
                PriceData(
                    card_id=card_id,
                    source=self.id,
                    price=normal.get(day),
                    foil_price=foil.get(day),
                    currency=currency,
                    updated_at=datetime.fromisoformat(day).replace(tzinfo=timezone.utc),
                )
            )
        return history

    async def get_bulk_data(self, kind: str = "AllPrintings") -> list[CanonicalCard]:
        return list((await self._card_index()).values())

    async def iter_sync_batches(self, kind: SyncKind = "data") -> AsyncIterator[list[Any]]:
        if kind == "data":
            sets = await self.get_sets()
            if sets:
                yield sets
            cards = await self.get_bulk_data()
            for chunk in chunked(cards, self.config.batch_size):
                yield chunk
            return

        prices = await self._load_all_prices()
        for chunk in chunked(list(prices), self.config.batch_size):
            points = [self._latest_price(uuid, prices[uuid]) for uuid in chunk]
            yield [p for p in points if p is not None]

    def _pick_vendor(self, entry: dict[str, Any] | None) -> tuple[str, str, dict[str, Any]] | None:
        paper = (entry or {}).get("paper") or {}
        for vendor, currency in PRICE_VENDORS:
            retail = (paper.get(vendor) or {}).get("retail")
            if retail:
                return vendor, paper[vendor].get("currency", currency), retail
        return None

    def _latest_price(self, card_id: str, entry: dict[str, Any] | None) -> PriceData | None:
        vendor = self._pick_vendor(entry)
        if vendor is None:
            return None
        _, currency, retail = vendor
        normal = _latest(retail.get("normal"))
        foil = _latest(retail.get("foil"))
        if normal is None and foil is None:
            return None
        day = max(point[0] for point in (normal, foil) if point is not None)
        return PriceData(
            card_id=card_id,
            source=self.id,
            price=normal[1] if normal else None,
            foil_price=foil[1] if foil else None,
            currency=currency,
            updated_at=datetime.fromisoformat(day).replace(tzinfo=timezone.utc),
        )

    def _to_card(self, card: dict[str, Any], set_data: dict[str, Any] | None = None) -> CanonicalCard:
        """Map an MTGJSON card object to a CanonicalCard."""
        set_data = set_data or {}
        identifiers = card.get("identifiers") or {}
        cmc = card.get("manaValue", card.get("convertedManaCost"))
        return CanonicalCard(
            id=card["uuid"],
            source=self.id,
            name=card.get("name", ""),
            set_code=card.get("setCode") or set_data.get("code"),
            set_name=set_data.get("name"),
            collector_number=card.get("number"),
            rarity=card.get("rarity"),
            oracle_text=card.get("text"),
            type_line=card.get("type"),
            mana_cost=card.get("manaCost"),
            cmc=float(cmc) if cmc is not None else None,
            power=card.get("power"),
            toughness=card.get("toughness"),
            colors=tuple(card.get("colors") or ()),
            color_identity=tuple(card.get("colorIdentity") or ()),
            keywords=tuple(card.get("keywords") or ()),
            images=scryfall_image_uris(identifiers.get("scryfallId")),
            legalities=dict(card.get("legalities") or {}),
            purchase_links=dict(card.get("purchaseUrls") or {}),
        )

    def _to_set(self, data: dict[str, Any]) -> CardSet:
        return CardSet(
            id=data.get("code"),
            code=data.get("code", ""),
            name=data.get("name", ""),
            source=self.id,
            released_at=data.get("releaseDate"),
            set_type=data.get("type"),
            card_count=data.get("totalSetSize"),
            parent_set_code=data.get("parentCode"),
            digital=bool(data.get("isOnlineOnly")),
            foil_only=bool(data.get("isFoilOnly")),
            nonfoil_only=bool(data.get("isNonFoilOnly")),
            icon_svg_uri=(
                f"https://svgs.scryfall.io/sets/{data['keyruneCode'].lower()}.svg"
                if data.get("keyruneCode")
                else None
            ),
        )
