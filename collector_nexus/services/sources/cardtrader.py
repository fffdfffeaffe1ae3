"""
CardTrader marketplace data source.

CardTrader requires OAuth2 client credentials. Tokens are kept in memory,
refreshed when less than a minute of validity remains, and re-acquired after
a 401. Prices are reported in EUR. Rate limit: 60 requests per minute.
API Documentation: https://www.cardtrader.com/docs/api/full/reference
"""
import asyncio
from collections.abc import AsyncIterator
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from collector_nexus.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DataSourceError,
)
from collector_nexus.services.sources.base import (
    AuthToken,
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
    best_effort_batch,
    derive_status,
    matches_filters,
    parse_price,
    price_from_card,
    price_history_of_one,
)
from collector_nexus.services.sources.http import decode_json, request_json, send_request
from collector_nexus.services.sources.rate_limit import RateLimiter

logger = structlog.get_logger()

TOKEN_MARGIN_SECONDS = 60
MTG_GAME_ID = 1
MAX_PER_PAGE = 250


def _parse_total(header: str, source_id: str) -> int | None:
    try:
        return int(header)
    except ValueError:
        logger.warning("Ignoring malformed x-total-count header", source=source_id, value=header)
        return None

class CardTraderSource(CardDataSource):
    """
    Card data source backed by the CardTrader marketplace API.

    CardTrader has no batch lookup endpoint, so ``fetch_batch`` and
    ``get_card_prices`` fetch item by item and omit failures.
    """

    provider = "cardtrader"
    BASE_URL = "https://api.cardtrader.com/api/v2"
    AUTH_URL = "https://api.cardtrader.com/oauth/token"

    def __init__(self, config: SourceConfig):
        client_id = config.extra.get("client_id")
        client_secret = config.extra.get("client_secret")
        if not client_id or not client_secret:
            raise ConfigurationError(config.id, "CardTrader client id and secret are required")

        if not config.base_url:
            config.base_url = self.BASE_URL
        if config.rate_limit is None:
            config.rate_limit = RateLimit(requests=60, per_seconds=60.0)
        super().__init__(config)

        self.client_id: str = client_id
        self.client_secret: str = client_secret
        self.auth_url: str = config.extra.get("auth_url") or self.AUTH_URL
        self.marketplace_id: int = int(config.extra.get("marketplace_id") or 1)
        self._client: httpx.AsyncClient | None = None
        self._limiter = RateLimiter(config.id, config.rate_limit)
        self._token: AuthToken | None = None
        self._auth_lock = asyncio.Lock()
        self._expansions: list[dict[str, Any]] | None = None

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

    async def _ensure_token(self, force: bool = False) -> AuthToken:
        """
        Return a token valid for at least ``TOKEN_MARGIN_SECONDS``.

        Uses the refresh token when one is held, falling back to the client
        credentials grant. ``force`` discards the current token.
        """
        async with self._auth_lock:
            if force:
                self._token = None
            if self._token is not None and self._token.is_valid(TOKEN_MARGIN_SECONDS):
                return self._token

            if self._token is not None and self._token.refresh_token:
                try:
                    self._token = await self._request_token(
                        {"grant_type": "refresh_token", "refresh_token": self._token.refresh_token}
                    )
                    return self._token
                except AuthenticationError as e:
                    logger.warning("CardTrader token refresh failed", source=self.id, error=str(e))

            self._token = await self._request_token({"grant_type": "client_credentials"})
            return self._token

    async def _request_token(self, form: dict[str, str]) -> AuthToken:
        client = await self._get_client()
        try:
            response = await client.post(
                self.auth_url,
                data=form,
                auth=(self.client_id, self.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to authenticate with CardTrader API", source=self.id, error=str(e))
            raise AuthenticationError(self.id, f"Token request failed: {e}") from e

        previous_refresh = self._token.refresh_token if self._token else None
        token = AuthToken.from_response(payload)
        if token.refresh_token is None:
            token.refresh_token = previous_refresh
        logger.info("CardTrader token acquired", source=self.id, grant=form["grant_type"])
        return token

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._ensure_token()
        return {"Authorization": token.authorization}

    async def _reauthenticate(self) -> None:
        await self._ensure_token(force=True)

    def _request_options(self, params: dict[str, Any] | None) -> dict[str, Any]:
        return {
            "source_id": self.id,
            "limiter": self._limiter,
            "auth_headers": self._auth_headers,
            "reauthenticate": self._reauthenticate,
            "params": params,
        }

    async def _send(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response | None:
        """Response with headers, for the paged marketplace listing."""
        client = await self._get_client()
        return await send_request(client, "GET", path, **self._request_options(params))

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        client = await self._get_client()
        return await request_json(client, "GET", path, **self._request_options(params))

    async def initialize(self) -> None:
        await self._ensure_token()
        logger.info("CardTrader source initialized", source=self.id, marketplace_id=self.marketplace_id)

    async def close(self) -> None:
        """Close the HTTP client and forget the token."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._token = None

    async def is_available(self) -> bool:
        try:
            return await self._get("/info") is not None
        except DataSourceError as e:
            logger.warning("CardTrader availability check failed", source=self.id, error=str(e))
            return False

    async def get_status(self) -> SourceStatus:
        metrics = {
            "marketplace_id": self.marketplace_id,
            "token_valid": self._token is not None and self._token.is_valid(TOKEN_MARGIN_SECONDS),
            "last_sync": self.config.last_sync.isoformat() if self.config.last_sync else None,
        }
        return derive_status(await self.is_available(), self.get_rate_limit_status(), metrics)

    def get_rate_limit_status(self) -> RateLimitStatus | None:
        return self._limiter.status()

    async def fetch(self, options: FetchOptions) -> FetchResult:
        """
        Page through ``/marketplace/cards``.

        A ``set_code`` equality filter is sent to CardTrader as an expansion
        id; other filters are applied to the returned page.
        """
        per_page = min(max(options.limit, 1), MAX_PER_PAGE)
        params: dict[str, Any] = {
            "marketplace_id": self.marketplace_id,
            "page": options.offset // per_page + 1,
            "per_page": per_page,
        }
        if options.query:
            params["q"] = options.query

        filters = dict(options.filters)
        set_filter = filters.get("set_code", {})
        if "eq" in set_filter:
            expansion_id = await self._expansion_id(set_filter["eq"])
            if expansion_id is not None:
                params["expansion_id"] = expansion_id
                filters.pop("set_code")

        response = await self._send("/marketplace/cards", params)
        if response is None:
            return FetchResult(data=[], total=0, limit=options.limit, offset=options.offset, source=self.id)

        items = decode_json(response, self.id) or []
        cards = [self._to_card(item) for item in items][options.offset % per_page:]
        while len(cards) < options.limit and len(items) == per_page:
            params["page"] += 1
            response = await self._send("/marketplace/cards", params)
            items = decode_json(response, self.id) if response is not None else []
            cards.extend(self._to_card(item) for item in items or [])
        cards = cards[:options.limit]
        if filters:
            cards = [c for c in cards if matches_filters(c, filters)]

        total_header = response.headers.get("x-total-count") if response is not None else None
        total = _parse_total(total_header, self.id) if total_header else None
        if total is None:
            total = options.offset + len(cards)
        return FetchResult(
            data=cards,
            total=total,
            limit=options.limit,
            offset=options.offset,
            source=self.id,
            metadata={"marketplace_id": self.marketplace_id},
        )

    async def fetch_by_id(self, record_id: str) -> CanonicalCard | None:
        payload = await self._get(
            f"/marketplace/cards/{record_id}",
            params={"marketplace_id": self.marketplace_id},
        )
        return self._to_card(payload) if payload else None

    async def fetch_batch(self, ids: list[str]) -> list[CanonicalCard]:
        return await best_effort_batch(self.id, ids, self.fetch_by_id)

    async def search_cards(self, query: str, options: FetchOptions | None = None) -> FetchResult:
        return await self.fetch(replace(options or FetchOptions(), query=query))

    async def _load_expansions(self) -> list[dict[str, Any]]:
        """Fetch the expansion list once per adapter lifetime."""
        if self._expansions is None:
            payload = await self._get("/expansions") or []
            if isinstance(payload, dict):
                payload = payload.get("data", [])
            self._expansions = [
                e for e in payload
                if isinstance(e, dict) and e.get("game_id", MTG_GAME_ID) == MTG_GAME_ID
            ]
            logger.debug("CardTrader expansions cached", source=self.id, count=len(self._expansions))
        return self._expansions

    async def _expansion_id(self, code: str) -> int | None:
        for expansion in await self._load_expansions():
            if (expansion.get("code") or "").lower() == code.lower():
                return expansion.get("id")
        return None

    async def get_sets(self) -> list[CardSet]:
        return [self._to_set(e) for e in await self._load_expansions()]

    async def get_set_by_code(self, code: str) -> CardSet | None:
        for card_set in await self.get_sets():
            if card_set.code.lower() == code.lower():
                return card_set
        return None

    async def get_cards_in_set(self, set_code: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or FetchOptions(limit=MAX_PER_PAGE)
        filters = {**options.filters, "set_code": {"eq": set_code}}
        return await self.fetch(replace(options, filters=filters))

    async def get_card_price(self, card_id: str) -> PriceData | None:
        payload = await self._get(
            f"/marketplace/cards/{card_id}/prices",
            params={"marketplace_id": self.marketplace_id},
        )
        if not payload:
            return None
        updated_at = payload.get("updated_at")
        return PriceData(
            card_id=card_id,
            source=self.id,
            price=parse_price(payload.get("price_eur")),
            foil_price=parse_price(payload.get("price_eur_foil")),
            currency="EUR",
            updated_at=(
                datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
                if updated_at
                else datetime.now(timezone.utc)
            ),
        )

    async def get_card_prices(self, card_ids: list[str]) -> list[PriceData]:
        return await best_effort_batch(self.id, card_ids, self.get_card_price)

    async def get_price_history(self, card_id: str, days: int = 30) -> list[PriceData]:
        return price_history_of_one(await self.get_card_price(card_id))

    async def _cards_for_expansion(self, expansion: dict[str, Any]) -> list[CanonicalCard]:
        cards: list[CanonicalCard] = []
        page = 1
        while True:
            items = await self._get(
                "/marketplace/cards",
                params={
                    "marketplace_id": self.marketplace_id,
                    "expansion_id": expansion["id"],
                    "page": page,
                    "per_page": MAX_PER_PAGE,
                },
            ) or []
            cards.extend(self._to_card(item) for item in items)
            if len(items) < MAX_PER_PAGE:
                return cards
            page += 1

    async def get_bulk_data(self, kind: str = "marketplace") -> list[CanonicalCard]:
        """All marketplace cards, walked expansion by expansion."""
        cards: list[CanonicalCard] = []
        async for batch in self.iter_sync_batches("data"):
            cards.extend(c for c in batch if isinstance(c, CanonicalCard))
        return cards

    async def iter_sync_batches(self, kind: SyncKind = "data") -> AsyncIterator[list[Any]]:
        """One batch per expansion; a failing expansion is logged and skipped."""
        expansions = await self._load_expansions()
        if kind == "data" and expansions:
            yield [self._to_set(e) for e in expansions]
        for expansion in expansions:
            try:
                cards = await self._cards_for_expansion(expansion)
            except DataSourceError as e:
                logger.error(
                    "CardTrader expansion sync failed",
                    source=self.id,
                    expansion=expansion.get("code"),
                    error=str(e),
                )
                continue
            if cards:
                yield cards if kind == "data" else [price_from_card(c, "EUR") for c in cards]

    def _to_card(self, card: dict[str, Any]) -> CanonicalCard:
        """Map a CardTrader marketplace card to a CanonicalCard."""
        images = card.get("image_urls") or {}
        return CanonicalCard(
            id=str(card["id"]),
            source=self.id,
            name=card.get("name", ""),
            set_code=(card.get("expansion_code") or "").upper() or None,
            set_name=card.get("expansion_name"),
            collector_number=card.get("number"),
            rarity=card.get("rarity"),
            oracle_text=card.get("text"),
            type_line=card.get("type"),
            mana_cost=card.get("mana_cost"),
            cmc=card.get("cmc"),
            power=card.get("power"),
            toughness=card.get("toughness"),
            colors=tuple(card.get("colors") or ()),
            color_identity=tuple(card.get("color_identity") or ()),
            images={size: url for size, url in images.items() if url},
            prices={
                "eur": parse_price(card.get("price_eur")),
                "eur_foil": parse_price(card.get("price_eur_foil")),
            },
            purchase_links={"cardtrader": card["url"]} if card.get("url") else {},
        )

    def _to_set(self, expansion: dict[str, Any]) -> CardSet:
        return CardSet(
            id=str(expansion.get("id")),
            code=(expansion.get("code") or "").upper(),
            name=expansion.get("name", ""),
            source=self.id,
        )
