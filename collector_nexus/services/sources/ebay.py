"""
eBay Browse API data source.

Searches live marketplace listings. Authentication uses an application
access token (OAuth2 client credentials). eBay reports the remaining call
budget in response headers, which overrides the locally derived one.
"""
import asyncio
import base64
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from collector_nexus.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DataSourceError,
)
from collector_nexus.services.sources.base import (
    AuthToken,
    DataSource,
    FetchOptions,
    FetchResult,
    MarketListing,
    RateLimit,
    RateLimitStatus,
    SourceConfig,
    SourceStatus,
    SyncKind,
)
from collector_nexus.services.sources.helpers import (
    best_effort_batch,
    derive_status,
    parse_price,
)
from collector_nexus.services.sources.http import request_json
from collector_nexus.services.sources.rate_limit import RateLimiter

logger = structlog.get_logger()

TOKEN_MARGIN_SECONDS = 60
MAX_LIMIT = 200
OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"
SEARCH_PATH = "/buy/browse/v1/item_summary/search"
ITEM_PATH = "/buy/browse/v1/item/{item_id}"
SORT_FIELDS = {
    "price": "price",
    "newly_listed": "newlyListed",
    "ending_soonest": "endingSoonest",
    "distance": "distance",
}
# FetchOptions filter field -> Browse API filter name
SET_FILTERS = {
    "condition": "conditionIds",
    "condition_id": "conditionIds",
    "buying_options": "buyingOptions",
    "seller": "sellers",
}


def build_filter_expression(filters: dict[str, dict[str, Any]]) -> tuple[str | None, str | None]:
    """
    Translate FetchOptions filters to Browse API parameters.

    Returns:
        ``(filter, category_ids)`` query parameter values.
    """
    parts: list[str] = []
    category_ids = None
    for field_name, conditions in filters.items():
        if field_name == "price":
            low = conditions.get("gte", conditions.get("gt", ""))
            high = conditions.get("lte", conditions.get("lt", ""))
            if "eq" in conditions:
                low = high = conditions["eq"]
            parts.append(f"price:[{low}..{high}]")
            if "currency" in conditions:
                parts.append(f"priceCurrency:{conditions['currency']}")
        elif field_name == "category":
            values = conditions.get("in") or [conditions.get("eq")]
            category_ids = ",".join(str(v) for v in values if v is not None)
        elif field_name in SET_FILTERS:
            values = conditions.get("in") or [conditions.get("eq")]
            joined = "|".join(str(v) for v in values if v is not None)
            parts.append(f"{SET_FILTERS[field_name]}:{{{joined}}}")
        elif field_name == "location_country" and "eq" in conditions:
            parts.append(f"itemLocationCountry:{conditions['eq']}")
        else:
            logger.debug("Unsupported eBay filter ignored", field=field_name)
    return (",".join(parts) or None), category_ids


def build_sort(sort: dict[str, int]) -> str | None:
    """First supported sort key, ``-`` prefixed when descending. Relevance otherwise."""
    for field_name, direction in sort.items():
        if field_name in SORT_FIELDS:
            prefix = "-" if direction < 0 else ""
            return f"{prefix}{SORT_FIELDS[field_name]}"
    return None


class EbaySource(DataSource):
    """Marketplace listing source backed by the eBay Browse API."""

    provider = "ebay"
    BASE_URL = "https://api.ebay.com"
    AUTH_URL = "https://api.ebay.com/identity/v1/oauth2/token"

    def __init__(self, config: SourceConfig):
        app_id = config.extra.get("app_id")
        cert_id = config.extra.get("cert_id")
        if not app_id or not cert_id:
            raise ConfigurationError(config.id, "eBay API key and secret are required")

        if not config.base_url:
            config.base_url = self.BASE_URL
        if config.rate_limit is None:
            config.rate_limit = RateLimit(requests=5000, per_seconds=86400.0)
        super().__init__(config)

        self.app_id: str = app_id
        self.cert_id: str = cert_id
        self.auth_url: str = config.extra.get("auth_url") or self.AUTH_URL
        self.marketplace_id: str = config.extra.get("marketplace_id") or "EBAY_US"
        self.sync_queries: list[str] = list(config.extra.get("sync_queries") or ["magic the gathering"])
        self.sync_max_items: int = int(config.extra.get("sync_max_items") or 1000)
        self._client: httpx.AsyncClient | None = None
        self._limiter = RateLimiter(config.id, config.rate_limit)
        self._token: AuthToken | None = None
        self._auth_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/json",
                    "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
                },
                follow_redirects=True,
            )
        return self._client

    async def _authenticate(self, force: bool = False) -> AuthToken:
        async with self._auth_lock:
            if not force and self._token is not None and self._token.is_valid(TOKEN_MARGIN_SECONDS):
                return self._token

            client = await self._get_client()
            credentials = base64.b64encode(f"{self.app_id}:{self.cert_id}".encode()).decode()
            try:
                response = await client.post(
                    self.auth_url,
                    data={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Authorization": f"Basic {credentials}",
                    },
                )
                response.raise_for_status()
                self._token = AuthToken.from_response(response.json())
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Failed to authenticate with eBay API", source=self.id, error=str(e))
                raise AuthenticationError(self.id, f"Token request failed: {e}") from e

            logger.debug("Authenticated with eBay API", source=self.id)
            return self._token

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._authenticate()
        return {"Authorization": token.authorization}

    async def _reauthenticate(self) -> None:
        await self._authenticate(force=True)

    def _read_rate_limit_headers(self, response: httpx.Response) -> None:
        remaining = response.headers.get("x-ebay-api-rate-limit-remaining")
        if remaining is None:
            return
        reset = response.headers.get("x-ebay-api-rate-limit-reset")
        try:
            remaining_count = int(remaining)
            reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
        except (ValueError, OverflowError, OSError):
            # Keep the local budget when the provider's headers are unreadable
            logger.warning(
                "Ignoring malformed eBay rate limit headers",
                source=self.id,
                remaining=remaining,
                reset=reset,
            )
            return
        self._limiter.update_from_headers(remaining=remaining_count, reset_at=reset_at)

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        client = await self._get_client()
        return await request_json(
            client,
            "GET",
            path,
            source_id=self.id,
            limiter=self._limiter,
            auth_headers=self._auth_headers,
            reauthenticate=self._reauthenticate,
            on_response=self._read_rate_limit_headers,
            params=params,
        )

    async def initialize(self) -> None:
        await self._authenticate()
        logger.info("eBay source initialized", source=self.id, marketplace_id=self.marketplace_id)

    async def close(self) -> None:
        """Close the HTTP client and forget the token."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._token = None

    async def is_available(self) -> bool:
        try:
            await self._authenticate()
            return True
        except AuthenticationError:
            return False

    async def get_status(self) -> SourceStatus:
        return derive_status(await self.is_available(), self.get_rate_limit_status())

    def get_rate_limit_status(self) -> RateLimitStatus | None:
        """None until the source has authenticated."""
        if self._token is None:
            return None
        return self._limiter.status()

    async def fetch(self, options: FetchOptions) -> FetchResult:
        limit = min(max(options.limit, 1), MAX_LIMIT)
        params: dict[str, Any] = {"q": options.query or "", "limit": limit, "offset": options.offset}
        filter_expression, category_ids = build_filter_expression(options.filters)
        if filter_expression:
            params["filter"] = filter_expression
        if category_ids:
            params["category_ids"] = category_ids
        sort = build_sort(options.sort)
        if sort:
            params["sort"] = sort

        payload = await self._request(SEARCH_PATH, params) or {}
        items = payload.get("itemSummaries") or []
        metadata: dict[str, Any] = {}
        if payload.get("warnings"):
            metadata["warnings"] = payload["warnings"]
        if payload.get("refinement"):
            metadata["refinement"] = payload["refinement"]

        return FetchResult(
            data=[self._to_listing(item) for item in items],
            total=int(payload.get("total", 0)),
            limit=limit,
            offset=options.offset,
            source=self.id,
            metadata=metadata,
        )

    async def fetch_by_id(self, record_id: str) -> MarketListing | None:
        payload = await self._request(ITEM_PATH.format(item_id=quote(record_id, safe="")))
        return self._to_listing(payload) if payload else None

    async def fetch_batch(self, ids: list[str]) -> list[MarketListing]:
        """Item-by-item lookups, 10 concurrently; failures are omitted."""
        return await best_effort_batch(self.id, ids, self.fetch_by_id, concurrency=10)

    async def iter_sync_batches(self, kind: SyncKind = "data") -> AsyncIterator[list[Any]]:
        """Page through each configured search query up to ``sync_max_items``."""
        for query in self.sync_queries:
            offset = 0
            while offset < self.sync_max_items:
                try:
                    result = await self.fetch(FetchOptions(query=query, limit=MAX_LIMIT, offset=offset))
                except DataSourceError as e:
                    logger.error("eBay sync query failed", source=self.id, query=query, error=str(e))
                    break
                if result.data:
                    yield result.data
                if not result.has_more:
                    break
                offset += len(result.data)

    def _to_listing(self, item: dict[str, Any]) -> MarketListing:
        """Map a Browse API item summary (or item) to a MarketListing."""
        price = item.get("price") or {}
        seller = item.get("seller") or {}
        shipping = (item.get("shippingOptions") or [{}])[0]
        image = (item.get("image") or {}).get("imageUrl")
        if not image and item.get("thumbnailImages"):
            image = item["thumbnailImages"][0].get("imageUrl")
        categories = item.get("categories") or []
        location = item.get("itemLocation") or {}
        return MarketListing(
            id=item["itemId"],
            source=self.id,
            title=item.get("title", ""),
            price=parse_price(price.get("value")),
            currency=price.get("currency", "USD"),
            condition=item.get("condition"),
            url=item.get("itemWebUrl"),
            image_url=image,
            category=categories[0].get("categoryName") if categories else item.get("categoryPath"),
            seller_name=seller.get("username"),
            seller_rating=parse_price(seller.get("feedbackPercentage")),
            shipping_cost=parse_price((shipping.get("shippingCost") or {}).get("value")),
            location=location.get("country"),
            buying_options=tuple(item.get("buyingOptions") or ()),
        )
