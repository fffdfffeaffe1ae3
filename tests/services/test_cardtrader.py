"""
Tests for the CardTrader source.

Tests verify token handling (acquire, reuse, refresh near expiry,
re-authenticate after 401), marketplace paging, expansion filters and
best-effort batch lookups.
"""
from urllib.parse import parse_qsl

import httpx
import pytest

from collector_nexus.core.exceptions import AuthenticationError, ConfigurationError, ProviderError
from collector_nexus.services.sources.base import FetchOptions
from collector_nexus.services.sources.cardtrader import CardTraderSource

CREDENTIALS = {"client_id": "ct-client", "client_secret": "ct-secret"}


def marketplace_card(card_id: int, **overrides) -> dict:
    card = {
        "id": card_id,
        "name": f"Card {card_id}",
        "expansion_code": "lea",
        "expansion_name": "Alpha",
        "number": str(card_id),
        "rarity": "rare",
        "price_eur": "12.50",
        "price_eur_foil": None,
        "image_urls": {"normal": f"https://img.test/{card_id}.jpg", "small": None},
        "url": f"https://www.cardtrader.test/cards/{card_id}",
    }
    card.update(overrides)
    return card


class FakeCardTrader:
    """Answers token, marketplace and expansion requests; counts token grants."""

    def __init__(
        self,
        reject_tokens: set[str] | None = None,
        expires_in: int = 3600,
        refresh_token: str | None = None,
        reject_refresh: bool = False,
    ):
        self.tokens_issued = 0
        self.reject_tokens = reject_tokens or set()
        self.expires_in = expires_in
        self.refresh_token = refresh_token
        self.reject_refresh = reject_refresh
        self.grants: list[dict[str, str]] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth/token":
            form = dict(parse_qsl(request.read().decode()))
            self.grants.append(form)
            if form["grant_type"] == "refresh_token" and self.reject_refresh:
                return httpx.Response(400, json={"error": "invalid_grant"})
            self.tokens_issued += 1
            payload = {"access_token": f"tok{self.tokens_issued}", "expires_in": self.expires_in}
            if self.refresh_token:
                payload["refresh_token"] = self.refresh_token
            return httpx.Response(200, json=payload)

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.reject_tokens:
            return httpx.Response(401, json={"error": "invalid_token"})

        if path == "/expansions":
            return httpx.Response(200, json=[
                {"id": 7, "code": "lea", "name": "Alpha", "game_id": 1},
                {"id": 99, "code": "pkmn", "name": "Base Set", "game_id": 5},
            ])
        if path == "/marketplace/cards":
            per_page = int(request.url.params["per_page"])
            return httpx.Response(
                200,
                json=[marketplace_card(i) for i in range(1, per_page + 1)],
                headers={"x-total-count": "42"},
            )
        if path == "/marketplace/cards/500":
            return httpx.Response(500, text="boom")
        if path.endswith("/prices"):
            return httpx.Response(200, json={"price_eur": "3.20", "price_eur_foil": "9.99",
                                             "updated_at": "2024-05-01T10:00:00Z"})
        if path.startswith("/marketplace/cards/"):
            card_id = int(path.rsplit("/", 1)[1])
            if card_id == 404:
                return httpx.Response(404)
            return httpx.Response(200, json=marketplace_card(card_id))
        if path == "/info":
            return httpx.Response(200, json={"name": "collector-nexus"})
        return httpx.Response(404)


@pytest.fixture
def provider():
    return FakeCardTrader()


@pytest.fixture
def source(make_config, mock_client, provider):
    src = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
    src._client = mock_client(provider)
    return src


class TestConfiguration:
    def test_missing_credentials_raise(self, make_config):
        with pytest.raises(ConfigurationError):
            CardTraderSource(make_config("cardtrader", extra={"client_id": "only-id"}))


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_token_is_acquired_once_and_reused(self, source, provider):
        await source.initialize()
        await source.fetch_by_id("1")
        await source.fetch_by_id("2")

        assert provider.tokens_issued == 1
        card_requests = [r for r in provider.requests if r.url.path.startswith("/marketplace")]
        assert all(r.headers["Authorization"] == "Bearer tok1" for r in card_requests)

    @pytest.mark.asyncio
    async def test_rejected_token_is_replaced_once(self, make_config, mock_client):
        provider = FakeCardTrader(reject_tokens={"tok1"})
        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(provider)

        card = await source.fetch_by_id("1")

        assert card.id == "1"
        assert provider.tokens_issued == 2

    @pytest.mark.asyncio
    async def test_token_endpoint_failure_raises(self, make_config, mock_client):
        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(lambda request: httpx.Response(401, json={"error": "invalid_client"}))

        with pytest.raises(AuthenticationError):
            await source.initialize()


    @pytest.mark.asyncio
    async def test_token_near_expiry_is_replaced_before_use(self, make_config, mock_client):
        provider = FakeCardTrader(expires_in=30)
        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(provider)

        await source.initialize()
        await source.fetch_by_id("1")

        assert [g["grant_type"] for g in provider.grants] == ["client_credentials", "client_credentials"]
        card_request = [r for r in provider.requests if r.url.path.startswith("/marketplace")][-1]
        assert card_request.headers["Authorization"] == "Bearer tok2"

    @pytest.mark.asyncio
    async def test_refresh_token_grant_is_preferred(self, make_config, mock_client):
        provider = FakeCardTrader(expires_in=30, refresh_token="refresh-1")
        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(provider)

        await source.initialize()
        await source.fetch_by_id("1")

        assert [g["grant_type"] for g in provider.grants] == ["client_credentials", "refresh_token"]
        assert provider.grants[1]["refresh_token"] == "refresh-1"
        card_request = [r for r in provider.requests if r.url.path.startswith("/marketplace")][-1]
        assert card_request.headers["Authorization"] == "Bearer tok2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_falls_back_to_client_credentials(self, make_config, mock_client):
        provider = FakeCardTrader(expires_in=30, refresh_token="refresh-1", reject_refresh=True)
        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(provider)

        await source.initialize()
        card = await source.fetch_by_id("1")

        assert card.id == "1"
        assert [g["grant_type"] for g in provider.grants] == [
            "client_credentials",
            "refresh_token",
            "client_credentials",
        ]
        assert source._token.access_token == "tok2"


class TestMarketplace:
    @pytest.mark.asyncio
    async def test_fetch_page_uses_total_header(self, source):
        result = await source.fetch(FetchOptions(query="bolt", limit=5))

        assert len(result.data) == 5
        assert result.total == 42
        assert result.has_more is True
        card = result.data[0]
        assert card.id == "1"
        assert card.set_code == "LEA"
        assert card.prices == {"eur": 12.5, "eur_foil": None}
        assert card.images == {"normal": "https://img.test/1.jpg"}
        assert card.purchase_links == {"cardtrader": "https://www.cardtrader.test/cards/1"}

    @pytest.mark.asyncio
    async def test_set_filter_becomes_expansion_id(self, source, provider):
        await source.get_cards_in_set("LEA", FetchOptions(limit=3))

        search = [r for r in provider.requests if r.url.path == "/marketplace/cards"][-1]
        assert search.url.params["expansion_id"] == "7"

    @pytest.mark.asyncio
    async def test_sets_are_mtg_expansions_only(self, source):
        sets = await source.get_sets()

        assert [(s.id, s.code) for s in sets] == [("7", "LEA")]

    @pytest.mark.asyncio
    async def test_fetch_batch_omits_misses_and_failures(self, source):
        cards = await source.fetch_batch(["1", "404", "500", "2"])

        assert [c.id for c in cards] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_card_price_in_eur(self, source):
        price = await source.get_card_price("1")

        assert price.price == 3.2
        assert price.foil_price == 9.99
        assert price.currency == "EUR"
        assert price.updated_at.year == 2024


class TestMalformedResponses:
    @pytest.mark.asyncio
    async def test_invalid_json_is_tagged_provider_error(self, make_config, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok1", "expires_in": 3600})
            return httpx.Response(200, text="<html>maintenance</html>")

        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(handler)

        with pytest.raises(ProviderError) as exc_info:
            await source.fetch_by_id("1")
        assert exc_info.value.source_id == "cardtrader"

        with pytest.raises(ProviderError) as exc_info:
            await source.fetch(FetchOptions(limit=5))
        assert exc_info.value.source_id == "cardtrader"

    @pytest.mark.asyncio
    async def test_malformed_total_header_falls_back_to_page_count(self, make_config, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok1", "expires_in": 3600})
            return httpx.Response(
                200,
                json=[marketplace_card(1), marketplace_card(2)],
                headers={"x-total-count": "many"},
            )

        source = CardTraderSource(make_config("cardtrader", extra=dict(CREDENTIALS)))
        source._client = mock_client(handler)

        result = await source.fetch(FetchOptions(limit=5))

        assert [c.id for c in result.data] == ["1", "2"]
        assert result.total == 2
        assert result.has_more is False


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_reports_token(self, source):
        await source.initialize()

        status = await source.get_status()

        assert status.status == "ok"
        assert status.metrics["token_valid"] is True
        assert status.metrics["marketplace_id"] == 1

    @pytest.mark.asyncio
    async def test_close_forgets_token(self, source):
        await source.initialize()

        await source.close()

        assert source._token is None
