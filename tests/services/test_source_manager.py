"""
Tests for the data source manager.

Tests verify:
- Registration, default selection and overwrite warnings
- Sequential first-match probing in fetch_by_id
- Parallel fan-out with degraded entries for failing sources
- Lifecycle: shared initialization, close and re-initialization
"""
import asyncio
from unittest.mock import patch

import pytest

from collector_nexus.core.exceptions import (
    NoSourceAvailableError,
    SourceCapabilityError,
    SourceNotFoundError,
)
from collector_nexus.services.sources.base import FetchOptions
from collector_nexus.services.sources.manager import DataSourceManager, ManagerState
from tests.fakes import FakeCardSource, FakeSource


class TestRegistration:
    """Tests for registering and removing sources."""

    def test_first_registered_source_becomes_default(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("a"))
        manager.register_source(FakeSource("b"))

        assert manager.get_default_source().id == "a"

    def test_set_as_default_overrides_first(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("a"))
        manager.register_source(FakeSource("b"), set_as_default=True)

        assert manager.get_default_source().id == "b"

    def test_reregistering_overwrites_with_warning(self):
        manager = DataSourceManager()
        first = FakeSource("a")
        second = FakeSource("a")
        manager.register_source(first)

        with patch("collector_nexus.services.sources.manager.logger") as mock_logger:
            manager.register_source(second)

        mock_logger.warning.assert_called_once()
        assert manager.get_source("a") is second
        assert len(manager.get_all_sources()) == 1

    def test_set_default_unknown_source_raises(self):
        manager = DataSourceManager()
        with pytest.raises(SourceNotFoundError):
            manager.set_default_source("missing")

    @pytest.mark.asyncio
    async def test_remove_source_closes_and_picks_new_default(self):
        manager = DataSourceManager()
        a, b = FakeSource("a"), FakeSource("b")
        manager.register_source(a)
        manager.register_source(b)

        assert await manager.remove_source("a") is True
        assert a.closed
        assert manager.get_default_source().id == "b"
        assert await manager.remove_source("a") is False

    @pytest.mark.asyncio
    async def test_removing_last_source_clears_default_and_fanout_raises(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("a"))

        await manager.remove_source("a")

        assert manager.get_default_source() is None
        with pytest.raises(NoSourceAvailableError):
            await manager.fetch()


class TestFetchById:
    """Tests for single-record lookups."""

    @pytest.mark.asyncio
    async def test_probe_returns_first_hit_in_registration_order(self):
        calls: list[str] = []
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", calls=calls))
        manager.register_source(FakeSource("B", {"x": {"id": "x", "name": "Found"}}, calls=calls))

        hit = await manager.fetch_by_id("x")

        assert hit.source == "B"
        assert hit.data == {"id": "x", "name": "Found"}
        assert calls == ["A.fetch_by_id", "B.fetch_by_id"]

    @pytest.mark.asyncio
    async def test_probe_stops_after_first_hit(self):
        calls: list[str] = []
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", {"x": {"id": "x"}}, calls=calls))
        manager.register_source(FakeSource("B", {"x": {"id": "x"}}, calls=calls))

        hit = await manager.fetch_by_id("x")

        assert hit.source == "A"
        assert calls == ["A.fetch_by_id"]

    @pytest.mark.asyncio
    async def test_probe_skips_failing_sources(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", fail=RuntimeError("down")))
        manager.register_source(FakeSource("B", {"x": {"id": "x"}}))

        hit = await manager.fetch_by_id("x")

        assert hit.source == "B"

    @pytest.mark.asyncio
    async def test_probe_returns_none_when_nobody_has_it(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A"))
        manager.register_source(FakeSource("B"))

        assert await manager.fetch_by_id("x") is None

    @pytest.mark.asyncio
    async def test_explicit_source_propagates_errors(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", fail=RuntimeError("down")))

        with pytest.raises(RuntimeError):
            await manager.fetch_by_id("x", source_id="A")

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A"))

        with pytest.raises(SourceNotFoundError):
            await manager.fetch_by_id("x", source_id="nope")


class TestFanOut:
    """Tests for fetch and fetch_batch across all sources."""

    @pytest.mark.asyncio
    async def test_failing_source_yields_degraded_entry(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", {"1": {"id": "1"}}))
        manager.register_source(FakeSource("B", fail=RuntimeError("provider exploded")))
        manager.register_source(FakeSource("C", {"2": {"id": "2"}, "3": {"id": "3"}}))

        results = await manager.fetch(options=FetchOptions(limit=10))

        assert [r.source for r in results] == ["A", "B", "C"]
        degraded = results[1]
        assert degraded.data == []
        assert degraded.has_more is False
        assert "provider exploded" in degraded.error
        assert results[0].error is None and len(results[0].data) == 1
        assert results[2].error is None and len(results[2].data) == 2

    @pytest.mark.asyncio
    async def test_single_source_fetch_returns_one_result(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", {"1": {"id": "1"}, "2": {"id": "2"}}))
        manager.register_source(FakeSource("B"))

        results = await manager.fetch("A", FetchOptions(limit=1))

        assert len(results) == 1
        assert results[0].has_more is True

    @pytest.mark.asyncio
    async def test_batch_fanout_reports_errors_per_source(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", {"1": {"id": "1"}}))
        manager.register_source(FakeSource("B", fail=RuntimeError("boom")))

        results = await manager.fetch_batch(["1", "2"])

        assert results[0].data == [{"id": "1"}]
        assert results[0].error is None
        assert results[1].data == []
        assert results[1].error == "boom"


class TestLifecycle:
    """Tests for initialization, status and close."""

    @pytest.mark.asyncio
    async def test_concurrent_initialize_runs_once(self):
        manager = DataSourceManager()
        source = FakeSource("A")
        manager.register_source(source)

        await asyncio.gather(manager.initialize(), manager.initialize())

        assert source.initialize_count == 1
        assert manager.state == ManagerState.READY

    @pytest.mark.asyncio
    async def test_failed_source_initialization_keeps_source_registered(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A", init_error=RuntimeError("no token")))

        await manager.initialize()

        assert manager.state == ManagerState.READY
        assert manager.get_source("A") is not None

    @pytest.mark.asyncio
    async def test_close_then_reinitialize(self):
        manager = DataSourceManager()
        source = FakeSource("A")
        manager.register_source(source)
        await manager.initialize()

        await manager.close()

        assert source.closed
        assert manager.state == ManagerState.CLOSED
        assert manager.get_all_sources() == []
        assert manager.get_default_source() is None

        manager.register_source(FakeSource("B"))
        await manager.initialize()
        assert manager.state == ManagerState.READY

    @pytest.mark.asyncio
    async def test_status_marks_failing_source_as_error(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A"))
        manager.register_source(FakeSource("B", fail=RuntimeError("unreachable")))

        status = await manager.get_status()

        assert status["default_source"] == "A"
        entries = {entry["id"]: entry for entry in status["sources"]}
        assert entries["A"]["status"] == "ok"
        assert entries["B"]["status"] == "error"
        assert entries["B"]["message"] == "unreachable"


class TestCardProxies:
    """Tests for default-source card lookups."""

    @pytest.mark.asyncio
    async def test_source_without_card_capability_raises(self):
        manager = DataSourceManager()
        manager.register_source(FakeSource("A"))

        with pytest.raises(SourceCapabilityError):
            await manager.search_cards("bolt")

    @pytest.mark.asyncio
    async def test_no_sources_raises(self):
        manager = DataSourceManager()

        with pytest.raises(NoSourceAvailableError):
            await manager.get_sets()

    @pytest.mark.asyncio
    async def test_card_calls_go_to_default_source(self):
        calls: list[str] = []
        manager = DataSourceManager()
        manager.register_source(FakeCardSource("A", {"1": {"id": "1", "name": "Bolt", "price": 1.0}}, calls=calls))
        manager.register_source(FakeCardSource("B", {"1": {"id": "1", "name": "Bolt", "price": 2.0}}, calls=calls))

        price = await manager.get_card_price("1")
        manager.set_default_source("B")
        result = await manager.search_cards("bolt")

        assert price.price == 1.0
        assert result.source == "B"
        assert calls == ["A.get_card_price", "B.search_cards"]

    @pytest.mark.asyncio
    async def test_explicit_source_overrides_default(self):
        manager = DataSourceManager()
        manager.register_source(FakeCardSource("A", {"1": {"id": "1", "name": "Bolt", "set_code": "LEA"}}))
        manager.register_source(FakeCardSource("B", {"2": {"id": "2", "name": "Opt", "set_code": "XLN"}}))

        sets = await manager.get_sets(source_id="B")

        assert [s.code for s in sets] == ["XLN"]

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self):
        manager = DataSourceManager()
        manager.register_source(FakeCardSource("A"))

        with pytest.raises(SourceNotFoundError):
            await manager.get_price_history("1", source_id="Z")
