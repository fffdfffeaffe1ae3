"""
Data source manager.

Owns the registered sources, the default source, and the routing rules for
requests that name a source or fan out to all of them:

- ``fetch`` and ``fetch_batch`` without a source id run every source in
  parallel; a failing source becomes an entry with ``error`` set.
- ``fetch_by_id`` without a source id probes sources one at a time in
  registration order and returns the first hit.

The manager is built explicitly by the composition root (see
``registry.build_manager``) and passed to its consumers.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from collector_nexus.core.exceptions import (
    NoSourceAvailableError,
    SourceCapabilityError,
    SourceNotFoundError,
)
from collector_nexus.services.sources.base import (
    CardDataSource,
    CardSet,
    DataSource,
    FetchOptions,
    FetchResult,
    PriceData,
)

logger = structlog.get_logger()


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class SourceHit:
    """Result of a lookup: the record and the source that returned it."""
    source: str
    data: Any


@dataclass
class BatchResult:
    """Per-source entry of a batch lookup."""
    source: str
    data: list[Any] = field(default_factory=list)
    error: str | None = None


def _reraise_base(outcome: Any) -> None:
    # gather(return_exceptions=True) also captures cancellation
    if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
        raise outcome


class DataSourceManager:
    """
    Registry and router for data sources.

    Sources are kept in registration order, which is also the order used by
    the sequential ``fetch_by_id`` probe.
    """

    def __init__(self):
        self._sources: dict[str, DataSource] = {}
        self._default_source_id: str | None = None
        self._state = ManagerState.UNINITIALIZED
        self._init_task: asyncio.Task | None = None

    @property
    def state(self) -> ManagerState:
        return self._state

    async def initialize(self) -> None:
        """
        Initialize every registered source.

        Concurrent callers share the same in-flight attempt. A source that
        fails to initialize is logged and stays registered.
        """
        if self._state == ManagerState.READY:
            return
        if self._init_task is None:
            self._state = ManagerState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._initialize_sources())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
                self._state = ManagerState.UNINITIALIZED
            raise

    async def _initialize_sources(self) -> None:
        sources = list(self._sources.values())
        outcomes = await asyncio.gather(*(s.initialize() for s in sources), return_exceptions=True)
        for source, outcome in zip(sources, outcomes):
            _reraise_base(outcome)
            if isinstance(outcome, Exception):
                logger.error("Failed to initialize data source", source=source.id, error=str(outcome))
        self._state = ManagerState.READY
        logger.info("Data source manager initialized", sources=len(sources), default=self._default_source_id)

    async def _ensure_initialized(self) -> None:
        if self._state != ManagerState.READY:
            await self.initialize()

    def register_source(self, source: DataSource, set_as_default: bool = False) -> None:
        """
        Add a source. The first registered source becomes the default.

        Registering an id that already exists replaces the previous adapter.
        """
        if source.id in self._sources:
            logger.warning("Data source already registered, overwriting", source=source.id)
        self._sources[source.id] = source
        if set_as_default or self._default_source_id is None:
            self._default_source_id = source.id
        logger.info("Registered data source", source=source.id, name=source.name)

    async def remove_source(self, source_id: str) -> bool:
        """
        Close and remove a source.

        Returns:
            False if no source with that id was registered.
        """
        source = self._sources.pop(source_id, None)
        if source is None:
            return False
        try:
            await source.close()
        except Exception as e:
            logger.error("Error closing data source", source=source_id, error=str(e))
        if self._default_source_id == source_id:
            self._default_source_id = next(iter(self._sources), None)
        logger.info("Removed data source", source=source_id, default=self._default_source_id)
        return True

    def set_default_source(self, source_id: str) -> None:
        self._require_source(source_id)
        self._default_source_id = source_id

    def get_default_source(self) -> DataSource | None:
        if self._default_source_id is None:
            return None
        return self._sources.get(self._default_source_id)

    def get_source(self, source_id: str) -> DataSource | None:
        return self._sources.get(source_id)

    def get_all_sources(self) -> list[DataSource]:
        return list(self._sources.values())

    def _require_source(self, source_id: str) -> DataSource:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def _require_any(self) -> list[DataSource]:
        if not self._sources:
            raise NoSourceAvailableError()
        return list(self._sources.values())

    async def fetch(self, source_id: str | None = None, options: FetchOptions | None = None) -> list[FetchResult]:
        """
        Fetch one page from one source, or from every source in parallel.

        Args:
            source_id: Source to query. None fans out to all sources.
            options: Query options.

        Returns:
            One FetchResult per queried source. Failed sources yield an
            empty result with ``error`` set.
        """
        options = options or FetchOptions()
        await self._ensure_initialized()
        if source_id is not None:
            return [await self._require_source(source_id).fetch(options)]

        sources = self._require_any()
        outcomes = await asyncio.gather(*(s.fetch(options) for s in sources), return_exceptions=True)
        results: list[FetchResult] = []
        for source, outcome in zip(sources, outcomes):
            _reraise_base(outcome)
            if isinstance(outcome, Exception):
                logger.error("Fetch failed for data source", source=source.id, error=str(outcome))
                results.append(FetchResult.degraded(source.id, options, outcome))
            else:
                results.append(outcome)
        return results

    async def fetch_by_id(self, record_id: str, source_id: str | None = None) -> SourceHit | None:
        """
        Look up one record.

        With ``source_id`` only that source is asked. Otherwise sources are
        probed one after another in registration order; the first non-None
        result wins and later sources are not queried. Sources that raise
        are logged and skipped.
        """
        await self._ensure_initialized()
        if source_id is not None:
            data = await self._require_source(source_id).fetch_by_id(record_id)
            return SourceHit(source=source_id, data=data) if data is not None else None

        for source in self._require_any():
            try:
                data = await source.fetch_by_id(record_id)
            except Exception as e:
                logger.warning("Lookup failed, trying next source", source=source.id, record_id=record_id, error=str(e))
                continue
            if data is not None:
                return SourceHit(source=source.id, data=data)
        return None

    async def fetch_batch(self, ids: list[str], source_id: str | None = None) -> list[BatchResult]:
        """Batch lookup against one source, or every source in parallel."""
        await self._ensure_initialized()
        if source_id is not None:
            data = await self._require_source(source_id).fetch_batch(ids)
            return [BatchResult(source=source_id, data=data)]

        sources = self._require_any()
        outcomes = await asyncio.gather(*(s.fetch_batch(ids) for s in sources), return_exceptions=True)
        results: list[BatchResult] = []
        for source, outcome in zip(sources, outcomes):
            _reraise_base(outcome)
            if isinstance(outcome, Exception):
                logger.error("Batch fetch failed for data source", source=source.id, error=str(outcome))
                results.append(BatchResult(source=source.id, error=str(outcome)))
            else:
                results.append(BatchResult(source=source.id, data=outcome))
        return results

    async def get_status(self) -> dict[str, Any]:
        """Status of every source, queried in parallel. Never raises per source."""
        sources = list(self._sources.values())
        outcomes = await asyncio.gather(*(s.get_status() for s in sources), return_exceptions=True)
        entries = []
        for source, outcome in zip(sources, outcomes):
            _reraise_base(outcome)
            if isinstance(outcome, Exception):
                logger.warning("Status check failed", source=source.id, error=str(outcome))
                entries.append({"id": source.id, "status": "error", "message": str(outcome)})
            else:
                entries.append({"id": source.id, **outcome.to_dict()})
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "state": self._state.value,
            "default_source": self._default_source_id,
            "sources": entries,
        }

    async def close(self) -> None:
        """Close all sources concurrently, then clear the registry."""
        sources = list(self._sources.values())
        outcomes = await asyncio.gather(*(s.close() for s in sources), return_exceptions=True)
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Error closing data source", source=source.id, error=str(outcome))
        self._sources.clear()
        self._default_source_id = None
        self._init_task = None
        self._state = ManagerState.CLOSED
        logger.info("Data source manager closed", sources=len(sources))

    def _card_source(self, source_id: str | None) -> CardDataSource:
        source = self._require_source(source_id) if source_id else self.get_default_source()
        if source is None:
            raise NoSourceAvailableError()
        if not isinstance(source, CardDataSource):
            raise SourceCapabilityError(source.id, "card lookups")
        return source

    async def search_cards(
        self,
        query: str,
        options: FetchOptions | None = None,
        source_id: str | None = None,
    ) -> FetchResult:
        await self._ensure_initialized()
        return await self._card_source(source_id).search_cards(query, options)

    async def get_card_by_id(self, card_id: str, source_id: str | None = None) -> Any | None:
        await self._ensure_initialized()
        return await self._card_source(source_id).fetch_by_id(card_id)

    async def get_card_price(self, card_id: str, source_id: str | None = None) -> PriceData | None:
        await self._ensure_initialized()
        return await self._card_source(source_id).get_card_price(card_id)

    async def get_price_history(self, card_id: str, days: int = 30, source_id: str | None = None) -> list[PriceData]:
        await self._ensure_initialized()
        return await self._card_source(source_id).get_price_history(card_id, days)

    async def get_sets(self, source_id: str | None = None) -> list[CardSet]:
        await self._ensure_initialized()
        return await self._card_source(source_id).get_sets()
