"""
Acquisition envelope for records moving through the processing pipeline.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

from collector_nexus.services.sources.base import CanonicalCard, CardSet, MarketListing, PriceData

RecordStatus = Literal["pending", "processing", "processed", "failed"]
RecordType = Literal["card", "set", "price", "listing"]

TERMINAL_STATUSES = ("processed", "failed")


@dataclass(frozen=True)
class RecordMetadata:
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: RecordStatus = "pending"
    processed_at: datetime | None = None
    error: str | None = None
    errors: tuple[str, ...] = ()
    retry_count: int = 0
    unmapped_fields: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched_at": self.fetched_at.isoformat(),
            "status": self.status,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "error": self.error,
            "errors": list(self.errors),
            "retry_count": self.retry_count,
            "unmapped_fields": list(self.unmapped_fields),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RecordMetadata":
        """Inverse of ``to_dict``. Missing keys take their defaults."""
        def parse(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            fetched_at=parse(payload.get("fetched_at")) or datetime.now(timezone.utc),
            status=payload.get("status", "pending"),
            processed_at=parse(payload.get("processed_at")),
            error=payload.get("error"),
            errors=tuple(payload.get("errors") or ()),
            retry_count=int(payload.get("retry_count") or 0),
            unmapped_fields=tuple(payload.get("unmapped_fields") or ()),
        )


@dataclass(frozen=True)
class DataRecord:
    """
    A fetched item plus its processing state.

    Records are immutable: each pipeline stage returns a new record. Once a
    record reaches ``processed`` or ``failed`` it is stored as is; retrying
    produces a fresh attempt via ``retry()``.

    Attributes:
        id: Provider-scoped identifier of the item.
        source: Id of the source instance that fetched it.
        provider: Provider family, selects the field mapping table.
        type: Kind of item carried in ``data``.
        data: Item payload (canonical or provider-shaped).
        metadata: Processing state.
    """
    id: str
    source: str
    provider: str
    type: RecordType
    data: dict[str, Any]
    metadata: RecordMetadata = field(default_factory=RecordMetadata)

    @classmethod
    def from_item(
        cls,
        item: Any,
        source_id: str,
        provider: str,
        record_type: RecordType = "card",
    ) -> "DataRecord":
        """
        Wrap an adapter result as a pending record.

        Canonical dataclasses carry their own type; provider-shaped dicts are
        tagged with ``record_type``.
        """
        if isinstance(item, CanonicalCard):
            return cls(id=item.id, source=source_id, provider=provider, type="card", data=item.to_dict())
        if isinstance(item, CardSet):
            return cls(id=item.code, source=source_id, provider=provider, type="set", data=item.to_dict())
        if isinstance(item, PriceData):
            return cls(id=item.card_id, source=source_id, provider=provider, type="price", data=item.to_dict())
        if isinstance(item, MarketListing):
            return cls(id=item.id, source=source_id, provider=provider, type="listing", data=item.to_dict())
        if isinstance(item, dict):
            record_id = str(item.get("id") or item.get("uuid") or item.get("itemId") or "")
            return cls(id=record_id, source=source_id, provider=provider, type=record_type, data=dict(item))
        raise TypeError(f"Cannot wrap {type(item).__name__} as a data record")

    @property
    def key(self) -> str:
        """Storage key: unique across sources and record types."""
        return f"{self.source}:{self.type}:{self.id}"

    @property
    def status(self) -> RecordStatus:
        return self.metadata.status

    @property
    def is_terminal(self) -> bool:
        return self.metadata.status in TERMINAL_STATUSES

    def with_status(self, status: RecordStatus, **changes: Any) -> "DataRecord":
        return replace(self, metadata=replace(self.metadata, status=status, **changes))

    @classmethod
    def from_stored(cls, item: dict[str, Any]) -> "DataRecord":
        """Rebuild a record from a ``RecordStorage`` item."""
        return cls(
            id=item["id"],
            source=item["source"],
            provider=item["provider"],
            type=item["type"],
            data=dict(item.get("data") or {}),
            metadata=RecordMetadata.from_dict({**(item.get("metadata") or {}), "status": item["status"]}),
        )

    def retry(self, data: dict[str, Any] | None = None) -> "DataRecord":
        """
        New pending attempt of a failed record.

        Args:
            data: Payload for the new attempt, e.g. a fresh copy from the
                source. Defaults to the payload of this attempt.
        """
        return replace(
            self,
            data=self.data if data is None else data,
            metadata=RecordMetadata(retry_count=self.metadata.retry_count + 1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "source": self.source,
            "provider": self.provider,
            "type": self.type,
            "data": self.data,
            "metadata": self.metadata.to_dict(),
        }
