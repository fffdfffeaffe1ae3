"""Stored record model: one row per processed (or failed) data record."""
from typing import Any, Optional

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from collector_nexus.db.base import Base, TimestampMixin


class StoredRecord(TimestampMixin, Base):
    """
    A data record as written by the sync job runner.

    ``key`` is ``source:type:record_id`` and is unique, so saving the same
    record again updates the existing row.
    """

    __tablename__ = "stored_records"

    key: Mapped[str] = mapped_column(String(300), unique=True, index=True, nullable=False)
    record_id: Mapped[str] = mapped_column(String(200), index=True, nullable=False)
    source: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False, default="pending")
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    meta: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        Index("ix_stored_records_source_type", "source", "type"),
    )

    def __repr__(self) -> str:
        return f"<StoredRecord key={self.key} status={self.status}>"
