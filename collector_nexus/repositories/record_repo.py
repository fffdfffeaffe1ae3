"""
Record storage backed by the ``stored_records`` table.

Exposes the storage verbs used by the sync job runner and the API:
``save_record``, ``find_item_by_id``, ``find_items``, ``update_items`` and
``delete_items``. Filters are plain mappings of column name to a value (or a
list of values) and are combined with AND.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collector_nexus.models.stored_record import StoredRecord
from collector_nexus.services.processing.records import DataRecord

logger = structlog.get_logger()

# Public filter names -> model columns
FILTER_COLUMNS = {
    "key": StoredRecord.key,
    "id": StoredRecord.record_id,
    "source": StoredRecord.source,
    "provider": StoredRecord.provider,
    "type": StoredRecord.type,
    "status": StoredRecord.status,
}
UPDATABLE_FIELDS = {"status": "status", "error": "error", "data": "data", "metadata": "meta"}
ORDER_COLUMNS = {
    "created_at": StoredRecord.created_at,
    "updated_at": StoredRecord.updated_at,
    "key": StoredRecord.key,
}


@dataclass
class StorageQuery:
    """Filter plus paging for ``find_items``."""
    filter: dict[str, Any] = field(default_factory=dict)
    limit: int = 100
    offset: int = 0
    order_by: str = "updated_at"
    descending: bool = True


def _conditions(filter: dict[str, Any]) -> list[Any]:
    conditions = []
    for name, value in filter.items():
        column = FILTER_COLUMNS.get(name)
        if column is None:
            raise ValueError(f"Unsupported filter field: {name}")
        if isinstance(value, (list, tuple, set)):
            conditions.append(column.in_(list(value)))
        else:
            conditions.append(column == value)
    return conditions


def _to_item(row: StoredRecord) -> dict[str, Any]:
    return {
        "key": row.key,
        "id": row.record_id,
        "source": row.source,
        "provider": row.provider,
        "type": row.type,
        "status": row.status,
        "error": row.error,
        "data": row.data,
        "metadata": row.meta,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class RecordStorage:
    """
    Storage collaborator for processed records.

    Each call opens its own short transaction, so the storage can be shared
    by the API and by sync jobs running in the same event loop.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def save_record(self, record: DataRecord) -> dict[str, Any]:
        """
        Insert or update a record by its key. Always refreshes ``updated_at``.

        Returns:
            The stored item.
        """
        now = datetime.now(timezone.utc)
        async with self._session_maker() as db:
            try:
                result = await db.execute(
                    select(StoredRecord).where(StoredRecord.key == record.key)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = StoredRecord(key=record.key, created_at=now)
                    db.add(row)
                row.record_id = record.id
                row.source = record.source
                row.provider = record.provider
                row.type = record.type
                row.status = record.status
                row.error = record.metadata.error
                row.data = record.data
                row.meta = record.metadata.to_dict()
                row.updated_at = now
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error("Failed to save record", key=record.key, error=str(e))
                raise
            logger.debug("Saved record", key=record.key, status=record.status)
            return _to_item(row)

    async def find_item_by_id(self, item_id: str) -> dict[str, Any] | None:
        """Find a stored item by storage key or record id. Newest wins."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(StoredRecord)
                .where(or_(StoredRecord.key == item_id, StoredRecord.record_id == item_id))
                .order_by(StoredRecord.updated_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_item(row) if row else None

    async def find_items(self, query: StorageQuery) -> list[dict[str, Any]]:
        order_column = ORDER_COLUMNS.get(query.order_by)
        if order_column is None:
            raise ValueError(f"Unsupported order field: {query.order_by}")
        stmt = (
            select(StoredRecord)
            .where(*_conditions(query.filter))
            .order_by(order_column.desc() if query.descending else order_column)
            .offset(query.offset)
            .limit(query.limit)
        )
        async with self._session_maker() as db:
            result = await db.execute(stmt)
            return [_to_item(row) for row in result.scalars().all()]

    async def update_items(self, filter: dict[str, Any], update_fields: dict[str, Any]) -> int:
        """
        Update every item matching ``filter``.

        Args:
            filter: Column filter, see ``FILTER_COLUMNS``.
            update_fields: New values for ``status``, ``error``, ``data`` or
                ``metadata``.

        Returns:
            Number of updated items.
        """
        values = {}
        for name, value in update_fields.items():
            column = UPDATABLE_FIELDS.get(name)
            if column is None:
                raise ValueError(f"Field cannot be updated: {name}")
            values[column] = value
        values["updated_at"] = datetime.now(timezone.utc)

        async with self._session_maker() as db:
            try:
                result = await db.execute(
                    update(StoredRecord).where(*_conditions(filter)).values(**values)
                )
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error("Failed to update records", filter=filter, error=str(e))
                raise
        logger.info("Updated records", filter=filter, count=result.rowcount)
        return result.rowcount

    async def delete_items(self, filter: dict[str, Any]) -> int:
        """Delete every item matching ``filter``. Returns the number removed."""
        async with self._session_maker() as db:
            try:
                result = await db.execute(delete(StoredRecord).where(*_conditions(filter)))
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error("Failed to delete records", filter=filter, error=str(e))
                raise
        logger.info("Deleted records", filter=filter, count=result.rowcount)
        return result.rowcount
