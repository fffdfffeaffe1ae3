"""
Repository layer for data access.
"""
from collector_nexus.repositories.record_repo import RecordStorage, StorageQuery

__all__ = ["RecordStorage", "StorageQuery"]
