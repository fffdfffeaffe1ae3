"""
SQLAlchemy models.
"""
from collector_nexus.models.stored_record import StoredRecord

__all__ = ["StoredRecord"]
