"""
Database configuration and session management.
"""
from collector_nexus.db.base import Base
from collector_nexus.db.session import async_session_maker, engine, get_db

__all__ = ["Base", "async_session_maker", "engine", "get_db"]
