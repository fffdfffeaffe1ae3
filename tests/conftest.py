"""
Pytest configuration and fixtures.

Provides fixtures for:
- In-memory SQLite engine and session maker with the schema created
- Source configurations for adapter tests
- httpx clients backed by MockTransport handlers
"""
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from collector_nexus.db.base import Base
from collector_nexus.models import StoredRecord  # noqa: F401
from collector_nexus.services.sources.base import RateLimit, SourceConfig

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(test_engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    yield async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_config() -> Callable[..., SourceConfig]:
    """Factory for adapter configs with a generous rate limit."""

    def _make(source_id: str, base_url: str = "https://provider.test", **kwargs) -> SourceConfig:
        kwargs.setdefault("rate_limit", RateLimit(requests=1000, per_seconds=1.0))
        return SourceConfig(id=source_id, name=source_id.title(), base_url=base_url, **kwargs)

    return _make


@pytest.fixture
def mock_client() -> Callable[..., httpx.AsyncClient]:
    """Factory for an AsyncClient whose requests are answered by ``handler``."""

    def _make(handler, base_url: str = "https://provider.test") -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)

    return _make
