"""
Pytest configuration and fixtures for StorageEngine tests.

Provides:
- In-memory engines (plain and partitioned)
- A spy database that counts cursor closes
- A live ScyllaDB engine for integration tests (skipped without a cluster)
"""

import os

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from raincache_docstore import (
    DocumentCursor,
    InMemoryDatabase,
    StorageEngine,
)
from raincache_docstore.documents import InMemoryCollection

# Load environment variables for tests
load_dotenv()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require ScyllaDB)"
    )


# ============================================================================
# Spy collaborators
# ============================================================================

class CloseCountingCursor(DocumentCursor):
    """Delegating cursor that records how often it was closed."""

    def __init__(self, inner: DocumentCursor):
        self.inner = inner
        self.close_calls = 0

    async def has_next(self) -> bool:
        return await self.inner.has_next()

    async def next(self):
        return await self.inner.next()

    async def close(self) -> None:
        self.close_calls += 1
        await self.inner.close()


class SpyCollection(InMemoryCollection):
    def __init__(self, name: str):
        super().__init__(name)
        self.cursors: list[CloseCountingCursor] = []

    def find(self, query):
        cursor = CloseCountingCursor(super().find(query))
        self.cursors.append(cursor)
        return cursor


class SpyDatabase(InMemoryDatabase):
    def collection(self, name: str) -> SpyCollection:
        if name not in self._collections:
            self._collections[name] = SpyCollection(name)
        return self._collections[name]


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def database():
    return InMemoryDatabase()


@pytest.fixture
def spy_database():
    return SpyDatabase()


@pytest_asyncio.fixture
async def engine(database):
    """Initialized engine on a fresh in-memory database."""
    async with StorageEngine(database) as engine:
        yield engine


@pytest_asyncio.fixture
async def spy_engine(spy_database):
    async with StorageEngine(spy_database) as engine:
        yield engine


@pytest_asyncio.fixture
async def partitioned_engine(database):
    """Engine storing 'users' and 'sessions' keys in their own collections."""
    async with StorageEngine(database, partitions=["users", "sessions"]) as engine:
        yield engine


@pytest_asyncio.fixture
async def scylla_engine():
    """
    Engine on a live ScyllaDB cluster.

    Skipped unless RAINCACHE_SCYLLA_CONTACT_POINTS is set. Uses a throwaway
    keyspace dropped after the test.
    """
    if not os.getenv("RAINCACHE_SCYLLA_CONTACT_POINTS"):
        pytest.skip("RAINCACHE_SCYLLA_CONTACT_POINTS not set")

    from raincache_docstore import load_config_from_env

    config = load_config_from_env()
    config.scylla.keyspace = "test_raincache_docstore"
    config.scylla.fetch_size = 50

    async with StorageEngine.from_config(config) as engine:
        yield engine
        await engine.database.execute_statement(
            "ddl", f"DROP KEYSPACE IF EXISTS {config.scylla.keyspace}"
        )


# ============================================================================
# Test Data Generators
# ============================================================================

@pytest.fixture
def sample_users():
    """Sample user entries keyed by dotted path."""
    return {
        "users.alice": {"name": "Alice Smith", "role": "engineer", "age": 30},
        "users.bob": {"name": "Bob Johnson", "role": "manager", "age": 35},
        "users.charlie": {"name": "Charlie Brown", "role": "designer", "age": 28},
    }


@pytest_asyncio.fixture
async def users_engine(engine, sample_users):
    """Engine preloaded with sample_users."""
    for key, value in sample_users.items():
        await engine.upsert(key, value)
    return engine
