"""Shared fixtures: a throwaway SQLite store, the commit sink and a fake ledger.

Each test gets its own database file under tmp_path, created with init_db()
so the schema matches the models (foreign keys enforced).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from src.indexer.core.database import create_engine_for_url, init_db
from src.indexer.processing.classifier import ObjectRegistry
from src.indexer.store.sink import CommitSink
from tests.factories import PACKAGE_ID, FakeLedgerClient


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine with the indexer schema created."""
    db_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture
async def sink(engine: AsyncEngine) -> CommitSink:
    return CommitSink(engine, indexer_name="test")


@pytest.fixture
def ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def registry() -> ObjectRegistry:
    return ObjectRegistry.for_package(PACKAGE_ID)
