"""Async SQLAlchemy engine for the indexer store.

Provides:
- IndexerBase: Declarative base for all projection tables
- create_engine_for_url(): Engine factory with dialect-specific setup
- init_db(): Idempotent schema creation
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

# ── Engine ──────────────────────────────────────────────────────────────────


def create_engine_for_url(url: str, *, pool_size: int = 20) -> AsyncEngine:
    """Create an async engine for the given URL.

    PostgreSQL gets a sized connection pool. SQLite (local runs and tests)
    gets foreign-key enforcement switched on for every new connection so
    that ON DELETE CASCADE behaves the same as on PostgreSQL.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False)

        @event.listens_for(engine.sync_engine, "connect")
        def enable_foreign_keys(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=10,
        pool_pre_ping=True,
        echo=False,
    )


# ── Declarative Base ────────────────────────────────────────────────────────

indexer_metadata = MetaData()


class IndexerBase(DeclarativeBase):
    """Base class for projection and bookkeeping tables."""

    metadata = indexer_metadata


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db(engine: AsyncEngine) -> None:
    """Create all indexer tables if they don't exist."""
    # Models register themselves on the metadata at import time
    from src.indexer.store import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(IndexerBase.metadata.create_all)
