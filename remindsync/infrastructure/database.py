"""
Database setup and record-store sessions.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from remindsync.config.settings import get_settings
from remindsync.domain.reminder import Base
from remindsync.domain.escalation import EscalationPolicy  # noqa: F401 - needed for table creation
from remindsync.domain.feed_source import RemoteFeedSource  # noqa: F401 - needed for table creation
from remindsync.infrastructure.store import RecordStore

logger = logging.getLogger(__name__)
settings = get_settings()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async SQLite engine.

    StaticPool keeps a single connection so in-memory databases survive
    across sessions.
    """
    async_engine = create_async_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(async_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return async_engine


engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_database() -> None:
    """Create tables and seed the preset escalation policies."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with StoreSession() as store:
        await store.seed_presets()

    logger.info("Database initialized")


async def get_store() -> AsyncIterator[RecordStore]:
    """FastAPI dependency yielding a record store bound to a fresh session."""
    async with async_session_factory() as session:
        yield RecordStore(session)


class StoreSession:
    """Context manager yielding a record store; rolls back on error."""

    async def __aenter__(self) -> RecordStore:
        self.session = async_session_factory()
        return RecordStore(self.session)

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            await self.session.rollback()
        await self.session.close()
