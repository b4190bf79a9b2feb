"""
Database engine, sessions and schema setup.
"""
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
import logging

from models import Base

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=30000",
)


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    """Run on every new SQLite connection; foreign keys are off by default."""
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_engine_for(database_url: str) -> AsyncEngine:
    """
    Create the async engine for the given URL.

    SQLite connections get WAL and foreign keys; other backends use the
    driver defaults.
    """
    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False, pool_pre_ping=True)

    engine = create_async_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30.0},
        pool_pre_ping=True,
    )
    event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    # Use cases flush explicitly before dependent queries
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_db(engine: AsyncEngine):
    """Create any missing tables. Safe to run on every startup."""
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if engine.dialect.name == "sqlite":
            await conn.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
    logger.info(f"✅ Database tables ready on {engine.dialect.name}")


async def close_db(engine: AsyncEngine):
    await engine.dispose()
    logger.info("Database connection closed")


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with request.app.state.session_maker() as session:
        yield session
