"""Async database engine and session management.

PostgreSQL (asyncpg) in deployment. SQLite (aiosqlite) is accepted for
local runs and tests: it gets no connection pool and has foreign keys
switched on, since grants, versions and comments rely on cascades.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from .config import settings

logger = logging.getLogger(__name__)


def is_sqlite(url: str) -> bool:
    """Whether a database URL points at SQLite."""
    return make_url(url).get_backend_name() == "sqlite"


def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine with settings suited to the backend.

    Args:
        url: SQLAlchemy database URL
        **overrides: Extra create_async_engine keyword arguments

    Returns:
        The engine
    """
    if is_sqlite(url):
        options: dict[str, Any] = {"poolclass": NullPool}
    else:
        options = {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": 15,  # Fail fast, clients retry on 503
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
    options.update(overrides)
    new_engine = create_async_engine(url, echo=settings.sql_echo, **options)

    if is_sqlite(url):
        @event.listens_for(new_engine.sync_engine, "connect")
        def enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.database_url)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for ORM models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Async dependency injection for FastAPI.

    Auto-commits on success, rollbacks on exception. Writes that change a
    content item's payload go through the sync coordinator, which manages
    its own sessions.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def warmup_connection_pool(pool_size: Optional[int] = None) -> None:
    """
    Pre-warm the database connection pool at startup.

    Content rooms load their state on the first socket, so a cold pool
    shows up as slow joins after a deploy. No-op for SQLite.

    Args:
        pool_size: Number of connections to warm up. Defaults to settings.db_pool_size.
    """
    if is_sqlite(settings.database_url):
        return

    target_size = pool_size or settings.db_pool_size
    logger.info(f"Warming up connection pool with {target_size} connections...")

    async def create_connection(i: int):
        """Create a single connection to warm the pool."""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.debug(f"  Connection {i + 1}/{target_size} warmed")
        except Exception as e:
            logger.warning(f"  Connection {i + 1} warmup failed: {e}")

    # Batches of 10 so startup does not flood the database
    batch_size = 10
    for batch_start in range(0, target_size, batch_size):
        batch_end = min(batch_start + batch_size, target_size)
        tasks = [create_connection(i) for i in range(batch_start, batch_end)]
        await asyncio.gather(*tasks)

    logger.info(f"Connection pool warmup complete ({target_size} connections)")
