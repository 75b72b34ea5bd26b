"""Database connection management for Review Portal.

Factory functions for the SQLAlchemy async engine and session factory.
The default backend is a SQLite file accessed through aiosqlite; pool
sizing only applies to server databases.

Example usage:
    >>> from reviewportal.config import PortalConfig
    >>> from reviewportal.database.connection import get_engine, get_session_factory
    >>>
    >>> config = PortalConfig()
    >>> engine = get_engine(config.database_url, config.database)
    >>> SessionFactory = get_session_factory(engine)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reviewportal.config import DatabaseConfig
from reviewportal.database.models.base import Base
from reviewportal.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(url: str, config: DatabaseConfig | None = None) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    For SQLite URLs the parent directory of the database file is created
    and foreign key enforcement is switched on for every connection.

    Args:
        url: SQLAlchemy async database URL.
        config: Optional database configuration for pool sizing and echo.

    Returns:
        Configured AsyncEngine instance.
    """
    config = config or DatabaseConfig()
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, echo=config.echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_async_engine(
        url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions are created with expire_on_commit=False so attributes stay
    readable after commit without triggering lazy loads.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create all tables and indexes that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", url=engine.url.render_as_string(hide_password=True))
