"""
Database connection and session management.

Uses SQLAlchemy's asyncio extension; SQLite through aiosqlite by default.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from pathlib import Path

from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from market_broadcast.storage.tables import Base


class Database:
    """
    Async engine plus session factory for one database URL.

    Examples:
        >>> db = Database("sqlite+aiosqlite:///:memory:")
        >>> await db.init()
        >>> async with db.session() as session:
        ...     ...
        >>> await db.close()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            database_path = make_url(url).database
            if database_path and database_path != ":memory:":
                Path(database_path).parent.mkdir(parents=True, exist_ok=True)
            else:
                # In-memory databases live only as long as their single connection;
                # file databases keep the default pool so each session has its own
                # connection and transaction.
                engine_kwargs["connect_args"] = {"check_same_thread": False}
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_async_engine(url, **engine_kwargs)
        self._sessions = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def init(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Database initialized at: {self.engine.url.render_as_string(hide_password=True)}")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that is committed on success and rolled back on error."""
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")
