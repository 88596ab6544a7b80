"""
Unit tests for Database engine and session handling.

Tests cover:
- Independent transactions per session on file databases
- Shared connection for in-memory databases
- Commit and rollback of the session context manager
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from market_broadcast.storage.database import Database
from market_broadcast.storage.tables import ExchangeRecord


async def count_exchanges(db: Database) -> int:
    async with db.session() as session:
        return await session.scalar(select(func.count()).select_from(ExchangeRecord))


@pytest.mark.asyncio
class TestDatabaseSessions:
    """Test suite for session isolation."""

    async def test_rollback_in_one_session_keeps_other_sessions_writes(self, tmp_path):
        """Test that a reader rolling back does not discard a writer's pending row."""
        db = Database(f"sqlite+aiosqlite:///{tmp_path / 'market.db'}")
        await db.init()

        try:
            async with db._sessions() as writer:
                writer.add(ExchangeRecord(slug="bybit", name="Bybit", is_active=True))
                await writer.flush()

                async with db._sessions() as reader:
                    await reader.execute(select(ExchangeRecord))
                    await reader.rollback()

                await writer.commit()

            assert await count_exchanges(db) == 1
        finally:
            await db.close()

    async def test_file_database_uses_pooled_connections(self, tmp_path):
        db = Database(f"sqlite+aiosqlite:///{tmp_path / 'data' / 'market.db'}")

        assert not isinstance(db.engine.pool, StaticPool)
        assert (tmp_path / "data").is_dir()
        await db.close()

    async def test_memory_database_survives_across_sessions(self):
        db = Database("sqlite+aiosqlite:///:memory:")
        await db.init()

        assert isinstance(db.engine.pool, StaticPool)

        async with db.session() as session:
            session.add(ExchangeRecord(slug="binance", name="Binance", is_active=True))

        assert await count_exchanges(db) == 1
        await db.close()

    async def test_session_rolls_back_on_error(self):
        db = Database("sqlite+aiosqlite:///:memory:")
        await db.init()

        with pytest.raises(RuntimeError):
            async with db.session() as session:
                session.add(ExchangeRecord(slug="kraken", name="Kraken", is_active=True))
                await session.flush()
                raise RuntimeError("abort")

        assert await count_exchanges(db) == 0
        await db.close()
