"""
Read-only query surface over the trading pairs table.

The broadcast pipeline queries active pairs at the start of every "all pairs"
cycle and never caches them, so activating or deactivating a pair takes effect
on the very next run.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Tuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import joinedload

from market_broadcast.core.models import TradingPair
from market_broadcast.storage.database import Database
from market_broadcast.storage.tables import ExchangeRecord, TradingPairRecord


class PairNotFoundError(LookupError):
    """Raised when a trading pair id does not exist."""

    def __init__(self, pair_id: int):
        self.pair_id = pair_id
        super().__init__(f"Trading pair {pair_id} not found")


class PairRegistry(ABC):
    """Source of trading pairs for broadcasts and backfills."""

    @abstractmethod
    async def list_active_pairs(self) -> List[TradingPair]:
        """Return every active pair in the registry's natural order."""

    @abstractmethod
    async def get_pair(self, pair_id: int) -> TradingPair:
        """
        Return a pair by id, active or not.

        Raises:
            PairNotFoundError: If the id is unknown
        """


def _to_view(record: TradingPairRecord) -> TradingPair:
    return TradingPair(
        id=record.id,
        exchange_id=record.exchange.slug,
        symbol=record.symbol,
        is_active=record.is_active,
    )


class SqlPairRegistry(PairRegistry):
    """
    Pair registry backed by the relational store.

    Examples:
        >>> registry = SqlPairRegistry(database)
        >>> pairs = await registry.list_active_pairs()
        >>> [(p.exchange_id, p.symbol) for p in pairs]
        [('binance', 'BTC/USDT'), ('binance', 'ETH/USDT')]
    """

    def __init__(self, database: Database):
        self.database = database

    async def list_active_pairs(self) -> List[TradingPair]:
        async with self.database.session() as session:
            result = await session.execute(
                select(TradingPairRecord)
                .join(TradingPairRecord.exchange)
                .options(joinedload(TradingPairRecord.exchange))
                .where(TradingPairRecord.is_active.is_(True))
                .where(ExchangeRecord.is_active.is_(True))
                .order_by(TradingPairRecord.id)
            )
            return [_to_view(record) for record in result.scalars().all()]

    async def get_pair(self, pair_id: int) -> TradingPair:
        async with self.database.session() as session:
            record = await session.get(
                TradingPairRecord,
                pair_id,
                options=[joinedload(TradingPairRecord.exchange)],
            )
            if record is None:
                raise PairNotFoundError(pair_id)
            return _to_view(record)

    async def set_active(self, pair_id: int, is_active: bool) -> None:
        """Activate or deactivate a pair."""
        async with self.database.session() as session:
            record = await session.get(TradingPairRecord, pair_id)
            if record is None:
                raise PairNotFoundError(pair_id)
            record.is_active = is_active

    async def seed_pairs(self, pairs: Iterable[Tuple[str, str, bool]]) -> int:
        """
        Insert exchanges and pairs that do not exist yet.

        Existing pairs only get their is_active flag updated, so seeding is
        safe to run repeatedly.

        Args:
            pairs: (exchange slug, symbol, is_active) tuples

        Returns:
            int: Number of newly created pairs
        """
        created = 0
        async with self.database.session() as session:
            exchanges = {
                record.slug: record
                for record in (await session.execute(select(ExchangeRecord))).scalars()
            }

            for slug, symbol, is_active in pairs:
                exchange = exchanges.get(slug)
                if exchange is None:
                    exchange = ExchangeRecord(slug=slug, name=slug.capitalize(), is_active=True)
                    session.add(exchange)
                    await session.flush()
                    exchanges[slug] = exchange

                existing = (
                    await session.execute(
                        select(TradingPairRecord)
                        .where(TradingPairRecord.exchange_id == exchange.id)
                        .where(TradingPairRecord.symbol == symbol)
                    )
                ).scalar_one_or_none()

                if existing is not None:
                    existing.is_active = is_active
                    continue

                base, _, quote = symbol.partition("/")
                session.add(
                    TradingPairRecord(
                        exchange_id=exchange.id,
                        symbol=symbol,
                        base_currency=base or None,
                        quote_currency=quote or None,
                        is_active=is_active,
                    )
                )
                created += 1

        logger.info(f"Seeded {created} new trading pair(s)")
        return created
