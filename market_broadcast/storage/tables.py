"""
SQLAlchemy models for exchanges, trading pairs and historical candles.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ExchangeRecord(Base):
    """An exchange the system reads market data from."""
    __tablename__ = "exchanges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    pairs = relationship("TradingPairRecord", back_populates="exchange")


class TradingPairRecord(Base):
    """A symbol listed on one exchange."""
    __tablename__ = "trading_pairs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange_id = Column(
        Integer, ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False
    )
    symbol = Column(String(50), nullable=False)
    base_currency = Column(String(20), nullable=True)
    quote_currency = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    exchange = relationship("ExchangeRecord", back_populates="pairs")

    __table_args__ = (
        UniqueConstraint("exchange_id", "symbol", name="uq_trading_pairs_exchange_symbol"),
    )


class HistoricalCandle(Base):
    """One stored OHLCV bar. Timestamps are naive UTC."""
    __tablename__ = "historical_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trading_pair_id = Column(
        Integer, ForeignKey("trading_pairs.id", ondelete="CASCADE"), nullable=False
    )
    timeframe = Column(String(5), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "trading_pair_id", "timeframe", "timestamp",
            name="uq_historical_data_pair_timeframe_ts",
        ),
        Index("ix_historical_data_pair_timeframe_ts", "trading_pair_id", "timeframe", "timestamp"),
    )
