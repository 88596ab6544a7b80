"""
Market data and pipeline models with validation.

This module defines the entities that flow through the broadcast pipeline:
- BroadcastTarget: One (exchange, symbol) pair or the "all active pairs" scope
- TradingPair: Read-only view of an active pair from the pair registry
- Ticker / OrderBook / Candle: Normalized exchange adapter payloads
- BroadcastResult / CycleOutcome: Per-operation and per-cycle outcomes
- BackfillRequest / HistoricalFetchResult: Historical backfill input and output
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


ALL_SENTINEL = "all"


class Timeframe(str, Enum):
    """Candle timeframes supported by the backfill and kline broadcasts."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    def __str__(self) -> str:
        return self.value


class BroadcastDelay(Enum):
    """
    Delay class chosen for the next broadcast run.

    SHORT follows a cycle that completed (with or without per-pair failures),
    LONG follows a cycle that raised. Concrete seconds come from configuration.
    """

    SHORT = "short"
    LONG = "long"


class BroadcastTarget(BaseModel):
    """
    Immutable scope of one broadcast cycle.

    Either field missing, or equal to the "all" sentinel, means the cycle
    covers every active trading pair.

    Examples:
        >>> BroadcastTarget(exchange_id="binance", symbol="BTC/USDT").is_all
        False
        >>> BroadcastTarget().is_all
        True
        >>> BroadcastTarget(exchange_id="all", symbol="BTC/USDT").is_all
        True
    """

    model_config = {"frozen": True}

    exchange_id: Optional[str] = Field(
        default=None,
        description="Exchange slug, or None/'all' for every active pair"
    )
    symbol: Optional[str] = Field(
        default=None,
        description="Trading pair symbol, or None/'all' for every active pair"
    )

    @property
    def is_all(self) -> bool:
        """True when the cycle should broadcast every active pair."""
        return not (
            self.exchange_id
            and self.exchange_id != ALL_SENTINEL
            and self.symbol
            and self.symbol != ALL_SENTINEL
        )

    def __str__(self) -> str:
        if self.is_all:
            return ALL_SENTINEL
        return f"{self.exchange_id}:{self.symbol}"


class TradingPair(BaseModel):
    """
    Read-only view of a trading pair owned by the persistence layer.

    Attributes:
        id: Pair identifier in the relational store
        exchange_id: Owning exchange slug (e.g. 'binance')
        symbol: Unified symbol (e.g. 'BTC/USDT')
        is_active: Whether the pair takes part in broadcasts
    """

    model_config = {"frozen": True}

    id: int = Field(ge=1, description="Pair identifier")
    exchange_id: str = Field(min_length=1, description="Owning exchange slug")
    symbol: str = Field(min_length=1, description="Trading pair symbol")
    is_active: bool = Field(default=True, description="Active in broadcasts")


class Ticker(BaseModel):
    """Snapshot of current price and 24h volume for a trading pair."""

    symbol: str
    timestamp: Optional[int] = Field(default=None, description="Exchange time in ms")
    last: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    base_volume: Optional[float] = None
    quote_volume: Optional[float] = None
    change: Optional[float] = None
    percentage: Optional[float] = None


class OrderBook(BaseModel):
    """
    Top-of-book snapshot.

    Bids are sorted best (highest) first and asks best (lowest) first, each
    level as [price, amount].
    """

    symbol: str
    timestamp: Optional[int] = None
    bids: List[List[float]] = Field(default_factory=list)
    asks: List[List[float]] = Field(default_factory=list)
    nonce: Optional[int] = None

    @field_validator("bids", "asks")
    @classmethod
    def validate_levels(cls, levels: List[List[float]]) -> List[List[float]]:
        """Keep only price and amount from each level."""
        for level in levels:
            if len(level) < 2:
                raise ValueError(f"Order book level needs [price, amount], got {level!r}")
        return [[float(level[0]), float(level[1])] for level in levels]


class Candle(BaseModel):
    """One OHLCV bar. The timestamp is the bar open time in milliseconds."""

    model_config = {"frozen": True}

    timestamp: int = Field(ge=0)
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(ge=0)

    @property
    def opened_at(self) -> datetime:
        """Bar open time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    @classmethod
    def from_row(cls, row: List) -> "Candle":
        """Build a candle from a [timestamp, open, high, low, close, volume] row."""
        return cls(
            timestamp=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )


class BroadcastResult(BaseModel):
    """
    Outcome of a single fetch-and-publish operation.

    Truthiness mirrors ``ok`` so callers can treat the result as the plain
    success flag.

    Examples:
        >>> bool(BroadcastResult(kind="price", exchange_id="binance", symbol="BTC/USDT", ok=True))
        True
    """

    model_config = {"frozen": True}

    kind: Literal["price", "order_book", "klines"]
    exchange_id: str
    symbol: str
    ok: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


class CycleOutcome(BaseModel):
    """
    Counts derived from one broadcast cycle. Never persisted.

    Attributes:
        succeeded_count: Fetch-and-publish operations that succeeded
        attempted_count: Fetch-and-publish operations attempted
        had_any_failure: Whether any operation or pair failed
        processed_pairs: Pairs processed in an "all active pairs" cycle
    """

    succeeded_count: int = Field(default=0, ge=0)
    attempted_count: int = Field(default=0, ge=0)
    had_any_failure: bool = False
    processed_pairs: int = Field(default=0, ge=0)

    def record(self, result: BroadcastResult) -> None:
        """Fold one operation result into the counts."""
        self.attempted_count += 1
        if result.ok:
            self.succeeded_count += 1
        else:
            self.had_any_failure = True


class BackfillRequest(BaseModel):
    """Validated input of one historical backfill run."""

    model_config = {"frozen": True}

    pair_id: int = Field(ge=1, description="Existing trading pair identifier")
    timeframe: Timeframe = Field(description="Candle timeframe")
    limit: int = Field(gt=0, description="Maximum number of candles to fetch")


class HistoricalFetchResult(BaseModel):
    """Summary returned by a fetch-and-persist call."""

    pair_id: int
    symbol: str
    timeframe: Timeframe
    fetched_count: int = Field(ge=0)
    saved_count: int = Field(ge=0)
    duplicate_count: int = Field(ge=0)

    @property
    def message(self) -> str:
        return (
            f"Saved {self.saved_count} candles, "
            f"{self.duplicate_count} duplicates skipped"
        )


class HistoryLoadSummary(BaseModel):
    """Outcome of a ranged historical load over a set of pairs."""

    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed
