"""
Command line entry point.

Usage:
    python -m market_broadcast broadcast
    python -m market_broadcast broadcast --exchange binance --symbol BTC/USDT
    python -m market_broadcast backfill --timeframe 1m --limit 1
    python -m market_broadcast history --exchange binance --pair BTC/USDT --start-date 2024-01-01
    python -m market_broadcast seed
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger

from market_broadcast.app import MarketBroadcastApp
from market_broadcast.config import ConfigError, load_settings
from market_broadcast.core.models import Timeframe
from market_broadcast.logging_setup import configure_logging


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


def _start_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market-broadcast",
        description="Republish crypto market data on the internal event bus",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--env-file", help="Path to .env file")

    commands = parser.add_subparsers(dest="command", required=True)

    broadcast = commands.add_parser("broadcast", help="Run the continuous broadcast pipeline")
    broadcast.add_argument("--exchange", help="Exchange slug ('all' for every active pair)")
    broadcast.add_argument("--symbol", help="Trading pair symbol ('all' for every active pair)")
    broadcast.add_argument(
        "--log-events", action="store_true", help="Log every published event at DEBUG"
    )

    backfill = commands.add_parser("backfill", help="Load the latest candles for active pairs")
    backfill.add_argument(
        "--timeframe",
        choices=[tf.value for tf in Timeframe],
        help="Candle timeframe (defaults to config)",
    )
    backfill.add_argument(
        "--limit", type=_positive_int, help="Candles per pair (defaults to config)"
    )

    history = commands.add_parser(
        "history", help="Load candles from a start date for matching active pairs"
    )
    history.add_argument("--exchange", help="Exchange slug ('all' for every exchange)")
    history.add_argument("--pair", help="Trading pair id or symbol ('all' for every pair)")
    history.add_argument(
        "--start-date",
        type=_start_date,
        help="First day to load, YYYY-MM-DD in UTC (defaults to yesterday)",
    )
    history.add_argument(
        "--timeframe",
        choices=[tf.value for tf in Timeframe],
        help="Candle timeframe (defaults to config)",
    )
    history.add_argument(
        "--limit", type=_positive_int, default=1000, help="Maximum candles per pair"
    )

    commands.add_parser("seed", help="Insert the trading pairs listed in config")

    return parser


async def _run(args: argparse.Namespace, app: MarketBroadcastApp) -> None:
    async with app:
        if args.command == "seed":
            await app.seed_pairs()
            return

        if args.command == "backfill":
            await app.run_backfill(args.timeframe, args.limit)
            return

        if args.command == "history":
            await app.run_history(
                args.exchange, args.pair, args.start_date, args.timeframe, args.limit
            )
            return

        if args.log_events:
            app.log_events()

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop_event.set)
            except NotImplementedError:  # pragma: no cover - Windows
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))

        await app.run_broadcast(stop_event, args.exchange, args.symbol)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config, args.env_file)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.logging)

    try:
        asyncio.run(_run(args, MarketBroadcastApp(settings)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
