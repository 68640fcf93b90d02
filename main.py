import argparse
import asyncio
import logging
import signal
from datetime import datetime, timedelta, timezone
from typing import Optional

from polychart.config import Config
from polychart.formatting import humanize_quantity, overlay_text
from polychart.session import ChartSession
from polychart.timespans import DAY_MS, parse_resolution
from polychart.utils import setup_logging

log: Optional[logging.Logger] = None


def print_banner(config: Config, args: argparse.Namespace) -> None:
    """Print startup banner"""
    print("╔══════════════════════════════════════════════════════════════╗")
    print("║                 Polychart bar window loader                  ║")
    print("╠══════════════════════════════════════════════════════════════╣")
    print(f"║ Ticker:       {args.ticker:<46} ║")
    print(f"║ Resolution:   {args.resolution:<46} ║")
    print(f"║ Range:        {args.from_date + ' -> ' + args.to_date:<46} ║")
    print(f"║ Live:         {str(args.live):<46} ║")
    print("╚══════════════════════════════════════════════════════════════╝")
    print()


def parse_date(value: str) -> int:
    dt: datetime = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def create_cli() -> argparse.ArgumentParser:
    """Create command-line interface"""
    today: datetime = datetime.now(timezone.utc)
    parser = argparse.ArgumentParser(
        description="Load a dense OHLCV bar window from Polygon and optionally follow it live"
    )
    parser.add_argument(
        "--ticker", default=Config.TICKER, help=f"Ticker (default: {Config.TICKER})"
    )
    parser.add_argument(
        "--resolution",
        default=Config.RESOLUTION,
        help="Chart resolution, e.g. 1, 5, 60, 1D, 1W, 12M (default: 1)",
    )
    parser.add_argument(
        "--from",
        dest="from_date",
        default=f"{today - timedelta(days=Config.HISTORY_DAYS):%Y-%m-%d}",
        help="First day of the range (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--to",
        dest="to_date",
        default=f"{today:%Y-%m-%d}",
        help="Last day of the range (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--backfill-pages",
        type=int,
        default=0,
        help="Older pages to prepend after the initial load (default: 0)",
    )
    parser.add_argument("--live", action="store_true", help="Follow the live feed")
    parser.add_argument(
        "--trades",
        action="store_true",
        help="Build live bars from the trade channel instead of minute aggregates",
    )
    parser.add_argument("--tail", type=int, default=10, help="Bars to print (default: 10)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--no-log-file", action="store_true", help="Log to the console only"
    )
    return parser


def print_window(session: ChartSession, count: int) -> None:
    window = session.window
    print(f"\n{len(window)} bars | start of history: {window.reached_start} | "
          f"status: {window.status or '-'}")
    for bar in window.bars[-count:]:
        print(f"  {bar}")
    tail = window.tail
    if tail and not tail.is_empty:
        print(f"\nLast: {overlay_text(tail)}")
        frame = window.to_frame()
        print(f"Total volume: {humanize_quantity(frame['volume'].sum())}")


async def main(config: Config, args: argparse.Namespace) -> None:
    """Main application entry point"""
    print_banner(config, args)
    session = ChartSession(config)
    stop: asyncio.Event = asyncio.Event()

    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await session.select(
            args.ticker,
            args.resolution,
            parse_date(args.from_date),
            parse_date(args.to_date) + DAY_MS - 1,
        )
        await session.load()
        for _ in range(args.backfill_pages):
            if not await session.load_older():
                break
        print_window(session, args.tail)

        if args.live and await session.go_live():
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=60)
                except asyncio.TimeoutError:
                    if log:
                        log.info(f"Stats: {session.stats}")
                    print_window(session, 1)
    finally:
        await session.close()
        if log:
            log.info("Application terminated")


async def main_cli() -> None:
    """CLI entry point"""
    parser: argparse.ArgumentParser = create_cli()
    args: argparse.Namespace = parser.parse_args()

    try:
        parse_resolution(args.resolution)
    except ValueError as e:
        parser.error(str(e))

    config = Config()
    config.SUBSCRIBE_TRADES = args.trades
    if args.debug:
        config.LOG_LEVEL = logging.DEBUG

    global log
    if args.no_log_file:
        config.LOG_DIR = None
    log = setup_logging(config, ticker=args.ticker)

    if not config.API_KEY:
        parser.error("POLYGON_API_KEY is not set")

    await main(config, args)


def cli() -> None:
    asyncio.run(main_cli())


if __name__ == "__main__":
    cli()
