import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional, Tuple, Union

from .backfill import HistoryCursor, WindowOverlapError
from .config import Config
from .gapfill import GapFiller
from .models import (
    AggregateMessage,
    Bar,
    FeedStats,
    MarketKind,
    RawAggregate,
    TradeMessage,
)
from .reconciler import LiveReconciler
from .rest import MarketDataClient, MarketDataError, NetworkError
from .sessions import SessionCalendar
from .stream import LiveFeed, live_topic
from .timespans import Timespan, bucket_width, market_kind, parse_resolution
from .window import BarWindow

log = logging.getLogger("polychart.session")

FETCH_ERRORS = (NetworkError, MarketDataError)


class Selection(NamedTuple):
    ticker: str
    unit: Timespan
    multiplier: int
    from_ts: int
    to_ts: int


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class ChartSession:
    """
    Owns the bar window for the current selection and serializes every
    mutation of it on the event loop. Blocking fetches run in a thread pool;
    each one carries the generation it was issued under and its result is
    dropped if the selection changed in the meantime.
    """

    def __init__(
        self,
        config: Config,
        client: Optional[MarketDataClient] = None,
        calendar: Optional[SessionCalendar] = None,
    ) -> None:
        self.config = config
        self.client: MarketDataClient = client or MarketDataClient(config)
        self.gap_filler: GapFiller = GapFiller(calendar, on_anomaly=self._on_anomaly)

        self.window: BarWindow = BarWindow()
        self.cursor: HistoryCursor = HistoryCursor()
        self.stats: FeedStats = FeedStats()
        self.anomalies: List[RawAggregate] = []

        self.selection: Optional[Selection] = None
        self.generation: int = 0

        self.reconciler: Optional[LiveReconciler] = None
        self._feed: Optional[LiveFeed] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._live_token: Optional[int] = None

        self._executor: ThreadPoolExecutor = ThreadPoolExecutor(
            max_workers=self.config.FETCH_WORKERS
        )

    @property
    def market(self) -> MarketKind:
        if self.selection is None:
            raise RuntimeError("No selection")
        return market_kind(self.selection.ticker)

    @property
    def width(self) -> int:
        if self.selection is None:
            raise RuntimeError("No selection")
        return bucket_width(self.selection.unit, self.selection.multiplier)

    @property
    def is_live(self) -> bool:
        return self._feed is not None

    def is_current(self, token: int) -> bool:
        return token == self.generation

    async def select(
        self,
        ticker: str,
        resolution: Union[str, Tuple[Timespan, int]],
        from_ts: int,
        to_ts: int,
    ) -> int:
        """Switch to a new selection, invalidating in-flight work; returns its token"""
        unit, multiplier = (
            parse_resolution(resolution) if isinstance(resolution, str) else resolution
        )
        selection = Selection(ticker, Timespan(unit), multiplier, from_ts, to_ts)

        # Bump first so a go_live still fetching cannot subscribe for the old selection
        self.generation += 1
        if self.is_live:
            await self.stop_live()

        self.selection = selection
        self.cursor.reset(selection)
        self.window.replace([])
        self.window.status = f"Loading {ticker}..."
        self.reconciler = None
        log.info(
            f"Selected {ticker} {selection.unit.value}x{multiplier} "
            f"(generation {self.generation})"
        )
        return self.generation

    async def _fetch(
        self, selection: Selection, from_ts: int, to_ts: int, sort: str
    ) -> List[RawAggregate]:
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            self.client.fetch_bars,
            selection.ticker,
            selection.multiplier,
            selection.unit,
            from_ts,
            to_ts,
            sort,
        )

    def _discard(self, token: int, what: str) -> bool:
        if self.is_current(token):
            return False
        self.stats.stale_results += 1
        log.debug(f"Discarding stale {what} from generation {token}")
        return True

    async def load(self) -> List[Bar]:
        """Fetch and gap-fill the selected range into the window"""
        if self.selection is None:
            raise RuntimeError("Nothing selected")
        token: int = self.generation
        selection: Selection = self.selection

        try:
            raw: List[RawAggregate] = await self._fetch(
                selection, selection.from_ts, selection.to_ts, "desc"
            )
        except FETCH_ERRORS as e:
            if not self._discard(token, "load error"):
                log.error(f"Load failed for {selection.ticker}: {e}")
                self.window.status = f"Error: {e}"
            return []

        if self._discard(token, "load"):
            return []

        bars: List[Bar] = self.gap_filler.fill(
            raw, selection.unit, selection.multiplier, self.market
        )
        self.window.replace(bars)
        self.window.status = "" if bars else "No data"
        log.info(f"Loaded {len(bars)} bars ({len(raw)} records) for {selection.ticker}")
        return bars

    async def load_older(self) -> bool:
        """
        Prepend the page preceding the window. Returns False without fetching
        when a backfill is already in flight or history is exhausted.
        """
        if self.selection is None or not self.window.bars:
            return False
        if not self.cursor.begin():
            log.debug("Backfill skipped: busy or at start of history")
            return False

        token: int = self.generation
        try:
            return await self._load_older(token, self.selection, self.window.bars[0])
        finally:
            # A stale request no longer owns the slot
            if self.is_current(token):
                self.cursor.abandon()

    async def _load_older(self, token: int, selection: Selection, head: Bar) -> bool:
        # Everything strictly before the first bucket of the window
        end_ms: int = head.time - 1
        to_ts: int = end_ms

        while True:
            try:
                raw: List[RawAggregate] = await self._fetch(
                    selection, self.config.START_OF_DATA_MS, to_ts, "desc"
                )
            except FETCH_ERRORS as e:
                if not self._discard(token, "backfill error"):
                    log.error(f"Backfill failed for {selection.ticker}: {e}")
                    self.window.status = f"Error: {e}"
                return False

            if self._discard(token, "backfill"):
                return False

            page: List[Bar] = self.gap_filler.fill(
                raw, selection.unit, selection.multiplier, self.market, end_ms=end_ms
            )
            if page or not raw:
                break
            # Only closed-session records; older data may still exist
            to_ts = min(r.t for r in raw) - 1
            log.info(
                f"Backfill page for {selection.ticker} held no session bars, "
                f"continuing before {to_ts + 1}"
            )

        try:
            self.window.bars = self.cursor.finish(page, self.window.bars, exhausted=not raw)
        except WindowOverlapError as e:
            log.error(f"Rejected backfill page: {e}")
            self.window.status = f"Error: {e}"
            return False

        self.window.reached_start = self.cursor.end_of_history
        if self.window.reached_start:
            self.window.status = "Start of history"
        return bool(page)

    async def _fetch_missed(self, selection: Selection) -> List[RawAggregate]:
        """Everything after the window tail up to now, oldest first"""
        tail: Optional[Bar] = self.window.tail
        from_ts: int = tail.time + self.width if tail else selection.from_ts
        return await self._fetch(selection, from_ts, now_ms(), "asc")

    async def go_live(self) -> bool:
        """Catch up from the tail, then subscribe to the live feed"""
        if self.selection is None:
            raise RuntimeError("Nothing selected")
        token: int = self.generation
        selection: Selection = self.selection
        if self.is_live:
            if self._live_token == token:
                return True
            await self.stop_live()

        market: MarketKind = self.market
        reconciler = LiveReconciler(
            selection.unit, selection.multiplier, market, self.gap_filler, self.stats
        )

        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        try:
            ws_ticker: str = await loop.run_in_executor(
                self._executor, self.client.ws_ticker, selection.ticker
            )
            raw: List[RawAggregate] = await self._fetch_missed(selection)
        except FETCH_ERRORS as e:
            if not self._discard(token, "live catch-up error"):
                log.error(f"Live catch-up failed for {selection.ticker}: {e}")
                self.window.status = f"Error: {e}"
            return False

        if self._discard(token, "live catch-up"):
            return False
        # Another go_live may have won the race while this one was fetching
        if self.is_live:
            return self._live_token == token

        reconciler.reconcile(self.window, raw)
        self.reconciler = reconciler

        def on_message(message: Union[AggregateMessage, TradeMessage]) -> None:
            if self._discard(token, "live message"):
                return
            reconciler.apply(self.window, message)

        async def on_reconnect() -> None:
            if self._discard(token, "reconnect catch-up"):
                return
            try:
                missed: List[RawAggregate] = await self._fetch_missed(selection)
            except FETCH_ERRORS as e:
                if not self._discard(token, "reconnect catch-up error"):
                    log.error(f"Catch-up after reconnect failed for {selection.ticker}: {e}")
                    self.window.status = f"Error: {e}"
                return
            if self._discard(token, "reconnect catch-up"):
                return
            reconciler.reconcile(self.window, missed)

        topic: str = live_topic(market, ws_ticker, self.config.SUBSCRIBE_TRADES)
        self._feed = LiveFeed(
            self.config, market, topic, on_message, self.stats, on_reconnect=on_reconnect
        )
        self._live_token = token
        self._feed_task = asyncio.create_task(self._feed.run())
        self.window.status = "Live"
        log.info(f"Live on {topic}")
        return True

    async def stop_live(self) -> None:
        """Tear down the current subscription before anything else may subscribe"""
        feed, task = self._feed, self._feed_task
        self._feed = None
        self._feed_task = None
        self._live_token = None
        if feed is None:
            return
        await feed.close()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.window.status == "Live":
            self.window.status = ""

    def _on_anomaly(self, record: RawAggregate) -> None:
        self.anomalies.append(record)

    async def close(self) -> None:
        await self.stop_live()
        self._executor.shutdown(wait=True)
        log.info(f"Session closed. Stats: {self.stats}")
