import logging
from typing import List, Optional, Sequence, Union

from .aggregator import TradeAggregator
from .gapfill import GapFiller
from .models import (
    AggregateMessage,
    Bar,
    FeedStats,
    MarketKind,
    RawAggregate,
    StatusMessage,
    TradeMessage,
)
from .timespans import Timespan, bucket_start, bucket_width
from .window import BarWindow

log = logging.getLogger("polychart.reconciler")

# Aggregate channels publishing one finished bar per minute
MINUTE_AGGREGATE_EVENTS = frozenset({"AM", "XA", "CA"})


class LiveReconciler:
    """Applies catch-up pages and live messages to the tail of a window"""

    def __init__(
        self,
        unit: Timespan,
        multiplier: int,
        market: MarketKind,
        gap_filler: Optional[GapFiller] = None,
        stats: Optional[FeedStats] = None,
    ) -> None:
        self.unit: Timespan = Timespan(unit)
        self.multiplier: int = multiplier
        self.market: MarketKind = market
        self.width: int = bucket_width(self.unit, multiplier)
        self.gap_filler: GapFiller = gap_filler or GapFiller()
        self.trades: TradeAggregator = TradeAggregator(self.unit, multiplier)
        self.stats: FeedStats = stats or FeedStats()

    def reconcile(self, window: BarWindow, raw_page: Sequence[RawAggregate]) -> int:
        """
        Apply a page fetched after going live. Only records newer than the
        tail are used, and the gap between the tail and them is filled.
        Returns the number of bars appended.
        """
        tail: Optional[Bar] = window.tail
        newer: List[RawAggregate] = [
            r for r in raw_page
            if tail is None or bucket_start(r.t, self.unit, self.multiplier) > tail.time
        ]
        if not newer:
            log.info("Window is up to date, nothing to reconcile")
            return 0

        start_ms: Optional[int] = tail.time + self.width if tail else None
        bars: List[Bar] = self.gap_filler.fill(
            newer, self.unit, self.multiplier, self.market, start_ms=start_ms
        )
        appended: int = sum(1 for bar in bars if self._upsert(window, bar) == "appended")
        log.info(f"Reconciled {len(newer)} missed records, appended {appended} bars")
        return appended

    def apply(
        self,
        window: BarWindow,
        message: Union[StatusMessage, AggregateMessage, TradeMessage],
    ) -> Optional[str]:
        """Route one decoded live message to the tail; returns the window action"""
        if isinstance(message, StatusMessage):
            return None

        bar: Optional[Bar]
        if isinstance(message, AggregateMessage):
            if self._matches_resolution(message):
                bar = message.to_bar().model_copy(
                    update={"time": bucket_start(message.s, self.unit, self.multiplier)}
                )
            else:
                bar = self.trades.add_aggregate(window.tail, message)
                if bar is None:
                    self.stats.aggregates_rejected += 1
                    return None
        else:
            bar = self.trades.add_trade(window.tail, message.to_trade())
            if bar is None:
                self.stats.trades_rejected += 1
                return None
            self.stats.trades_folded += 1

        self._pad_gap(window, bar.time)
        return self._upsert(window, bar)

    def _matches_resolution(self, message: AggregateMessage) -> bool:
        return (
            message.ev in MINUTE_AGGREGATE_EVENTS
            and self.unit is Timespan.MINUTE
            and self.multiplier == 1
        )

    def _pad_gap(self, window: BarWindow, bar_time: int) -> None:
        tail: Optional[Bar] = window.tail
        if tail is None or bar_time <= tail.time + self.width:
            return
        for placeholder in self.gap_filler.placeholders(
            tail.time + self.width, bar_time, self.unit, self.multiplier, self.market
        ):
            window.upsert(placeholder)

    def _upsert(self, window: BarWindow, bar: Bar) -> str:
        action: str = window.upsert(bar)
        if action != "stale":
            self.stats.bars_applied += 1
        if action == "appended":
            self.stats.bars_appended += 1
        log.debug(f"Live {action}: {bar}")
        return action
