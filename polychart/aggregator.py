import logging
from typing import Optional

from .models import AggregateMessage, Bar, Trade
from .timespans import Timespan, bucket_start

log = logging.getLogger("polychart.aggregator")


def fold(
    last_bar: Optional[Bar],
    trade_ts: int,
    price: float,
    size: float,
    unit: Timespan,
    multiplier: int,
) -> Bar:
    """
    Fold one trade into the bar it belongs to.
    Returns an updated copy of ``last_bar`` when the trade falls in its bucket,
    otherwise a fresh bar opened at the trade price. ``last_bar`` is never mutated.
    """
    bucket: int = bucket_start(trade_ts, unit, multiplier)
    if last_bar is None or last_bar.time != bucket or last_bar.is_empty:
        return Bar(
            time=bucket,
            open=price,
            high=price,
            low=price,
            close=price,
            volume=size,
            liquidity=price * size,
            vwap=price,
        )

    volume: float = (last_bar.volume or 0.0) + size
    liquidity: float = (last_bar.liquidity or 0.0) + price * size
    return Bar(
        time=bucket,
        open=last_bar.open,
        high=max(last_bar.high, price),
        low=min(last_bar.low, price),
        close=price,
        volume=volume,
        liquidity=liquidity,
        vwap=liquidity / volume if volume > 0 else price,
    )


def fold_aggregate(
    last_bar: Optional[Bar],
    message: AggregateMessage,
    unit: Timespan,
    multiplier: int,
) -> Bar:
    """Fold a finer finished bar (e.g. a minute aggregate) into a coarser bucket"""
    piece: Bar = message.to_bar()
    bucket: int = bucket_start(piece.time, unit, multiplier)
    if last_bar is None or last_bar.time != bucket or last_bar.is_empty:
        return piece.model_copy(update={"time": bucket})

    volume: float = (last_bar.volume or 0.0) + piece.volume
    liquidity: float = (last_bar.liquidity or 0.0) + piece.liquidity
    return Bar(
        time=bucket,
        open=last_bar.open,
        high=max(last_bar.high, piece.high),
        low=min(last_bar.low, piece.low),
        close=piece.close,
        volume=volume,
        liquidity=liquidity,
        vwap=liquidity / volume if volume > 0 else piece.close,
    )


class TradeAggregator:
    """
    Applies ``fold`` to a stream of trades for one resolution.
    Trades whose bucket precedes the current tail are rejected, since closed
    bars are never revisited.
    """

    def __init__(self, unit: Timespan, multiplier: int) -> None:
        self.unit: Timespan = Timespan(unit)
        self.multiplier: int = multiplier
        self.rejected: int = 0

    def bucket_of(self, ts: int) -> int:
        return bucket_start(ts, self.unit, self.multiplier)

    def accepts(self, tail: Optional[Bar], ts: int) -> bool:
        return tail is None or self.bucket_of(ts) >= tail.time

    def add_trade(self, tail: Optional[Bar], trade: Trade) -> Optional[Bar]:
        """Return the new or updated tail bar, or None when the trade is rejected"""
        if not self.accepts(tail, trade.ts):
            self.rejected += 1
            log.warning(
                f"Out-of-order trade at {trade.ts} (bucket {self.bucket_of(trade.ts)}) "
                f"precedes tail bar {tail.time}, skipping"
            )
            return None
        return fold(tail, trade.ts, trade.price, trade.size, self.unit, self.multiplier)

    def add_aggregate(self, tail: Optional[Bar], message: AggregateMessage) -> Optional[Bar]:
        if not self.accepts(tail, message.s):
            self.rejected += 1
            log.warning(
                f"Out-of-order aggregate at {message.s} precedes tail bar {tail.time}, skipping"
            )
            return None
        return fold_aggregate(tail, message, self.unit, self.multiplier)
