from polychart.aggregator import TradeAggregator, fold, fold_aggregate
from polychart.models import AggregateMessage, Bar, Trade
from polychart.timespans import MINUTE_MS, Timespan


def test_two_trades_in_one_minute():
    bar = fold(None, 60_000, 10.0, 1.0, Timespan.MINUTE, 1)
    bar = fold(bar, 60_500, 12.0, 3.0, Timespan.MINUTE, 1)
    assert bar.time == 60_000
    assert (bar.open, bar.high, bar.low, bar.close) == (10.0, 12.0, 10.0, 12.0)
    assert bar.volume == 4.0
    assert bar.vwap == (10 * 1 + 12 * 3) / 4 == 11.5
    assert bar.liquidity == 46.0


def test_trade_in_new_bucket_starts_fresh_bar():
    last = Bar(time=0, open=5, high=9, low=4, close=6, volume=100, liquidity=600, vwap=6)
    bar = fold(last, 61_000, 7.5, 2.0, Timespan.MINUTE, 1)
    assert bar.time == 60_000
    assert (bar.open, bar.high, bar.low, bar.close) == (7.5, 7.5, 7.5, 7.5)
    assert bar.volume == 2.0
    assert bar.vwap == 7.5
    assert bar.liquidity == 15.0


def test_fold_does_not_mutate_last_bar():
    last = Bar(time=0, open=5, high=5, low=5, close=5, volume=1, liquidity=5, vwap=5)
    before = last.model_dump()
    fold(last, 10, 1.0, 1.0, Timespan.MINUTE, 1)
    assert last.model_dump() == before


def test_low_tracks_minimum():
    bar = fold(None, 0, 10.0, 1.0, Timespan.MINUTE, 5)
    bar = fold(bar, 4 * MINUTE_MS, 8.0, 1.0, Timespan.MINUTE, 5)
    assert bar.low == 8.0
    assert bar.high == 10.0
    assert bar.close == 8.0


def test_trade_on_empty_placeholder_opens_bar():
    bar = fold(Bar.empty(60_000), 60_001, 3.0, 2.0, Timespan.MINUTE, 1)
    assert bar.open == 3.0
    assert bar.volume == 2.0


def test_trade_aggregator_rejects_trades_before_tail():
    agg = TradeAggregator(Timespan.MINUTE, 1)
    tail = agg.add_trade(None, Trade(ts=120_000, price=1.0, size=1.0))
    assert agg.add_trade(tail, Trade(ts=119_999, price=2.0, size=1.0)) is None
    assert agg.rejected == 1
    # Earlier timestamp inside the current bucket is still folded
    updated = agg.add_trade(tail, Trade(ts=120_000, price=2.0, size=1.0))
    assert updated.volume == 2.0


def test_fold_minute_aggregates_into_five_minute_bar():
    first = AggregateMessage(ev="XA", pair="BTC-USD", s=0, o=10, h=12, l=9, c=11, v=2, vw=10.5)
    second = AggregateMessage(ev="XA", pair="BTC-USD", s=MINUTE_MS, o=11, h=15, l=8, c=14, v=3, vw=12.0)
    bar = fold_aggregate(None, first, Timespan.MINUTE, 5)
    bar = fold_aggregate(bar, second, Timespan.MINUTE, 5)
    assert bar.time == 0
    assert (bar.open, bar.high, bar.low, bar.close, bar.volume) == (10, 15, 8, 14, 5)
    assert bar.vwap == (10.5 * 2 + 12.0 * 3) / 5
