from datetime import datetime, timezone

from polychart.gapfill import GapFiller
from polychart.models import (
    AggregateMessage,
    Bar,
    MarketKind,
    RawAggregate,
    StatusMessage,
    TradeMessage,
)
from polychart.reconciler import LiveReconciler
from polychart.timespans import MINUTE_MS, Timespan
from polychart.window import BarWindow


def ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


T0 = ms(2024, 1, 5, 12, 0)


def filled(t, price=100.0):
    return Bar(time=t, open=price, high=price, low=price, close=price, volume=1.0, liquidity=price, vwap=price)


def crypto_window():
    return BarWindow([filled(T0), filled(T0 + MINUTE_MS), filled(T0 + 2 * MINUTE_MS)])


def minute_reconciler(multiplier=1):
    return LiveReconciler(Timespan.MINUTE, multiplier, MarketKind.CRYPTO, GapFiller())


def test_reconcile_appends_missed_bar_without_touching_history():
    window = crypto_window()
    before = [b.model_dump() for b in window.bars]
    missed = RawAggregate(t=T0 + 3 * MINUTE_MS, o=101, h=102, l=100, c=101.5, v=7, vw=101.2)

    appended = minute_reconciler().reconcile(window, [missed])

    assert appended == 1
    assert len(window) == 4
    assert [b.model_dump() for b in window.bars[:3]] == before
    assert window.tail.close == 101.5


def test_reconcile_ignores_records_at_or_before_tail():
    window = crypto_window()
    stale = [RawAggregate(t=T0 + 2 * MINUTE_MS, o=1, h=1, l=1, c=1, v=1)]
    assert minute_reconciler().reconcile(window, stale) == 0
    assert window.tail.open == 100.0


def test_reconcile_fills_gap_after_tail():
    window = crypto_window()
    missed = RawAggregate(t=T0 + 5 * MINUTE_MS, o=1, h=1, l=1, c=1, v=1)
    assert minute_reconciler().reconcile(window, [missed]) == 3
    assert [b.is_empty for b in window.bars[3:]] == [True, True, False]


def test_finished_minute_bar_appends_then_updates():
    window = crypto_window()
    rec = minute_reconciler()
    msg = AggregateMessage(ev="XA", pair="BTC-USD", s=T0 + 3 * MINUTE_MS, o=1, h=2, l=1, c=2, v=3, vw=1.5)
    assert rec.apply(window, msg) == "appended"
    again = msg.model_copy(update={"c": 1.8, "v": 4.0})
    assert rec.apply(window, again) == "updated"
    assert len(window) == 4
    assert window.tail.close == 1.8
    assert rec.stats.bars_appended == 1
    assert rec.stats.bars_applied == 2


def test_trades_fold_into_tail_or_append():
    window = crypto_window()
    rec = minute_reconciler()
    same = TradeMessage(ev="XT", pair="BTC-USD", t=T0 + 2 * MINUTE_MS + 10, p=105.0, s=1.0)
    assert rec.apply(window, same) == "updated"
    assert window.tail.high == 105.0
    assert window.tail.volume == 2.0
    assert window.tail.vwap == (100.0 + 105.0) / 2

    nxt = TradeMessage(ev="XT", pair="BTC-USD", t=T0 + 3 * MINUTE_MS + 1, p=99.0, s=2.0)
    assert rec.apply(window, nxt) == "appended"
    assert window.tail.open == 99.0
    assert rec.stats.trades_folded == 2


def test_out_of_order_trade_is_rejected():
    window = crypto_window()
    rec = minute_reconciler()
    late = TradeMessage(ev="XT", t=T0, p=1.0, s=1.0)
    assert rec.apply(window, late) is None
    assert rec.stats.trades_rejected == 1
    assert window.bars[0].open == 100.0


def test_minute_aggregate_folds_into_coarser_window():
    window = BarWindow([filled(T0)])
    rec = minute_reconciler(multiplier=5)
    msg = AggregateMessage(ev="XA", s=T0 + MINUTE_MS, o=100, h=110, l=95, c=108, v=1, vw=104)
    assert rec.apply(window, msg) == "updated"
    assert len(window) == 1
    assert window.tail.high == 110
    assert window.tail.close == 108
    assert window.tail.volume == 2


def test_late_aggregate_for_coarser_window_is_counted():
    window = BarWindow([filled(T0), filled(T0 + 5 * MINUTE_MS)])
    rec = minute_reconciler(multiplier=5)
    late = AggregateMessage(ev="XA", s=T0 + MINUTE_MS, o=1, h=1, l=1, c=1, v=1)
    assert rec.apply(window, late) is None
    assert rec.stats.aggregates_rejected == 1
    assert rec.stats.trades_rejected == 0
    assert window.tail.open == 100.0
    assert len(window) == 2


def test_live_gap_is_padded_with_placeholders():
    window = crypto_window()
    msg = AggregateMessage(ev="XA", s=T0 + 5 * MINUTE_MS, o=1, h=1, l=1, c=1, v=1)
    assert minute_reconciler().apply(window, msg) == "appended"
    assert [b.time for b in window.bars[3:]] == [T0 + i * MINUTE_MS for i in (3, 4, 5)]
    assert window.bars[3].is_empty


def test_status_messages_do_not_touch_window():
    window = crypto_window()
    assert minute_reconciler().apply(window, StatusMessage(ev="status", status="auth_success")) is None
    assert len(window) == 3
