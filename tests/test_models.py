import pytest

from polychart.models import (
    AggregateMessage,
    Bar,
    MessageDecodeError,
    RawAggregate,
    StatusMessage,
    TradeMessage,
    decode_message,
)


def test_decode_status():
    msg = decode_message({"ev": "status", "status": "auth_success", "message": "authenticated"})
    assert isinstance(msg, StatusMessage)
    assert msg.status == "auth_success"


def test_decode_crypto_aggregate_uses_pair():
    msg = decode_message({
        "ev": "XA", "pair": "BTC-USD", "s": 60_000, "e": 120_000,
        "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10, "vw": 1.2,
    })
    assert isinstance(msg, AggregateMessage)
    assert msg.symbol == "BTC-USD"
    bar = msg.to_bar()
    assert bar.time == 60_000
    assert bar.liquidity == pytest.approx(12.0)


def test_decode_stock_trade():
    msg = decode_message({"ev": "T", "sym": "AAPL", "t": 1_000, "p": 190.5, "s": 100, "c": [12, 37]})
    assert isinstance(msg, TradeMessage)
    trade = msg.to_trade()
    assert (trade.ts, trade.price, trade.size, trade.conditions) == (1_000, 190.5, 100, [12, 37])


@pytest.mark.parametrize("payload", [
    {"ev": "Q", "sym": "AAPL"},
    {"ev": "T", "sym": "AAPL", "p": 1.0},
    {"status": "connected"},
])
def test_decode_rejects_unknown_or_incomplete(payload):
    with pytest.raises(MessageDecodeError):
        decode_message(payload)


def test_bar_from_raw_restamps_time():
    bar = Bar.from_raw(RawAggregate(t=61_234, o=1, h=1, l=1, c=1, v=2, vw=1), time=60_000)
    assert bar.time == 60_000
    assert not bar.is_empty
    assert Bar.empty(0).is_empty


def test_bar_str():
    assert "(empty)" in str(Bar.empty(0))
    assert "VWAP: 1.00" in str(Bar(time=0, open=1, high=1, low=1, close=1, volume=1, liquidity=1, vwap=1))
