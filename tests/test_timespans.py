import pytest

from polychart.models import MarketKind
from polychart.timespans import (
    DAY_MS,
    MINUTE_MS,
    Timespan,
    bucket_start,
    bucket_width,
    market_kind,
    parse_resolution,
    unit_ms,
)


def test_bucket_start_minute():
    assert bucket_start(90_000, Timespan.MINUTE, 1) == 60_000
    assert bucket_start(60_000, Timespan.MINUTE, 1) == 60_000
    assert bucket_start(59_999, Timespan.MINUTE, 1) == 0


def test_bucket_start_multiplier():
    assert bucket_start(14 * MINUTE_MS + 5, Timespan.MINUTE, 5) == 10 * MINUTE_MS


@pytest.mark.parametrize("unit", list(Timespan))
@pytest.mark.parametrize("multiplier", [1, 3, 15])
def test_bucket_start_idempotent_and_monotonic(unit, multiplier):
    stamps = [0, 1, 59_999, 90_000, 1_704_412_800_000, 1_704_412_812_345, 1_704_999_999_999]
    starts = [bucket_start(ts, unit, multiplier) for ts in stamps]
    for ts, start in zip(stamps, starts):
        assert start <= ts
        assert bucket_start(start, unit, multiplier) == start
    assert starts == sorted(starts)


def test_unit_durations_are_calendar_naive():
    assert unit_ms(Timespan.WEEK) == 7 * DAY_MS
    assert unit_ms(Timespan.MONTH) == 30 * DAY_MS
    assert unit_ms(Timespan.QUARTER) == 365 * DAY_MS // 4
    assert unit_ms(Timespan.YEAR) == 365 * DAY_MS
    assert unit_ms("hour") == 60 * MINUTE_MS


def test_bucket_width_rejects_zero_multiplier():
    with pytest.raises(ValueError):
        bucket_width(Timespan.MINUTE, 0)


@pytest.mark.parametrize(
    "resolution, expected",
    [
        ("1", (Timespan.MINUTE, 1)),
        ("15", (Timespan.MINUTE, 15)),
        ("60", (Timespan.HOUR, 1)),
        ("120", (Timespan.HOUR, 2)),
        ("240", (Timespan.MINUTE, 240)),
        ("4H", (Timespan.HOUR, 4)),
        ("1D", (Timespan.DAY, 1)),
        ("D", (Timespan.DAY, 1)),
        ("1W", (Timespan.WEEK, 1)),
        ("12M", (Timespan.MONTH, 12)),
        ("1Y", (Timespan.YEAR, 1)),
    ],
)
def test_parse_resolution(resolution, expected):
    assert parse_resolution(resolution) == expected


@pytest.mark.parametrize("resolution", ["", "0", "xD", "5S", "-1"])
def test_parse_resolution_invalid(resolution):
    with pytest.raises(ValueError):
        parse_resolution(resolution)


def test_market_kind_from_prefix():
    assert market_kind("X:BTCUSD") is MarketKind.CRYPTO
    assert market_kind("O:SPY251219C00650000") is MarketKind.OPTIONS
    assert market_kind("C:EURUSD") is MarketKind.FOREX
    assert market_kind("AAPL") is MarketKind.STOCKS
