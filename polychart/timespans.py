"""Timespan units, bucket arithmetic and resolution strings.

Unit durations are calendar-naive: a month is 30 days, a quarter a fourth of
365 days and a year 365 days. Buckets are aligned on multiples of
``unit_ms(unit) * multiplier`` since the epoch.
"""
from enum import Enum
from typing import Dict, Tuple

from .models import MarketKind

MINUTE_MS: int = 60 * 1000
HOUR_MS: int = 60 * MINUTE_MS
DAY_MS: int = 24 * HOUR_MS


class Timespan(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


_UNIT_MS: Dict[Timespan, int] = {
    Timespan.MINUTE: MINUTE_MS,
    Timespan.HOUR: HOUR_MS,
    Timespan.DAY: DAY_MS,
    Timespan.WEEK: 7 * DAY_MS,
    Timespan.MONTH: 30 * DAY_MS,
    Timespan.QUARTER: 365 * DAY_MS // 4,
    Timespan.YEAR: 365 * DAY_MS,
}

INTRADAY_UNITS = frozenset({Timespan.MINUTE, Timespan.HOUR})

_RESOLUTION_SUFFIXES: Dict[str, Timespan] = {
    "H": Timespan.HOUR,
    "D": Timespan.DAY,
    "W": Timespan.WEEK,
    "M": Timespan.MONTH,
    "Q": Timespan.QUARTER,
    "Y": Timespan.YEAR,
}

_TICKER_PREFIXES: Dict[str, MarketKind] = {
    "X:": MarketKind.CRYPTO,
    "O:": MarketKind.OPTIONS,
    "C:": MarketKind.FOREX,
}


def unit_ms(unit: Timespan) -> int:
    return _UNIT_MS[Timespan(unit)]


def bucket_width(unit: Timespan, multiplier: int) -> int:
    if multiplier < 1:
        raise ValueError(f"Multiplier must be positive, got {multiplier}")
    return unit_ms(unit) * multiplier


def bucket_start(ts: int, unit: Timespan, multiplier: int = 1) -> int:
    """Start of the bucket containing ``ts`` (epoch millis, non-negative)"""
    width: int = bucket_width(unit, multiplier)
    return (ts // width) * width


def parse_resolution(resolution: str) -> Tuple[Timespan, int]:
    """
    Translate a chart resolution string into (unit, multiplier).
    Bare numbers are minutes, except 60 and 120 which are whole hours.
    Suffixed values use H/D/W/M/Q/Y, e.g. "1D", "12M".
    """
    text: str = resolution.strip().upper()
    if not text:
        raise ValueError("Empty resolution")

    if text.isdigit():
        minutes: int = int(text)
        if minutes in (60, 120):
            return Timespan.HOUR, minutes // 60
        if minutes < 1:
            raise ValueError(f"Invalid resolution {resolution!r}")
        return Timespan.MINUTE, minutes

    unit = _RESOLUTION_SUFFIXES.get(text[-1])
    count: str = text[:-1] or "1"
    if unit is None or not count.isdigit() or int(count) < 1:
        raise ValueError(f"Invalid resolution {resolution!r}")
    return unit, int(count)


def market_kind(ticker: str) -> MarketKind:
    for prefix, kind in _TICKER_PREFIXES.items():
        if ticker.startswith(prefix):
            return kind
    return MarketKind.STOCKS
