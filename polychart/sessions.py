from datetime import datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from .config import Config
from .models import MarketKind
from .timespans import DAY_MS, HOUR_MS, INTRADAY_UNITS, Timespan, bucket_width


class SessionCalendar:
    """Decides which buckets are trading periods for a market.

    Subclass and override ``is_valid_bucket`` to plug in a real exchange
    calendar; the gap filler only depends on this method.
    """

    def is_valid_bucket(
        self,
        bucket_start_ms: int,
        unit: Timespan,
        market: MarketKind,
        multiplier: int = 1,
    ) -> bool:
        return True


class WeekendSessionCalendar(SessionCalendar):
    """
    Stocks trade on weekdays between the pre-market open and the after-hours
    close in exchange local time. Other markets trade around the clock.
    Holidays are not modelled.

    A bucket wider than one hour or one day is a trading period when any
    hour or date it spans is one, so epoch-aligned multi-hour and monthly
    buckets that start outside the session still hold the session's bars.
    For single-unit buckets this is the plain start-hour and weekday check.
    """

    def __init__(
        self,
        exchange_tz: str = Config.EXCHANGE_TZ,
        open_hour: int = Config.SESSION_OPEN_HOUR,
        close_hour: int = Config.SESSION_CLOSE_HOUR,
    ) -> None:
        self.tz: ZoneInfo = ZoneInfo(exchange_tz)
        self.open_hour: int = open_hour
        self.close_hour: int = close_hour

    def is_valid_bucket(
        self,
        bucket_start_ms: int,
        unit: Timespan,
        market: MarketKind,
        multiplier: int = 1,
    ) -> bool:
        if market is not MarketKind.STOCKS:
            return True

        unit = Timespan(unit)
        width: int = bucket_width(unit, multiplier)
        if unit in INTRADAY_UNITS:
            return self._overlaps_session(bucket_start_ms, width)
        # Daily and longer buckets are UTC-midnight labels of session dates
        return _spans_weekday_utc(bucket_start_ms, width)

    def _overlaps_session(self, start_ms: int, width: int) -> bool:
        """True when any hour touched by [start, start + width) is a session hour"""
        end_ms: int = start_ms + width
        ts: int = start_ms
        while ts < end_ms:
            local: datetime = datetime.fromtimestamp(ts / 1000, tz=self.tz)
            if local.weekday() < 5 and self.open_hour <= local.hour < self.close_hour:
                return True
            ts = (ts // HOUR_MS + 1) * HOUR_MS
        return False


def _is_weekend_utc(ts: int) -> bool:
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).weekday() >= 5


def _spans_weekday_utc(start_ms: int, width: int) -> bool:
    # Any three consecutive dates include a weekday
    days: int = min(max(width // DAY_MS, 1), 3)
    return any(not _is_weekend_utc(start_ms + i * DAY_MS) for i in range(days))


@lru_cache(maxsize=None)
def _calendar_for(exchange_tz: str) -> WeekendSessionCalendar:
    return WeekendSessionCalendar(exchange_tz)


def is_valid_bucket(
    bucket_start_ms: int,
    unit: Timespan,
    market: MarketKind,
    exchange_tz: str = Config.EXCHANGE_TZ,
    multiplier: int = 1,
) -> bool:
    """Weekend/session-hours check with the default calendar for ``exchange_tz``"""
    return _calendar_for(exchange_tz).is_valid_bucket(
        bucket_start_ms, unit, market, multiplier
    )
