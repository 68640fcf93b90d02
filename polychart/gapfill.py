import logging
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from .models import Bar, MarketKind, RawAggregate
from .sessions import SessionCalendar, WeekendSessionCalendar
from .timespans import Timespan, bucket_start, bucket_width

log = logging.getLogger("polychart.gapfill")


class GapFiller:
    """Turns a sparse page of aggregates into a dense, ascending bar sequence"""

    def __init__(
        self,
        calendar: Optional[SessionCalendar] = None,
        on_anomaly: Optional[Callable[[RawAggregate], None]] = None,
    ) -> None:
        self.calendar: SessionCalendar = calendar or WeekendSessionCalendar()
        self.on_anomaly: Optional[Callable[[RawAggregate], None]] = on_anomaly

    def fill(
        self,
        raw_page: Sequence[RawAggregate],
        unit: Timespan,
        multiplier: int,
        market: MarketKind,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
    ) -> List[Bar]:
        """
        Emit one bar per valid bucket between the oldest and newest record.
        ``start_ms``/``end_ms`` widen or narrow the walked range (inclusive);
        records outside it are reported and left out.
        Returns an empty list when the page has no records.
        """
        if not raw_page:
            log.info("Empty page, no data to fill")
            return []

        unit = Timespan(unit)
        width: int = bucket_width(unit, multiplier)
        by_bucket: Dict[int, RawAggregate] = {}
        for record in raw_page:
            key: int = bucket_start(record.t, unit, multiplier)
            if key in by_bucket:
                log.warning(
                    f"Duplicate record for bucket {key} (t={record.t}), keeping the first"
                )
                continue
            by_bucket[key] = record

        first: int = (
            bucket_start(start_ms, unit, multiplier) if start_ms is not None else min(by_bucket)
        )
        last: int = (
            bucket_start(end_ms, unit, multiplier) if end_ms is not None else max(by_bucket)
        )

        bars: List[Bar] = []
        filled: int = 0
        for bucket in self._walk(first, last + width, width):
            record: Optional[RawAggregate] = by_bucket.pop(bucket, None)
            if not self.calendar.is_valid_bucket(bucket, unit, market, multiplier):
                if record is not None:
                    self._report_anomaly(record, bucket, market)
                continue
            if record is not None:
                bars.append(Bar.from_raw(record, time=bucket))
                filled += 1
            else:
                bars.append(Bar.empty(bucket))

        for key, record in by_bucket.items():
            log.warning(
                f"Record at t={record.t} (bucket {key}) is outside the filled range "
                f"[{first}, {last}], not placed"
            )

        log.debug(
            f"Gap fill {unit.value}x{multiplier}: {len(raw_page)} records -> "
            f"{len(bars)} bars ({filled} filled, {len(bars) - filled} empty)"
        )
        return bars

    def placeholders(
        self,
        start_ms: int,
        end_ms: int,
        unit: Timespan,
        multiplier: int,
        market: MarketKind,
    ) -> List[Bar]:
        """Empty bars for every valid bucket in [start_ms, end_ms)"""
        width: int = bucket_width(unit, multiplier)
        return [
            Bar.empty(bucket)
            for bucket in self._walk(bucket_start(start_ms, unit, multiplier), end_ms, width)
            if self.calendar.is_valid_bucket(bucket, unit, market, multiplier)
        ]

    @staticmethod
    def _walk(first: int, stop: int, width: int) -> Iterator[int]:
        return iter(range(first, stop, width))

    def _report_anomaly(self, record: RawAggregate, bucket: int, market: MarketKind) -> None:
        log.warning(
            f"{market.value} record at t={record.t} falls on closed bucket {bucket}: "
            f"O: {record.o} C: {record.c} V: {record.v}"
        )
        if self.on_anomaly:
            self.on_anomaly(record)
