import logging
from typing import List, Optional

import pandas as pd

from .models import Bar

log = logging.getLogger("polychart.window")

FRAME_COLUMNS: List[str] = [
    "time", "open", "high", "low", "close", "volume", "liquidity", "vwap",
]


class BarWindow:
    """Bars shown by the chart plus the flags the rendering layer reads"""

    def __init__(self, bars: Optional[List[Bar]] = None) -> None:
        self.bars: List[Bar] = bars or []
        self.reached_start: bool = False
        self.status: str = ""

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def tail(self) -> Optional[Bar]:
        return self.bars[-1] if self.bars else None

    @property
    def head(self) -> Optional[Bar]:
        return self.bars[0] if self.bars else None

    def replace(self, bars: List[Bar]) -> None:
        self.bars = list(bars)
        self.reached_start = False

    def upsert(self, bar: Bar) -> str:
        """
        Amend the tail when ``bar`` shares its bucket, append when newer.
        Returns "updated", "appended" or "stale"; stale bars are not applied.
        """
        tail: Optional[Bar] = self.tail
        if tail is None or bar.time > tail.time:
            self.bars.append(bar)
            return "appended"
        if bar.time == tail.time:
            self.bars[-1] = bar
            return "updated"
        log.debug(f"Ignoring bar at {bar.time}, older than tail {tail.time}")
        return "stale"

    def to_frame(self) -> pd.DataFrame:
        """Window as a DataFrame indexed by UTC bucket start"""
        df: pd.DataFrame = pd.DataFrame(
            [b.model_dump(include=set(FRAME_COLUMNS)) for b in self.bars],
            columns=FRAME_COLUMNS,
        )
        df.index = pd.to_datetime(df["time"].astype("int64"), unit="ms", utc=True)
        df.index.name = "timestamp_utc"
        return df
