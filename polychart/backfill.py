import logging
from typing import Hashable, List, Optional, Sequence

from .models import Bar

log = logging.getLogger("polychart.backfill")


class WindowOverlapError(ValueError):
    """Older page overlaps the window or is not strictly ascending"""

    pass


def check_ascending(bars: Sequence[Bar], label: str = "bars") -> None:
    for prev, cur in zip(bars, bars[1:]):
        if cur.time <= prev.time:
            raise WindowOverlapError(
                f"{label} not strictly ascending: {cur.time} follows {prev.time}"
            )


def merge_older(page: Sequence[Bar], window: Sequence[Bar]) -> List[Bar]:
    """
    Splice an older, gap-filled page in front of the window.
    Both inputs must be ascending and the page must end before the window starts.
    """
    if not page:
        return list(window)
    check_ascending(page, "older page")
    if window and page[-1].time >= window[0].time:
        raise WindowOverlapError(
            f"Older page ends at {page[-1].time}, window starts at {window[0].time}"
        )
    return list(page) + list(window)


class HistoryCursor:
    """Scroll-back bookkeeping for one selection.

    ``end_of_history`` sticks once the source has nothing older and is only
    cleared by ``reset`` with a different selection. ``busy`` serializes
    backfill requests.
    """

    def __init__(self) -> None:
        self.selection: Optional[Hashable] = None
        self.end_of_history: bool = False
        self.busy: bool = False

    def reset(self, selection: Hashable) -> None:
        if selection != self.selection:
            log.debug(f"History cursor reset for {selection}")
            self.selection = selection
            self.end_of_history = False
        self.busy = False

    def can_request(self) -> bool:
        return not self.busy and not self.end_of_history

    def begin(self) -> bool:
        """Claim the in-flight slot; False when a request is running or history is exhausted"""
        if not self.can_request():
            return False
        self.busy = True
        return True

    def finish(
        self,
        page: Sequence[Bar],
        window: Sequence[Bar],
        exhausted: Optional[bool] = None,
    ) -> List[Bar]:
        """
        Release the slot and merge ``page``. ``exhausted`` tells whether the
        source returned no records at all; it defaults to the page being empty.
        """
        self.busy = False
        if exhausted is None:
            exhausted = not page
        if exhausted:
            log.info(f"Reached start of history for {self.selection}")
            self.end_of_history = True
        if not page:
            return list(window)
        merged: List[Bar] = merge_older(page, window)
        log.info(
            f"Backfilled {len(page)} bars for {self.selection}, window now {len(merged)} bars"
        )
        return merged

    def abandon(self) -> None:
        self.busy = False
