"""Time interval arithmetic shared by the availability model and preferences.

All datetimes handled here are naive local wall-clock times; snapshots
normalise timezone-aware input before anything reaches this module.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime

    def minutes(self) -> int:
        """Length in whole minutes (floored)."""
        return int((self.end - self.start).total_seconds() // 60)

    def duration(self) -> timedelta:
        return self.end - self.start

    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, start: datetime, end: datetime) -> "Interval":
        return Interval(start=max(self.start, start), end=min(self.end, end))

    def expand(self, minutes: int) -> "Interval":
        delta = timedelta(minutes=minutes)
        return Interval(start=self.start - delta, end=self.end + delta)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Merge overlapping or touching intervals into a sorted disjoint list."""
    ordered = sorted(i for i in intervals if not i.is_empty())

    merged: List[Interval] = []
    for it in ordered:
        if merged and it.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(start=last.start, end=max(last.end, it.end))
        else:
            merged.append(it)
    return merged


def subtract_intervals(window: Interval, busy: Iterable[Interval]) -> List[Interval]:
    """Return the parts of ``window`` not covered by any busy interval."""
    if window.is_empty():
        return []

    free: List[Interval] = []
    cursor = window.start

    for b in merge_intervals(b.clip(window.start, window.end) for b in busy):
        # Gap between cursor and the next busy block is free
        if b.start > cursor:
            free.append(Interval(start=cursor, end=b.start))
        cursor = max(cursor, b.end)
        if cursor >= window.end:
            break

    if cursor < window.end:
        free.append(Interval(start=cursor, end=window.end))

    return free


def intersect_intervals(left: Iterable[Interval], right: Iterable[Interval]) -> List[Interval]:
    """Intersect two interval collections (two-pointer sweep)."""
    a = merge_intervals(left)
    b = merge_intervals(right)

    out: List[Interval] = []
    i = j = 0
    while i < len(a) and j < len(b):
        start = max(a[i].start, b[j].start)
        end = min(a[i].end, b[j].end)
        if end > start:
            out.append(Interval(start=start, end=end))
        if a[i].end < b[j].end:
            i += 1
        else:
            j += 1
    return out
