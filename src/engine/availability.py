"""Calendar availability model and slot finder.

Free time is the daily work window (net of prep and wind-down blocks)
minus fixed events widened by the meeting buffer, minus the protected
lunch block, minus time already committed to other tasks.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Iterator, List, Optional

from src.engine.errors import ReasonCode, UnschedulableError
from src.engine.intervals import Interval, intersect_intervals, merge_intervals, subtract_intervals
from src.engine.models import CalendarEvent, Task
from src.engine.preferences import SchedulingPreferences

logger = logging.getLogger(__name__)

# Upper bound on days scanned when measuring capacity up to a far deadline
MAX_CAPACITY_DAYS = 400


def round_up(value: datetime, minutes: int) -> datetime:
    """Round ``value`` up to the next multiple of ``minutes`` past midnight."""
    base = value.replace(second=0, microsecond=0)
    if base < value:
        base += timedelta(minutes=1)
    remainder = (base.hour * 60 + base.minute) % minutes
    if remainder:
        base += timedelta(minutes=minutes - remainder)
    return base


class CalendarAvailabilityModel:
    """Free working time over the scheduling horizon."""

    def __init__(
        self,
        preferences: SchedulingPreferences,
        events: Iterable[CalendarEvent],
        now: datetime,
        commitments: Iterable[Interval] = (),
    ):
        """Initialize availability model.

        Args:
            preferences: Scheduling preferences
            events: Calendar events; only non-movable ones block time
            now: Planning instant (naive local time)
            commitments: Intervals already taken by placed tasks
        """
        self.preferences = preferences
        self.now = now
        self.fixed_events = [e for e in events if not e.movable]
        self._event_blocks = [
            e.interval.expand(preferences.buffer_minutes) for e in self.fixed_events
        ]
        self._commitments: List[Interval] = []
        self._day_cache: Dict[date, List[Interval]] = {}

        day_start = datetime.combine(now.date(), preferences.work_start)
        self.anchor = round_up(max(now, day_start), preferences.round_to_minutes)
        self.horizon_end = datetime.combine(
            now.date() + timedelta(days=preferences.horizon_days), time(0)
        )

        for interval in commitments:
            self.commit(interval)

    def commit(self, interval: Interval) -> None:
        """Mark ``interval`` (plus the transition buffer) as taken."""
        block = Interval(
            start=interval.start,
            end=interval.end + timedelta(minutes=self.preferences.transition_buffer_minutes),
        )
        self._commitments.append(block)
        self._day_cache.clear()

    @property
    def commitments(self) -> List[Interval]:
        return list(self._commitments)

    def work_window(self, day: date) -> Optional[Interval]:
        """Usable working window on ``day``, or None on a day off."""
        prefs = self.preferences
        if not prefs.is_work_day(day):
            return None
        start = datetime.combine(day, prefs.work_start) + timedelta(minutes=prefs.prep_minutes)
        end = datetime.combine(day, prefs.work_end) - timedelta(minutes=prefs.wind_down_minutes)
        return Interval(start=start, end=end)

    def blocked_on(self, day: date) -> List[Interval]:
        """Merged busy intervals touching ``day``."""
        prefs = self.preferences
        day_start = datetime.combine(day, time(0))
        day_end = day_start + timedelta(days=1)

        busy = [b for b in self._event_blocks if b.start < day_end and b.end > day_start]
        busy.extend(c for c in self._commitments if c.start < day_end and c.end > day_start)
        if prefs.lunch_protection and prefs.lunch_minutes > 0:
            lunch = datetime.combine(day, prefs.lunch_start)
            busy.append(Interval(start=lunch, end=lunch + timedelta(minutes=prefs.lunch_minutes)))
        return merge_intervals(busy)

    def free_on(self, day: date) -> List[Interval]:
        """Free intervals on ``day``, ignoring the planning anchor."""
        if day in self._day_cache:
            return self._day_cache[day]
        window = self.work_window(day)
        free = subtract_intervals(window, self.blocked_on(day)) if window else []
        self._day_cache[day] = free
        return free

    def free_intervals(self) -> Iterator[Interval]:
        """Lazily yield free intervals from the anchor to the horizon end."""
        for offset in range(self.preferences.horizon_days):
            day = self.now.date() + timedelta(days=offset)
            for interval in self.free_on(day):
                if interval.end <= self.anchor:
                    continue
                clipped = interval.clip(self.anchor, self.horizon_end)
                if not clipped.is_empty():
                    yield clipped

    def is_open(self, interval: Interval) -> bool:
        """True if ``interval`` is entirely free working time."""
        if interval.is_empty():
            return False
        return any(f.contains(interval) for f in self.free_on(interval.start.date()))

    def restrict(
        self,
        task: Task,
        interval: Interval,
        energy: bool = True,
        context: bool = True,
    ) -> List[Interval]:
        """Sub-intervals of ``interval`` where ``task`` may run.

        Args:
            task: Task being placed
            interval: Free interval within a single day
            energy: Apply the deep-work energy filter
            context: Apply context availability windows

        Returns:
            Admissible sub-intervals, possibly empty
        """
        day = interval.start.date()
        allowed = [interval]
        if energy and task.requires_deep_work:
            allowed = intersect_intervals(allowed, self.preferences.deep_work_windows(day))
        if context and task.contexts and allowed:
            windows = self.preferences.context_windows_on(task.contexts, day)
            if windows is not None:
                allowed = intersect_intervals(allowed, windows)
        return allowed

    def capacity_minutes(self, start: datetime, end: datetime) -> int:
        """Free working minutes between ``start`` and ``end``."""
        if end <= start:
            return 0
        total = 0
        day = start.date()
        last = min(end.date(), start.date() + timedelta(days=MAX_CAPACITY_DAYS))
        while day <= last:
            for interval in self.free_on(day):
                clipped = interval.clip(start, end)
                if not clipped.is_empty():
                    total += clipped.minutes()
            day += timedelta(days=1)
        return total


class SlotFinder:
    """Chronological first-fit search over free intervals."""

    def __init__(self, model: CalendarAvailabilityModel):
        self.model = model
        self._free: List[Interval] = list(model.free_intervals())

    @property
    def free(self) -> List[Interval]:
        return list(self._free)

    def _windows(self, not_before: Optional[datetime], deadline: Optional[datetime]) -> Iterator[Interval]:
        floor = self.model.anchor if not_before is None else max(self.model.anchor, not_before)
        for interval in self._free:
            if deadline is not None and interval.start >= deadline:
                break
            if interval.end <= floor:
                continue
            clipped = interval.clip(floor, deadline or interval.end)
            if not clipped.is_empty():
                yield clipped

    def candidates(
        self,
        task: Task,
        not_before: Optional[datetime] = None,
        deadline: Optional[datetime] = None,
    ) -> List[Interval]:
        """Admissible intervals long enough to hold ``task``."""
        need = task.estimated_minutes
        out: List[Interval] = []
        for window in self._windows(not_before, deadline):
            if window.minutes() < need:
                continue
            out.extend(i for i in self.model.restrict(task, window) if i.minutes() >= need)
        return out

    def find_slot(
        self,
        task: Task,
        not_before: Optional[datetime] = None,
        deadline: Optional[datetime] = None,
    ) -> Interval:
        """Earliest feasible slot for ``task``.

        Args:
            task: Task to place
            not_before: Earliest allowed start (e.g. predecessor end)
            deadline: Latest allowed end, usually the due date

        Returns:
            Interval [start, start + estimated_minutes)

        Raises:
            UnschedulableError: if nothing fits
        """
        need = task.estimated_minutes
        length = timedelta(minutes=need)
        fits_raw = fits_energy = False

        for window in self._windows(not_before, deadline):
            if window.minutes() < need:
                continue
            fits_raw = True
            energy_ok = [i for i in self.model.restrict(task, window, context=False) if i.minutes() >= need]
            if not energy_ok:
                continue
            fits_energy = True
            for interval in energy_ok:
                for admissible in self.model.restrict(task, interval, energy=False):
                    if admissible.minutes() >= need:
                        return Interval(start=admissible.start, end=admissible.start + length)

        if not fits_raw:
            reason = ReasonCode.NO_CAPACITY
            detail = f"no free {need}-minute slot"
        elif not fits_energy:
            reason = ReasonCode.ENERGY_MISMATCH
            detail = "no free slot during deep-work energy hours"
        else:
            reason = ReasonCode.CONTEXT_UNAVAILABLE
            detail = f"contexts {', '.join(sorted(task.contexts))} unavailable in free slots"
        if deadline is not None:
            detail = f"{detail} before {deadline.isoformat()}"
        raise UnschedulableError(task.id, reason, detail)

    def reserve(self, interval: Interval) -> None:
        """Take ``interval`` plus the transition buffer out of the free list."""
        block = Interval(
            start=interval.start,
            end=interval.end + timedelta(minutes=self.model.preferences.transition_buffer_minutes),
        )
        remaining: List[Interval] = []
        for free in self._free:
            if free.overlaps(block):
                remaining.extend(subtract_intervals(free, [block]))
            else:
                remaining.append(free)
        self._free = remaining
        # Keep commitments in sync so is_open/capacity see the reservation
        self.model.commit(interval)
        logger.debug(f"[Slots] Reserved {interval.start.isoformat()} - {interval.end.isoformat()}")

