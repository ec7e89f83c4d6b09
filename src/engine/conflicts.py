"""Conflict detection for manual placements.

Manual placements are user commitments and are never moved; problems
with them are reported alongside the plan instead.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from src.engine.intervals import Interval
from src.engine.models import (
    CalendarEvent,
    ConflictType,
    PlacementKind,
    SchedulingConflict,
    Task,
)
from src.engine.preferences import SchedulingPreferences


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def detect_conflicts(
    tasks: Iterable[Task],
    events: Iterable[CalendarEvent],
    preferences: SchedulingPreferences,
    placements: Optional[Dict[str, Interval]] = None,
) -> List[SchedulingConflict]:
    """Report problems with manually placed tasks.

    Args:
        tasks: All tasks in the snapshot
        events: Calendar events; only non-movable ones count
        preferences: Scheduling preferences (work hours)
        placements: Final intervals per task id, including new assignments

    Returns:
        Conflicts sorted by task id, type and event id
    """
    task_list = list(tasks)
    fixed = [e for e in events if not e.movable]

    completed = {t.id for t in task_list if t.is_completed}
    intervals: Dict[str, Interval] = {}
    for task in task_list:
        if task.placement.kind == PlacementKind.MANUAL and task.placement.interval is not None:
            intervals[task.id] = task.placement.interval
    intervals.update(placements or {})

    conflicts: List[SchedulingConflict] = []
    for task in task_list:
        if task.placement.kind != PlacementKind.MANUAL or task.placement.interval is None:
            continue
        slot = task.placement.interval

        for event in fixed:
            if slot.overlaps(event.interval):
                conflicts.append(SchedulingConflict(
                    type=ConflictType.OVERLAPS_EVENT,
                    task_id=task.id,
                    event_id=event.id,
                    description=f"Overlaps '{event.title or event.id}' at {_fmt(event.start)}",
                ))

        day = slot.start.date()
        work_start = datetime.combine(day, preferences.work_start)
        work_end = datetime.combine(day, preferences.work_end)
        if not preferences.is_work_day(day) or slot.start < work_start or slot.end > work_end:
            conflicts.append(SchedulingConflict(
                type=ConflictType.OUTSIDE_WORK_HOURS,
                task_id=task.id,
                description=f"Placed outside working hours ({_fmt(slot.start)} - {_fmt(slot.end)})",
            ))

        if task.due_date is not None and slot.end > task.due_date:
            conflicts.append(SchedulingConflict(
                type=ConflictType.DEADLINE_MISSED,
                task_id=task.id,
                description=f"Ends after due date {_fmt(task.due_date)}",
            ))

        for pred in sorted(task.blocked_by):
            if pred in completed:
                continue
            pred_slot = intervals.get(pred)
            if pred_slot is not None and pred_slot.end > slot.start:
                conflicts.append(SchedulingConflict(
                    type=ConflictType.DEPENDENCY_ORDER,
                    task_id=task.id,
                    description=f"Starts before predecessor {pred} ends at {_fmt(pred_slot.end)}",
                ))

    conflicts.sort(key=lambda c: (c.task_id, c.type.value, c.event_id or ""))
    return conflicts
