"""Stale task detection - tasks nobody has touched for too long."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from src.engine.models import Task, TaskStatus
from src.engine.preferences import SchedulingPreferences

INBOX_STALE_DAYS = 2
WAITING_FOR_STALE_DAYS = 5
SOMEDAY_MAYBE_REVIEW_DAYS = 30
# Overdue tasks untouched for this long are flagged
OVERDUE_IDLE_DAYS = 2


class StaleReason(str, Enum):
    """Why a task is considered stale."""
    NOT_MODIFIED_RECENTLY = "not_modified_recently"
    WAITING_FOR_TOO_LONG = "waiting_for_too_long"
    OVERDUE_WITH_NO_PROGRESS = "overdue_with_no_progress"
    INBOX_TOO_LONG = "inbox_too_long"
    SOMEDAY_MAYBE_NEEDS_REVIEW = "someday_maybe_needs_review"


SUGGESTED_ACTIONS: Dict[StaleReason, List[str]] = {
    StaleReason.INBOX_TOO_LONG: [
        "Process this item and decide what to do with it",
        "Convert to a next action if it is actionable",
        "Delete if no longer relevant",
    ],
    StaleReason.NOT_MODIFIED_RECENTLY: [
        "Work on this task now",
        "Break it down into smaller steps",
        "Move to someday/maybe if not a priority",
    ],
    StaleReason.WAITING_FOR_TOO_LONG: [
        "Follow up with the person you are waiting on",
        "Find an alternative approach",
    ],
    StaleReason.SOMEDAY_MAYBE_NEEDS_REVIEW: [
        "Review if this is still relevant",
        "Promote to a next action if ready",
    ],
    StaleReason.OVERDUE_WITH_NO_PROGRESS: [
        "Reschedule to a realistic date",
        "Break into smaller pieces if blocked",
    ],
}


@dataclass(frozen=True)
class StaleTaskInfo:
    """A stale task and why it was flagged."""

    task_id: str
    days_stale: int
    reason: StaleReason
    title: str = ""
    suggested_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "days_stale": self.days_stale,
            "reason": self.reason.value,
            "suggested_actions": list(self.suggested_actions),
        }


def _threshold(status: TaskStatus, preferences: SchedulingPreferences) -> Optional[tuple]:
    if status == TaskStatus.INBOX:
        return INBOX_STALE_DAYS, StaleReason.INBOX_TOO_LONG
    if status in (TaskStatus.NEXT_ACTION, TaskStatus.ACTIVE):
        return preferences.stale_after_days, StaleReason.NOT_MODIFIED_RECENTLY
    if status == TaskStatus.WAITING_FOR:
        return WAITING_FOR_STALE_DAYS, StaleReason.WAITING_FOR_TOO_LONG
    if status == TaskStatus.SOMEDAY_MAYBE:
        return SOMEDAY_MAYBE_REVIEW_DAYS, StaleReason.SOMEDAY_MAYBE_NEEDS_REVIEW
    return None


def find_stale_tasks(
    tasks: Iterable[Task],
    preferences: SchedulingPreferences,
    now: datetime,
    limit: Optional[int] = None,
) -> List[StaleTaskInfo]:
    """Find stale tasks.

    Overdue tasks come first, then inbox items, then by days stale.

    Args:
        tasks: Tasks to inspect
        preferences: Scheduling preferences (next-action threshold)
        now: Evaluation instant
        limit: Maximum results to return

    Returns:
        List of StaleTaskInfo
    """
    stale: List[StaleTaskInfo] = []

    for task in tasks:
        if task.status in (TaskStatus.COMPLETED, TaskStatus.DELETED):
            continue
        touched = task.last_touched
        if touched is None:
            continue
        idle_days = (now - touched).days

        info: Optional[StaleTaskInfo] = None
        rule = _threshold(task.status, preferences)
        if rule is not None and idle_days >= rule[0]:
            info = StaleTaskInfo(
                task_id=task.id,
                days_stale=idle_days,
                reason=rule[1],
                title=task.title,
                suggested_actions=list(SUGGESTED_ACTIONS[rule[1]]),
            )

        if info is None and task.due_date is not None:
            days_overdue = (now.date() - task.due_date.date()).days
            if days_overdue > 0 and idle_days >= OVERDUE_IDLE_DAYS:
                info = StaleTaskInfo(
                    task_id=task.id,
                    days_stale=days_overdue,
                    reason=StaleReason.OVERDUE_WITH_NO_PROGRESS,
                    title=task.title,
                    suggested_actions=list(SUGGESTED_ACTIONS[StaleReason.OVERDUE_WITH_NO_PROGRESS]),
                )

        if info is not None:
            stale.append(info)

    stale.sort(key=lambda s: (
        s.reason != StaleReason.OVERDUE_WITH_NO_PROGRESS,
        s.reason != StaleReason.INBOX_TOO_LONG,
        -s.days_stale,
        s.task_id,
    ))
    if limit is not None:
        stale = stale[:limit]
    return stale
