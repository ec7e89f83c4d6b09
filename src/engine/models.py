"""Data models for the scheduling engine - Task, Goal, CalendarEvent, SchedulePlan."""

import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from src.engine.errors import PreferencesError, ReasonCode
from src.engine.intervals import Interval
from src.engine.preferences import SchedulingPreferences


class TaskStatus(str, Enum):
    """Task status enum."""
    INBOX = "inbox"
    NEXT_ACTION = "next_action"
    ACTIVE = "active"
    WAITING_FOR = "waiting_for"
    SCHEDULED = "scheduled"
    SOMEDAY_MAYBE = "someday_maybe"
    COMPLETED = "completed"
    DELETED = "deleted"


# Statuses the engine may place onto the calendar
PLACEABLE_STATUSES = frozenset({
    TaskStatus.INBOX,
    TaskStatus.NEXT_ACTION,
    TaskStatus.ACTIVE,
    TaskStatus.SCHEDULED,
})


class GoalStatus(str, Enum):
    """Goal status enum."""
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class PlacementKind(str, Enum):
    """Who put a task on the calendar."""
    NONE = "none"
    AUTO = "auto"
    MANUAL = "manual"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59))
    text = str(value)
    if len(text) == 10:
        # Bare dates mean the end of that day
        return datetime.combine(date.fromisoformat(text), time(23, 59))
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Placement:
    """Tagged placement state: unplaced, auto-placed or manually placed."""

    kind: PlacementKind = PlacementKind.NONE
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def unplaced(cls) -> "Placement":
        return cls()

    @classmethod
    def auto(cls, start: datetime, end: datetime) -> "Placement":
        return cls(kind=PlacementKind.AUTO, start=start, end=end)

    @classmethod
    def manual(cls, start: datetime, end: datetime) -> "Placement":
        return cls(kind=PlacementKind.MANUAL, start=start, end=end)

    @property
    def is_placed(self) -> bool:
        return self.kind != PlacementKind.NONE

    @property
    def interval(self) -> Optional[Interval]:
        if not self.is_placed or self.start is None or self.end is None:
            return None
        return Interval(start=self.start, end=self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start": _isoformat(self.start),
            "end": _isoformat(self.end),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Placement":
        if not data:
            return cls()
        return cls(
            kind=PlacementKind(data.get("kind", "none")),
            start=_parse_datetime(data.get("start")),
            end=_parse_datetime(data.get("end")),
        )


@dataclass(frozen=True)
class Task:
    """Actionable task as seen by the scheduler."""

    id: str
    title: str = ""
    status: TaskStatus = TaskStatus.NEXT_ACTION
    priority: int = 2  # 1 high .. 3 low
    due_date: Optional[datetime] = None
    estimated_minutes: int = 30
    energy_level: int = 3  # 1-5
    contexts: FrozenSet[str] = frozenset()
    requires_deep_work: bool = False
    blocked_by: FrozenSet[str] = frozenset()
    goal_ids: FrozenSet[str] = frozenset()
    placement: Placement = field(default_factory=Placement)
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def last_touched(self) -> Optional[datetime]:
        return self.modified_at or self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority,
            "due_date": _isoformat(self.due_date),
            "estimated_minutes": self.estimated_minutes,
            "energy_level": self.energy_level,
            "contexts": sorted(self.contexts),
            "requires_deep_work": self.requires_deep_work,
            "blocked_by": sorted(self.blocked_by),
            "goal_ids": sorted(self.goal_ids),
            "placement": self.placement.to_dict(),
            "created_at": _isoformat(self.created_at),
            "modified_at": _isoformat(self.modified_at),
            "completed_at": _isoformat(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            title=data.get("title", "") or "",
            status=TaskStatus(data.get("status", "next_action")),
            priority=int(data.get("priority", 2)),
            due_date=_parse_datetime(data.get("due_date")),
            estimated_minutes=int(data.get("estimated_minutes", 30)),
            energy_level=int(data.get("energy_level", 3)),
            contexts=frozenset(data.get("contexts") or []),
            requires_deep_work=bool(data.get("requires_deep_work", False)),
            blocked_by=frozenset(str(i) for i in data.get("blocked_by") or []),
            goal_ids=frozenset(str(i) for i in data.get("goal_ids") or []),
            placement=Placement.from_dict(data.get("placement")),
            created_at=_parse_datetime(data.get("created_at")),
            modified_at=_parse_datetime(data.get("modified_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
        )


def parse_tasks(items: Iterable[Any]) -> Tuple[List[Task], List["UnschedulableTask"]]:
    """Parse raw task mappings one at a time.

    A malformed entry becomes an InvalidTask rejection and the remaining
    entries still parse. Entries without an id are labelled by position.

    Returns:
        (tasks, rejected)
    """
    tasks: List[Task] = []
    rejected: List[UnschedulableTask] = []
    for index, item in enumerate(items):
        try:
            tasks.append(Task.from_dict(item))
        except KeyError as e:
            rejected.append(_reject(item, index, f"missing field {e}"))
        except (TypeError, ValueError) as e:
            rejected.append(_reject(item, index, str(e)))
    return tasks, rejected


def _reject(item: Any, index: int, message: str) -> "UnschedulableTask":
    task_id = item.get("id") if isinstance(item, Mapping) else None
    label = str(task_id) if task_id is not None else f"#{index}"
    return UnschedulableTask(label, ReasonCode.INVALID_TASK, f"malformed task: {message}")


@dataclass(frozen=True)
class Goal:
    """Goal with a target date and progress percentage."""

    id: str
    title: str = ""
    target_date: Optional[datetime] = None
    progress_percent: float = 0.0
    priority: int = 2
    linked_task_ids: FrozenSet[str] = frozenset()
    status: GoalStatus = GoalStatus.ACTIVE
    start_date: Optional[datetime] = None
    recent_velocity: Optional[float] = None  # percent per day

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Goal":
        """Create from dictionary."""
        velocity = data.get("recent_velocity")
        return cls(
            id=str(data["id"]),
            title=data.get("title", "") or "",
            target_date=_parse_datetime(data.get("target_date")),
            progress_percent=float(data.get("progress_percent", 0) or 0),
            priority=int(data.get("priority", 2)),
            linked_task_ids=frozenset(str(i) for i in data.get("linked_task_ids") or []),
            status=GoalStatus(data.get("status", "active")),
            start_date=_parse_datetime(data.get("start_date")),
            recent_velocity=float(velocity) if velocity is not None else None,
        )


@dataclass(frozen=True)
class CalendarEvent:
    """Calendar event. Non-movable events are hard constraints."""

    id: str
    start: datetime
    end: datetime
    title: str = ""
    movable: bool = False

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start, end=self.end)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarEvent":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            start=_parse_datetime(data["start"]),
            end=_parse_datetime(data["end"]),
            title=data.get("title", "") or "",
            movable=bool(data.get("movable", False)),
        )


# ==================== Snapshot ====================


def _to_local(value: Optional[datetime], tz: Optional[tzinfo]) -> Optional[datetime]:
    """Convert aware datetimes to naive wall-clock time in ``tz`` (UTC when unset)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(tz or timezone.utc).replace(tzinfo=None)


def _localize_task(task: Task, tz: Optional[tzinfo]) -> Task:
    placement = task.placement
    if placement.is_placed:
        placement = replace(
            placement,
            start=_to_local(placement.start, tz),
            end=_to_local(placement.end, tz),
        )
    return replace(
        task,
        due_date=_to_local(task.due_date, tz),
        placement=placement,
        created_at=_to_local(task.created_at, tz),
        modified_at=_to_local(task.modified_at, tz),
        completed_at=_to_local(task.completed_at, tz),
    )


@dataclass(frozen=True)
class SchedulingSnapshot:
    """Immutable input to one orchestration run."""

    now: datetime
    preferences: SchedulingPreferences
    tasks: Tuple[Task, ...] = ()
    goals: Tuple[Goal, ...] = ()
    events: Tuple[CalendarEvent, ...] = ()
    rejected: Tuple["UnschedulableTask", ...] = ()

    @classmethod
    def create(
        cls,
        now: datetime,
        preferences: Optional[SchedulingPreferences],
        tasks: Iterable[Task] = (),
        goals: Iterable[Goal] = (),
        events: Iterable[CalendarEvent] = (),
        rejected: Iterable["UnschedulableTask"] = (),
    ) -> "SchedulingSnapshot":
        """Build a snapshot with naive local datetimes and id-sorted collections.

        Raises:
            PreferencesError: if preferences are missing
        """
        if not isinstance(preferences, SchedulingPreferences):
            raise PreferencesError("Scheduling preferences are missing or malformed")

        # Without a configured zone, aware inputs follow the zone of ``now``
        tz = preferences.tzinfo() or now.tzinfo
        local_tasks = [_localize_task(t, tz) for t in tasks]
        local_goals = [
            replace(
                g,
                target_date=_to_local(g.target_date, tz),
                start_date=_to_local(g.start_date, tz),
            )
            for g in goals
        ]
        local_events = [
            replace(e, start=_to_local(e.start, tz), end=_to_local(e.end, tz))
            for e in events
        ]

        # Stable sort keeps the first occurrence of a duplicate id first
        return cls(
            now=_to_local(now, tz),
            preferences=preferences,
            tasks=tuple(sorted(local_tasks, key=lambda t: t.id)),
            goals=tuple(sorted(local_goals, key=lambda g: g.id)),
            events=tuple(sorted(local_events, key=lambda e: (e.start, e.id))),
            rejected=tuple(sorted(rejected, key=lambda u: u.task_id)),
        )


# ==================== Plan ====================


@dataclass(frozen=True)
class Assignment:
    """A task placed onto the calendar."""

    task_id: str
    start: datetime
    end: datetime

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start, end=self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class UnschedulableTask:
    """A task the engine could not place, with the reason."""

    task_id: str
    reason: ReasonCode
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "reason": self.reason.value, "detail": self.detail}


class GoalRiskLevel(str, Enum):
    """Risk of missing a goal's target date."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class GoalReport:
    """Progress report for one goal."""

    goal_id: str
    required_daily_progress: float
    on_track: bool
    recommendation: str
    days_remaining: Optional[int] = None
    recent_velocity: float = 0.0
    risk_level: GoalRiskLevel = GoalRiskLevel.NONE
    urgency: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "required_daily_progress": round(self.required_daily_progress, 4),
            "on_track": self.on_track,
            "recommendation": self.recommendation,
            "days_remaining": self.days_remaining,
            "recent_velocity": round(self.recent_velocity, 4),
            "risk_level": self.risk_level.value,
            "urgency": round(self.urgency, 4),
        }


@dataclass(frozen=True)
class CycleReport:
    """Tasks excluded because they block each other."""

    task_ids: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"task_ids": list(self.task_ids)}


class ConflictType(str, Enum):
    """Problems found with a manual placement."""
    OVERLAPS_EVENT = "overlaps_event"
    OUTSIDE_WORK_HOURS = "outside_work_hours"
    DEADLINE_MISSED = "deadline_missed"
    DEPENDENCY_ORDER = "dependency_order"


@dataclass(frozen=True)
class SchedulingConflict:
    """A conflict the engine reports but does not resolve."""

    type: ConflictType
    task_id: str
    description: str
    event_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "task_id": self.task_id,
            "event_id": self.event_id,
            "description": self.description,
        }


@dataclass(frozen=True)
class SchedulePlan:
    """Result of one orchestration run."""

    generated_at: datetime
    assignments: Tuple[Assignment, ...] = ()
    unschedulable: Tuple[UnschedulableTask, ...] = ()
    goal_reports: Tuple[GoalReport, ...] = ()
    cycles: Tuple[CycleReport, ...] = ()
    conflicts: Tuple[SchedulingConflict, ...] = ()

    def assignment_for(self, task_id: str) -> Optional[Assignment]:
        for assignment in self.assignments:
            if assignment.task_id == task_id:
                return assignment
        return None

    def reason_for(self, task_id: str) -> Optional[ReasonCode]:
        for item in self.unschedulable:
            if item.task_id == task_id:
                return item.reason
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "assignments": [a.to_dict() for a in self.assignments],
            "unschedulable": [u.to_dict() for u in self.unschedulable],
            "goal_reports": [g.to_dict() for g in self.goal_reports],
            "cycles": [c.to_dict() for c in self.cycles],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    def to_json(self) -> str:
        """Canonical JSON; identical plans serialise to identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
