"""Schedule API routes.

Provides endpoints for automatic scheduling, goal progress and stale tasks.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from src.db.pool import Database
from src.engine.errors import PreferencesError
from src.engine.goal_tracker import GoalProgressTracker
from src.engine.models import CalendarEvent, Goal, SchedulingSnapshot, Task, UnschedulableTask, parse_tasks
from src.engine.preferences import SchedulingPreferences, load_preferences
from src.engine.scheduler_service import SchedulingOrchestrator
from src.engine.staleness import find_stale_tasks
from src.state.repository import PostgresSnapshotSource, apply_plan

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schedule", tags=["schedule"])

orchestrator = SchedulingOrchestrator()


# Request/Response models
class GoalInput(BaseModel):
    """A goal in a plan request."""

    id: str
    title: str = ""
    target_date: Optional[datetime] = None
    progress_percent: float = 0.0
    priority: int = 2
    linked_task_ids: List[str] = []
    status: str = "active"
    start_date: Optional[datetime] = None
    recent_velocity: Optional[float] = None


class EventInput(BaseModel):
    """A calendar event in a plan request."""

    id: str
    start: datetime
    end: datetime
    title: str = ""
    movable: bool = False


class PlanRequest(BaseModel):
    """Stateless plan request: the whole snapshot travels in the body."""

    # Raw mappings so one malformed task is rejected on its own
    tasks: List[Dict[str, Any]]
    goals: List[GoalInput] = []
    events: List[EventInput] = []
    now: Optional[datetime] = None
    preferences: Optional[Dict[str, Any]] = None
    full_replan: bool = False
    override_manual: bool = False


class AutoScheduleRequest(BaseModel):
    """Plan from the database and optionally persist the result."""

    now: Optional[datetime] = None
    full_replan: bool = False
    override_manual: bool = False
    apply: bool = True


class StaleRequest(BaseModel):
    """Request for stale task detection."""

    tasks: List[Dict[str, Any]]
    now: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)


class StaleTaskResponse(BaseModel):
    """A stale task."""

    task_id: str
    title: str
    days_stale: int
    reason: str
    suggested_actions: List[str]


class StaleResponse(BaseModel):
    """Response from stale endpoint."""

    stale_tasks: List[StaleTaskResponse]
    total: int


class GoalReportResponse(BaseModel):
    """Goal progress report."""

    goal_id: str
    required_daily_progress: float
    on_track: bool
    recommendation: str
    days_remaining: Optional[int] = None
    recent_velocity: float
    risk_level: str
    urgency: float


class GoalsResponse(BaseModel):
    """Response from goals endpoint."""

    goals: List[GoalReportResponse]
    total: int


# Database and preferences - will be set by main.py
_db: Optional[Database] = None
_preferences: Optional[SchedulingPreferences] = None


def set_database(db: Optional[Database]) -> None:
    """Set the database instance for routes."""
    global _db
    _db = db


def get_db() -> Database:
    """Get the database instance."""
    if _db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return _db


def set_preferences(preferences: Optional[SchedulingPreferences]) -> None:
    """Set the server-wide scheduling preferences."""
    global _preferences
    _preferences = preferences


def resolve_preferences(override: Optional[Dict[str, Any]] = None) -> SchedulingPreferences:
    """Preferences from the request body, else the server's.

    Raises:
        HTTPException: 422 when neither is usable
    """
    try:
        if override is not None:
            return load_preferences(override)
        return load_preferences(_preferences)
    except PreferencesError as e:
        logger.warning(f"[Schedule] Rejected preferences: {e}")
        raise HTTPException(status_code=422, detail=f"No plan produced: {e}")


def _tasks_from_input(items: List[Dict[str, Any]]) -> Tuple[List[Task], List[UnschedulableTask]]:
    tasks, rejected = parse_tasks(items)
    for r in rejected:
        logger.warning(f"[Schedule] Rejected task {r.task_id}: {r.detail}")
    return tasks, rejected


@router.post("/plan")
async def plan_snapshot(request: PlanRequest) -> Dict[str, Any]:
    """Plan a snapshot passed in the request body.

    Nothing is read from or written to the database.
    """
    if not request.tasks:
        raise HTTPException(status_code=400, detail="Tasks list cannot be empty")

    prefs = resolve_preferences(request.preferences)
    tasks, rejected = _tasks_from_input(request.tasks)
    try:
        goals = [Goal.from_dict(g.model_dump()) for g in request.goals]
        events = [CalendarEvent.from_dict(e.model_dump()) for e in request.events]
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid goal or event: {e}")

    now = request.now or datetime.now(prefs.tzinfo())
    snapshot = SchedulingSnapshot.create(
        now=now, preferences=prefs, tasks=tasks, goals=goals, events=events,
        rejected=rejected,
    )

    try:
        plan = orchestrator.plan(
            snapshot,
            full_replan=request.full_replan,
            override_manual=request.override_manual,
        )
    except PreferencesError as e:
        raise HTTPException(status_code=422, detail=f"No plan produced: {e}")

    return plan.to_dict()


@router.post("/auto")
async def auto_schedule(request: AutoScheduleRequest) -> Dict[str, Any]:
    """Load tasks, goals and events from the database, plan, and persist."""
    db = get_db()
    prefs = resolve_preferences()
    source = PostgresSnapshotSource(db)

    try:
        plan = await orchestrator.run(
            source,
            prefs,
            now=request.now,
            full_replan=request.full_replan,
            override_manual=request.override_manual,
        )
    except PreferencesError as e:
        raise HTTPException(status_code=422, detail=f"No plan produced: {e}")
    except Exception as e:
        logger.error(f"Error running auto schedule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    result = plan.to_dict()
    result["applied"] = None
    if request.apply:
        try:
            override = request.full_replan and request.override_manual
            result["applied"] = await apply_plan(db, plan, override_manual=override)
        except Exception as e:
            logger.error(f"Error applying plan: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return result


@router.get("/goals", response_model=GoalsResponse)
async def goal_progress(now: Optional[datetime] = None):
    """Get progress reports for goals stored in the database."""
    db = get_db()
    prefs = resolve_preferences()
    source = PostgresSnapshotSource(db)

    try:
        moment = now or datetime.now(prefs.tzinfo())
        goals = await source.get_goals_in_window(moment, moment + timedelta(days=prefs.horizon_days))
        tasks = [t for t in await source.get_schedulable_tasks() if isinstance(t, Task)]
    except Exception as e:
        logger.error(f"Error loading goals: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    snapshot = SchedulingSnapshot.create(now=moment, preferences=prefs, tasks=tasks, goals=goals)
    tracker = GoalProgressTracker(tolerance=prefs.goal_tolerance)
    tracking = tracker.track(snapshot.goals, snapshot.tasks, snapshot.now)

    return GoalsResponse(
        goals=[GoalReportResponse(**r.to_dict()) for r in tracking.reports],
        total=len(tracking.reports),
    )


@router.post("/stale", response_model=StaleResponse)
async def stale_tasks(request: StaleRequest):
    """Find stale tasks in the posted list."""
    prefs = _preferences or SchedulingPreferences()
    tasks, _ = _tasks_from_input(request.tasks)

    snapshot = SchedulingSnapshot.create(
        now=request.now or datetime.now(prefs.tzinfo()),
        preferences=prefs,
        tasks=tasks,
    )
    stale = find_stale_tasks(snapshot.tasks, prefs, snapshot.now, limit=request.limit)

    return StaleResponse(
        stale_tasks=[StaleTaskResponse(**s.to_dict()) for s in stale],
        total=len(stale),
    )
