"""Scheduling engine - dependency ordering, availability, scoring and placement."""

from src.engine.availability import CalendarAvailabilityModel, SlotFinder
from src.engine.dependency_solver import CriticalPathAnalyzer, DependencyResolver
from src.engine.errors import (
    CyclicDependencyError,
    PreferencesError,
    ReasonCode,
    RunCancelledError,
    SchedulingError,
    UnschedulableError,
    ValidationError,
)
from src.engine.goal_tracker import GoalProgressTracker
from src.engine.models import SchedulePlan, SchedulingSnapshot
from src.engine.preferences import SchedulingPreferences, load_preferences
from src.engine.scheduler_service import SchedulingOrchestrator
from src.engine.task_scorer import TaskScoringEngine

__all__ = [
    "CalendarAvailabilityModel",
    "SlotFinder",
    "CriticalPathAnalyzer",
    "DependencyResolver",
    "CyclicDependencyError",
    "PreferencesError",
    "ReasonCode",
    "RunCancelledError",
    "SchedulingError",
    "UnschedulableError",
    "ValidationError",
    "GoalProgressTracker",
    "SchedulePlan",
    "SchedulingSnapshot",
    "SchedulingPreferences",
    "load_preferences",
    "SchedulingOrchestrator",
    "TaskScoringEngine",
]
