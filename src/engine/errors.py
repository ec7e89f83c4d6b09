"""Error taxonomy for the scheduling engine.

Everything except PreferencesError and RunCancelledError is recoverable:
the orchestrator catches it per task, reports it in the plan and keeps going.
"""

from enum import Enum
from typing import Iterable, Optional


class ReasonCode(str, Enum):
    """Why a task did not receive a placement."""
    NO_CAPACITY = "NoCapacity"
    ENERGY_MISMATCH = "EnergyMismatch"
    DEPENDENCY_NOT_READY = "DependencyNotReady"
    CONTEXT_UNAVAILABLE = "ContextUnavailable"
    CYCLIC_DEPENDENCY = "CyclicDependency"
    INVALID_TASK = "InvalidTask"
    SCORING_FAILED = "ScoringFailed"


class SchedulingError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(SchedulingError):
    """Raised when a single task is malformed (e.g. negative duration)."""

    def __init__(self, task_id: str, message: str):
        super().__init__(f"Task {task_id}: {message}")
        self.task_id = task_id
        self.message = message


class CyclicDependencyError(SchedulingError):
    """Raised for a set of tasks that block each other."""

    def __init__(self, task_ids: Iterable[str]):
        self.task_ids = tuple(sorted(task_ids))
        super().__init__(f"Circular dependency between: {', '.join(self.task_ids)}")


class UnschedulableError(SchedulingError):
    """Raised when no feasible slot exists for a task."""

    def __init__(self, task_id: str, reason: ReasonCode, detail: Optional[str] = None):
        self.task_id = task_id
        self.reason = reason
        self.detail = detail or ""
        message = f"Task {task_id} unschedulable ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PreferencesError(SchedulingError):
    """Missing or malformed scheduling preferences. Aborts the whole run."""
    pass


class RunCancelledError(SchedulingError):
    """Raised when a run is cancelled; partial results are discarded."""
    pass
