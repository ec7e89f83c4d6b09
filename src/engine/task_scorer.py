"""Task Scoring Engine - weighted multi-dimension score per (task, start)."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from src.engine.dependency_solver import TaskTiming
from src.engine.errors import ReasonCode
from src.engine.intervals import Interval
from src.engine.models import Task
from src.engine.preferences import SCORING_DIMENSIONS, SchedulingPreferences

# Days over which the due-date pressure halves
DUE_DATE_HALF_LIFE_DAYS = 2.0
# Hours of slack over which critical-path pressure halves
SLACK_HALF_LIFE_HOURS = 8.0
DEPENDENTS_FACTOR = 0.15
CRITICAL_PATH_CAP = 1.5


@dataclass
class ScoringContext:
    """Per-run inputs shared by every score call."""

    preferences: SchedulingPreferences
    now: datetime
    timings: Dict[str, TaskTiming] = field(default_factory=dict)
    goal_urgency: Dict[str, float] = field(default_factory=dict)
    weights: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if not self.weights:
            self.weights = self.preferences.resolved_weights()


@dataclass(frozen=True)
class ScoreBreakdown:
    """Composite score for one (task, start) pair."""

    task_id: str
    start: datetime
    total: float
    components: Dict[str, float]
    eligible: bool = True
    reason: Optional[ReasonCode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "start": self.start.isoformat(),
            "total": round(self.total, 6),
            "components": {k: round(v, 6) for k, v in sorted(self.components.items())},
            "eligible": self.eligible,
            "reason": self.reason.value if self.reason else None,
        }


class TaskScoringEngine:
    """Scores tasks as a weighted linear sum over named dimensions."""

    def score(self, task: Task, start: datetime, context: ScoringContext) -> ScoreBreakdown:
        """Score ``task`` starting at ``start``.

        Args:
            task: Task to score
            start: Candidate start
            context: Shared run inputs

        Returns:
            ScoreBreakdown; ``eligible`` is False when a hard filter rejects the slot
        """
        prefs = context.preferences
        end = start + timedelta(minutes=task.estimated_minutes)

        reason: Optional[ReasonCode] = None
        if task.requires_deep_work and not prefs.deep_work_allowed(start, end):
            reason = ReasonCode.ENERGY_MISMATCH
        elif task.contexts and not prefs.contexts_available(task.contexts, start, end):
            reason = ReasonCode.CONTEXT_UNAVAILABLE

        components = {
            "priority": self.priority_value(task),
            "due_date": self.due_date_value(task, context.now),
            "energy": self.energy_value(task, start, end, prefs),
            "critical_path": self.critical_urgency(task, context),
            "goal": context.goal_urgency.get(task.id, 0.0),
            "staleness": self.staleness_value(task, context.now, prefs),
        }
        total = sum(context.weights.get(name, 0.0) * components[name] for name in SCORING_DIMENSIONS)

        return ScoreBreakdown(
            task_id=task.id,
            start=start,
            total=total,
            components=components,
            eligible=reason is None,
            reason=reason,
        )

    def best_score(
        self,
        task: Task,
        candidates: Iterable[Interval],
        context: ScoringContext,
    ) -> Optional[ScoreBreakdown]:
        """Best eligible score over candidate starts.

        Each interval contributes its own start plus every whole hour inside
        it where the task still fits.

        Returns:
            The best ScoreBreakdown, or None when no candidate is eligible
        """
        best: Optional[ScoreBreakdown] = None
        for start in self._candidate_starts(task, candidates):
            breakdown = self.score(task, start, context)
            if not breakdown.eligible:
                continue
            # Earlier start wins ties
            if best is None or breakdown.total > best.total:
                best = breakdown
        return best

    def rank_key(self, task: Task, total: float, context: ScoringContext) -> Tuple:
        """Sort key: descending score, then priority, due date, critical urgency, id."""
        due = task.due_date
        return (
            -round(total, 9),
            task.priority,
            due is None,
            due or datetime.max,
            -self.critical_urgency(task, context),
            task.id,
        )

    # ==================== Dimensions ====================

    def priority_value(self, task: Task) -> float:
        return 0.5 ** (task.priority - 1)

    def due_date_value(self, task: Task, now: datetime) -> float:
        if task.due_date is None:
            return 0.0
        days = (task.due_date - now).total_seconds() / 86400
        if days >= 0:
            return 0.5 ** (days / DUE_DATE_HALF_LIFE_DAYS)
        # Overdue pressure keeps growing
        return 1.0 - days

    def energy_value(
        self,
        task: Task,
        start: datetime,
        end: datetime,
        prefs: SchedulingPreferences,
    ) -> float:
        ambient = prefs.ambient_energy(start, end)
        return max(0.0, 1.0 - abs(task.energy_level - ambient) / 4.0)

    def critical_urgency(self, task: Task, context: ScoringContext) -> float:
        timing = context.timings.get(task.id)
        if timing is None:
            return 0.0
        if timing.critical:
            value = 1.0
        elif timing.slack_hours is None:
            value = 0.0
        else:
            value = 0.5 ** (timing.slack_hours / SLACK_HALF_LIFE_HOURS)
        value += DEPENDENTS_FACTOR * math.log1p(timing.dependents)
        return min(CRITICAL_PATH_CAP, value)

    def staleness_value(self, task: Task, now: datetime, prefs: SchedulingPreferences) -> float:
        touched = task.last_touched
        if touched is None:
            return 0.0
        age_days = (now - touched).total_seconds() / 86400
        threshold = prefs.stale_after_days
        if age_days < threshold:
            return 0.0
        return min(1.0, 0.5 + 0.5 * (age_days - threshold) / threshold)

    def _candidate_starts(self, task: Task, candidates: Iterable[Interval]) -> Iterator[datetime]:
        length = timedelta(minutes=task.estimated_minutes)
        for interval in candidates:
            if interval.start + length > interval.end:
                continue
            yield interval.start
            hour = interval.start.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
            while hour + length <= interval.end:
                yield hour
                hour += timedelta(hours=1)
