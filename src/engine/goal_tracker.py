"""Goal Progress Tracker - pace, risk and focus pressure for goals."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from src.engine.models import Goal, GoalReport, GoalRiskLevel, GoalStatus, Task

logger = logging.getLogger(__name__)

# Goals without a start date are measured as a quarter
DEFAULT_GOAL_SPAN_DAYS = 90
# Pace ratio at which a goal counts as ahead of schedule
AHEAD_RATIO = 1.2


@dataclass
class GoalTracking:
    """Reports per goal plus the goal score each task inherits."""

    reports: List[GoalReport] = field(default_factory=list)
    task_urgency: Dict[str, float] = field(default_factory=dict)


class GoalProgressTracker:
    """Computes goal pace and turns it into scoring pressure on linked tasks."""

    def __init__(self, tolerance: float = 0.8):
        """Initialize tracker.

        Args:
            tolerance: Fraction of the required pace that still counts as on track
        """
        self.tolerance = tolerance

    def evaluate(self, goal: Goal, now: datetime) -> GoalReport:
        """Build the progress report for a single goal.

        Args:
            goal: Goal to evaluate
            now: Evaluation instant

        Returns:
            GoalReport
        """
        progress = min(100.0, max(0.0, goal.progress_percent))

        if goal.status == GoalStatus.COMPLETED or progress >= 100:
            return GoalReport(
                goal_id=goal.id,
                required_daily_progress=0.0,
                on_track=True,
                recommendation="Goal completed",
                recent_velocity=goal.recent_velocity or 0.0,
            )
        if goal.target_date is None:
            return GoalReport(
                goal_id=goal.id,
                required_daily_progress=0.0,
                on_track=True,
                recommendation="No target date set",
                recent_velocity=goal.recent_velocity or 0.0,
            )

        days_remaining = (goal.target_date.date() - now.date()).days
        required = (100.0 - progress) / max(1, days_remaining)
        velocity = self._velocity(goal, progress, now)
        on_track = days_remaining >= 0 and velocity >= required * self.tolerance
        risk = self._risk_level(goal, progress, days_remaining)

        if goal.status != GoalStatus.ACTIVE:
            return GoalReport(
                goal_id=goal.id,
                required_daily_progress=required,
                on_track=on_track,
                recommendation=f"Goal is {goal.status.value.replace('_', ' ')}",
                days_remaining=days_remaining,
                recent_velocity=velocity,
                risk_level=risk,
            )

        urgency = self._urgency(goal, days_remaining, velocity, required)

        if days_remaining < 0:
            recommendation = (
                f"Target date passed {-days_remaining} days ago. "
                "Prioritise linked tasks or move the target date"
            )
        elif not on_track:
            recommendation = (
                f"Behind pace: needs {required:.1f}% per day, "
                f"currently {velocity:.1f}% per day. Prioritise linked tasks"
            )
        elif required > 0 and velocity / required >= AHEAD_RATIO:
            recommendation = "Ahead of pace"
        else:
            recommendation = "On track"

        return GoalReport(
            goal_id=goal.id,
            required_daily_progress=required,
            on_track=on_track,
            recommendation=recommendation,
            days_remaining=days_remaining,
            recent_velocity=velocity,
            risk_level=risk,
            urgency=urgency,
        )

    def track(
        self,
        goals: Iterable[Goal],
        tasks: Iterable[Task],
        now: datetime,
        eligible_ids: Optional[Set[str]] = None,
    ) -> GoalTracking:
        """Evaluate goals and spread their urgency over unscheduled linked tasks.

        A goal's urgency is split across its linked tasks in proportion to
        their estimated minutes; a task's goal score is the sum of its shares.

        Args:
            goals: Goals to evaluate
            tasks: Tasks that may be linked to the goals
            now: Evaluation instant
            eligible_ids: Tasks still waiting for a placement (all if None)

        Returns:
            GoalTracking with reports and per-task urgency
        """
        task_list = list(tasks)
        task_map = {t.id: t for t in task_list}
        linked_by_goal: Dict[str, Set[str]] = {}
        for task in task_list:
            for goal_id in task.goal_ids:
                linked_by_goal.setdefault(goal_id, set()).add(task.id)

        tracking = GoalTracking()
        for goal in sorted(goals, key=lambda g: g.id):
            report = self.evaluate(goal, now)
            tracking.reports.append(report)

            if report.urgency == 0:
                continue

            linked = set(goal.linked_task_ids) | linked_by_goal.get(goal.id, set())
            pending = sorted(
                tid for tid in linked
                if tid in task_map and (eligible_ids is None or tid in eligible_ids)
            )
            total = sum(task_map[tid].estimated_minutes for tid in pending)
            if total <= 0:
                continue
            for tid in pending:
                share = report.urgency * task_map[tid].estimated_minutes / total
                tracking.task_urgency[tid] = tracking.task_urgency.get(tid, 0.0) + share

        off_track = sum(1 for r in tracking.reports if not r.on_track)
        if off_track:
            logger.info(f"[Goals] {off_track} of {len(tracking.reports)} goals off track")
        return tracking

    def _velocity(self, goal: Goal, progress: float, now: datetime) -> float:
        if goal.recent_velocity is not None:
            return goal.recent_velocity
        if goal.start_date is None:
            return 0.0
        elapsed = (now.date() - goal.start_date.date()).days
        if elapsed <= 0:
            return 0.0
        return progress / elapsed

    def _risk_level(self, goal: Goal, progress: float, days_remaining: int) -> GoalRiskLevel:
        """Compare actual progress with what the elapsed time implies."""
        if days_remaining < 0:
            return GoalRiskLevel.OVERDUE

        if goal.start_date is not None:
            total_days = (goal.target_date.date() - goal.start_date.date()).days
        else:
            total_days = DEFAULT_GOAL_SPAN_DAYS
        if total_days <= 0:
            return GoalRiskLevel.NONE

        elapsed = total_days - days_remaining
        expected = elapsed / total_days * 100
        delta = progress - expected

        if delta >= 0:
            return GoalRiskLevel.NONE
        if delta >= -10:
            return GoalRiskLevel.LOW
        if delta >= -25:
            return GoalRiskLevel.MEDIUM
        return GoalRiskLevel.HIGH

    def _urgency(self, goal: Goal, days_remaining: int, velocity: float, required: float) -> float:
        """Urgency in [-0.5, 1]: positive when behind, negative when well ahead."""
        if days_remaining < 0:
            return 1.0
        if required <= 0:
            return 0.0

        ratio = velocity / required
        if ratio < 1.0:
            base = 1.0 - ratio
        elif ratio >= AHEAD_RATIO:
            base = -0.5 * min(1.0, ratio - 1.0)
        else:
            base = 0.0
        return base * 0.5 ** (goal.priority - 1)
