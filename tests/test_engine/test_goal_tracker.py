"""Tests for GoalProgressTracker."""

from datetime import datetime, timedelta

import pytest

from src.engine.goal_tracker import GoalProgressTracker
from src.engine.models import Goal, GoalRiskLevel, GoalStatus

NOW = datetime(2024, 1, 8, 9, 0)


class TestGoalEvaluation:
    """Test suite for single-goal reports."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tracker = GoalProgressTracker(tolerance=0.8)

    def test_behind_pace_goal(self):
        """40% done with 10 days left needs 6% per day and is off track."""
        goal = Goal(id="g", target_date=NOW + timedelta(days=10), progress_percent=40)
        report = self.tracker.evaluate(goal, NOW)
        assert report.required_daily_progress == pytest.approx(6.0)
        assert report.days_remaining == 10
        assert report.on_track is False
        assert "prioritise linked tasks" in report.recommendation.lower()

    def test_on_track_with_velocity(self):
        """Velocity at 80% of the required pace is still on track."""
        goal = Goal(
            id="g",
            target_date=NOW + timedelta(days=10),
            progress_percent=40,
            recent_velocity=4.8,
        )
        report = self.tracker.evaluate(goal, NOW)
        assert report.on_track is True
        assert report.recent_velocity == 4.8

    def test_velocity_derived_from_start_date(self):
        """Without a recorded velocity, progress / elapsed days is used."""
        goal = Goal(
            id="g",
            start_date=NOW - timedelta(days=10),
            target_date=NOW + timedelta(days=10),
            progress_percent=50,
        )
        report = self.tracker.evaluate(goal, NOW)
        assert report.recent_velocity == pytest.approx(5.0)
        assert report.required_daily_progress == pytest.approx(5.0)
        assert report.on_track is True

    def test_no_target_date(self):
        report = self.tracker.evaluate(Goal(id="g", progress_percent=10), NOW)
        assert report.on_track is True
        assert report.urgency == 0.0

    def test_completed_goal(self):
        goal = Goal(id="g", target_date=NOW + timedelta(days=1), status=GoalStatus.COMPLETED)
        report = self.tracker.evaluate(goal, NOW)
        assert report.on_track is True
        assert report.urgency == 0.0
        assert report.risk_level == GoalRiskLevel.NONE

    def test_overdue_goal(self):
        goal = Goal(id="g", target_date=NOW - timedelta(days=3), progress_percent=70)
        report = self.tracker.evaluate(goal, NOW)
        assert report.risk_level == GoalRiskLevel.OVERDUE
        assert report.urgency == 1.0
        assert report.on_track is False
        assert report.days_remaining == -3

    def test_required_uses_at_least_one_day(self):
        """Due today: the whole remainder is required today."""
        goal = Goal(id="g", target_date=NOW + timedelta(hours=5), progress_percent=90)
        report = self.tracker.evaluate(goal, NOW)
        assert report.required_daily_progress == pytest.approx(10.0)

    def test_urgency_scaled_by_priority(self):
        """No progress on a priority-1 goal gives full urgency; priority 2 halves it."""
        high = Goal(id="h", target_date=NOW + timedelta(days=10), priority=1)
        normal = Goal(id="n", target_date=NOW + timedelta(days=10), priority=2)
        assert self.tracker.evaluate(high, NOW).urgency == pytest.approx(1.0)
        assert self.tracker.evaluate(normal, NOW).urgency == pytest.approx(0.5)

    def test_ahead_of_pace_gives_negative_urgency(self):
        goal = Goal(
            id="g",
            target_date=NOW + timedelta(days=10),
            progress_percent=50,
            recent_velocity=10.0,
            priority=1,
        )
        report = self.tracker.evaluate(goal, NOW)
        assert report.urgency == pytest.approx(-0.5)
        assert report.recommendation == "Ahead of pace"

    def test_risk_levels_default_quarter(self):
        """Without a start date a goal is measured over 90 days."""
        # 45 of 90 days elapsed: 50% expected
        target = NOW + timedelta(days=45)
        levels = {
            p: self.tracker.evaluate(Goal(id="g", target_date=target, progress_percent=p), NOW).risk_level
            for p in (60, 45, 30, 10)
        }
        assert levels == {
            60: GoalRiskLevel.NONE,
            45: GoalRiskLevel.LOW,
            30: GoalRiskLevel.MEDIUM,
            10: GoalRiskLevel.HIGH,
        }

    def test_on_hold_goal_has_no_urgency(self):
        goal = Goal(id="g", target_date=NOW + timedelta(days=5), status=GoalStatus.ON_HOLD)
        report = self.tracker.evaluate(goal, NOW)
        assert report.urgency == 0.0
        assert "on hold" in report.recommendation


class TestGoalTracking:
    """Test suite for urgency distribution across linked tasks."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tracker = GoalProgressTracker()

    def test_urgency_split_by_estimated_minutes(self, make_task):
        goal = Goal(id="g", target_date=NOW + timedelta(days=10), priority=1)
        tasks = [
            make_task("short", estimated_minutes=30, goal_ids=["g"]),
            make_task("long", estimated_minutes=90, goal_ids=["g"]),
        ]
        tracking = self.tracker.track([goal], tasks, NOW)
        assert tracking.task_urgency["short"] == pytest.approx(0.25)
        assert tracking.task_urgency["long"] == pytest.approx(0.75)

    def test_links_from_goal_side(self, make_task):
        """linked_task_ids on the goal count as links too."""
        goal = Goal(id="g", target_date=NOW + timedelta(days=10), priority=1, linked_task_ids=frozenset({"t"}))
        tracking = self.tracker.track([goal], [make_task("t")], NOW)
        assert tracking.task_urgency["t"] == pytest.approx(1.0)

    def test_only_eligible_tasks_receive_urgency(self, make_task):
        goal = Goal(id="g", target_date=NOW + timedelta(days=10), priority=1)
        tasks = [
            make_task("placed", goal_ids=["g"]),
            make_task("open", goal_ids=["g"]),
        ]
        tracking = self.tracker.track([goal], tasks, NOW, eligible_ids={"open"})
        assert "placed" not in tracking.task_urgency
        assert tracking.task_urgency["open"] == pytest.approx(1.0)

    def test_shares_from_several_goals_add_up(self, make_task):
        goals = [
            Goal(id="g1", target_date=NOW + timedelta(days=10), priority=1),
            Goal(id="g2", target_date=NOW + timedelta(days=10), priority=2),
        ]
        tracking = self.tracker.track(goals, [make_task("t", goal_ids=["g1", "g2"])], NOW)
        assert tracking.task_urgency["t"] == pytest.approx(1.5)

    def test_reports_sorted_by_goal_id(self):
        goals = [Goal(id="b"), Goal(id="a")]
        tracking = self.tracker.track(goals, [], NOW)
        assert [r.goal_id for r in tracking.reports] == ["a", "b"]
