"""Tests for engine data models."""

import json
from datetime import date, datetime

import pytest

from src.engine.errors import PreferencesError, ReasonCode
from src.engine.models import (
    Assignment,
    CalendarEvent,
    Goal,
    GoalStatus,
    Placement,
    PlacementKind,
    SchedulePlan,
    SchedulingSnapshot,
    Task,
    TaskStatus,
    UnschedulableTask,
    parse_tasks,
)
from src.engine.preferences import load_preferences


class TestTask:
    """Tests for Task."""

    def test_from_dict_defaults(self):
        task = Task.from_dict({"id": 7})
        assert task.id == "7"
        assert task.status == TaskStatus.NEXT_ACTION
        assert task.priority == 2
        assert task.estimated_minutes == 30
        assert task.placement.kind == PlacementKind.NONE

    def test_from_dict_full(self):
        task = Task.from_dict({
            "id": "a",
            "title": "Write report",
            "status": "active",
            "due_date": "2024-01-10T17:00:00",
            "contexts": ["@office"],
            "blocked_by": ["b"],
            "goal_ids": ["g"],
            "placement": {"kind": "manual", "start": "2024-01-08T09:00:00", "end": "2024-01-08T10:00:00"},
        })
        assert task.status == TaskStatus.ACTIVE
        assert task.due_date == datetime(2024, 1, 10, 17)
        assert task.blocked_by == frozenset({"b"})
        assert task.placement == Placement.manual(datetime(2024, 1, 8, 9), datetime(2024, 1, 8, 10))

    def test_date_only_due_date_means_end_of_day(self):
        task = Task.from_dict({"id": "a", "due_date": date(2024, 1, 10)})
        assert task.due_date == datetime(2024, 1, 10, 23, 59)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            Task.from_dict({"id": "a", "status": "sleeping"})

    def test_parse_tasks_rejects_per_entry(self):
        tasks, rejected = parse_tasks([
            {"id": "a"},
            {"id": "b", "priority": "urgent"},
            {"id": "c", "due_date": "next week"},
            {"title": "anonymous"},
            "not a mapping",
        ])
        assert [t.id for t in tasks] == ["a"]
        assert [r.task_id for r in rejected] == ["b", "c", "#3", "#4"]
        assert all(r.reason == ReasonCode.INVALID_TASK for r in rejected)
        assert rejected[2].detail == "malformed task: missing field 'id'"

    def test_to_dict_round_trip(self):
        task = Task.from_dict({"id": "a", "contexts": ["@b", "@a"], "due_date": "2024-01-10T17:00:00"})
        data = task.to_dict()
        assert data["contexts"] == ["@a", "@b"]
        assert Task.from_dict(data) == task

    def test_last_touched(self):
        created = datetime(2024, 1, 1)
        modified = datetime(2024, 1, 5)
        assert Task(id="a", created_at=created).last_touched == created
        assert Task(id="a", created_at=created, modified_at=modified).last_touched == modified


class TestGoalAndEvent:
    """Tests for Goal and CalendarEvent parsing."""

    def test_goal_from_dict(self):
        goal = Goal.from_dict({
            "id": "g",
            "target_date": "2024-02-01",
            "progress_percent": "40",
            "status": "on_hold",
            "linked_task_ids": ["a"],
        })
        assert goal.target_date == datetime(2024, 2, 1, 23, 59)
        assert goal.progress_percent == 40.0
        assert goal.status == GoalStatus.ON_HOLD
        assert goal.recent_velocity is None
        assert goal.linked_task_ids == frozenset({"a"})

    def test_event_from_dict(self):
        event = CalendarEvent.from_dict({
            "id": "e",
            "start": "2024-01-08T10:00:00",
            "end": "2024-01-08T11:00:00",
        })
        assert event.interval.minutes() == 60
        assert event.movable is False


class TestSnapshot:
    """Tests for SchedulingSnapshot.create."""

    def test_requires_preferences(self):
        with pytest.raises(PreferencesError):
            SchedulingSnapshot.create(now=datetime(2024, 1, 8), preferences={"work_start": "09:00"})

    def test_sorts_collections(self):
        snapshot = SchedulingSnapshot.create(
            now=datetime(2024, 1, 8),
            preferences=load_preferences({}),
            tasks=[Task(id="b"), Task(id="a")],
            goals=[Goal(id="z"), Goal(id="y")],
        )
        assert [t.id for t in snapshot.tasks] == ["a", "b"]
        assert [g.id for g in snapshot.goals] == ["y", "z"]

    def test_aware_times_converted_to_local(self):
        prefs = load_preferences({"timezone": "Europe/Berlin"})
        snapshot = SchedulingSnapshot.create(
            now=datetime.fromisoformat("2024-01-08T07:00:00+00:00"),
            preferences=prefs,
            tasks=[Task.from_dict({"id": "a", "due_date": "2024-01-08T16:00:00Z"})],
            events=[CalendarEvent.from_dict({
                "id": "e",
                "start": "2024-01-08T09:00:00Z",
                "end": "2024-01-08T10:00:00Z",
            })],
        )
        assert snapshot.now == datetime(2024, 1, 8, 8, 0)
        assert snapshot.tasks[0].due_date == datetime(2024, 1, 8, 17, 0)
        assert snapshot.events[0].start == datetime(2024, 1, 8, 10, 0)

    def test_mixed_offsets_follow_now_zone(self):
        """Without a configured zone, aware values are converted to the zone of now."""
        snapshot = SchedulingSnapshot.create(
            now=datetime.fromisoformat("2024-01-08T09:00:00+00:00"),
            preferences=load_preferences({}),
            tasks=[Task.from_dict({"id": "a", "due_date": "2024-01-08T09:30:00-05:00"})],
        )
        assert snapshot.now == datetime(2024, 1, 8, 9, 0)
        assert snapshot.tasks[0].due_date == datetime(2024, 1, 8, 14, 30)

    def test_aware_values_with_naive_now_become_utc(self):
        snapshot = SchedulingSnapshot.create(
            now=datetime(2024, 1, 8, 9, 0),
            preferences=load_preferences({}),
            events=[CalendarEvent.from_dict({
                "id": "e",
                "start": "2024-01-08T12:00:00+02:00",
                "end": "2024-01-08T13:00:00+02:00",
            })],
        )
        assert snapshot.events[0].start == datetime(2024, 1, 8, 10, 0)

    def test_rejected_entries_sorted(self):
        snapshot = SchedulingSnapshot.create(
            now=datetime(2024, 1, 8),
            preferences=load_preferences({}),
            rejected=[
                UnschedulableTask("z", ReasonCode.INVALID_TASK),
                UnschedulableTask("m", ReasonCode.INVALID_TASK),
            ],
        )
        assert [r.task_id for r in snapshot.rejected] == ["m", "z"]


class TestSchedulePlan:
    """Tests for SchedulePlan serialisation."""

    def _plan(self):
        return SchedulePlan(
            generated_at=datetime(2024, 1, 8, 8),
            assignments=(Assignment("a", datetime(2024, 1, 8, 9), datetime(2024, 1, 8, 10)),),
            unschedulable=(UnschedulableTask("b", ReasonCode.NO_CAPACITY, "no free 600-minute slot"),),
        )

    def test_lookups(self):
        plan = self._plan()
        assert plan.assignment_for("a").end == datetime(2024, 1, 8, 10)
        assert plan.assignment_for("b") is None
        assert plan.reason_for("b") == ReasonCode.NO_CAPACITY

    def test_to_json_is_canonical(self):
        payload = self._plan().to_json()
        assert payload == self._plan().to_json()
        data = json.loads(payload)
        assert data["assignments"] == [
            {"task_id": "a", "start": "2024-01-08T09:00:00", "end": "2024-01-08T10:00:00"},
        ]
        assert data["unschedulable"][0]["reason"] == "NoCapacity"
        assert " " not in payload.replace("no free 600-minute slot", "")
