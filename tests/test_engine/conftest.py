"""Pytest configuration for engine tests.

Factories build Task and CalendarEvent values relative to a fixed Monday.
"""

from datetime import datetime

import pytest

from src.engine.models import CalendarEvent, Task, TaskStatus

MONDAY = datetime(2024, 1, 8)


@pytest.fixture
def make_task():
    """Factory for tasks with sensible defaults."""

    def _make(task_id: str, **kwargs) -> Task:
        kwargs.setdefault("title", task_id)
        kwargs.setdefault("status", TaskStatus.NEXT_ACTION)
        kwargs.setdefault("created_at", MONDAY)
        for key in ("contexts", "blocked_by", "goal_ids"):
            if key in kwargs:
                kwargs[key] = frozenset(kwargs[key])
        return Task(id=task_id, **kwargs)

    return _make


@pytest.fixture
def make_event():
    """Factory for fixed calendar events."""

    def _make(event_id: str, start: datetime, end: datetime, movable: bool = False) -> CalendarEvent:
        return CalendarEvent(id=event_id, start=start, end=end, title=event_id, movable=movable)

    return _make

