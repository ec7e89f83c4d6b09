"""Persistence collaborators for the scheduling engine."""

from .repository import (
    PostgresSnapshotSource,
    apply_plan,
    row_to_event,
    row_to_goal,
    row_to_task,
)

__all__ = [
    "PostgresSnapshotSource",
    "apply_plan",
    "row_to_event",
    "row_to_goal",
    "row_to_task",
]
