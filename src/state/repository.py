"""Scheduling repository - loads snapshots from and applies plans to PostgreSQL.

The engine never touches storage; this module is the persistence
collaborator used by the API and CLI.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Union

from src.db.pool import Database
from src.engine.errors import ReasonCode
from src.engine.models import CalendarEvent, Goal, SchedulePlan, Task, UnschedulableTask

logger = logging.getLogger(__name__)

# Completed tasks older than this are left out of snapshots; their
# dependents then treat them as satisfied.
COMPLETED_LOOKBACK_DAYS = 30

TASK_COLUMNS = """
    id, title, status, priority, due_date, estimated_minutes, energy_level,
    contexts, requires_deep_work, blocked_by, goal_ids,
    placement_kind, scheduled_start, scheduled_end,
    created_at, modified_at, completed_at
"""


def row_to_task(row: Mapping[str, Any]) -> Task:
    """Convert a ``tasks`` row into a Task."""
    data = dict(row)
    data["placement"] = {
        "kind": data.pop("placement_kind", None) or "none",
        "start": data.pop("scheduled_start", None),
        "end": data.pop("scheduled_end", None),
    }
    if data["placement"]["kind"] == "none":
        data["placement"] = None
    return Task.from_dict(data)


def row_to_goal(row: Mapping[str, Any]) -> Goal:
    """Convert a ``goals`` row into a Goal."""
    return Goal.from_dict(dict(row))


def row_to_event(row: Mapping[str, Any]) -> CalendarEvent:
    """Convert a ``calendar_events`` row into a CalendarEvent."""
    data = dict(row)
    return CalendarEvent.from_dict({
        "id": data["id"],
        "title": data.get("title"),
        "start": data["start_time"],
        "end": data["end_time"],
        "movable": data.get("movable", False),
    })


class PostgresSnapshotSource:
    """SnapshotSource backed by the tasks, goals and calendar_events tables."""

    def __init__(self, db: Database):
        self.db = db

    async def get_schedulable_tasks(self) -> List[Union[Task, UnschedulableTask]]:
        """Open tasks plus recently completed ones (for dependency checks).

        A row that fails to convert is returned as an InvalidTask rejection.
        """
        rows = await self.db.fetch(
            f"""
            SELECT {TASK_COLUMNS}
            FROM tasks
            WHERE status <> 'deleted'
              AND (status <> 'completed'
                   OR completed_at > NOW() - make_interval(days => $1))
            ORDER BY id
            """,
            COMPLETED_LOOKBACK_DAYS,
        )
        tasks: List[Union[Task, UnschedulableTask]] = []
        for row in rows:
            try:
                tasks.append(row_to_task(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[Repository] Malformed task row {row['id']}: {e}")
                tasks.append(UnschedulableTask(
                    str(row["id"]), ReasonCode.INVALID_TASK, f"malformed task: {e}",
                ))
        return tasks

    async def get_goals_in_window(self, start: datetime, end: datetime) -> List[Goal]:
        """Active or on-hold goals that have started by ``end``.

        The target date does not bound the query: goals due after the
        horizon still need pace tracking, and overdue goals stay in until
        they are closed.
        """
        rows = await self.db.fetch(
            """
            SELECT id, title, target_date, progress_percent, priority,
                   linked_task_ids, status, start_date, recent_velocity
            FROM goals
            WHERE status IN ('active', 'on_hold')
              AND (start_date IS NULL OR start_date <= $1)
            ORDER BY id
            """,
            end,
        )
        return [row_to_goal(row) for row in rows]

    async def get_fixed_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Calendar events overlapping [start, end)."""
        rows = await self.db.fetch(
            """
            SELECT id, title, start_time, end_time, movable
            FROM calendar_events
            WHERE end_time > $1 AND start_time < $2
            ORDER BY start_time, id
            """,
            start,
            end,
        )
        return [row_to_event(row) for row in rows]


async def apply_plan(db: Database, plan: SchedulePlan, override_manual: bool = False) -> Dict[str, int]:
    """Persist a plan's auto placements.

    Assigned inbox and next-action tasks move to ``scheduled``. Stale auto
    placements of tasks that could not be placed are cleared. Manual
    placements are only replaced when ``override_manual`` is set.

    Args:
        db: Database instance
        plan: Plan produced by the orchestrator
        override_manual: The plan was made with manual placements released

    Returns:
        Dict with ``placed`` and ``cleared`` counts
    """
    placed_rows = [(a.task_id, a.start, a.end, override_manual) for a in plan.assignments]
    unplaced_ids = [u.task_id for u in plan.unschedulable]

    async with db.transaction() as conn:
        if placed_rows:
            await conn.executemany(
                """
                UPDATE tasks
                SET placement_kind = 'auto',
                    scheduled_start = $2,
                    scheduled_end = $3,
                    status = CASE WHEN status IN ('inbox', 'next_action')
                                  THEN 'scheduled' ELSE status END
                WHERE id = $1 AND ($4 OR placement_kind IS DISTINCT FROM 'manual')
                """,
                placed_rows,
            )
        if unplaced_ids:
            await conn.execute(
                """
                UPDATE tasks
                SET placement_kind = 'none', scheduled_start = NULL, scheduled_end = NULL
                WHERE id = ANY($1::text[]) AND placement_kind = 'auto'
                """,
                unplaced_ids,
            )

    logger.info(
        f"[Repository] Applied plan: {len(placed_rows)} placed, {len(unplaced_ids)} cleared"
    )
    return {"placed": len(placed_rows), "cleared": len(unplaced_ids)}
