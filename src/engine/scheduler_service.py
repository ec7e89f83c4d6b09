"""Scheduler Service - Orchestrates scheduling components.

One run takes an immutable snapshot and produces a SchedulePlan:

1. validate tasks
2. resolve dependencies and report cycles
3. keep manual placements and still-valid auto placements
4. critical path analysis over free working time
5. goal progress tracking
6. score every eligible task at its best slot
7. greedy placement in score order, gated by dependency readiness
"""

import heapq
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple, Union

from src.engine.availability import CalendarAvailabilityModel, SlotFinder
from src.engine.conflicts import detect_conflicts
from src.engine.dependency_solver import CriticalPathAnalyzer, DependencyGraph, DependencyResolver
from src.engine.errors import (
    CyclicDependencyError,
    PreferencesError,
    ReasonCode,
    RunCancelledError,
    UnschedulableError,
    ValidationError,
)
from src.engine.goal_tracker import GoalProgressTracker
from src.engine.intervals import Interval
from src.engine.models import (
    PLACEABLE_STATUSES,
    Assignment,
    CalendarEvent,
    Goal,
    PlacementKind,
    SchedulePlan,
    SchedulingSnapshot,
    Task,
    TaskStatus,
    UnschedulableTask,
)
from src.engine.preferences import SchedulingPreferences, load_preferences
from src.engine.task_scorer import ScoringContext, TaskScoringEngine

logger = logging.getLogger(__name__)


class CancelToken(Protocol):
    """Anything with ``is_set()``, e.g. threading.Event or asyncio.Event."""

    def is_set(self) -> bool:
        ...


class SnapshotSource(Protocol):
    """Collaborator that loads scheduling inputs."""

    async def get_schedulable_tasks(self) -> List[Union[Task, UnschedulableTask]]:
        """Tasks to plan. Entries that cannot be parsed come back as InvalidTask rejections."""
        ...

    async def get_goals_in_window(self, start: datetime, end: datetime) -> List[Goal]:
        ...

    async def get_fixed_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        ...


class SchedulingOrchestrator:
    """Main service for automatic task scheduling."""

    def __init__(
        self,
        resolver: Optional[DependencyResolver] = None,
        scorer: Optional[TaskScoringEngine] = None,
    ):
        self.resolver = resolver or DependencyResolver()
        self.scorer = scorer or TaskScoringEngine()

    async def run(
        self,
        source: SnapshotSource,
        preferences: Union[SchedulingPreferences, Mapping[str, Any], None],
        now: Optional[datetime] = None,
        full_replan: bool = False,
        override_manual: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> SchedulePlan:
        """Load a snapshot from ``source`` and plan it.

        Args:
            source: Snapshot source (database or in-memory)
            preferences: Preferences value or raw mapping
            now: Planning instant; defaults to the current time
            full_replan: Re-optimise existing auto placements
            override_manual: With full_replan, also move manual placements
            cancel: Cooperative cancellation token

        Returns:
            SchedulePlan; persisting it is the caller's job

        Raises:
            PreferencesError: if preferences are missing or malformed
        """
        prefs = load_preferences(preferences)
        if now is None:
            now = datetime.now(prefs.tzinfo()) if prefs.timezone else datetime.now()

        window_end = now + timedelta(days=prefs.horizon_days)
        loaded = await source.get_schedulable_tasks()
        tasks = [t for t in loaded if isinstance(t, Task)]
        rejected = [t for t in loaded if isinstance(t, UnschedulableTask)]
        goals = await source.get_goals_in_window(now, window_end)
        events = await source.get_fixed_events(now, window_end)
        logger.info(
            f"[Scheduler] Loaded {len(tasks)} tasks, {len(goals)} goals, {len(events)} events"
        )

        snapshot = SchedulingSnapshot.create(
            now=now, preferences=prefs, tasks=tasks, goals=goals, events=events,
            rejected=rejected,
        )
        return self.plan(
            snapshot,
            full_replan=full_replan,
            override_manual=override_manual,
            cancel=cancel,
        )

    def plan(
        self,
        snapshot: SchedulingSnapshot,
        full_replan: bool = False,
        override_manual: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> SchedulePlan:
        """Produce a schedule plan for ``snapshot``.

        Args:
            snapshot: Immutable scheduling inputs
            full_replan: Re-optimise existing auto placements
            override_manual: With full_replan, also move manual placements
            cancel: Cooperative cancellation token

        Returns:
            SchedulePlan

        Raises:
            PreferencesError: if preferences are missing or malformed
            RunCancelledError: if ``cancel`` is set during the run
        """
        start_time = time.time()
        prefs = snapshot.preferences
        if not isinstance(prefs, SchedulingPreferences):
            raise PreferencesError("Scheduling preferences are missing or malformed")
        now = snapshot.now
        respect_manual = not (full_replan and override_manual)

        unschedulable: List[UnschedulableTask] = []

        # Step 1: per-task validation; entries rejected while parsing stay rejected
        unschedulable.extend(snapshot.rejected)
        rejected_ids = {u.task_id for u in snapshot.rejected}
        valid, invalid_ids = self._validate_all(snapshot.tasks, unschedulable, rejected_ids)
        task_map = {t.id: t for t in valid}

        # Step 2: dependencies
        dep_result = self.resolver.solve(valid)
        graph = dep_result.graph
        cyclic = set(dep_result.cycle_tasks)
        for cycle in dep_result.cycles:
            error = CyclicDependencyError(cycle.task_ids)
            logger.warning(f"[Scheduler] {error}")
            for task_id in cycle.task_ids:
                if task_map[task_id].status in PLACEABLE_STATUSES:
                    unschedulable.append(UnschedulableTask(
                        task_id=task_id,
                        reason=ReasonCode.CYCLIC_DEPENDENCY,
                        detail=str(error),
                    ))

        # Step 3: commitments
        manual: Dict[str, Interval] = {}
        if respect_manual:
            for task in valid:
                if task.placement.kind == PlacementKind.MANUAL and task.placement.interval:
                    manual[task.id] = task.placement.interval

        model = CalendarAvailabilityModel(prefs, snapshot.events, now, commitments=manual.values())
        committed: Dict[str, Interval] = dict(manual)
        kept: List[Assignment] = []
        if not full_replan:
            kept = self._keep_auto_placements(valid, graph, cyclic, model, committed, now)

        # Step 4: critical path over free working time
        known_ends: Dict[str, datetime] = {tid: iv.end for tid, iv in committed.items()}
        for task in valid:
            if task.is_completed:
                known_ends[task.id] = task.completed_at or now
        analyzer = CriticalPathAnalyzer(capacity=model.capacity_minutes)
        cp_result = analyzer.analyze(graph, dep_result.execution_order, model.anchor, known_ends)

        eligible: Set[str] = {
            t.id for t in valid
            if t.status in PLACEABLE_STATUSES and t.id not in cyclic and t.id not in committed
        }

        # Step 5: goals
        tracker = GoalProgressTracker(tolerance=prefs.goal_tolerance)
        tracking = tracker.track(snapshot.goals, valid, now, eligible_ids=eligible)

        # Step 6: score each eligible task at its best slot
        context = ScoringContext(
            preferences=prefs,
            now=now,
            timings=cp_result.timings,
            goal_urgency=tracking.task_urgency,
        )
        finder = SlotFinder(model)
        failed: Dict[str, UnschedulableTask] = {}
        scores: Dict[str, float] = {}
        for task_id in sorted(eligible):
            task = task_map[task_id]
            try:
                scores[task_id] = self._initial_score(task, finder, context, now, prefs)
            except Exception as e:
                logger.exception(f"[Scheduler] Scoring failed for task {task_id}")
                failed[task_id] = UnschedulableTask(task_id, ReasonCode.SCORING_FAILED, str(e))

        # Step 7: greedy placement gated by dependency readiness
        assignments: List[Assignment] = []
        ends: Dict[str, datetime] = dict(known_ends)
        pending: Dict[str, Set[str]] = {}
        heap: List[Tuple[Tuple, str]] = []

        for task_id in sorted(eligible):
            if task_id in failed:
                continue
            blocker = self._blocking_predecessor(
                task_map[task_id], task_map, graph, invalid_ids, cyclic, eligible, committed,
            )
            if blocker is not None:
                failed[task_id] = UnschedulableTask(
                    task_id, ReasonCode.DEPENDENCY_NOT_READY, f"waiting on {blocker}",
                )
                continue
            pending[task_id] = {p for p in graph.predecessors[task_id] if p in eligible}

        # Failures cascade to every eligible dependent
        self._cascade(list(failed), graph, eligible, pending, failed)

        for task_id in sorted(pending):
            if not pending[task_id]:
                heapq.heappush(heap, (self.scorer.rank_key(task_map[task_id], scores[task_id], context), task_id))

        while heap:
            if cancel is not None and cancel.is_set():
                logger.info("[Scheduler] Run cancelled")
                raise RunCancelledError("Scheduling run was cancelled")

            _, task_id = heapq.heappop(heap)
            task = task_map[task_id]
            try:
                slot = self._place(task, graph, ends, finder, model, now, prefs)
                finder.reserve(slot)
                ends[task_id] = slot.end
                assignments.append(Assignment(task_id=task_id, start=slot.start, end=slot.end))
            except UnschedulableError as e:
                failed[task_id] = UnschedulableTask(task_id, e.reason, e.detail)
                self._cascade([task_id], graph, eligible, pending, failed)
                continue
            except Exception as e:
                logger.exception(f"[Scheduler] Placement failed for task {task_id}")
                failed[task_id] = UnschedulableTask(task_id, ReasonCode.SCORING_FAILED, str(e))
                self._cascade([task_id], graph, eligible, pending, failed)
                continue

            for dependent in sorted(graph.successors[task_id]):
                if dependent not in pending or dependent in failed:
                    continue
                pending[dependent].discard(task_id)
                if not pending[dependent]:
                    key = self.scorer.rank_key(task_map[dependent], scores[dependent], context)
                    heapq.heappush(heap, (key, dependent))

        unschedulable.extend(failed.values())

        # Step 8: conflicts for manual placements
        final: Dict[str, Interval] = {a.task_id: a.interval for a in assignments + kept}
        conflicts = detect_conflicts(valid, snapshot.events, prefs, placements=final) if respect_manual else []

        plan = SchedulePlan(
            generated_at=now,
            assignments=tuple(sorted(kept + assignments, key=lambda a: (a.start, a.task_id))),
            unschedulable=tuple(sorted(unschedulable, key=lambda u: (u.task_id, u.reason.value))),
            goal_reports=tuple(tracking.reports),
            cycles=tuple(dep_result.cycles),
            conflicts=tuple(conflicts),
        )

        schedule_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"[Scheduler] Placed {len(assignments)} new, kept {len(kept)}, "
            f"{len(plan.unschedulable)} unschedulable in {schedule_time_ms:.1f}ms"
        )
        return plan

    # ==================== Steps ====================

    def _validate_all(
        self,
        tasks: Iterable[Task],
        unschedulable: List[UnschedulableTask],
        rejected_ids: Iterable[str] = (),
    ) -> Tuple[List[Task], Set[str]]:
        valid: List[Task] = []
        invalid_ids: Set[str] = set(rejected_ids)
        seen: Set[str] = set(invalid_ids)
        for task in tasks:
            try:
                if task.id in seen:
                    raise ValidationError(task.id, "duplicate task id")
                seen.add(task.id)
                self.validate_task(task)
            except ValidationError as e:
                logger.warning(f"[Scheduler] Invalid task skipped: {e}")
                unschedulable.append(UnschedulableTask(task.id, ReasonCode.INVALID_TASK, e.message))
                invalid_ids.add(task.id)
                continue
            valid.append(task)

        # A duplicate id poisons every copy
        for task in valid:
            if task.id in invalid_ids:
                unschedulable.append(UnschedulableTask(task.id, ReasonCode.INVALID_TASK, "duplicate task id"))
        valid = [t for t in valid if t.id not in invalid_ids]
        return valid, invalid_ids

    def validate_task(self, task: Task) -> None:
        """Check a single task.

        Raises:
            ValidationError: if the task is malformed
        """
        if not task.id:
            raise ValidationError(task.id, "missing id")
        if task.status in (TaskStatus.COMPLETED, TaskStatus.DELETED):
            return
        if task.estimated_minutes <= 0:
            raise ValidationError(task.id, f"estimated_minutes must be positive, got {task.estimated_minutes}")
        if not 1 <= task.energy_level <= 5:
            raise ValidationError(task.id, f"energy_level must be 1-5, got {task.energy_level}")
        if not 1 <= task.priority <= 3:
            raise ValidationError(task.id, f"priority must be 1-3, got {task.priority}")
        placement = task.placement
        if placement.is_placed:
            if placement.start is None or placement.end is None:
                raise ValidationError(task.id, "placement is missing start or end")
            if placement.end <= placement.start:
                raise ValidationError(task.id, "placement ends before it starts")

    def _keep_auto_placements(
        self,
        tasks: List[Task],
        graph: DependencyGraph,
        cyclic: Set[str],
        model: CalendarAvailabilityModel,
        committed: Dict[str, Interval],
        now: datetime,
    ) -> List[Assignment]:
        """Keep auto placements that are still valid, earliest first."""
        prefs = model.preferences
        autos = [
            t for t in tasks
            if t.placement.kind == PlacementKind.AUTO
            and t.placement.interval is not None
            and t.status in PLACEABLE_STATUSES
            and t.id not in cyclic
        ]
        autos.sort(key=lambda t: (t.placement.start, t.id))

        kept: List[Assignment] = []
        for task in autos:
            slot = task.placement.interval
            if slot.start < now or not model.is_open(slot):
                continue
            if task.due_date is not None and slot.end > task.due_date and task.due_date > now:
                continue
            if task.requires_deep_work and not prefs.deep_work_allowed(slot.start, slot.end):
                continue
            if task.contexts and not prefs.contexts_available(task.contexts, slot.start, slot.end):
                continue
            if not self._predecessors_done_by(task, graph, committed, slot.start):
                continue

            committed[task.id] = slot
            model.commit(slot)
            kept.append(Assignment(task_id=task.id, start=slot.start, end=slot.end))

        if kept:
            logger.info(f"[Scheduler] Kept {len(kept)} existing auto placements")
        return kept

    def _predecessors_done_by(
        self,
        task: Task,
        graph: DependencyGraph,
        committed: Dict[str, Interval],
        start: datetime,
    ) -> bool:
        for pred in graph.predecessors[task.id]:
            pred_task = graph.tasks[pred]
            if pred_task.status in (TaskStatus.COMPLETED, TaskStatus.DELETED):
                continue
            slot = committed.get(pred)
            if slot is None or slot.end > start:
                return False
        return True

    def _blocking_predecessor(
        self,
        task: Task,
        task_map: Dict[str, Task],
        graph: DependencyGraph,
        invalid_ids: Set[str],
        cyclic: Set[str],
        eligible: Set[str],
        committed: Dict[str, Interval],
    ) -> Optional[str]:
        """First predecessor that can never be satisfied in this run, if any."""
        for pred in sorted(task.blocked_by):
            if pred in invalid_ids or pred in cyclic:
                return pred
            pred_task = task_map.get(pred)
            if pred_task is None:
                # Not in the snapshot: treated as satisfied
                continue
            if pred_task.status in (TaskStatus.COMPLETED, TaskStatus.DELETED):
                continue
            if pred in committed or pred in eligible:
                continue
            return pred
        return None

    def _cascade(
        self,
        roots: List[str],
        graph: DependencyGraph,
        eligible: Set[str],
        pending: Dict[str, Set[str]],
        failed: Dict[str, Any],
    ) -> None:
        stack = list(roots)
        while stack:
            current = stack.pop()
            for dependent in sorted(graph.successors.get(current, ())):
                if dependent not in eligible or dependent in failed:
                    continue
                failed[dependent] = UnschedulableTask(
                    dependent, ReasonCode.DEPENDENCY_NOT_READY, f"predecessor {current} was not placed",
                )
                pending.pop(dependent, None)
                stack.append(dependent)

    def _deadline(self, task: Task, now: datetime, prefs: SchedulingPreferences) -> Optional[datetime]:
        if task.due_date is None:
            return None
        if task.due_date > now:
            return task.due_date
        if prefs.place_overdue:
            return None
        raise UnschedulableError(task.id, ReasonCode.NO_CAPACITY, "due date has already passed")

    def _initial_score(
        self,
        task: Task,
        finder: SlotFinder,
        context: ScoringContext,
        now: datetime,
        prefs: SchedulingPreferences,
    ) -> float:
        timing = context.timings.get(task.id)
        not_before = timing.earliest_start if timing else None
        try:
            deadline = self._deadline(task, now, prefs)
        except UnschedulableError:
            deadline = None
        best = self.scorer.best_score(task, finder.candidates(task, not_before, deadline), context)
        if best is None:
            # Nothing admissible right now; rank by the slot-independent terms
            return self.scorer.score(task, finder.model.anchor, context).total
        return best.total

    def _place(
        self,
        task: Task,
        graph: DependencyGraph,
        ends: Dict[str, datetime],
        finder: SlotFinder,
        model: CalendarAvailabilityModel,
        now: datetime,
        prefs: SchedulingPreferences,
    ) -> Interval:
        not_before = model.anchor
        for pred in graph.predecessors[task.id]:
            if pred in ends:
                not_before = max(not_before, ends[pred])
        deadline = self._deadline(task, now, prefs)

        try:
            return finder.find_slot(task, not_before, deadline)
        except UnschedulableError as e:
            if e.reason != ReasonCode.NO_CAPACITY or not_before <= model.anchor:
                raise
            # Would it fit if predecessors were already done?
            try:
                finder.find_slot(task, model.anchor, deadline)
            except UnschedulableError:
                raise e
            raise UnschedulableError(
                task.id,
                ReasonCode.DEPENDENCY_NOT_READY,
                f"predecessors finish at {not_before.isoformat()}, too late for the due date",
            ) from e
