"""Dependency Solver - Topological ordering, cycle detection and critical path."""

import heapq
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from src.engine.models import CycleReport, Task

# (start, end) -> available minutes between them
CapacityFn = Callable[[datetime, datetime], int]


def wall_clock_minutes(start: datetime, end: datetime) -> int:
    """Default capacity: plain minutes between two instants."""
    return int((end - start).total_seconds() // 60)


@dataclass
class DependencyGraph:
    """Task dependency graph keyed by task id.

    Edges point from a predecessor to the task it blocks.
    """

    tasks: Dict[str, Task] = field(default_factory=dict)
    predecessors: Dict[str, Set[str]] = field(default_factory=dict)
    successors: Dict[str, Set[str]] = field(default_factory=dict)

    @property
    def nodes(self) -> List[str]:
        return sorted(self.tasks)


@dataclass
class DependencyResult:
    """Result of dependency solving."""

    execution_order: List[str]
    has_cycle: bool
    cycle_tasks: List[str]
    cycles: List[CycleReport] = field(default_factory=list)
    graph: DependencyGraph = field(default_factory=DependencyGraph)


class DependencyResolver:
    """Builds the dependency graph and orders tasks topologically."""

    def build_graph(self, tasks: Iterable[Task]) -> DependencyGraph:
        """Build the graph. Edges to ids absent from ``tasks`` are dropped.

        Args:
            tasks: Tasks with ``blocked_by`` references

        Returns:
            DependencyGraph over the given tasks
        """
        graph = DependencyGraph()
        for task in tasks:
            graph.tasks[task.id] = task
            graph.predecessors[task.id] = set()
            graph.successors[task.id] = set()

        for task in graph.tasks.values():
            for dep_id in task.blocked_by:
                if dep_id in graph.tasks:
                    graph.predecessors[task.id].add(dep_id)
                    graph.successors[dep_id].add(task.id)

        return graph

    def find_cycles(self, graph: DependencyGraph) -> List[CycleReport]:
        """Find every set of tasks that block each other.

        Iterative Tarjan strongly-connected-components. Components with more
        than one task, and tasks that block themselves, are cycles.

        Args:
            graph: Dependency graph

        Returns:
            Cycle reports sorted by their first task id
        """
        index_of: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        counter = 0
        cycles: List[CycleReport] = []

        for root in graph.nodes:
            if root in index_of:
                continue

            # Each frame holds a node and an iterator over its successors
            work: List[Tuple[str, Iterable[str]]] = []
            index_of[root] = lowlink[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            work.append((root, iter(sorted(graph.successors[root]))))

            while work:
                node, children = work[-1]
                advanced = False
                for child in children:
                    if child not in index_of:
                        index_of[child] = lowlink[child] = counter
                        counter += 1
                        stack.append(child)
                        on_stack.add(child)
                        work.append((child, iter(sorted(graph.successors[child]))))
                        advanced = True
                        break
                    if child in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[child])
                if advanced:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

                if lowlink[node] == index_of[node]:
                    component: List[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1 or node in graph.successors[node]:
                        cycles.append(CycleReport(task_ids=tuple(sorted(component))))

        cycles.sort(key=lambda c: c.task_ids)
        return cycles

    def solve(self, tasks: Iterable[Task]) -> DependencyResult:
        """Solve dependencies and return execution order.

        Uses Kahn's algorithm over the acyclic part of the graph. Tasks in
        a cycle are left out of the order; everything else is unaffected.

        Args:
            tasks: List of tasks with dependencies

        Returns:
            DependencyResult with execution order
        """
        graph = self.build_graph(tasks)
        cycles = self.find_cycles(graph)
        cyclic: Set[str] = set()
        for cycle in cycles:
            cyclic.update(cycle.task_ids)

        # Build in-degree map over non-cyclic tasks
        in_degree: Dict[str, int] = {}
        for task_id in graph.nodes:
            if task_id in cyclic:
                continue
            in_degree[task_id] = sum(1 for p in graph.predecessors[task_id] if p not in cyclic)

        def order_key(task_id: str) -> Tuple[int, str]:
            return (graph.tasks[task_id].priority, task_id)

        # Pop task with highest priority first
        queue = [order_key(tid) for tid, degree in in_degree.items() if degree == 0]
        heapq.heapify(queue)

        execution_order: List[str] = []
        while queue:
            _, current = heapq.heappop(queue)
            execution_order.append(current)

            for dependent in sorted(graph.successors[current]):
                if dependent in cyclic:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(queue, order_key(dependent))

        return DependencyResult(
            execution_order=execution_order,
            has_cycle=bool(cycles),
            cycle_tasks=sorted(cyclic),
            cycles=cycles,
            graph=graph,
        )

    def detect_cycle(self, tasks: Iterable[Task]) -> Tuple[bool, List[str]]:
        """Detect if there's a cycle in the dependency graph.

        Args:
            tasks: List of tasks

        Returns:
            Tuple of (has_cycle, cycle_tasks)
        """
        result = self.solve(tasks)
        return result.has_cycle, result.cycle_tasks


@dataclass(frozen=True)
class TaskTiming:
    """Forward/backward pass result for one task."""

    task_id: str
    earliest_start: datetime
    earliest_finish: datetime
    latest_finish: Optional[datetime]
    slack_minutes: Optional[int]  # None: no deadline constrains the task
    critical: bool
    dependents: int

    @property
    def slack_hours(self) -> Optional[float]:
        if self.slack_minutes is None:
            return None
        return self.slack_minutes / 60.0


@dataclass
class CriticalPathResult:
    """Timings for every ordered task plus the critical chain."""

    timings: Dict[str, TaskTiming]
    critical_path: List[str]


class CriticalPathAnalyzer:
    """Computes slack and criticality over a dependency graph."""

    def __init__(self, capacity: Optional[CapacityFn] = None):
        """Initialize analyzer.

        Args:
            capacity: Minutes available between two instants. Defaults to
                wall-clock minutes; the orchestrator passes free working time.
        """
        self.capacity = capacity or wall_clock_minutes

    def analyze(
        self,
        graph: DependencyGraph,
        order: List[str],
        ready_time: datetime,
        known_ends: Optional[Dict[str, datetime]] = None,
    ) -> CriticalPathResult:
        """Run forward and backward passes over ``order``.

        Args:
            graph: Dependency graph
            order: Topologically sorted task ids
            ready_time: Earliest instant any unscheduled work can start
            known_ends: End times of completed or committed tasks

        Returns:
            CriticalPathResult with per-task timing
        """
        known_ends = known_ends or {}
        in_order = set(order)
        finish: Dict[str, datetime] = {}
        start: Dict[str, datetime] = {}

        # Forward pass
        for task_id in order:
            task = graph.tasks[task_id]
            if task_id in known_ends:
                finish[task_id] = known_ends[task_id]
                start[task_id] = finish[task_id] - timedelta(minutes=task.estimated_minutes)
                continue
            earliest = ready_time
            for pred in graph.predecessors[task_id]:
                if pred in finish:
                    earliest = max(earliest, finish[pred])
            start[task_id] = earliest
            finish[task_id] = earliest + timedelta(minutes=task.estimated_minutes)

        # Backward pass
        latest: Dict[str, Optional[datetime]] = {}
        descendants: Dict[str, Set[str]] = {}
        for task_id in reversed(order):
            task = graph.tasks[task_id]
            lf = task.due_date
            reach: Set[str] = set()
            for succ in graph.successors[task_id]:
                if succ not in in_order:
                    continue
                reach.add(succ)
                reach.update(descendants.get(succ, ()))
                succ_lf = latest.get(succ)
                if succ_lf is None:
                    continue
                candidate = succ_lf - timedelta(minutes=graph.tasks[succ].estimated_minutes)
                lf = candidate if lf is None else min(lf, candidate)
            latest[task_id] = lf
            descendants[task_id] = reach

        timings: Dict[str, TaskTiming] = {}
        for task_id in order:
            task = graph.tasks[task_id]
            lf = latest[task_id]
            slack: Optional[int] = None
            if lf is not None and task_id not in known_ends:
                slack = self.capacity(start[task_id], lf) - task.estimated_minutes
            timings[task_id] = TaskTiming(
                task_id=task_id,
                earliest_start=start[task_id],
                earliest_finish=finish[task_id],
                latest_finish=lf,
                slack_minutes=slack,
                critical=slack is not None and slack <= 0,
                dependents=len(descendants[task_id]),
            )

        return CriticalPathResult(
            timings=timings,
            critical_path=self.find_critical_path(graph, order, timings),
        )

    def find_critical_path(
        self,
        graph: DependencyGraph,
        order: List[str],
        timings: Dict[str, TaskTiming],
    ) -> List[str]:
        """Find the longest-duration chain made only of critical tasks.

        Args:
            graph: Dependency graph
            order: Topologically sorted task IDs
            timings: Output of the forward/backward passes

        Returns:
            List of task IDs forming the critical path
        """
        best_length: Dict[str, int] = {}
        best_chain: Dict[str, List[str]] = {}

        for task_id in order:
            if not timings[task_id].critical:
                continue
            length = graph.tasks[task_id].estimated_minutes
            chain = [task_id]
            for pred in sorted(graph.predecessors[task_id]):
                if pred not in best_length:
                    continue
                candidate = best_length[pred] + graph.tasks[task_id].estimated_minutes
                if candidate > length:
                    length = candidate
                    chain = best_chain[pred] + [task_id]
            best_length[task_id] = length
            best_chain[task_id] = chain

        # Find the longest path overall
        critical_path: List[str] = []
        longest = -1
        for task_id in sorted(best_length):
            if best_length[task_id] > longest:
                longest = best_length[task_id]
                critical_path = best_chain[task_id]

        return critical_path
