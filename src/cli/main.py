"""CLI for the Autoplan scheduling engine."""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import uvicorn
import yaml
from dotenv import load_dotenv

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.core.config import load_app_config, load_preferences_file
from src.engine.errors import PreferencesError
from src.engine.goal_tracker import GoalProgressTracker
from src.engine.models import CalendarEvent, Goal, SchedulePlan, SchedulingSnapshot, parse_tasks
from src.engine.preferences import SchedulingPreferences, load_preferences
from src.engine.scheduler_service import SchedulingOrchestrator
from src.engine.staleness import find_stale_tasks


def setup_logging(level: str = "INFO"):
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def read_snapshot_file(path: str) -> Dict[str, Any]:
    """Read a JSON or YAML snapshot file."""
    text = Path(path).read_text()
    if path.endswith((".yaml", ".yml")):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Snapshot file must contain a mapping: {path}")
    return data


def resolve_preferences(args, data: Dict[str, Any]) -> SchedulingPreferences:
    """Preferences from --preferences, then the snapshot file, then the configured file."""
    if getattr(args, "preferences", None):
        return load_preferences_file(args.preferences)
    if "preferences" in data:
        return load_preferences(data["preferences"])
    return load_preferences_file(load_app_config().preferences_path)


def build_snapshot(args, data: Dict[str, Any]) -> SchedulingSnapshot:
    """Build a snapshot from parsed file contents and CLI overrides."""
    prefs = resolve_preferences(args, data)
    now_value = getattr(args, "now", None) or data.get("now")
    if now_value:
        now = datetime.fromisoformat(str(now_value).replace("Z", "+00:00"))
    else:
        now = datetime.now(prefs.tzinfo())

    tasks, rejected = parse_tasks(data.get("tasks") or [])
    return SchedulingSnapshot.create(
        now=now,
        preferences=prefs,
        tasks=tasks,
        rejected=rejected,
        goals=[Goal.from_dict(g) for g in data.get("goals") or []],
        events=[CalendarEvent.from_dict(e) for e in data.get("events") or []],
    )


def print_plan(plan: SchedulePlan) -> None:
    print(f"\nPlan generated for {plan.generated_at.isoformat()}\n")

    print(f"Assignments ({len(plan.assignments)}):")
    for a in plan.assignments:
        print(f"  {a.start:%a %Y-%m-%d %H:%M} - {a.end:%H:%M}  {a.task_id}")

    if plan.unschedulable:
        print(f"\nUnschedulable ({len(plan.unschedulable)}):")
        for u in plan.unschedulable:
            detail = f" - {u.detail}" if u.detail else ""
            print(f"  {u.task_id}: {u.reason.value}{detail}")

    if plan.cycles:
        print("\nDependency cycles:")
        for c in plan.cycles:
            print(f"  {' -> '.join(c.task_ids)}")

    if plan.conflicts:
        print("\nConflicts:")
        for c in plan.conflicts:
            print(f"  {c.task_id} [{c.type.value}] {c.description}")

    print_goals(plan.goal_reports)


def print_goals(reports) -> None:
    if not reports:
        return
    print("\nGoals:")
    for r in reports:
        status = "on track" if r.on_track else "OFF TRACK"
        print(f"  {r.goal_id}: {status} (risk {r.risk_level.value}) - {r.recommendation}")


def cmd_plan(args) -> int:
    """Plan command handler."""
    load_dotenv()
    setup_logging(args.log_level)

    data = read_snapshot_file(args.snapshot)
    try:
        snapshot = build_snapshot(args, data)
        plan = SchedulingOrchestrator().plan(
            snapshot,
            full_replan=args.full_replan,
            override_manual=args.override_manual,
        )
    except PreferencesError as e:
        print(f"No plan produced: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(plan.to_json())
    else:
        print_plan(plan)
    return 0


def cmd_goals(args) -> int:
    """Goals command handler."""
    load_dotenv()
    setup_logging(args.log_level)

    data = read_snapshot_file(args.snapshot)
    try:
        snapshot = build_snapshot(args, data)
    except PreferencesError as e:
        print(f"Preferences error: {e}", file=sys.stderr)
        return 2

    tracker = GoalProgressTracker(tolerance=snapshot.preferences.goal_tolerance)
    tracking = tracker.track(snapshot.goals, snapshot.tasks, snapshot.now)

    if args.json:
        print(json.dumps([r.to_dict() for r in tracking.reports], sort_keys=True))
    else:
        print_goals(tracking.reports)
    return 0


def cmd_stale(args) -> int:
    """Stale command handler."""
    load_dotenv()
    setup_logging(args.log_level)

    data = read_snapshot_file(args.snapshot)
    try:
        snapshot = build_snapshot(args, data)
    except PreferencesError as e:
        print(f"Preferences error: {e}", file=sys.stderr)
        return 2

    stale = find_stale_tasks(snapshot.tasks, snapshot.preferences, snapshot.now, limit=args.limit)
    if not stale:
        print("No stale tasks")
    for s in stale:
        print(f"  {s.task_id}: {s.reason.value} ({s.days_stale} days)")
    return 0


def cmd_serve(args) -> int:
    """Serve command handler."""
    load_dotenv()
    app_config = load_app_config()
    uvicorn.run(
        "src.api.main:app",
        host=args.host or app_config.host,
        port=args.port or app_config.port,
        log_level=app_config.log_level.lower(),
    )
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Autoplan - automatic task scheduling"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Plan command
    plan_parser = subparsers.add_parser("plan", help="Plan a snapshot file")
    plan_parser.add_argument("--snapshot", "-s", required=True, help="JSON or YAML snapshot file")
    plan_parser.add_argument("--preferences", "-p", default=None, help="Preferences YAML file")
    plan_parser.add_argument("--now", default=None, help="Planning instant (ISO 8601)")
    plan_parser.add_argument(
        "--full-replan",
        action="store_true",
        help="Re-optimise existing auto placements",
    )
    plan_parser.add_argument(
        "--override-manual",
        action="store_true",
        help="With --full-replan, also move manually placed tasks",
    )
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    # Goals command
    goals_parser = subparsers.add_parser("goals", help="Show goal progress reports")
    goals_parser.add_argument("--snapshot", "-s", required=True, help="JSON or YAML snapshot file")
    goals_parser.add_argument("--preferences", "-p", default=None, help="Preferences YAML file")
    goals_parser.add_argument("--now", default=None, help="Evaluation instant (ISO 8601)")
    goals_parser.add_argument("--json", action="store_true", help="Print reports as JSON")
    goals_parser.set_defaults(func=cmd_goals)

    # Stale command
    stale_parser = subparsers.add_parser("stale", help="List stale tasks")
    stale_parser.add_argument("--snapshot", "-s", required=True, help="JSON or YAML snapshot file")
    stale_parser.add_argument("--preferences", "-p", default=None, help="Preferences YAML file")
    stale_parser.add_argument("--now", default=None, help="Evaluation instant (ISO 8601)")
    stale_parser.add_argument("--limit", type=int, default=None, help="Maximum results")
    stale_parser.set_defaults(func=cmd_stale)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: PORT or 5220)")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
