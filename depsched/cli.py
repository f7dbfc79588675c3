import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import matplotlib

from .analysis import conflicts_dataframe, dependency_health
from .cascade import CascadeScheduler
from .codec import snapshot_from_records, snapshot_to_records
from .config import EngineConfig, load_config
from .critical_path import CriticalPathAnalyzer
from .errors import ConfigError, SchedulingError
from .logs import setup_logging
from .models import ProjectSnapshot

logger = logging.getLogger(__name__)


def load_snapshot(path: Path) -> ProjectSnapshot:
    """Read a JSON task list, or an object with "projectId" and "tasks"."""
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        return snapshot_from_records(data.get("tasks", []), project_id=data.get("projectId"))
    return snapshot_from_records(data)


def cmd_critical_path(args, config: EngineConfig) -> int:
    snapshot = load_snapshot(args.file)
    analyzer = CriticalPathAnalyzer(snapshot, config.critical_path)
    df = analyzer.results_dataframe()
    print(df.to_string(index=False))
    print()
    print(f"Project duration: {analyzer.project_duration} days")
    for idx, path in enumerate(analyzer.critical_paths, start=1):
        print(f"Critical path {idx}: {' -> '.join(path)}")
    if args.verbose:
        print()
        print("\n".join(analyzer.calculation_log))
    return 0


def cmd_conflicts(args, config: EngineConfig) -> int:
    snapshot = load_snapshot(args.file)
    df = conflicts_dataframe(snapshot)
    if df.empty:
        print("No dependency violations.")
    else:
        print(df.to_string(index=False))
    health = dependency_health(snapshot)
    print(f"Dependency health: {health['score']} ({health['status']})")
    return 1 if not df.empty and args.strict else 0


def cmd_cascade(args, config: EngineConfig) -> int:
    snapshot = load_snapshot(args.file)
    scheduler = CascadeScheduler(config.scheduling)
    result = scheduler.on_edges_changed(snapshot, args.task_id)

    for record in result.updated_tasks:
        print(
            f"{record.task_id}: {record.old_start} .. {record.old_end} -> "
            f"{record.new_start} .. {record.new_end} ({record.reason})"
        )
    for notice in result.pinned_tasks:
        print(f"{notice.task_id}: pinned, suggested {notice.suggested_start} .. {notice.suggested_end}")
    for conflict in result.conflicts:
        print(f"conflict: {conflict.message}")
    print(f"Total updated: {result.total_updated}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(snapshot_to_records(result.snapshot), f, indent=2)
        logger.info(f"Wrote {len(result.snapshot)} task(s) to {args.output}")
    return 0


def cmd_render(args, config: EngineConfig) -> int:
    matplotlib.use("Agg")
    from .visualizations import create_network_diagram, create_plotly_gantt

    snapshot = load_snapshot(args.file)
    entries = CriticalPathAnalyzer(snapshot, config.critical_path).analyze()
    if args.network:
        import matplotlib.pyplot as plt

        fig = create_network_diagram(snapshot, entries)
        fig.savefig(args.network, dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info(f"Network diagram written to {args.network}")
    if args.gantt:
        create_plotly_gantt(snapshot, entries, scale=args.scale).write_html(str(args.gantt))
        logger.info(f"Gantt chart written to {args.gantt}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="depsched", description="Task dependency scheduling engine")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    cp = sub.add_parser("critical-path", help="Compute slack and critical paths")
    cp.add_argument("file", type=Path)
    cp.add_argument("-v", "--verbose", action="store_true", help="Print the calculation log")
    cp.set_defaults(func=cmd_critical_path)

    cf = sub.add_parser("conflicts", help="List tasks whose dates violate their dependencies")
    cf.add_argument("file", type=Path)
    cf.add_argument("--strict", action="store_true", help="Exit 1 when violations are found")
    cf.set_defaults(func=cmd_conflicts)

    cc = sub.add_parser("cascade", help="Re-derive a task and cascade to its dependents")
    cc.add_argument("file", type=Path)
    cc.add_argument("task_id")
    cc.add_argument("-o", "--output", type=Path, default=None, help="Write the updated task list here")
    cc.set_defaults(func=cmd_cascade)

    rd = sub.add_parser("render", help="Render the network diagram and Gantt chart")
    rd.add_argument("file", type=Path)
    rd.add_argument("--network", type=Path, default=None, help="PNG output for the network diagram")
    rd.add_argument("--gantt", type=Path, default=None, help="HTML output for the Gantt chart")
    rd.add_argument("--scale", choices=["Day", "Week", "Month"], default="Day")
    rd.set_defaults(func=cmd_render)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config) if args.config else EngineConfig()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    setup_logging(args.log_level or config.logging.level, log_file=config.logging.log_file)

    try:
        return args.func(args, config)
    except (SchedulingError, OSError, json.JSONDecodeError) as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
