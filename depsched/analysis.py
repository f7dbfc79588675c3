"""Diagnostics over stored task dates: drift, constraint violations, dependency health."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from .critical_path import CriticalPathAnalyzer
from .dates import DateCalculator, candidate_bound, resolve_predecessors
from .graph import DependencyGraph
from .models import DateConflict, DependencyType, ProjectSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EdgeViolation:
    """A dependency edge the stored dates do not satisfy."""

    task_id: str
    predecessor_id: str
    type: DependencyType
    lag_days: int
    violation_days: int
    constraint: str


@dataclass
class ScheduleConflict:
    """A task whose stored dates disagree with what its dependencies imply."""

    task_id: str
    current_start: date
    current_end: date
    suggested_start: Optional[date]
    suggested_end: Optional[date]
    pinned: bool = False
    inconsistent_duration: bool = False
    violations: List[EdgeViolation] = field(default_factory=list)
    date_conflict: Optional[DateConflict] = None

    @property
    def has_drift(self) -> bool:
        return self.suggested_start is not None and (
            self.suggested_start != self.current_start or self.suggested_end != self.current_end
        )


def find_schedule_conflicts(snapshot: ProjectSnapshot) -> List[ScheduleConflict]:
    """
    Scan stored dates for drift from their dependency-derived values.

    Non-pinned tasks are reported when their stored dates differ from the
    derived dates at all. Pinned tasks are expected to differ and are only
    reported when a dependency edge is actually violated. Tasks whose end date
    does not match start + duration are always reported.
    """
    graph = DependencyGraph.from_tasks(snapshot)
    calculator = DateCalculator(snapshot)
    conflicts: List[ScheduleConflict] = []

    for task_id in graph.topological_order():
        task = snapshot.get(task_id)
        derived = calculator.calculate(task_id)

        violations: List[EdgeViolation] = []
        for edge, pred in zip(task.dependencies, resolve_predecessors(task, snapshot)):
            bound = candidate_bound(pred)
            stored = task.start_date if edge.type.bounds_start else task.end_date
            violation = (bound - stored).days
            if violation > 0:
                side = "start" if edge.type.bounds_start else "end"
                violations.append(
                    EdgeViolation(
                        task_id=task_id,
                        predecessor_id=edge.predecessor_id,
                        type=edge.type,
                        lag_days=edge.lag_days,
                        violation_days=violation,
                        constraint=f"{side} >= {bound.isoformat()} ({edge.type.code} {edge.lag_days:+d})",
                    )
                )

        conflict = ScheduleConflict(
            task_id=task_id,
            current_start=task.start_date,
            current_end=task.end_date,
            suggested_start=derived.start if derived else None,
            suggested_end=derived.end if derived else None,
            pinned=task.manual_override_dates,
            inconsistent_duration=not task.has_consistent_dates,
            violations=violations,
            date_conflict=derived.conflict if derived else None,
        )

        if conflict.inconsistent_duration or violations:
            conflicts.append(conflict)
        elif not task.manual_override_dates and (conflict.has_drift or conflict.date_conflict):
            conflicts.append(conflict)

    if conflicts:
        logger.info(f"Schedule scan found {len(conflicts)} task(s) out of sync with their dependencies")
    return conflicts


def conflicts_dataframe(snapshot: ProjectSnapshot) -> pd.DataFrame:
    """One row per violated dependency edge."""
    rows = []
    for conflict in find_schedule_conflicts(snapshot):
        for v in conflict.violations:
            rows.append(
                {
                    "Task": v.task_id,
                    "Predecessor": v.predecessor_id,
                    "Type": v.type.code,
                    "Lag": v.lag_days,
                    "Violation": v.violation_days,
                    "Constraint": v.constraint,
                    "Pinned": "Yes" if conflict.pinned else "No",
                }
            )
    return pd.DataFrame(rows, columns=["Task", "Predecessor", "Type", "Lag", "Violation", "Constraint", "Pinned"])


def dependency_stats(snapshot: ProjectSnapshot) -> Dict[str, int]:
    stats = {
        "total_dependencies": 0,
        "finish_to_start": 0,
        "start_to_start": 0,
        "finish_to_finish": 0,
        "start_to_finish": 0,
        "with_lag": 0,
        "with_lead": 0,
        "conflicts": 0,
    }
    for task in snapshot:
        for edge in task.dependencies:
            stats["total_dependencies"] += 1
            stats[edge.type.name.lower()] += 1
            if edge.lag_days > 0:
                stats["with_lag"] += 1
            elif edge.lag_days < 0:
                stats["with_lead"] += 1
    stats["conflicts"] = sum(len(c.violations) for c in find_schedule_conflicts(snapshot))
    return stats


def dependency_health(snapshot: ProjectSnapshot) -> Dict[str, object]:
    """Score 0-100 from edge violations and negative free float."""
    stats = dependency_stats(snapshot)
    total_relations = stats["total_dependencies"]
    conflict_count = stats["conflicts"]

    analyzer = CriticalPathAnalyzer(snapshot)
    analyzer.analyze()
    negative_ff = sum(1 for value in analyzer.free_float.values() if value < 0)

    if total_relations == 0:
        base_score = 100
    else:
        base_score = max(0, int(100 - (conflict_count / total_relations) * 100))

    if negative_ff:
        base_score = max(0, base_score - min(20, negative_ff * 5))
    if total_relations < max(1, len(snapshot) - 1):
        base_score = max(0, base_score - 10)

    status = "Healthy"
    if base_score < 70:
        status = "At Risk"
    if base_score < 40:
        status = "Critical"

    return {
        "score": base_score,
        "status": status,
        "total_relations": total_relations,
        "conflicts": conflict_count,
        "negative_ff": negative_ff,
    }
