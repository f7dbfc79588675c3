from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

from .errors import InvalidDuration, MissingPredecessor
from .models import (
    DateConflict,
    DependencyEdge,
    DependencyType,
    ProjectSnapshot,
    ResolvedPredecessor,
    Task,
    TaskDates,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def candidate_bound(pred: ResolvedPredecessor) -> date:
    """
    Date bound a single relationship puts on the dependent task.

    FS and SS bound the dependent's start; FF and SF bound its finish. Dates
    are inclusive, so a finish-to-start successor begins the day after the
    predecessor ends.
    """
    lag = timedelta(days=pred.lag_days)
    if pred.type == DependencyType.FINISH_TO_START:
        return pred.predecessor_end + lag + ONE_DAY
    if pred.type == DependencyType.START_TO_START:
        return pred.predecessor_start + lag
    if pred.type == DependencyType.FINISH_TO_FINISH:
        return pred.predecessor_end + lag
    if pred.type == DependencyType.START_TO_FINISH:
        return pred.predecessor_start + lag
    raise ValueError(f"Unsupported relationship type: {pred.type!r}")


def calculate_task_dates(
    duration_days: int,
    resolved_predecessors: Sequence[ResolvedPredecessor],
    task_id: Optional[str] = None,
) -> Optional[TaskDates]:
    """
    Derive a task's earliest feasible dates from its finalized predecessors.

    Args:
        duration_days: Inclusive day count, at least 1
        resolved_predecessors: Each edge joined with its predecessor's dates
        task_id: Used only to label a conflict

    Returns:
        TaskDates, or None when the task has no dependencies (the caller keeps
        the existing dates). When both start and finish bounds exist and
        disagree, the later start wins and the conflict is attached.
    """
    if duration_days < 1:
        raise InvalidDuration(
            f"Duration must be at least 1 day, got {duration_days}.",
            task_id=task_id,
            duration_days=duration_days,
        )
    if not resolved_predecessors:
        return None

    start_candidates: List[date] = []
    end_candidates: List[date] = []
    for pred in resolved_predecessors:
        bound = candidate_bound(pred)
        if pred.type.bounds_start:
            start_candidates.append(bound)
        else:
            end_candidates.append(bound)

    span = timedelta(days=duration_days - 1)
    start_bound = max(start_candidates) if start_candidates else None
    end_bound = max(end_candidates) if end_candidates else None

    if end_bound is None:
        return TaskDates(start=start_bound, end=start_bound + span)

    start_from_end = end_bound - span
    if start_bound is None:
        return TaskDates(start=start_from_end, end=end_bound)

    start = max(start_bound, start_from_end)
    conflict = None
    if start_bound != start_from_end:
        conflict = DateConflict(
            task_id=task_id,
            start_bound=start_bound,
            start_from_end_bound=start_from_end,
            resolved_start=start,
        )
        logger.debug(conflict.message)
    return TaskDates(start=start, end=start + span, conflict=conflict)


def resolve_predecessors(task: Task, snapshot: ProjectSnapshot) -> List[ResolvedPredecessor]:
    """Join each of the task's edges with its predecessor's current dates."""
    resolved: List[ResolvedPredecessor] = []
    for edge in task.dependencies:
        if edge.predecessor_id not in snapshot:
            raise MissingPredecessor(
                f"Task '{task.id}' references undefined predecessor '{edge.predecessor_id}'.",
                task_id=task.id,
                predecessor_id=edge.predecessor_id,
            )
        pred = snapshot.get(edge.predecessor_id)
        resolved.append(
            ResolvedPredecessor(
                type=edge.type,
                lag_days=edge.lag_days,
                predecessor_start=pred.start_date,
                predecessor_end=pred.end_date,
                predecessor_id=pred.id,
            )
        )
    return resolved


def describe_bound(task_id: str, edge: DependencyEdge, bound: date) -> str:
    side = "start" if edge.type.bounds_start else "finish"
    anchor = "finish" if edge.type.from_predecessor_finish else "start"
    return (
        f"{task_id} {side} >= {anchor}({edge.predecessor_id}) {edge.type.code} "
        f"lag={edge.lag_days} -> {bound.isoformat()}"
    )


class DateCalculator:
    """Derives task dates against one project snapshot."""

    def __init__(self, snapshot: ProjectSnapshot):
        self.snapshot = snapshot

    def calculate(self, task_id: str) -> Optional[TaskDates]:
        task = self.snapshot.get(task_id)
        resolved = resolve_predecessors(task, self.snapshot)
        result = calculate_task_dates(task.duration_days, resolved, task_id=task.id)
        if result is not None and logger.isEnabledFor(logging.DEBUG):
            for edge, pred in zip(task.dependencies, resolved):
                logger.debug(describe_bound(task.id, edge, candidate_bound(pred)))
            logger.debug(f"{task.id}: derived {result.start.isoformat()} .. {result.end.isoformat()}")
        return result
