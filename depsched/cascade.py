from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Callable, Iterable, Optional, Sequence

from .config import SchedulingConfig
from .cycles import validate_new_edge
from .dates import DateCalculator
from .errors import ConflictingDateBound, MissingPredecessor, StaleSnapshotAbort
from .graph import DependencyGraph
from .models import (
    CascadeResult,
    ChangeRecord,
    DependencyEdge,
    PinnedTaskNotice,
    ProjectSnapshot,
)
from .store import TaskStore

logger = logging.getLogger(__name__)


class CascadeScheduler:
    """
    Recomputes task dates after an edit and cascades them through dependents.

    Every entry point is a pure function of the snapshot it receives: the
    snapshot is never modified, and the returned CascadeResult carries the
    change records together with the resulting snapshot. The caller persists
    ``result.changed_tasks()`` and ``result.deleted_task_ids`` as one batch
    (see commit_cascade).

    Tasks with ``manual_override_dates`` are never rewritten by a cascade. They
    still act as predecessors for their own dependents. When an upstream
    change reaches them, or their own dependency list changes, they are
    reported in ``result.pinned_tasks``.
    """

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self.config = config or SchedulingConfig()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_edges_changed(self, snapshot: ProjectSnapshot, task_id: str) -> CascadeResult:
        """Re-derive a task whose dependency set changed, then its dependents."""
        snapshot.get(task_id)
        return self._cascade(
            snapshot,
            snapshot,
            sources=[task_id],
            recompute_sources=True,
            reason="dependencies changed",
        )

    def on_dates_changed(
        self,
        snapshot: ProjectSnapshot,
        task_id: str,
        start_date: date,
        end_date: Optional[date] = None,
    ) -> CascadeResult:
        """
        Apply a manual date edit and cascade it.

        The edited dates are authoritative and the task becomes pinned. Without
        an end date the task keeps its duration; with one the duration follows
        the new range.
        """
        task = snapshot.get(task_id)
        if end_date is None:
            end_date = start_date + timedelta(days=task.duration_days - 1)
        duration = (end_date - start_date).days + 1
        edited = replace(
            task,
            start_date=start_date,
            end_date=end_date,
            duration_days=duration,
            manual_override_dates=True,
        )
        logger.info(
            f"Manual date edit on {task_id}: {task.start_date.isoformat()}..{task.end_date.isoformat()} "
            f"-> {start_date.isoformat()}..{end_date.isoformat()} (pinned)"
        )
        return self._cascade(
            snapshot,
            snapshot.replace_task(edited),
            sources=[task_id],
            recompute_sources=False,
            reason="manual date edit",
            edited_ids=[task_id],
        )

    def on_manual_override_cleared(self, snapshot: ProjectSnapshot, task_id: str) -> CascadeResult:
        """Unpin a task and let it re-synchronize with its predecessors."""
        task = snapshot.get(task_id)
        unpinned = replace(task, manual_override_dates=False)
        return self._cascade(
            snapshot,
            snapshot.replace_task(unpinned),
            sources=[task_id],
            recompute_sources=True,
            reason="manual override cleared",
            edited_ids=[task_id] if task.manual_override_dates else [],
        )

    def set_manual_override(self, snapshot: ProjectSnapshot, task_id: str, override: bool) -> CascadeResult:
        """Toggle the manual override flag; clearing it re-derives the task."""
        if not override:
            return self.on_manual_override_cleared(snapshot, task_id)
        task = snapshot.get(task_id)
        working = snapshot.replace_task(replace(task, manual_override_dates=True))
        return CascadeResult(
            snapshot=working,
            base_versions={task_id: task.version},
            edited_task_ids=[task_id] if not task.manual_override_dates else [],
        )

    def add_dependency(self, snapshot: ProjectSnapshot, owner_id: str, edge: DependencyEdge) -> CascadeResult:
        """
        Validate and add a dependency edge, then cascade.

        Raises:
            MissingPredecessor: the predecessor does not exist
            DuplicateDependency: the owner already depends on the predecessor
            CycleDetected: the edge would close a cycle
        """
        graph = DependencyGraph.from_tasks(snapshot)
        validate_new_edge(graph, owner_id, edge)

        owner = snapshot.get(owner_id)
        updated = replace(owner, dependencies=owner.dependencies + (edge,))
        logger.info(f"Adding dependency {edge} to {owner_id}")
        return self._cascade(
            snapshot,
            snapshot.replace_task(updated),
            sources=[owner_id],
            recompute_sources=True,
            reason=f"dependency on {edge.predecessor_id} added",
            edited_ids=[owner_id],
        )

    def remove_dependency(self, snapshot: ProjectSnapshot, owner_id: str, predecessor_id: str) -> CascadeResult:
        owner = snapshot.get(owner_id)
        if owner.dependency_on(predecessor_id) is None:
            raise MissingPredecessor(
                f"Task '{owner_id}' has no dependency on '{predecessor_id}'.",
                task_id=owner_id,
                predecessor_id=predecessor_id,
            )
        updated = replace(
            owner,
            dependencies=tuple(e for e in owner.dependencies if e.predecessor_id != predecessor_id),
        )
        logger.info(f"Removing dependency {predecessor_id} from {owner_id}")
        return self._cascade(
            snapshot,
            snapshot.replace_task(updated),
            sources=[owner_id],
            recompute_sources=True,
            reason=f"dependency on {predecessor_id} removed",
            edited_ids=[owner_id],
        )

    def update_dependencies(
        self, snapshot: ProjectSnapshot, owner_id: str, edges: Sequence[DependencyEdge]
    ) -> CascadeResult:
        """
        Replace a task's whole dependency list, then cascade.

        The new list is checked as a unit: unknown predecessors, duplicates and
        cycles are rejected before anything is returned.
        """
        owner = snapshot.get(owner_id)
        updated = replace(owner, dependencies=tuple(edges))
        working = snapshot.replace_task(updated)
        # Graph construction and ordering raise MissingPredecessor / CycleDetected
        DependencyGraph.from_tasks(working).topological_order()
        return self._cascade(
            snapshot,
            working,
            sources=[owner_id],
            recompute_sources=True,
            reason="dependencies changed",
            edited_ids=[owner_id],
        )

    def on_task_deleted(self, snapshot: ProjectSnapshot, task_id: str) -> CascadeResult:
        """
        Delete a task with its incoming and outgoing edges.

        Former dependents lose their edge to the deleted task and are
        re-derived, together with everything downstream of them.
        """
        snapshot.get(task_id)
        graph = DependencyGraph.from_tasks(snapshot)
        former_dependents = [t for t in graph.topological_order() if t in graph.dependents_of(task_id)]

        working = snapshot.without_task(task_id)
        for dependent_id in former_dependents:
            dependent = working.get(dependent_id)
            working = working.replace_task(
                replace(
                    dependent,
                    dependencies=tuple(e for e in dependent.dependencies if e.predecessor_id != task_id),
                )
            )

        logger.info(
            f"Deleting task {task_id}; re-deriving {len(former_dependents)} former dependent(s)"
        )
        return self._cascade(
            snapshot,
            working,
            sources=former_dependents,
            recompute_sources=True,
            reason=f"predecessor {task_id} deleted",
            edited_ids=former_dependents,
            deleted_ids=[task_id],
        )

    # ------------------------------------------------------------------
    # Core pass
    # ------------------------------------------------------------------

    def _cascade(
        self,
        base: ProjectSnapshot,
        working: ProjectSnapshot,
        sources: Sequence[str],
        recompute_sources: bool,
        reason: str,
        edited_ids: Sequence[str] = (),
        deleted_ids: Sequence[str] = (),
    ) -> CascadeResult:
        graph = DependencyGraph.from_tasks(working)
        order = graph.topological_order()

        affected = set(sources)
        for source_id in sources:
            affected.update(graph.descendants_of(source_id))

        # Everything this pass reads; the commit is guarded on these versions
        read_ids = set(affected) | set(deleted_ids)
        for task_id in affected:
            read_ids.update(e.predecessor_id for e in graph.predecessors_of(task_id))
        base_versions = {t: base.get(t).version for t in sorted(read_ids) if t in base}

        result = CascadeResult(
            snapshot=working,
            base_versions=base_versions,
            deleted_task_ids=list(deleted_ids),
            edited_task_ids=list(edited_ids),
        )

        # A manual edit moves its sources; recomputed sources join once they change
        touched = set() if recompute_sources else set(sources)
        origin = ", ".join(sources) if sources else "-"

        for task_id in order:
            if task_id not in affected:
                continue
            task = working.get(task_id)
            is_source = task_id in sources

            if is_source and not recompute_sources:
                continue

            upstream_changed = any(e.predecessor_id in touched for e in task.dependencies)

            if task.manual_override_dates:
                # A recomputed source had its own edges changed
                if upstream_changed or is_source:
                    suggested = DateCalculator(working).calculate(task_id)
                    notice = PinnedTaskNotice(
                        task_id=task_id,
                        current_start=task.start_date,
                        current_end=task.end_date,
                        suggested_start=suggested.start if suggested else None,
                        suggested_end=suggested.end if suggested else None,
                    )
                    result.pinned_tasks.append(notice)
                    if notice.violates_constraints:
                        logger.warning(
                            f"Pinned task {task_id} starts {task.start_date.isoformat()} but its "
                            f"predecessors now allow {notice.suggested_start.isoformat()} at the earliest"
                        )
                continue

            dates = DateCalculator(working).calculate(task_id)
            if dates is None:
                continue

            if dates.conflict is not None:
                if self.config.conflict_policy == "block":
                    raise ConflictingDateBound(dates.conflict.message, conflict=dates.conflict)
                logger.warning(dates.conflict.message)
                result.conflicts.append(dates.conflict)

            if dates.start == task.start_date and dates.end == task.end_date:
                continue

            record = ChangeRecord(
                task_id=task_id,
                old_start=task.start_date,
                old_end=task.end_date,
                new_start=dates.start,
                new_end=dates.end,
                reason=reason if is_source else f"dependency update cascaded from {origin}",
            )
            logger.debug(
                f"{task_id}: {record.old_start.isoformat()}..{record.old_end.isoformat()} -> "
                f"{record.new_start.isoformat()}..{record.new_end.isoformat()} ({record.reason})"
            )
            result.updated_tasks.append(record)
            working = working.replace_task(task.with_dates(dates.start, dates.end))
            touched.add(task_id)

        result.snapshot = working
        logger.info(
            f"Cascade from {origin} ({reason}): {result.total_updated} task(s) updated, "
            f"{len(result.pinned_tasks)} pinned task(s) reached, {len(result.conflicts)} conflict(s)"
        )
        return result


def cascade_dependency_updates(
    snapshot: ProjectSnapshot, changed_task_id: str, config: Optional[SchedulingConfig] = None
) -> CascadeResult:
    """Re-derive changed_task_id (unless pinned) and everything downstream of it."""
    return CascadeScheduler(config).on_edges_changed(snapshot, changed_task_id)


def commit_cascade(store: TaskStore, result: CascadeResult, project_id: Optional[str] = None) -> None:
    """Persist a cascade as one atomic batch guarded by the versions it read."""
    project_id = project_id or result.snapshot.project_id
    if project_id is None:
        raise ValueError("A project id is required to commit a cascade.")
    store.commit(
        project_id,
        result.changed_tasks(),
        result.deleted_task_ids,
        result.base_versions,
    )


def run_cascade(
    store: TaskStore,
    project_id: str,
    operation: Callable[[ProjectSnapshot], CascadeResult],
    max_retries: Optional[int] = None,
) -> CascadeResult:
    """
    Read a snapshot, run a cascade operation on it and commit the result.

    A StaleSnapshotAbort discards the computed cascade and starts over from a
    fresh snapshot; once the retry budget is spent the abort propagates.

    Args:
        store: Task store providing snapshots and atomic commits
        project_id: Project to operate on
        operation: Callable taking a snapshot and returning a CascadeResult,
            e.g. ``lambda s: scheduler.on_edges_changed(s, "T1")``
        max_retries: Retries after the first attempt (default 3)

    Returns:
        The committed CascadeResult
    """
    if max_retries is None:
        max_retries = SchedulingConfig().max_cascade_retries

    attempt = 0
    while True:
        snapshot = store.load_snapshot(project_id)
        result = operation(snapshot)
        try:
            commit_cascade(store, result, project_id)
            return result
        except StaleSnapshotAbort as e:
            if attempt >= max_retries:
                logger.error(f"Cascade on project '{project_id}' abandoned after {attempt + 1} attempt(s): {e}")
                raise
            attempt += 1
            logger.warning(f"Stale snapshot for project '{project_id}', retrying cascade ({attempt}/{max_retries})")


def apply_changes(snapshot: ProjectSnapshot, records: Iterable[ChangeRecord]) -> ProjectSnapshot:
    """Replay change records onto a snapshot (e.g. a UI-side copy)."""
    updated = []
    for record in records:
        task = snapshot.get(record.task_id)
        updated.append(task.with_dates(record.new_start, record.new_end))
    return snapshot.replace_tasks(updated)

