from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import (
    CycleDetected,
    DuplicateDependency,
    InvalidDependencyFormat,
    InvalidDuration,
    InvalidTaskRecord,
    UnknownTask,
)


def _id_problem(task_id: object) -> Optional[str]:
    """Why an id cannot survive the "ID:TYPE:LAG" wire format, or None."""
    if not isinstance(task_id, str) or not task_id:
        return "must be a non-empty string"
    if ":" in task_id:
        return "must not contain ':'"
    if task_id != task_id.strip():
        return "must not have leading or trailing whitespace"
    return None


class DependencyType(str, Enum):
    """The four precedence relationships between a predecessor and its dependent."""

    FINISH_TO_START = "finish-to-start"
    START_TO_START = "start-to-start"
    FINISH_TO_FINISH = "finish-to-finish"
    START_TO_FINISH = "start-to-finish"

    @property
    def code(self) -> str:
        return _SHORT_CODES[self]

    @property
    def bounds_start(self) -> bool:
        """True when the relation constrains the dependent's start date."""
        return self in (DependencyType.FINISH_TO_START, DependencyType.START_TO_START)

    @property
    def from_predecessor_finish(self) -> bool:
        """True when the relation is measured from the predecessor's finish."""
        return self in (DependencyType.FINISH_TO_START, DependencyType.FINISH_TO_FINISH)


_SHORT_CODES = {
    DependencyType.FINISH_TO_START: "FS",
    DependencyType.START_TO_START: "SS",
    DependencyType.FINISH_TO_FINISH: "FF",
    DependencyType.START_TO_FINISH: "SF",
}


@dataclass(frozen=True)
class DependencyEdge:
    """A precedence relationship pointing at the predecessor task."""

    predecessor_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: int = 0  # Can be positive (delay) or negative (lead)

    def __post_init__(self) -> None:
        problem = _id_problem(self.predecessor_id)
        if problem:
            raise InvalidDependencyFormat(
                f"Invalid predecessor id {self.predecessor_id!r}: {problem}.",
                wire=self.predecessor_id if isinstance(self.predecessor_id, str) else None,
            )

    def __str__(self) -> str:
        lag_str = f"+{self.lag_days}" if self.lag_days >= 0 else str(self.lag_days)
        return f"{self.predecessor_id}:{self.type.code}:{lag_str}"


@dataclass(frozen=True)
class Task:
    """The scheduling view of a project task."""

    id: str
    duration_days: int
    start_date: date
    end_date: date
    dependencies: Tuple[DependencyEdge, ...] = ()
    manual_override_dates: bool = False
    name: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        problem = _id_problem(self.id)
        if problem:
            raise InvalidTaskRecord(f"Invalid task id {self.id!r}: {problem}.", task_id=self.id)
        if self.duration_days < 1:
            raise InvalidDuration(
                f"Task '{self.id}' has duration {self.duration_days}; duration must be at least 1 day.",
                task_id=self.id,
                duration_days=self.duration_days,
            )
        # Lists coming from records are frozen so tasks stay hashable
        if not isinstance(self.dependencies, tuple):
            object.__setattr__(self, "dependencies", tuple(self.dependencies))

        seen: set[str] = set()
        for edge in self.dependencies:
            if edge.predecessor_id == self.id:
                raise CycleDetected(
                    f"Task '{self.id}' cannot be its own predecessor.",
                    path=[self.id, self.id],
                )
            if edge.predecessor_id in seen:
                raise DuplicateDependency(
                    f"Task '{self.id}' already depends on '{edge.predecessor_id}'.",
                    task_id=self.id,
                    predecessor_id=edge.predecessor_id,
                )
            seen.add(edge.predecessor_id)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def has_consistent_dates(self) -> bool:
        return self.end_date == self.start_date + timedelta(days=self.duration_days - 1)

    def dependency_on(self, predecessor_id: str) -> Optional[DependencyEdge]:
        for edge in self.dependencies:
            if edge.predecessor_id == predecessor_id:
                return edge
        return None

    def with_dates(self, start_date: date, end_date: date) -> "Task":
        return replace(self, start_date=start_date, end_date=end_date)


@dataclass(frozen=True)
class ProjectSnapshot:
    """An immutable view of one project's task set.

    Every mutating helper returns a new snapshot; the original is left as read.
    """

    tasks: Dict[str, Task] = field(default_factory=dict)
    project_id: Optional[str] = None

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task], project_id: Optional[str] = None) -> "ProjectSnapshot":
        mapping: Dict[str, Task] = {}
        for task in tasks:
            if task.id in mapping:
                raise ValueError(f"Duplicate task id '{task.id}' in project snapshot.")
            mapping[task.id] = task
        return cls(tasks=mapping, project_id=project_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks.values())

    def __len__(self) -> int:
        return len(self.tasks)

    def get(self, task_id: str) -> Task:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise UnknownTask(f"Task '{task_id}' is not part of this project.", task_id=task_id) from None

    def replace_task(self, task: Task) -> "ProjectSnapshot":
        tasks = dict(self.tasks)
        tasks[task.id] = task
        return ProjectSnapshot(tasks=tasks, project_id=self.project_id)

    def replace_tasks(self, updated: Iterable[Task]) -> "ProjectSnapshot":
        tasks = dict(self.tasks)
        for task in updated:
            tasks[task.id] = task
        return ProjectSnapshot(tasks=tasks, project_id=self.project_id)

    def without_task(self, task_id: str) -> "ProjectSnapshot":
        tasks = {tid: t for tid, t in self.tasks.items() if tid != task_id}
        return ProjectSnapshot(tasks=tasks, project_id=self.project_id)

    def versions(self) -> Dict[str, int]:
        return {tid: t.version for tid, t in self.tasks.items()}


@dataclass(frozen=True)
class ResolvedPredecessor:
    """A dependency edge joined with its predecessor's finalized dates."""

    type: DependencyType
    lag_days: int
    predecessor_start: date
    predecessor_end: date
    predecessor_id: Optional[str] = None


@dataclass(frozen=True)
class DateConflict:
    """Mixed start and end bounds that disagree on a task's start date."""

    task_id: Optional[str]
    start_bound: date
    start_from_end_bound: date
    resolved_start: date
    kind: str = "ConflictingDateBound"

    @property
    def message(self) -> str:
        who = f"Task '{self.task_id}'" if self.task_id else "Task"
        return (
            f"{who}: start bound {self.start_bound.isoformat()} disagrees with "
            f"{self.start_from_end_bound.isoformat()} derived from its finish bound; "
            f"using {self.resolved_start.isoformat()}."
        )


@dataclass(frozen=True)
class TaskDates:
    """Dates derived from a task's dependency edges."""

    start: date
    end: date
    conflict: Optional[DateConflict] = None


@dataclass(frozen=True)
class ChangeRecord:
    """One task whose dates moved during a cascade."""

    task_id: str
    old_start: date
    old_end: date
    new_start: date
    new_end: date
    reason: str

    @property
    def shift_days(self) -> int:
        return (self.new_start - self.old_start).days


@dataclass(frozen=True)
class PinnedTaskNotice:
    """A manually pinned task whose upstream constraints changed."""

    task_id: str
    current_start: date
    current_end: date
    suggested_start: Optional[date]
    suggested_end: Optional[date]

    @property
    def violates_constraints(self) -> bool:
        return self.suggested_start is not None and self.suggested_start > self.current_start


@dataclass
class CascadeResult:
    """Outcome of one cascade: change records plus the snapshot to persist."""

    snapshot: ProjectSnapshot
    base_versions: Dict[str, int]
    updated_tasks: List[ChangeRecord] = field(default_factory=list)
    pinned_tasks: List[PinnedTaskNotice] = field(default_factory=list)
    conflicts: List[DateConflict] = field(default_factory=list)
    deleted_task_ids: List[str] = field(default_factory=list)
    edited_task_ids: List[str] = field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return len(self.updated_tasks)

    def changed_tasks(self) -> List[Task]:
        """Tasks whose rows differ from the base snapshot and must be written."""
        ids: List[str] = []
        for task_id in self.edited_task_ids + [c.task_id for c in self.updated_tasks]:
            if task_id not in ids and task_id in self.snapshot:
                ids.append(task_id)
        return [self.snapshot.get(task_id) for task_id in ids]


@dataclass(frozen=True)
class CriticalPathEntry:
    """CPM result for one task, in integer day offsets from project start."""

    task_id: str
    is_critical: bool
    slack: int
    es: int = 0  # Early Start
    ef: int = 0  # Early Finish
    ls: int = 0  # Late Start
    lf: int = 0  # Late Finish
    free_float: int = 0
