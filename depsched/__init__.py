"""Task-dependency scheduling engine: dependency codec, cycle checks, date cascade and critical path."""

from .analysis import dependency_health, dependency_stats, find_schedule_conflicts
from .cascade import CascadeScheduler, apply_changes, cascade_dependency_updates, commit_cascade, run_cascade
from .codec import format_dependency, parse_dependency, task_from_record, task_to_record
from .config import EngineConfig, load_config
from .critical_path import CriticalPathAnalyzer, compute_critical_path
from .cycles import find_cycle, validate_new_edge, would_create_cycle
from .dates import DateCalculator, calculate_task_dates
from .errors import (
    ConflictingDateBound,
    CycleDetected,
    DependencyParseError,
    DuplicateDependency,
    InvalidDependencyFormat,
    InvalidDependencyType,
    InvalidDuration,
    InvalidLag,
    InvalidTaskRecord,
    MissingPredecessor,
    SchedulingError,
    StaleSnapshotAbort,
    UnknownTask,
)
from .graph import DependencyGraph
from .models import (
    CascadeResult,
    ChangeRecord,
    CriticalPathEntry,
    DateConflict,
    DependencyEdge,
    DependencyType,
    PinnedTaskNotice,
    ProjectSnapshot,
    ResolvedPredecessor,
    Task,
    TaskDates,
)
from .store import InMemoryTaskStore, TaskStore

__version__ = "1.0.0"
