"""Errors raised by the scheduling engine."""

from __future__ import annotations

from typing import List, Optional


class SchedulingError(Exception):
    """Base class for every error the engine raises."""

    pass


class DependencyParseError(SchedulingError, ValueError):
    """A dependency wire string could not be parsed."""

    def __init__(self, message: str, wire: Optional[str] = None):
        super().__init__(message)
        self.wire = wire


class InvalidDependencyFormat(DependencyParseError):
    pass


class InvalidDependencyType(DependencyParseError):
    def __init__(self, message: str, wire: Optional[str] = None, type_value: Optional[str] = None):
        super().__init__(message, wire)
        self.type_value = type_value


class InvalidLag(DependencyParseError):
    def __init__(self, message: str, wire: Optional[str] = None, lag_value: Optional[str] = None):
        super().__init__(message, wire)
        self.lag_value = lag_value


class InvalidDuration(SchedulingError, ValueError):
    def __init__(self, message: str, task_id: Optional[str] = None, duration_days: Optional[int] = None):
        super().__init__(message)
        self.task_id = task_id
        self.duration_days = duration_days


class DuplicateDependency(SchedulingError):
    def __init__(self, message: str, task_id: Optional[str] = None, predecessor_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
        self.predecessor_id = predecessor_id


class CycleDetected(SchedulingError):
    """The dependency relation contains, or would contain, a cycle."""

    def __init__(self, message: str, path: Optional[List[str]] = None):
        super().__init__(message)
        self.path = list(path or [])


class MissingPredecessor(SchedulingError):
    def __init__(self, message: str, task_id: Optional[str] = None, predecessor_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
        self.predecessor_id = predecessor_id


class UnknownTask(SchedulingError, KeyError):
    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0]) if self.args else ""


class ConflictingDateBound(SchedulingError):
    """Raised for a date conflict when the conflict policy is ``block``."""

    def __init__(self, message: str, conflict=None):
        super().__init__(message)
        self.conflict = conflict


class StaleSnapshotAbort(SchedulingError):
    """The store changed between snapshot read and commit."""

    def __init__(self, message: str, stale_task_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.stale_task_ids = list(stale_task_ids or [])


class InvalidTaskRecord(SchedulingError, ValueError):
    """A persisted task record is missing fields or holds malformed values."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class ConfigError(Exception):
    """Configuration error."""

    pass
