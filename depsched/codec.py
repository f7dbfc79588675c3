"""Wire codec for dependency edges and persisted task records."""

from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import (
    DuplicateDependency,
    CycleDetected,
    InvalidDependencyFormat,
    InvalidDependencyType,
    InvalidLag,
    InvalidTaskRecord,
)
from .models import DependencyEdge, DependencyType, ProjectSnapshot, Task

_LAG_RE = re.compile(r"^[+-]?\d+$")

_TYPE_ALIASES: Dict[str, DependencyType] = {}
for _dep_type in DependencyType:
    _TYPE_ALIASES[_dep_type.value] = _dep_type
    _TYPE_ALIASES[_dep_type.code.lower()] = _dep_type
    _TYPE_ALIASES[_dep_type.name.lower()] = _dep_type
    _TYPE_ALIASES[_dep_type.name.replace("_", "").lower()] = _dep_type


def parse_dependency_type(value: str) -> DependencyType:
    """Resolve a relationship type from its wire value, short code or name."""
    dep_type = _TYPE_ALIASES.get(value.strip().lower())
    if dep_type is None:
        raise InvalidDependencyType(
            f"Invalid relationship type '{value}'. Must be one of: "
            + ", ".join(t.value for t in DependencyType)
            + " (or FS, SS, FF, SF).",
            type_value=value,
        )
    return dep_type


def parse_dependency(wire: str) -> DependencyEdge:
    """
    Parse a dependency from its wire representation.

    Args:
        wire: Dependency in format "ID:TYPE:LAG" (e.g., "A:finish-to-start:0").
            TYPE and LAG may be omitted and default to finish-to-start and 0.

    Returns:
        The parsed DependencyEdge

    Raises:
        InvalidDependencyFormat: empty predecessor or too many fields
        InvalidDependencyType: unknown relationship type
        InvalidLag: lag is not an integer
    """
    if wire is None or not str(wire).strip():
        raise InvalidDependencyFormat("Dependency cannot be empty.", wire=wire)

    parts = [p.strip() for p in str(wire).strip().split(":")]
    if len(parts) > 3:
        raise InvalidDependencyFormat(
            f"Invalid dependency format: '{wire}'. Use format 'ID:TYPE:LAG' (e.g., 'A:finish-to-start:0').",
            wire=wire,
        )

    pred_id = parts[0]
    if not pred_id:
        raise InvalidDependencyFormat(f"Missing predecessor id in '{wire}'.", wire=wire)

    type_raw = parts[1] if len(parts) > 1 else ""
    lag_raw = parts[2] if len(parts) > 2 else ""

    if type_raw:
        try:
            dep_type = parse_dependency_type(type_raw)
        except InvalidDependencyType as e:
            e.wire = wire
            raise
    else:
        dep_type = DependencyType.FINISH_TO_START

    if not lag_raw:
        lag = 0
    elif _LAG_RE.match(lag_raw):
        lag = int(lag_raw)
    else:
        raise InvalidLag(
            f"Invalid lag value in '{wire}'. Lag must be an integer.",
            wire=wire,
            lag_value=lag_raw,
        )

    return DependencyEdge(predecessor_id=pred_id, type=dep_type, lag_days=lag)


def format_dependency(edge: DependencyEdge) -> str:
    """Format an edge as "ID:TYPE:LAG" using the canonical type value."""
    return f"{edge.predecessor_id}:{edge.type.value}:{edge.lag_days}"


def parse_dependency_list(wires: Iterable[str], owner_id: Optional[str] = None) -> List[DependencyEdge]:
    """Parse a task's dependency list, rejecting self references and duplicates."""
    edges: List[DependencyEdge] = []
    seen: set[str] = set()
    for wire in wires or []:
        edge = parse_dependency(wire)
        if owner_id is not None and edge.predecessor_id == owner_id:
            raise CycleDetected("A task cannot be its own predecessor.", path=[owner_id, owner_id])
        if edge.predecessor_id in seen:
            raise DuplicateDependency(
                f"Task '{owner_id}' lists predecessor '{edge.predecessor_id}' more than once.",
                task_id=owner_id,
                predecessor_id=edge.predecessor_id,
            )
        seen.add(edge.predecessor_id)
        edges.append(edge)
    return edges


def _field(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _parse_date(value: Any, task_id: str, field_name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        # Timestamps from the store carry a time part
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise InvalidTaskRecord(
            f"Task '{task_id}' has an invalid {field_name}: {value!r}.", task_id=task_id
        ) from None


_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0", ""}


def _parse_bool(value: Any, task_id: str, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise InvalidTaskRecord(f"Task '{task_id}' has an invalid {field_name}: {value!r}.", task_id=task_id)


def _parse_int(value: Any, task_id: str, field_name: str) -> int:
    if isinstance(value, bool):
        raise InvalidTaskRecord(f"Task '{task_id}' has an invalid {field_name}: {value!r}.", task_id=task_id)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidTaskRecord(
            f"Task '{task_id}' has an invalid {field_name}: {value!r}.", task_id=task_id
        ) from None


def task_from_record(record: Mapping[str, Any]) -> Task:
    """
    Build a Task from a persisted record.

    Accepts camelCase keys (durationDays, startDate, ...) as stored by the
    project store, and their snake_case equivalents.
    """
    task_id = _field(record, "id")
    if task_id is None or not str(task_id).strip():
        raise InvalidTaskRecord("Task record is missing an id.")
    task_id = str(task_id).strip()

    start_raw = _field(record, "startDate", "start_date")
    if start_raw is None:
        raise InvalidTaskRecord(f"Task '{task_id}' is missing a start date.", task_id=task_id)
    start = _parse_date(start_raw, task_id, "start date")

    end_raw = _field(record, "endDate", "end_date")
    end = _parse_date(end_raw, task_id, "end date") if end_raw is not None else None

    duration_raw = _field(record, "durationDays", "duration_days", "duration")
    if duration_raw is None:
        if end is None:
            raise InvalidTaskRecord(
                f"Task '{task_id}' needs a duration or an end date.", task_id=task_id
            )
        duration = (end - start).days + 1
    else:
        duration = _parse_int(duration_raw, task_id, "duration")

    if end is None:
        end = start + timedelta(days=duration - 1)

    dependencies = parse_dependency_list(_field(record, "dependencies", default=[]), owner_id=task_id)

    return Task(
        id=task_id,
        duration_days=duration,
        start_date=start,
        end_date=end,
        dependencies=tuple(dependencies),
        manual_override_dates=_parse_bool(
            _field(record, "manualOverrideDates", "manual_override_dates", default=False),
            task_id,
            "manual override flag",
        ),
        name=str(_field(record, "name", default="")),
        version=_parse_int(_field(record, "version", default=0), task_id, "version"),
    )


def task_to_record(task: Task) -> Dict[str, Any]:
    """Serialize a Task to the persisted record shape."""
    record: Dict[str, Any] = {
        "id": task.id,
        "durationDays": task.duration_days,
        "startDate": task.start_date.isoformat(),
        "endDate": task.end_date.isoformat(),
        "dependencies": [format_dependency(edge) for edge in task.dependencies],
        "manualOverrideDates": task.manual_override_dates,
        "version": task.version,
    }
    if task.name:
        record["name"] = task.name
    return record


def snapshot_from_records(records: Iterable[Mapping[str, Any]], project_id: Optional[str] = None) -> ProjectSnapshot:
    return ProjectSnapshot.from_tasks((task_from_record(r) for r in records), project_id=project_id)


def snapshot_to_records(snapshot: ProjectSnapshot) -> List[Dict[str, Any]]:
    return [task_to_record(task) for task in snapshot]
