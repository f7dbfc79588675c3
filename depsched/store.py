"""Store boundary: snapshot reads and atomic, version-checked batch commits."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

from .errors import StaleSnapshotAbort, UnknownTask
from .models import ProjectSnapshot, Task

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    """What the cascade needs from the project store."""

    def load_snapshot(self, project_id: str) -> ProjectSnapshot:
        ...

    def commit(
        self,
        project_id: str,
        tasks: Iterable[Task],
        deleted_ids: Iterable[str],
        expected_versions: Mapping[str, int],
    ) -> None:
        """Write every task and deletion as one batch, or nothing.

        Raises:
            StaleSnapshotAbort: if any expected version no longer matches
        """
        ...


class InMemoryTaskStore:
    """Thread-safe in-process store keyed by project id."""

    def __init__(self, projects: Optional[Mapping[str, Iterable[Task]]] = None):
        self._lock = threading.Lock()
        self._projects: Dict[str, Dict[str, Task]] = {}
        for project_id, tasks in (projects or {}).items():
            self._projects[project_id] = {t.id: t for t in tasks}

    def put(self, project_id: str, task: Task) -> Task:
        """Write a single task, last-write-wins, bumping its version."""
        with self._lock:
            tasks = self._projects.setdefault(project_id, {})
            current = tasks.get(task.id)
            stored = replace(task, version=(current.version + 1) if current else task.version)
            tasks[task.id] = stored
            return stored

    def load_snapshot(self, project_id: str) -> ProjectSnapshot:
        with self._lock:
            tasks = dict(self._projects.get(project_id, {}))
        return ProjectSnapshot(tasks=tasks, project_id=project_id)

    def commit(
        self,
        project_id: str,
        tasks: Iterable[Task],
        deleted_ids: Iterable[str],
        expected_versions: Mapping[str, int],
    ) -> None:
        tasks = list(tasks)
        deleted_ids = list(deleted_ids)
        with self._lock:
            current = self._projects.get(project_id, {})
            stale: List[str] = []
            for task_id, version in expected_versions.items():
                row = current.get(task_id)
                if row is None or row.version != version:
                    stale.append(task_id)
            if stale:
                raise StaleSnapshotAbort(
                    f"Project '{project_id}' changed since the snapshot was read: {', '.join(sorted(stale))}",
                    stale_task_ids=stale,
                )

            updated = dict(current)
            for task_id in deleted_ids:
                if task_id not in updated:
                    raise UnknownTask(f"Cannot delete unknown task '{task_id}'.", task_id=task_id)
                del updated[task_id]
            for task in tasks:
                previous = current.get(task.id)
                base = previous.version if previous else task.version
                updated[task.id] = replace(task, version=base + 1)
            self._projects[project_id] = updated

        logger.info(
            f"Committed {len(tasks)} task(s) and {len(deleted_ids)} deletion(s) to project '{project_id}'"
        )
