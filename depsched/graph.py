from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import CycleDetected, MissingPredecessor, UnknownTask
from .models import DependencyEdge, Task

logger = logging.getLogger(__name__)

WHITE, GRAY, BLACK = 0, 1, 2


class DependencyGraph:
    """
    Forward and reverse dependency indices for one project.

    Built once per recomputation pass from the task list. Forward edges map a
    task to the edges pointing at its predecessors; the reverse index maps a
    task to the ids of the tasks that depend on it.
    """

    def __init__(self, predecessors: Dict[str, Tuple[DependencyEdge, ...]]):
        self._predecessors: Dict[str, Tuple[DependencyEdge, ...]] = dict(predecessors)
        dependents: Dict[str, set] = defaultdict(set)
        for task_id, edges in self._predecessors.items():
            for edge in edges:
                if edge.predecessor_id not in self._predecessors:
                    raise MissingPredecessor(
                        f"Task '{task_id}' references undefined predecessor '{edge.predecessor_id}'.",
                        task_id=task_id,
                        predecessor_id=edge.predecessor_id,
                    )
                dependents[edge.predecessor_id].add(task_id)
        self._dependents: Dict[str, FrozenSet[str]] = {
            task_id: frozenset(dependents.get(task_id, ())) for task_id in self._predecessors
        }
        self._order: Optional[List[str]] = None

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "DependencyGraph":
        return cls({task.id: tuple(task.dependencies) for task in tasks})

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._predecessors

    def __len__(self) -> int:
        return len(self._predecessors)

    @property
    def task_ids(self) -> List[str]:
        return list(self._predecessors)

    @property
    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._predecessors.values())

    def _require(self, task_id: str) -> None:
        if task_id not in self._predecessors:
            raise UnknownTask(f"Task '{task_id}' is not part of this graph.", task_id=task_id)

    def predecessors_of(self, task_id: str) -> Tuple[DependencyEdge, ...]:
        self._require(task_id)
        return self._predecessors[task_id]

    def dependents_of(self, task_id: str) -> FrozenSet[str]:
        self._require(task_id)
        return self._dependents[task_id]

    def edges(self) -> List[Tuple[str, DependencyEdge]]:
        """All (dependent id, edge) pairs in task order."""
        return [(task_id, edge) for task_id, edges in self._predecessors.items() for edge in edges]

    def with_edge(self, owner_id: str, edge: DependencyEdge) -> "DependencyGraph":
        self._require(owner_id)
        predecessors = dict(self._predecessors)
        predecessors[owner_id] = predecessors[owner_id] + (edge,)
        return DependencyGraph(predecessors)

    def without_edge(self, owner_id: str, predecessor_id: str) -> "DependencyGraph":
        self._require(owner_id)
        predecessors = dict(self._predecessors)
        predecessors[owner_id] = tuple(
            e for e in predecessors[owner_id] if e.predecessor_id != predecessor_id
        )
        return DependencyGraph(predecessors)

    def topological_order(self) -> List[str]:
        """
        Get task ids with every predecessor before its dependents.

        Iterative depth-first traversal over predecessor edges with an explicit
        stack and three-colour marking, so deep chains never hit the recursion
        limit. A task is emitted once all of its predecessors are done.

        Raises:
            CycleDetected: if the graph has no topological order
        """
        if self._order is not None:
            return list(self._order)

        color = {task_id: WHITE for task_id in self._predecessors}
        order: List[str] = []

        for root in self._predecessors:
            if color[root] != WHITE:
                continue
            color[root] = GRAY
            stack: List[Tuple[str, int]] = [(root, 0)]
            while stack:
                node, idx = stack[-1]
                edges = self._predecessors[node]
                if idx < len(edges):
                    stack[-1] = (node, idx + 1)
                    pred_id = edges[idx].predecessor_id
                    if color[pred_id] == GRAY:
                        path = [frame[0] for frame in stack]
                        cycle = path[path.index(pred_id):]
                        # Stack runs dependent -> predecessor; report in edge direction
                        cycle.reverse()
                        cycle.append(cycle[0])
                        raise CycleDetected(
                            f"Circular dependency detected: {' -> '.join(cycle)}", path=cycle
                        )
                    if color[pred_id] == WHITE:
                        color[pred_id] = GRAY
                        stack.append((pred_id, 0))
                else:
                    stack.pop()
                    color[node] = BLACK
                    order.append(node)

        self._order = order
        return list(order)

    def descendants_of(self, task_id: str) -> List[str]:
        """Transitive dependents of a task in topological order (task excluded)."""
        self._require(task_id)
        reached: set[str] = set()
        stack = list(self._dependents[task_id])
        while stack:
            node = stack.pop()
            if node in reached:
                continue
            reached.add(node)
            stack.extend(d for d in self._dependents[node] if d not in reached)
        reached.discard(task_id)
        return [t for t in self.topological_order() if t in reached]

    def ancestors_of(self, task_id: str) -> List[str]:
        """Transitive predecessors of a task in topological order (task excluded)."""
        self._require(task_id)
        reached: set[str] = set()
        stack = [e.predecessor_id for e in self._predecessors[task_id]]
        while stack:
            node = stack.pop()
            if node in reached:
                continue
            reached.add(node)
            stack.extend(e.predecessor_id for e in self._predecessors[node])
        reached.discard(task_id)
        return [t for t in self.topological_order() if t in reached]

    def dependency_depths(self) -> Dict[str, int]:
        """Longest predecessor chain length per task; roots are at depth 0."""
        depths: Dict[str, int] = {}
        for task_id in self.topological_order():
            edges = self._predecessors[task_id]
            depths[task_id] = 1 + max(depths[e.predecessor_id] for e in edges) if edges else 0
        return depths

    def dependency_depth(self, task_id: str) -> int:
        self._require(task_id)
        return self.dependency_depths()[task_id]

    def roots(self) -> List[str]:
        return [t for t, edges in self._predecessors.items() if not edges]

    def sinks(self) -> List[str]:
        return [t for t in self._predecessors if not self._dependents[t]]
