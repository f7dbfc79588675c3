"""Cycle checks run before a dependency edge is committed."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import CycleDetected, DuplicateDependency, MissingPredecessor, UnknownTask
from .graph import DependencyGraph
from .models import DependencyEdge

logger = logging.getLogger(__name__)


def _predecessor_path(graph: DependencyGraph, start_id: str, target_id: str) -> Optional[List[str]]:
    """Walk predecessor edges from start_id; return the id path to target_id if reachable."""
    if start_id not in graph:
        return None
    parent: Dict[str, Optional[str]] = {start_id: None}
    stack = [start_id]
    while stack:
        node = stack.pop()
        if node == target_id:
            path = [node]
            while parent[path[-1]] is not None:
                path.append(parent[path[-1]])
            return path
        for edge in graph.predecessors_of(node):
            if edge.predecessor_id not in parent:
                parent[edge.predecessor_id] = node
                stack.append(edge.predecessor_id)
    return None


def would_create_cycle(graph: DependencyGraph, owner_id: str, candidate_predecessor_id: str) -> bool:
    """
    Check whether making candidate_predecessor_id a predecessor of owner_id closes a cycle.

    Starting from the candidate, follow existing predecessor edges; if the owner
    is reachable the new edge would close a loop. A self reference always does.
    """
    if owner_id == candidate_predecessor_id:
        return True
    return _predecessor_path(graph, candidate_predecessor_id, owner_id) is not None


def find_cycle(graph: DependencyGraph) -> Optional[List[str]]:
    """Return one cycle as a task id path (first id repeated at the end), or None."""
    try:
        graph.topological_order()
    except CycleDetected as e:
        return e.path
    return None


def validate_new_edge(graph: DependencyGraph, owner_id: str, edge: DependencyEdge) -> None:
    """
    Validate an edge before it is added to owner_id.

    Raises:
        UnknownTask: owner is not in the graph
        MissingPredecessor: predecessor is not in the graph
        DuplicateDependency: owner already depends on the predecessor
        CycleDetected: the edge would close a cycle
    """
    if owner_id not in graph:
        raise UnknownTask(f"Task '{owner_id}' is not part of this project.", task_id=owner_id)

    pred_id = edge.predecessor_id
    if pred_id == owner_id:
        raise CycleDetected("A task cannot depend on itself.", path=[owner_id, owner_id])

    if pred_id not in graph:
        raise MissingPredecessor(
            f"Task '{owner_id}' cannot depend on unknown task '{pred_id}'.",
            task_id=owner_id,
            predecessor_id=pred_id,
        )

    if any(e.predecessor_id == pred_id for e in graph.predecessors_of(owner_id)):
        raise DuplicateDependency(
            f"Dependency {pred_id} -> {owner_id} already exists.",
            task_id=owner_id,
            predecessor_id=pred_id,
        )

    path = _predecessor_path(graph, pred_id, owner_id)
    if path is not None:
        # path already runs owner -> ... -> pred in flow order; the new edge closes it
        cycle = path + [owner_id]
        logger.warning(f"Rejected dependency {pred_id} -> {owner_id}: closes cycle {' -> '.join(cycle)}")
        raise CycleDetected(
            f"Adding {pred_id} as a predecessor of {owner_id} would create a circular dependency: "
            f"{' -> '.join(cycle)}",
            path=cycle,
        )
