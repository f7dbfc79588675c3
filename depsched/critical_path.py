from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .config import CriticalPathConfig
from .graph import DependencyGraph
from .models import CriticalPathEntry, DependencyEdge, DependencyType, ProjectSnapshot

logger = logging.getLogger(__name__)

FS = DependencyType.FINISH_TO_START
SS = DependencyType.START_TO_START
FF = DependencyType.FINISH_TO_FINISH
SF = DependencyType.START_TO_FINISH


class CriticalPathAnalyzer:
    """
    Critical Path Method over one project snapshot.

    Works in integer day offsets from the project start with exclusive
    finishes (EF = ES + duration), handles all four relationship types with
    positive and negative lags, and never touches stored task dates.
    """

    def __init__(self, snapshot: ProjectSnapshot, config: Optional[CriticalPathConfig] = None):
        self.snapshot = snapshot
        self.config = config or CriticalPathConfig()
        self.calculation_log: List[str] = []
        self.project_duration: int = 0
        self.critical_paths: List[List[str]] = []
        self.es: Dict[str, int] = {}
        self.ef: Dict[str, int] = {}
        self.ls: Dict[str, int] = {}
        self.lf: Dict[str, int] = {}
        self.total_float: Dict[str, int] = {}
        self.free_float: Dict[str, int] = {}
        self._order: List[str] = []
        self._entries: Optional[List[CriticalPathEntry]] = None

    @property
    def critical_path(self) -> List[str]:
        return self.critical_paths[0] if self.critical_paths else []

    def _log(self, message: str) -> None:
        self.calculation_log.append(message)

    def _duration(self, task_id: str) -> int:
        return self.snapshot.get(task_id).duration_days

    def analyze(self) -> List[CriticalPathEntry]:
        """
        Perform the full forward/backward pass.

        Returns:
            One entry per task, in topological order

        Raises:
            MissingPredecessor: an edge points outside the project
            CycleDetected: the dependency graph is cyclic
        """
        if self._entries is not None:
            return list(self._entries)

        self.calculation_log.clear()
        self._log("=" * 70)
        self._log("CRITICAL PATH ANALYSIS")
        self._log("=" * 70)

        graph = DependencyGraph.from_tasks(self.snapshot)
        self._order = graph.topological_order()

        if not self._order:
            self._log("No tasks defined.")
            self._entries = []
            return []

        successors = self._successor_index(graph)
        self._forward_pass(graph)
        self.project_duration = max(self.ef.values())
        self._backward_pass(successors)
        self._calculate_floats(successors)
        self._identify_critical_paths(graph)

        self._entries = [
            CriticalPathEntry(
                task_id=task_id,
                is_critical=self.total_float[task_id] == 0,
                slack=self.total_float[task_id],
                es=self.es[task_id],
                ef=self.ef[task_id],
                ls=self.ls[task_id],
                lf=self.lf[task_id],
                free_float=self.free_float[task_id],
            )
            for task_id in self._order
        ]

        self._log("")
        self._log(f"Project Duration: {self.project_duration} days")
        for idx, path in enumerate(self.critical_paths, start=1):
            self._log(f"  {idx}. {' -> '.join(path)}")
        logger.info(
            f"Critical path analysis: {len(self._order)} task(s), duration {self.project_duration} day(s), "
            f"{sum(1 for e in self._entries if e.is_critical)} critical"
        )
        return list(self._entries)

    def _successor_index(self, graph: DependencyGraph) -> Dict[str, List[Tuple[str, DependencyEdge]]]:
        successors: Dict[str, List[Tuple[str, DependencyEdge]]] = defaultdict(list)
        for task_id, edge in graph.edges():
            successors[edge.predecessor_id].append((task_id, edge))
        return successors

    def _forward_pass(self, graph: DependencyGraph) -> None:
        """Forward pass calculation to determine Early Start (ES) and Early Finish (EF)."""
        self._log("FORWARD PASS (Calculating ES and EF)")
        self._log("-" * 50)
        project_start = self.config.project_start_offset

        for task_id in self._order:
            duration = self._duration(task_id)
            edges = graph.predecessors_of(task_id)

            if not edges:
                self.es[task_id] = project_start
                self.ef[task_id] = project_start + duration
                self._log(f"{task_id} (no predecessors): ES = {project_start}, EF = {self.ef[task_id]}")
                continue

            es_candidates: List[int] = []
            ef_candidates: List[int] = []
            for edge in edges:
                pred_id, lag = edge.predecessor_id, edge.lag_days
                if edge.type == FS:
                    es_candidates.append(self.ef[pred_id] + lag)
                elif edge.type == SS:
                    es_candidates.append(self.es[pred_id] + lag)
                elif edge.type == FF:
                    ef_candidates.append(self.ef[pred_id] + lag)
                elif edge.type == SF:
                    ef_candidates.append(self.es[pred_id] + lag)

            candidates = list(es_candidates)
            if ef_candidates:
                candidates.append(max(ef_candidates) - duration)
            es = max(candidates)
            if self.config.clamp_to_zero:
                es = max(project_start, es)

            self.es[task_id] = es
            self.ef[task_id] = es + duration
            self._log(
                f"{task_id} (predecessors: {', '.join(e.predecessor_id for e in edges)}): "
                f"ES = {es}, EF = ES + {duration} = {self.ef[task_id]}"
            )

    def _backward_pass(self, successors: Dict[str, List[Tuple[str, DependencyEdge]]]) -> None:
        """Backward pass calculation to determine Late Start (LS) and Late Finish (LF)."""
        self._log("")
        self._log("BACKWARD PASS (Calculating LS and LF)")
        self._log("-" * 50)

        for task_id in reversed(self._order):
            duration = self._duration(task_id)
            succ_list = successors.get(task_id, [])

            if not succ_list:
                self.lf[task_id] = self.project_duration
                self.ls[task_id] = self.project_duration - duration
                self._log(f"{task_id} (no successors): LF = {self.lf[task_id]}, LS = {self.ls[task_id]}")
                continue

            lf_candidates: List[int] = []
            ls_candidates: List[int] = []
            for succ_id, edge in succ_list:
                lag = edge.lag_days
                if edge.type == FS:
                    lf_candidates.append(self.ls[succ_id] - lag)
                elif edge.type == SS:
                    ls_candidates.append(self.ls[succ_id] - lag)
                elif edge.type == FF:
                    lf_candidates.append(self.lf[succ_id] - lag)
                elif edge.type == SF:
                    ls_candidates.append(self.lf[succ_id] - lag)

            lf_ub = min(lf_candidates) if lf_candidates else self.project_duration
            lf_ub = min(lf_ub, self.project_duration)
            ls = lf_ub - duration
            if ls_candidates:
                ls = min(ls, min(ls_candidates))

            self.ls[task_id] = ls
            self.lf[task_id] = ls + duration
            self._log(
                f"{task_id} (successors: {', '.join(s for s, _ in succ_list)}): "
                f"LS = {ls}, LF = LS + {duration} = {self.lf[task_id]}"
            )

    def _calculate_floats(self, successors: Dict[str, List[Tuple[str, DependencyEdge]]]) -> None:
        """Total float (LS - ES) and free float per relationship type."""
        self._log("")
        self._log("FLOAT CALCULATIONS")
        self._log("-" * 50)

        for task_id in self._order:
            self.total_float[task_id] = self.ls[task_id] - self.es[task_id]

            succ_list = successors.get(task_id, [])
            if not succ_list:
                self.free_float[task_id] = self.project_duration - self.ef[task_id]
            else:
                ff_candidates: List[int] = []
                for succ_id, edge in succ_list:
                    lag = edge.lag_days
                    if edge.type == FS:
                        ff_candidates.append(self.es[succ_id] - self.ef[task_id] - lag)
                    elif edge.type == SS:
                        ff_candidates.append(self.es[succ_id] - self.es[task_id] - lag)
                    elif edge.type == FF:
                        ff_candidates.append(self.ef[succ_id] - self.ef[task_id] - lag)
                    elif edge.type == SF:
                        ff_candidates.append(self.ef[succ_id] - self.es[task_id] - lag)
                self.free_float[task_id] = min(ff_candidates)

            self._log(
                f"{task_id}: TF = {self.ls[task_id]} - {self.es[task_id]} = {self.total_float[task_id]}, "
                f"FF = {self.free_float[task_id]}"
            )

    def _identify_critical_paths(self, graph: DependencyGraph) -> None:
        """Chain zero-float tasks along driving links into critical path sequences."""
        self._log("")
        self._log("CRITICAL PATH IDENTIFICATION")
        self._log("-" * 50)

        critical_set = {t for t in self._order if self.total_float[t] == 0}
        for task_id in self._order:
            label = "CRITICAL" if task_id in critical_set else "Not critical"
            self._log(f"{task_id}: TF = {self.total_float[task_id]} -> {label}")

        successors: Dict[str, List[str]] = defaultdict(list)
        incoming: Dict[str, int] = defaultdict(int)
        for succ_id, edge in graph.edges():
            pred_id = edge.predecessor_id
            if succ_id in critical_set and pred_id in critical_set and self._is_driving_link(pred_id, succ_id, edge):
                successors[pred_id].append(succ_id)
                incoming[succ_id] += 1

        def sort_key(task_id: str) -> Tuple[int, str]:
            return (self.es[task_id], task_id)

        start_nodes = sorted((t for t in critical_set if incoming[t] == 0), key=sort_key)
        paths: List[List[str]] = []
        for start in start_nodes:
            stack: List[List[str]] = [[start]]
            while stack:
                path = stack.pop()
                nexts = sorted(set(successors.get(path[-1], [])), key=sort_key)
                if not nexts:
                    paths.append(path)
                    continue
                # Reversed so the earliest successor is explored first
                for succ in reversed(nexts):
                    stack.append(path + [succ])

        self.critical_paths = paths

    def _is_driving_link(self, pred_id: str, succ_id: str, edge: DependencyEdge) -> bool:
        lag = edge.lag_days
        if edge.type == FS:
            return self.es[succ_id] == self.ef[pred_id] + lag
        if edge.type == SS:
            return self.es[succ_id] == self.es[pred_id] + lag
        if edge.type == FF:
            return self.ef[succ_id] == self.ef[pred_id] + lag
        if edge.type == SF:
            return self.ef[succ_id] == self.es[pred_id] + lag
        return False

    def results_dataframe(self) -> pd.DataFrame:
        """Get analysis results as a pandas DataFrame, one row per task."""
        entries = self.analyze()
        project_start = min((t.start_date for t in self.snapshot), default=None)
        offset = self.config.project_start_offset
        data = []
        for entry in entries:
            task = self.snapshot.get(entry.task_id)
            early_start = project_start + timedelta(days=entry.es - offset) if project_start else None
            data.append(
                {
                    "ID": task.id,
                    "Name": task.display_name,
                    "Duration": task.duration_days,
                    "Start": task.start_date,
                    "End": task.end_date,
                    "ES": entry.es,
                    "EF": entry.ef,
                    "LS": entry.ls,
                    "LF": entry.lf,
                    "TF": entry.slack,
                    "FF": entry.free_float,
                    "Early Start Date": early_start,
                    "Pinned": "Yes" if task.manual_override_dates else "No",
                    "Critical": "Yes" if entry.is_critical else "No",
                }
            )
        return pd.DataFrame(data)


def compute_critical_path(
    snapshot: ProjectSnapshot, config: Optional[CriticalPathConfig] = None
) -> List[CriticalPathEntry]:
    """Mark every task of the project critical or not, with its slack."""
    return CriticalPathAnalyzer(snapshot, config).analyze()
