"""
loadsched/control_plane/cycle.py
─────────────────────────────────
CycleEvaluator: one workload, many candidate nodes, one ranked answer.

Pipeline
─────────
    node_infos
        │
        ▼
    BatchResourceFitPlugin.filter   ──✗──► NodeEvaluation(feasible=False)
        │ ✓
        ▼
    LoadAwarePlugin.filter          ──✗──► NodeEvaluation(feasible=False)
        │ ✓
        ▼
    LoadAwarePlugin.score_nodes     (one vectorised pass over survivors)
        │
        ▼
    rank_order                      feasible nodes, score descending,
                                    ties in input order; infeasible after

What this is NOT
─────────────────
The evaluator does not bind, does not call reserve(), and does not retry.
Picking evaluations[0] and reserving it is the host scheduler's job; keeping
that step outside means a cycle can be evaluated speculatively without
touching the assignment tracker.

A node whose score comes back with an Error status is reported infeasible
with that status. Other nodes in the same cycle are unaffected.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from pydantic import BaseModel

from loadsched.control_plane.batch_resource import BatchResourceFitPlugin
from loadsched.control_plane.load_aware import LoadAwarePlugin
from loadsched.control_plane.scorer import rank_order
from loadsched.shared.models import NodeInfo, Status, Workload

logger = logging.getLogger(__name__)


class NodeEvaluation(BaseModel):
    """Filter verdict and score of one candidate node."""
    node_name: str
    status: Status
    score: int = 0

    @property
    def feasible(self) -> bool:
        return self.status.is_success()


class CycleEvaluator:
    """
    Runs the filter → score → rank pipeline for a single workload.

    Usage:
        evaluator = CycleEvaluator(BatchResourceFitPlugin(), load_aware)
        ranked = evaluator.evaluate(workload, node_infos)
        best = evaluator.best(ranked)
    """

    def __init__(self, batch_plugin: BatchResourceFitPlugin, load_aware_plugin: LoadAwarePlugin) -> None:
        self._batch = batch_plugin
        self._load_aware = load_aware_plugin

    def _filter(self, workload: Workload, node_info: NodeInfo) -> Status:
        status = self._batch.filter(workload, node_info)
        if not status.is_success():
            return status
        return self._load_aware.filter(workload, node_info.node)

    def evaluate(self, workload: Workload, node_infos: Sequence[NodeInfo]) -> List[NodeEvaluation]:
        """
        Evaluate every candidate node for workload.

        Returns:
            One NodeEvaluation per input node. Feasible nodes first, ranked by
            score descending; then infeasible nodes in input order.
        """
        evaluations: List[NodeEvaluation] = []
        survivors: List[int] = []
        for idx, node_info in enumerate(node_infos):
            status = self._filter(workload, node_info)
            evaluations.append(NodeEvaluation(node_name=node_info.name, status=status))
            if status.is_success():
                survivors.append(idx)

        results = self._load_aware.score_nodes(workload, [node_infos[i].node for i in survivors])
        for idx, result in zip(survivors, results):
            evaluations[idx] = NodeEvaluation(
                node_name=result.node_name, status=result.status, score=result.score,
            )

        scored = [e for e in evaluations if e.feasible]
        infeasible = [e for e in evaluations if not e.feasible]
        order = rank_order(np.array([e.score for e in scored], dtype=np.int64))
        ranked = [scored[i] for i in order]

        logger.debug(
            "cycle for %s: %d candidates, %d feasible, top=%s",
            workload.key, len(node_infos), len(ranked),
            ranked[0].node_name if ranked else None,
        )
        return ranked + infeasible

    @staticmethod
    def best(evaluations: Sequence[NodeEvaluation]) -> Optional[NodeEvaluation]:
        """Highest-ranked feasible evaluation, or None when no node fits."""
        if evaluations and evaluations[0].feasible:
            return evaluations[0]
        return None
