"""
loadsched/control_plane — the scheduling decisions.

Public API:

    Estimation:
        estimate_workload_usage()  — predicted usage per weighted resource
        requests_and_limits()      — container aggregation

    Assignment tracking:
        AssignmentTracker          — placements telemetry has not seen yet

    Scoring:
        load_aware_score()         — weighted least-allocated, one node
        load_aware_scores()        — same, numpy, many nodes

    Plugins:
        LoadAwarePlugin            — telemetry filter / score / reserve
        BatchResourceFitPlugin     — batch-tier admission filter

    Cycle:
        CycleEvaluator             — filter → score → rank for one workload
"""

from loadsched.control_plane.estimator import (
    estimate_workload_usage,
    requests_and_limits,
)
from loadsched.control_plane.assign_cache import AssignmentTracker
from loadsched.control_plane.scorer import (
    MAX_NODE_SCORE,
    load_aware_score,
    load_aware_scores,
)
from loadsched.control_plane.batch_resource import (
    BatchResourceFitPlugin,
    fits_request,
)
from loadsched.control_plane.load_aware import LoadAwarePlugin
from loadsched.control_plane.cycle import CycleEvaluator, NodeEvaluation

__all__ = [
    "estimate_workload_usage",
    "requests_and_limits",
    "AssignmentTracker",
    "MAX_NODE_SCORE",
    "load_aware_score",
    "load_aware_scores",
    "BatchResourceFitPlugin",
    "fits_request",
    "LoadAwarePlugin",
    "CycleEvaluator",
    "NodeEvaluation",
]
