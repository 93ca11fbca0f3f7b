"""
loadsched/control_plane/load_aware.py
──────────────────────────────────────
LoadAwarePlugin: filter, score, reserve and unreserve driven by node telemetry.

How the pieces fit
───────────────────
                       ┌──────────────────┐
   candidate workload ─┤ estimator        ├─┐
                       └──────────────────┘ │
                       ┌──────────────────┐ │   used ┌────────┐
   AssignmentTracker ──┤ estimated_pending├─┼───────►│ scorer ├──► 0..100
                       └──────────────────┘ │        └────────┘
   NodeMetricSnapshot ── node_usage ────────┘            ▲
   Node ──────────────── allocatable ────────────────────┘

The three contributions to "used" are assumed to be disjoint views of load:
telemetry already counts what it has seen, the tracker adds only what it
cannot have seen, and the candidate is not running anywhere yet. Clock skew
between the scheduler and a node reporter can break that assumption and
double-count a workload for up to one report interval. This is a known
approximation, not an exact model.

Filter (first gate, cheap)
───────────────────────────
  1. No snapshot (NotFound)        → admit. Load-awareness is an optimisation;
                                     nodes without a reporter are not penalised.
     Lookup error                  → Error for this node only.
  2. Expired snapshot              → reject (when filter_expired_node_metrics).
  3. Usage ≥ threshold on any resource → reject, one reason per resource.
     A node annotation can replace the configured thresholds wholesale.

Score
──────
  NotFound → 0.  Expired → 0.  Lookup error → Error.  Otherwise the weighted
  least-allocated score of (candidate + pending + reported) vs allocatable.
  A zero score means "no information", never "unschedulable": scoring only
  orders nodes that already passed filtering.

Reserve / Unreserve
────────────────────
  Forwarded to the shared AssignmentTracker. Reserve always succeeds.

Thread safety
──────────────
The plugin holds no mutable state of its own. Concurrent filter / score calls
only read args, read the telemetry lister and take the tracker's shared lock.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError

from loadsched.control_plane.assign_cache import AssignmentTracker
from loadsched.control_plane.estimator import estimate_workload_usage
from loadsched.control_plane.scorer import load_aware_score, load_aware_scores
from loadsched.shared.config import MAX_PERCENTAGE, LoadAwareSchedulingArgs, validate_args
from loadsched.shared.models import (
    Node,
    NodeMetricSnapshot,
    ScoreResult,
    Status,
    Workload,
)
from loadsched.shared.resources import (
    ANNOTATION_CUSTOM_USAGE_THRESHOLDS,
    ResourceTranslator,
    milli_value,
    round_half_up,
    scalar_value,
    translate_resource_name,
)
from loadsched.telemetry.expiration import is_node_metric_expired, utcnow
from loadsched.telemetry.store import NodeMetricLister, NodeMetricNotFoundError

logger = logging.getLogger(__name__)

PLUGIN_NAME: str = "LoadAwareScheduling"

REASON_NODE_METRIC_EXPIRED: str = "node(s) nodeMetric expired"
REASON_USAGE_EXCEED_THRESHOLD: str = "node(s) {} usage exceed threshold"


class CustomUsageThresholds(BaseModel):
    """Per-node override carried as JSON in the usage-thresholds annotation."""
    usage_thresholds: Dict[str, Annotated[int, Field(ge=0, le=MAX_PERCENTAGE)]] = Field(
        default_factory=dict, alias="usageThresholds",
    )


def custom_usage_thresholds(node: Node) -> Optional[CustomUsageThresholds]:
    """
    Parse the node's threshold annotation.

    Returns None when the annotation is absent.

    Raises:
        pydantic.ValidationError: when the annotation is not valid JSON of the
                                  expected shape.
    """
    raw = node.annotations.get(ANNOTATION_CUSTOM_USAGE_THRESHOLDS)
    if raw is None:
        return None
    return CustomUsageThresholds.model_validate_json(raw)


class LoadAwarePlugin:
    """
    Telemetry-driven filter and scorer.

    Usage:
        tracker = AssignmentTracker()
        plugin = LoadAwarePlugin(args, metric_store, tracker)
        status = plugin.filter(workload, node)
        result = plugin.score(workload, node)
        plugin.reserve(workload, result.node_name)

    Args:
        args:          Plugin configuration. Validated here; a bad config
                       raises ConfigurationError before any cycle runs.
        metric_lister: Telemetry lookup (NodeMetricStore or compatible).
        tracker:       Shared assignment tracker, also fed by lifecycle events.
        translate:     Priority-class resource-name translation.
        clock:         Current time, for expiration checks.
    """

    name = PLUGIN_NAME

    def __init__(
        self,
        args: Optional[LoadAwareSchedulingArgs],
        metric_lister: NodeMetricLister,
        tracker: AssignmentTracker,
        translate: ResourceTranslator = translate_resource_name,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.args = args if args is not None else LoadAwareSchedulingArgs()
        validate_args(self.args)
        self._metrics = metric_lister
        self._tracker = tracker
        self._translate = translate
        self._clock = clock
        logger.info(
            "%s initialised: weights=%s thresholds=%s scaling=%s expiration=%ss",
            PLUGIN_NAME,
            self.args.resource_weights,
            self.args.usage_thresholds,
            self.args.estimated_scaling_factors,
            self.args.node_metric_expiration_seconds,
        )

    # ── Telemetry lookup ───────────────────────────────────────────────────────

    def _get_metric(self, node_name: str) -> Tuple[Optional[NodeMetricSnapshot], Status]:
        """
        (snapshot, Success) on a hit; (None, Success) when the node has no
        reporter; (None, Error) when the lookup itself failed.
        """
        try:
            return self._metrics.get(node_name), Status.success()
        except NodeMetricNotFoundError:
            return None, Status.success()
        except Exception as exc:
            logger.warning("%s: node metric lookup for %s failed: %s", PLUGIN_NAME, node_name, exc)
            return None, Status.error(f"getting node metric for {node_name!r}: {exc}")

    def _is_expired(self, snapshot: NodeMetricSnapshot) -> bool:
        seconds = self.args.node_metric_expiration_seconds
        return seconds is not None and is_node_metric_expired(snapshot, seconds, now=self._clock())

    # ── Filter ─────────────────────────────────────────────────────────────────

    def _usage_thresholds(self, node: Node) -> Dict[str, int]:
        try:
            custom = custom_usage_thresholds(node)
        except ValidationError as exc:
            logger.warning(
                "%s: ignoring malformed %s on node %s: %s",
                PLUGIN_NAME, ANNOTATION_CUSTOM_USAGE_THRESHOLDS, node.name, exc,
            )
            custom = None
        if custom is not None and custom.usage_thresholds:
            return custom.usage_thresholds
        return self.args.usage_thresholds

    def filter(self, workload: Workload, node: Node) -> Status:
        snapshot, status = self._get_metric(node.name)
        if snapshot is None:
            return status

        if self.args.filter_expired_node_metrics and self._is_expired(snapshot):
            logger.debug("%s: %s rejected on %s: metric expired", PLUGIN_NAME, workload.key, node.name)
            return Status.unschedulable(REASON_NODE_METRIC_EXPIRED)

        thresholds = self._usage_thresholds(node)
        if not thresholds or snapshot.node_usage is None:
            return Status.success()

        reasons: List[str] = []
        for resource_name, threshold in thresholds.items():
            if threshold == 0:
                continue
            total = milli_value(node.allocatable.get(resource_name, Decimal(0)))
            if total == 0:
                continue
            used = milli_value(snapshot.node_usage.get(resource_name, Decimal(0)))
            usage = round_half_up(Decimal(used) * 100 / total)
            if usage >= threshold:
                reasons.append(REASON_USAGE_EXCEED_THRESHOLD.format(resource_name))

        if reasons:
            logger.debug("%s: %s rejected on %s: %s", PLUGIN_NAME, workload.key, node.name, reasons)
            return Status.unschedulable(*reasons)
        return Status.success()

    # ── Score ──────────────────────────────────────────────────────────────────

    def _estimated_used(
        self, workload: Workload, node_name: str, snapshot: NodeMetricSnapshot,
    ) -> Dict[str, int]:
        weights = self.args.resource_weights
        factors = self.args.estimated_scaling_factors
        used = estimate_workload_usage(workload, weights, factors, self._translate)

        pending = self._tracker.estimated_pending(node_name, snapshot, weights, factors, self._translate)
        for resource_name, quantity in pending.items():
            used[resource_name] = used.get(resource_name, 0) + quantity

        if snapshot.node_usage is not None:
            for resource_name in weights:
                reported = snapshot.node_usage.get(resource_name, Decimal(0))
                used[resource_name] = used.get(resource_name, 0) + scalar_value(resource_name, reported)
        return used

    def _allocatable(self, node: Node) -> Dict[str, int]:
        return {
            resource_name: scalar_value(resource_name, node.allocatable.get(resource_name, Decimal(0)))
            for resource_name in self.args.resource_weights
        }

    def _scoring_inputs(
        self, workload: Workload, node: Node,
    ) -> Tuple[Optional[Tuple[Dict[str, int], Dict[str, int]]], Status]:
        """
        (used, allocatable) when the node can be scored from telemetry, else
        None with the status to report alongside a zero score.
        """
        snapshot, status = self._get_metric(node.name)
        if snapshot is None:
            return None, status
        if self._is_expired(snapshot):
            return None, Status.success()
        return (self._estimated_used(workload, node.name, snapshot), self._allocatable(node)), status

    def score(self, workload: Workload, node: Node) -> ScoreResult:
        inputs, status = self._scoring_inputs(workload, node)
        if inputs is None:
            return ScoreResult(node_name=node.name, score=0, status=status)
        used, allocatable = inputs
        score = load_aware_score(self.args.resource_weights, used, allocatable)
        logger.debug("%s: %s on %s scored %d (used=%s)", PLUGIN_NAME, workload.key, node.name, score, used)
        return ScoreResult(node_name=node.name, score=score, status=status)

    def score_nodes(self, workload: Workload, nodes: Sequence[Node]) -> List[ScoreResult]:
        """
        Score many candidate nodes, in input order.

        Same results as calling score() per node; the arithmetic for every
        scorable node runs in one vectorised pass.
        """
        results: List[ScoreResult] = []
        scorable: List[int] = []
        used_rows: List[Dict[str, int]] = []
        allocatable_rows: List[Dict[str, int]] = []

        for idx, node in enumerate(nodes):
            inputs, status = self._scoring_inputs(workload, node)
            results.append(ScoreResult(node_name=node.name, score=0, status=status))
            if inputs is not None:
                scorable.append(idx)
                used_rows.append(inputs[0])
                allocatable_rows.append(inputs[1])

        scores = load_aware_scores(self.args.resource_weights, used_rows, allocatable_rows)
        for idx, score in zip(scorable, scores):
            results[idx].score = int(score)
        return results

    # ── Reserve / Unreserve ────────────────────────────────────────────────────

    def reserve(self, workload: Workload, node_name: str) -> Status:
        self._tracker.assign(node_name, workload)
        return Status.success()

    def unreserve(self, workload: Workload, node_name: str) -> None:
        self._tracker.unassign(node_name, workload)
