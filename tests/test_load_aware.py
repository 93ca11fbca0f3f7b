"""
tests/test_load_aware.py
─────────────────────────
Test suite for loadsched/control_plane/load_aware.py

What we are testing
────────────────────
LoadAwarePlugin glues estimator, tracker, telemetry and scorer together. The
numbers below are worked by hand for a node with 4 cores / 8 GiB and the
default configuration (weights 1:1, factors cpu 85 / memory 70):

    candidate: 1 core, 1 GiB  → estimate cpu 850, memory 751619277
    telemetry: 1 core, 2 GiB  → cpu 1000, memory 2147483648

    cpu    (4000 − 1850) × 100 // 4000                 = 53
    memory (8589934592 − 2899102925) × 100 // 8589934592 = 66
    score  (53 + 66) // 2                              = 59

Test groups
────────────
Group 1: construction       — config validation
Group 2: filter             — NotFound, errors, expiry, thresholds, annotation
Group 3: score              — NotFound, errors, expiry, arithmetic, pending
Group 4: score_nodes        — agrees with score()
Group 5: reserve/unreserve  — tracker integration
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set

import pytest

from loadsched.control_plane.assign_cache import AssignmentTracker
from loadsched.control_plane.load_aware import (
    REASON_NODE_METRIC_EXPIRED,
    REASON_USAGE_EXCEED_THRESHOLD,
    LoadAwarePlugin,
)
from loadsched.shared.config import ConfigurationError, LoadAwareSchedulingArgs
from loadsched.shared.models import (
    Container,
    Node,
    NodeMetricSnapshot,
    ResourceRequirements,
    StatusCode,
    Workload,
)
from loadsched.shared.resources import (
    ANNOTATION_CUSTOM_USAGE_THRESHOLDS,
    LABEL_PRIORITY_CLASS,
    PriorityClass,
)
from loadsched.telemetry.store import NodeMetricLookupError, NodeMetricStore

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FlakyLister:
    """Wraps a store; raises a transport-style error for the listed nodes."""

    def __init__(self, store: NodeMetricStore, broken: Set[str]) -> None:
        self._store = store
        self._broken = broken

    def get(self, node_name: str) -> NodeMetricSnapshot:
        if node_name in self._broken:
            raise NodeMetricLookupError(node_name, "connection refused")
        return self._store.get(node_name)


def _make_node(name: str = "node-a", annotations: Optional[Dict[str, str]] = None) -> Node:
    return Node(
        name=name,
        allocatable={"cpu": "4", "memory": "8Gi"},
        annotations=annotations or {},
    )


def _make_workload(
    name: str = "w-test",
    cpu: str = "1",
    memory: str = "1Gi",
    priority_class: Optional[PriorityClass] = None,
) -> Workload:
    labels = {LABEL_PRIORITY_CLASS: priority_class.value} if priority_class else {}
    return Workload(
        name=name,
        uid=f"uid-{name}",
        labels=labels,
        containers=[Container(
            name="main",
            resources=ResourceRequirements(requests={"cpu": cpu, "memory": memory}),
        )],
    )


def _snapshot(
    node_name: str = "node-a",
    cpu: str = "1",
    memory: str = "2Gi",
    age_seconds: float = 10,
    with_usage: bool = True,
) -> NodeMetricSnapshot:
    return NodeMetricSnapshot(
        node_name=node_name,
        node_usage={"cpu": cpu, "memory": memory} if with_usage else None,
        update_time=NOW - timedelta(seconds=age_seconds),
    )


def _make_plugin(
    *snapshots: NodeMetricSnapshot,
    args: Optional[LoadAwareSchedulingArgs] = None,
    broken: Optional[Set[str]] = None,
    clock: Optional[Clock] = None,
):
    clock = clock or Clock()
    store = NodeMetricStore()
    for snapshot in snapshots:
        store.update(snapshot)
    lister = FlakyLister(store, broken or set())
    tracker = AssignmentTracker(clock=clock)
    return LoadAwarePlugin(args, lister, tracker, clock=clock), tracker


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: construction
# ─────────────────────────────────────────────────────────────────────────────

class TestConstruction:

    def test_none_args_use_defaults(self) -> None:
        plugin, _ = _make_plugin()
        assert plugin.args == LoadAwareSchedulingArgs()

    def test_invalid_args_rejected_up_front(self) -> None:
        with pytest.raises(ConfigurationError):
            _make_plugin(args=LoadAwareSchedulingArgs(resource_weights={"cpu": 0}))


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: filter
# ─────────────────────────────────────────────────────────────────────────────

class TestFilter:

    def test_node_without_metric_admitted(self) -> None:
        plugin, _ = _make_plugin()
        assert plugin.filter(_make_workload(), _make_node()).is_success()

    def test_lookup_error_is_error_status(self) -> None:
        plugin, _ = _make_plugin(_snapshot(), broken={"node-a"})
        status = plugin.filter(_make_workload(), _make_node())
        assert status.code == StatusCode.ERROR
        assert "connection refused" in status.reasons[0]

    def test_expired_metric_rejected(self) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu="0", age_seconds=200))
        status = plugin.filter(_make_workload(), _make_node())
        assert status.code == StatusCode.UNSCHEDULABLE
        assert status.reasons == [REASON_NODE_METRIC_EXPIRED]

    def test_expired_metric_admitted_when_gate_disabled(self) -> None:
        args = LoadAwareSchedulingArgs(filter_expired_node_metrics=False)
        plugin, _ = _make_plugin(_snapshot(cpu="0", age_seconds=200), args=args)
        assert plugin.filter(_make_workload(), _make_node()).is_success()

    def test_never_updated_metric_rejected(self) -> None:
        plugin, _ = _make_plugin(NodeMetricSnapshot(node_name="node-a", node_usage={"cpu": "0"}))
        assert plugin.filter(_make_workload(), _make_node()).reasons == [REASON_NODE_METRIC_EXPIRED]

    @pytest.mark.parametrize("cpu, admitted", [
        ("2.56", True),    # 64%
        ("2.58", False),   # 64.5% rounds half up to 65
        ("2.7", False),    # 67.5%
    ])
    def test_cpu_threshold(self, cpu: str, admitted: bool) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu=cpu, memory="0"))
        status = plugin.filter(_make_workload(), _make_node())
        assert status.is_success() is admitted
        if not admitted:
            assert status.reasons == [REASON_USAGE_EXCEED_THRESHOLD.format("cpu")]

    def test_every_exceeded_resource_reported(self) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu="3", memory="7800Mi"))
        status = plugin.filter(_make_workload(), _make_node())
        assert sorted(status.reasons) == sorted([
            REASON_USAGE_EXCEED_THRESHOLD.format("cpu"),
            REASON_USAGE_EXCEED_THRESHOLD.format("memory"),
        ])

    def test_zero_threshold_disables_check(self) -> None:
        args = LoadAwareSchedulingArgs(usage_thresholds={"cpu": 0})
        plugin, _ = _make_plugin(_snapshot(cpu="4"), args=args)
        assert plugin.filter(_make_workload(), _make_node()).is_success()

    def test_missing_usage_body_admitted(self) -> None:
        plugin, _ = _make_plugin(_snapshot(with_usage=False))
        assert plugin.filter(_make_workload(), _make_node()).is_success()

    def test_annotation_overrides_thresholds(self) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu="2.7", memory="0"))
        node = _make_node(annotations={ANNOTATION_CUSTOM_USAGE_THRESHOLDS: '{"usageThresholds": {"cpu": 90}}'})
        assert plugin.filter(_make_workload(), node).is_success()

    def test_annotation_can_tighten_thresholds(self) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu="1", memory="0"))
        node = _make_node(annotations={ANNOTATION_CUSTOM_USAGE_THRESHOLDS: '{"usageThresholds": {"cpu": 20}}'})
        assert not plugin.filter(_make_workload(), node).is_success()

    def test_malformed_annotation_falls_back_to_config(self) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu="2.7", memory="0"))
        node = _make_node(annotations={ANNOTATION_CUSTOM_USAGE_THRESHOLDS: "not-json"})
        status = plugin.filter(_make_workload(), node)
        assert status.reasons == [REASON_USAGE_EXCEED_THRESHOLD.format("cpu")]

    @pytest.mark.parametrize("cpu_threshold, cpu_usage, admitted", [
        (-5, "1", True),      # 25% is under the configured 65
        (150, "2.7", False),  # 68% is over the configured 65
    ])
    def test_out_of_range_annotation_falls_back_to_config(
        self, cpu_threshold: int, cpu_usage: str, admitted: bool,
    ) -> None:
        plugin, _ = _make_plugin(_snapshot(cpu=cpu_usage, memory="0"))
        annotation = '{"usageThresholds": {"cpu": ' + str(cpu_threshold) + '}}'
        node = _make_node(annotations={ANNOTATION_CUSTOM_USAGE_THRESHOLDS: annotation})
        assert plugin.filter(_make_workload(), node).is_success() is admitted


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: score
# ─────────────────────────────────────────────────────────────────────────────

class TestScore:

    def test_worked_example(self) -> None:
        plugin, _ = _make_plugin(_snapshot())
        result = plugin.score(_make_workload(), _make_node())
        assert result.status.is_success()
        assert result.score == 59

    def test_node_without_metric_scores_zero(self) -> None:
        plugin, _ = _make_plugin()
        result = plugin.score(_make_workload(), _make_node())
        assert (result.score, result.status.is_success()) == (0, True)

    def test_lookup_error_scores_zero_with_error(self) -> None:
        plugin, _ = _make_plugin(_snapshot(), broken={"node-a"})
        result = plugin.score(_make_workload(), _make_node())
        assert result.score == 0
        assert result.status.code == StatusCode.ERROR

    def test_expired_metric_scores_zero(self) -> None:
        plugin, _ = _make_plugin(_snapshot(age_seconds=181))
        result = plugin.score(_make_workload(), _make_node())
        assert (result.score, result.status.is_success()) == (0, True)

    def test_expiry_ignored_when_disabled(self) -> None:
        args = LoadAwareSchedulingArgs(node_metric_expiration_seconds=None)
        plugin, _ = _make_plugin(_snapshot(age_seconds=10 ** 5), args=args)
        assert plugin.score(_make_workload(), _make_node()).score == 59

    def test_naive_update_time_scored_as_utc(self) -> None:
        snapshot = NodeMetricSnapshot(
            node_name="node-a",
            node_usage={"cpu": "1", "memory": "2Gi"},
            update_time=NOW.replace(tzinfo=None) - timedelta(seconds=10),
        )
        plugin, _ = _make_plugin(snapshot)
        assert plugin.filter(_make_workload(), _make_node()).is_success()
        assert plugin.score(_make_workload(), _make_node()).score == 59

    def test_missing_usage_body_scores_estimate_only(self) -> None:
        """cpu (4000−850)·100//4000 = 78, memory (8Gi−751619277)·100//8Gi = 91."""
        plugin, _ = _make_plugin(_snapshot(with_usage=False))
        assert plugin.score(_make_workload(), _make_node()).score == (78 + 91) // 2

    def test_idle_node_beats_busy_node(self) -> None:
        plugin, _ = _make_plugin(
            _snapshot("idle", cpu="100m", memory="512Mi"),
            _snapshot("busy", cpu="3", memory="6Gi"),
        )
        workload = _make_workload()
        idle = plugin.score(workload, _make_node("idle")).score
        busy = plugin.score(workload, _make_node("busy")).score
        assert idle > busy

    def test_batch_workload_estimated_on_batch_names(self) -> None:
        """Native requests are not billed; undeclared batch resources take defaults."""
        plugin, _ = _make_plugin(_snapshot())
        result = plugin.score(_make_workload(priority_class=PriorityClass.BATCH), _make_node())
        # cpu 250 + 1000 → 68; memory 200Mi + 2Gi → 72
        assert result.score == (68 + 72) // 2

    def test_pending_assignment_lowers_score(self) -> None:
        plugin, _ = _make_plugin(_snapshot())
        node = _make_node()
        plugin.reserve(_make_workload("earlier"), node.name)
        # cpu 1850 + 850 → 32; memory 2899102925 + 751619277 → 57
        assert plugin.score(_make_workload(), node).score == (32 + 57) // 2

    def test_already_reported_assignment_not_counted(self) -> None:
        clock = Clock(NOW - timedelta(seconds=120))
        plugin, _ = _make_plugin(_snapshot(), clock=clock)
        plugin.reserve(_make_workload("earlier"), "node-a")
        clock.now = NOW
        assert plugin.score(_make_workload(), _make_node()).score == 59

    def test_score_has_no_side_effects(self) -> None:
        plugin, tracker = _make_plugin(_snapshot())
        plugin.score(_make_workload(), _make_node())
        assert len(tracker) == 0


# ─────────────────────────────────────────────────────────────────────────────
# Group 4: score_nodes
# ─────────────────────────────────────────────────────────────────────────────

class TestScoreNodes:

    def test_matches_individual_scores(self) -> None:
        plugin, _ = _make_plugin(
            _snapshot("node-a"),
            _snapshot("node-b", cpu="3", memory="6Gi"),
            _snapshot("node-c", age_seconds=500),
            _snapshot("node-d"),
            broken={"node-d"},
        )
        workload = _make_workload()
        nodes = [_make_node(n) for n in ("node-a", "node-b", "node-c", "node-d", "node-e")]

        batch = plugin.score_nodes(workload, nodes)
        single = [plugin.score(workload, node) for node in nodes]

        assert [r.node_name for r in batch] == [n.name for n in nodes]
        assert [r.score for r in batch] == [r.score for r in single]
        assert [r.status.code for r in batch] == [r.status.code for r in single]
        assert batch[3].status.code == StatusCode.ERROR

    def test_empty_node_list(self) -> None:
        plugin, _ = _make_plugin()
        assert plugin.score_nodes(_make_workload(), []) == []


# ─────────────────────────────────────────────────────────────────────────────
# Group 5: reserve / unreserve
# ─────────────────────────────────────────────────────────────────────────────

class TestReserve:

    def test_reserve_records_and_unreserve_removes(self) -> None:
        plugin, tracker = _make_plugin(_snapshot())
        workload = _make_workload()

        assert plugin.reserve(workload, "node-a").is_success()
        assert tracker.assigned_node(workload) == "node-a"

        plugin.unreserve(workload, "node-a")
        plugin.unreserve(workload, "node-a")
        assert len(tracker) == 0

    def test_unreserve_restores_score(self) -> None:
        plugin, _ = _make_plugin(_snapshot())
        other = _make_workload("other")
        plugin.reserve(other, "node-a")
        plugin.unreserve(other, "node-a")
        assert plugin.score(_make_workload(), _make_node()).score == 59
