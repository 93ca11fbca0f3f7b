"""
loadsched/control_plane/batch_resource.py
──────────────────────────────────────────
Batch-tier admission: does the node's batch capacity have room for this
workload's batch request?

What it checks
───────────────
Batch workloads are colocated on reclaimed capacity that the node agent
advertises as batch-cpu (milli-cores) and batch-memory (bytes). The host
scheduler's native fit check does not understand those names, so this filter
does the accounting:

    free = allocatable − already_requested
    reject resource r  ⇔  workload_request_r > free_r

Both resources are checked every time and every violation is reported, so
the operator sees "Insufficient batch cpu" *and* "Insufficient batch memory"
in one event rather than one per retry.

Workloads that declare no batch request at all (0, 0) are not governed by
this filter and are admitted unconditionally.

The naming asymmetry
─────────────────────
Batch resources exist under a legacy and a current name (see
shared/resources.py). reconcile_batch_resource() is the single place that
decides how the two combine:

    allocatable  → OVERWRITE: the current name wins when present.
                   Capacity declared under either name is one ceiling.
    requested    → ACCUMULATE: legacy + current.
                   Workloads admitted before an upgrade still hold their
                   legacy-named requests; those do not vanish on upgrade.
    workload     → OVERWRITE, as for allocatable.

Inverting either rule double-counts capacity or forgets usage, so the tests
pin both down explicitly.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import List, Mapping

from loadsched.control_plane.estimator import requests_and_limits
from loadsched.shared.models import (
    BatchResource,
    InsufficientResource,
    NodeInfo,
    Status,
    StatusCode,
    Workload,
)
from loadsched.shared.resources import (
    BATCH_CPU,
    BATCH_MEMORY,
    LEGACY_BATCH_CPU,
    LEGACY_BATCH_MEMORY,
    value,
)

logger = logging.getLogger(__name__)

PLUGIN_NAME: str = "BatchResourceFit"

REASON_INSUFFICIENT_BATCH_CPU: str = "Insufficient batch cpu"
REASON_INSUFFICIENT_BATCH_MEMORY: str = "Insufficient batch memory"


class Reconcile(str, Enum):
    OVERWRITE = "overwrite"
    ACCUMULATE = "accumulate"


def reconcile_batch_resource(resources: Mapping[str, Decimal], mode: Reconcile) -> BatchResource:
    """
    Collapse legacy and current batch names into one BatchResource.

    Args:
        resources: A resource list that may carry either or both generations.
        mode:      OVERWRITE → current value replaces legacy when present.
                   ACCUMULATE → legacy and current values are summed.
    """
    amounts = {}
    for field_name, legacy_name, current_name in (
        ("milli_cpu", LEGACY_BATCH_CPU, BATCH_CPU),
        ("memory", LEGACY_BATCH_MEMORY, BATCH_MEMORY),
    ):
        amount = 0
        if legacy_name in resources:
            amount = value(resources[legacy_name])
        if current_name in resources:
            if mode == Reconcile.ACCUMULATE:
                amount += value(resources[current_name])
            else:
                amount = value(resources[current_name])
        amounts[field_name] = amount
    return BatchResource(**amounts)


def workload_batch_request(workload: Workload) -> BatchResource:
    """
    max(sum(containers), each init container) + overhead, on batch names only.

    Requests, not limits: admission is a hard accounting check against what
    the node has promised, not a usage prediction.
    """
    requests, _ = requests_and_limits(workload)
    return reconcile_batch_resource(requests, Reconcile.OVERWRITE)


def node_batch_allocatable(node_info: NodeInfo) -> BatchResource:
    return reconcile_batch_resource(node_info.allocatable, Reconcile.OVERWRITE)


def node_batch_requested(node_info: NodeInfo) -> BatchResource:
    return reconcile_batch_resource(node_info.requested, Reconcile.ACCUMULATE)


def fits_request(workload: Workload, node_info: NodeInfo) -> List[InsufficientResource]:
    """
    Every batch resource the node cannot supply. Empty means admitted.
    """
    request = workload_batch_request(workload)
    if request.is_zero:
        return []

    requested = node_batch_requested(node_info)
    allocatable = node_batch_allocatable(node_info)

    insufficient: List[InsufficientResource] = []
    if request.milli_cpu > allocatable.milli_cpu - requested.milli_cpu:
        insufficient.append(InsufficientResource(
            resource_name=BATCH_CPU,
            reason=REASON_INSUFFICIENT_BATCH_CPU,
            requested=request.milli_cpu,
            used=requested.milli_cpu,
            capacity=allocatable.milli_cpu,
        ))
    if request.memory > allocatable.memory - requested.memory:
        insufficient.append(InsufficientResource(
            resource_name=BATCH_MEMORY,
            reason=REASON_INSUFFICIENT_BATCH_MEMORY,
            requested=request.memory,
            used=requested.memory,
            capacity=allocatable.memory,
        ))
    return insufficient


class BatchResourceFitPlugin:
    """
    Filter-only plugin wrapping fits_request().

    Stateless. One instance can serve every concurrent filter call.
    """

    name = PLUGIN_NAME

    def filter(self, workload: Workload, node_info: NodeInfo) -> Status:
        insufficient = fits_request(workload, node_info)
        if not insufficient:
            return Status.success()
        logger.debug(
            "%s: %s rejected on %s: %s",
            PLUGIN_NAME, workload.key, node_info.name,
            ", ".join(r.reason for r in insufficient),
        )
        return Status(
            code=StatusCode.UNSCHEDULABLE,
            reasons=[r.reason for r in insufficient],
            insufficient_resources=insufficient,
        )
