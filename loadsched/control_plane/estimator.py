"""
loadsched/control_plane/estimator.py
─────────────────────────────────────
Resource Estimator: predicts what a workload will *actually* consume on a node.

What this is
─────────────
A workload declares requests (what it is guaranteed) and limits (what it may
burst to). Neither is what it uses. Telemetry tells us what already-running
workloads use, but says nothing about the one we are about to place or the
ones placed since the last report. The estimator fills that gap with a
deterministic guess per weighted resource.

Aggregation (requests_and_limits)
──────────────────────────────────
  footprint = max(sum(main containers), each init container) + overhead

Main containers run together, so they add up. Init containers run one at a
time before them, so only the largest one matters, and only if it beats the
main-container sum. Overhead is added to every request, and to a limit only
when that resource is already limited.

Estimation rule (estimated_used_by_resource)
─────────────────────────────────────────────
  limit > request → trust the workload to reach its limit:
                    scaling factor forced to 100, quantity = limit
  otherwise       → quantity = request
                    estimate = round_half_up(quantity × factor / 100)
                    clamped to the limit when a limit exists
  nothing declared → DEFAULT_MILLI_CPU_REQUEST for cpu-class resources,
                    DEFAULT_MEMORY_REQUEST for memory-class resources, else 0

Priority-class translation
───────────────────────────
The weight table is written in native names (cpu, memory). A batch-tier
workload declares batch-cpu / batch-memory instead, so each weighted name is
translated through the injected ResourceTranslator before the lookup. The
*result* stays keyed by the native name so it can be added to telemetry.

Purity
───────
Everything here is a function of its arguments. No clock, no state, no I/O.
Safe to call concurrently from any number of scoring threads.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Tuple

from loadsched.shared.models import Container, Workload
from loadsched.shared.resources import (
    CPU_CLASS_RESOURCES,
    MEMORY_CLASS_RESOURCES,
    ResourceTranslator,
    round_half_up,
    scalar_value,
    translate_resource_name,
)

# ── Estimator constants ────────────────────────────────────────────────────────

DEFAULT_MILLI_CPU_REQUEST: int = 250
"""0.25 core. Charged for a cpu-class resource the workload does not declare."""

DEFAULT_MEMORY_REQUEST: int = 200 * 1024 * 1024
"""200 MiB. Charged for a memory-class resource the workload does not declare."""

FULL_SCALE: int = 100

Requests = Dict[str, Decimal]
Limits = Dict[str, Decimal]


# ── Aggregation ────────────────────────────────────────────────────────────────

def _add_into(total: Dict[str, Decimal], resources: Mapping[str, Decimal]) -> None:
    for name, quantity in resources.items():
        total[name] = total.get(name, Decimal(0)) + quantity


def _max_into(total: Dict[str, Decimal], resources: Mapping[str, Decimal]) -> None:
    for name, quantity in resources.items():
        if quantity > total.get(name, Decimal(0)):
            total[name] = quantity


def _sum_containers(containers: Iterable[Container]) -> Tuple[Requests, Limits]:
    requests: Requests = {}
    limits: Limits = {}
    for container in containers:
        _add_into(requests, container.resources.requests)
        _add_into(limits, container.resources.limits)
    return requests, limits


def requests_and_limits(workload: Workload) -> Tuple[Requests, Limits]:
    """
    Aggregate a workload's requests and limits across all its containers.

    Returns:
        (requests, limits) keyed by resource name, Decimal quantities.
    """
    requests, limits = _sum_containers(workload.containers)

    for init_container in workload.init_containers:
        _max_into(requests, init_container.resources.requests)
        _max_into(limits, init_container.resources.limits)

    if workload.overhead:
        _add_into(requests, workload.overhead)
        for name, quantity in workload.overhead.items():
            if name in limits:
                limits[name] += quantity

    return requests, limits


# ── Estimation ─────────────────────────────────────────────────────────────────

def estimated_used_by_resource(
    requests: Mapping[str, Decimal],
    limits: Mapping[str, Decimal],
    resource_name: str,
    scaling_factor: int,
) -> int:
    """
    Predict usage of a single, already-translated resource.

    Args:
        requests:       Aggregated requests (see requests_and_limits).
        limits:         Aggregated limits.
        resource_name:  Effective resource name, after priority translation.
        scaling_factor: Percentage of the request expected to be used.

    Returns:
        int — milli-units for cpu, base units for everything else.
    """
    request = requests.get(resource_name, Decimal(0))
    limit: Optional[Decimal] = limits.get(resource_name)

    if limit is not None and limit > request:
        scaling_factor = FULL_SCALE
        quantity = limit
    else:
        quantity = request

    if quantity.is_zero():
        if resource_name in CPU_CLASS_RESOURCES:
            return DEFAULT_MILLI_CPU_REQUEST
        if resource_name in MEMORY_CLASS_RESOURCES:
            return DEFAULT_MEMORY_REQUEST
        return 0

    estimated = round_half_up(Decimal(scalar_value(resource_name, quantity)) * scaling_factor / FULL_SCALE)
    if limit is not None and not limit.is_zero():
        estimated = min(estimated, scalar_value(resource_name, limit))
    return estimated


def estimate_workload_usage(
    workload: Workload,
    resource_weights: Mapping[str, int],
    scaling_factors: Mapping[str, int],
    translate: ResourceTranslator = translate_resource_name,
) -> Dict[str, int]:
    """
    Predict a workload's usage for every weighted resource.

    Args:
        workload:         The workload to estimate.
        resource_weights: Scoring basis; only its keys are used here.
        scaling_factors:  Per-resource request discount (percent). A resource
                          without a configured factor is scaled by 0.
        translate:        (resource, priority_class) -> effective resource name.

    Returns:
        {native resource name: estimated quantity}
    """
    requests, limits = requests_and_limits(workload)
    priority_class = workload.priority_class

    estimated: Dict[str, int] = {}
    for resource_name in resource_weights:
        effective_name = translate(resource_name, priority_class)
        estimated[resource_name] = estimated_used_by_resource(
            requests, limits, effective_name, scaling_factors.get(resource_name, 0)
        )
    return estimated
