"""
loadsched/shared/resources.py
─────────────────────────────
Resource names, priority classes and fixed-point quantity helpers.

Why this is a separate file from models.py
------------------------------------------
models.py describes *objects* (a workload, a node, a telemetry snapshot).
This file describes the *vocabulary* those objects are written in: which
resource names exist, which priority tier bills against which name, and how
a Kubernetes quantity string turns into an integer the scorer can use.

Two naming generations
----------------------
The batch tier has been published under two names:

    legacy   koordinator.sh/batch-cpu      koordinator.sh/batch-memory
    current  kubernetes.io/batch-cpu       kubernetes.io/batch-memory

Both can appear on the same node during an upgrade. The reconciliation rule
lives in control_plane/batch_resource.py; this file only names them.

Fixed-point arithmetic
----------------------
Quantities are held as Decimal, never float. Kubernetes rounds *up* when it
converts a quantity to an integer (MilliValue / Value), and so do we.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Dict, Optional, Union

from kubernetes.utils import parse_quantity

# ── Resource names ────────────────────────────────────────────────────────────

RESOURCE_CPU: str = "cpu"
RESOURCE_MEMORY: str = "memory"

BATCH_CPU: str = "kubernetes.io/batch-cpu"
BATCH_MEMORY: str = "kubernetes.io/batch-memory"

LEGACY_BATCH_CPU: str = "koordinator.sh/batch-cpu"
"""Deprecated spelling of BATCH_CPU. Still reported by older node agents."""

LEGACY_BATCH_MEMORY: str = "koordinator.sh/batch-memory"
"""Deprecated spelling of BATCH_MEMORY."""

MID_CPU: str = "kubernetes.io/mid-cpu"
MID_MEMORY: str = "kubernetes.io/mid-memory"

CPU_CLASS_RESOURCES = frozenset({RESOURCE_CPU, BATCH_CPU, MID_CPU})
"""Resources that fall back to DEFAULT_MILLI_CPU_REQUEST when undeclared."""

MEMORY_CLASS_RESOURCES = frozenset({RESOURCE_MEMORY, BATCH_MEMORY, MID_MEMORY})
"""Resources that fall back to DEFAULT_MEMORY_REQUEST when undeclared."""

LABEL_PRIORITY_CLASS: str = "koordinator.sh/priority-class"

ANNOTATION_CUSTOM_USAGE_THRESHOLDS: str = "scheduling.koordinator.sh/usage-thresholds"


# ── Priority classes ──────────────────────────────────────────────────────────

class PriorityClass(str, Enum):
    """
    Service tier a workload runs in.

    PROD  → latency-sensitive, billed against native cpu / memory.
    MID   → reclaimable capacity, billed against mid-cpu / mid-memory.
    BATCH → best-effort colocated work, billed against batch-cpu / batch-memory.
    FREE  → opportunistic, no dedicated accounting resource.
    NONE  → no tier declared; treated like PROD for billing.
    """
    PROD = "koord-prod"
    MID = "koord-mid"
    BATCH = "koord-batch"
    FREE = "koord-free"
    NONE = ""


# Inclusive numeric priority bands, checked when no label is present.
_PRIORITY_BANDS = (
    (PriorityClass.PROD, 9000, 9999),
    (PriorityClass.MID, 7000, 7999),
    (PriorityClass.BATCH, 5000, 5999),
    (PriorityClass.FREE, 3000, 3999),
)

_RESOURCE_NAME_MAP: Dict[PriorityClass, Dict[str, str]] = {
    PriorityClass.BATCH: {RESOURCE_CPU: BATCH_CPU, RESOURCE_MEMORY: BATCH_MEMORY},
    PriorityClass.MID: {RESOURCE_CPU: MID_CPU, RESOURCE_MEMORY: MID_MEMORY},
}

ResourceTranslator = Callable[[str, PriorityClass], str]
"""(resource_kind, priority_class) -> effective resource name."""


def priority_class_of(labels: Dict[str, str], priority: Optional[int]) -> PriorityClass:
    """
    Resolve a workload's priority class.

    The label wins when it names a known class. Otherwise the numeric priority
    is mapped onto the bands above; anything outside them is NONE.
    """
    raw = labels.get(LABEL_PRIORITY_CLASS)
    if raw:
        try:
            return PriorityClass(raw)
        except ValueError:
            pass
    if priority is None:
        return PriorityClass.NONE
    for priority_class, low, high in _PRIORITY_BANDS:
        if low <= priority <= high:
            return priority_class
    return PriorityClass.NONE


def translate_resource_name(resource_name: str, priority_class: PriorityClass) -> str:
    """
    Default priority-class translation.

    Batch and mid workloads bill their cpu / memory against the tier's own
    accounting resource. Every other combination keeps the name it was given.
    """
    return _RESOURCE_NAME_MAP.get(priority_class, {}).get(resource_name, resource_name)


# ── Quantities ────────────────────────────────────────────────────────────────

QuantityInput = Union[str, int, float, Decimal]


def to_quantity(value: QuantityInput) -> Decimal:
    """Parse a Kubernetes quantity ("250m", "1Gi", 2) into a Decimal."""
    if isinstance(value, Decimal):
        return value
    return parse_quantity(value)


def milli_value(quantity: Decimal) -> int:
    """Quantity × 1000, rounded up. Used for cpu."""
    return int((quantity * 1000).to_integral_value(rounding=ROUND_CEILING))


def value(quantity: Decimal) -> int:
    """Quantity rounded up to an integer. Used for everything except cpu."""
    return int(quantity.to_integral_value(rounding=ROUND_CEILING))


def scalar_value(resource_name: str, quantity: Decimal) -> int:
    """Integer form used for scoring: milli-units for cpu, base units otherwise."""
    if resource_name == RESOURCE_CPU:
        return milli_value(quantity)
    return value(quantity)


def round_half_up(number: Decimal) -> int:
    """Round to nearest integer, halves away from zero."""
    return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))
