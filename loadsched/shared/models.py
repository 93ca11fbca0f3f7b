"""
loadsched/shared/models.py
──────────────────────────
The single source of truth for every data structure the scheduling core reads
or produces.

Design philosophy
-----------------
Every model answers one question: "What does a filter or a scorer *need to
know* about this thing to decide in microseconds?"

Objects owned by the surrounding cluster (workloads, nodes, telemetry) are
modelled only as far as the core reads them. They arrive already resolved;
the core never fetches, mutates or persists them.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator

from loadsched.shared.resources import PriorityClass, priority_class_of, to_quantity

# Kubernetes quantity accepted as "500m", "1Gi", 2 or 0.5; stored as Decimal.
Quantity = Annotated[Decimal, BeforeValidator(to_quantity)]

ResourceList = Dict[str, Quantity]


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class WorkloadPhase(str, Enum):
    """
    Lifecycle phase of a workload as reported by the cluster.

    SUCCEEDED and FAILED are terminal: a terminated workload no longer
    consumes node capacity and must not be tracked as a pending assignment.
    """
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class StatusCode(str, Enum):
    """
    Outcome of a filter, score or reserve call for one node.

    SUCCESS       → admitted / scored normally.
    UNSCHEDULABLE → rejected; `reasons` says why.
    ERROR         → evaluation of this node failed (e.g. a telemetry lookup
                    error). Affects this node only; the caller decides whether
                    the whole cycle aborts.
    """
    SUCCESS = "Success"
    UNSCHEDULABLE = "Unschedulable"
    ERROR = "Error"


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: WORKLOAD MODELS
# ─────────────────────────────────────────────────────────────────────────────

class ResourceRequirements(BaseModel):
    """Declared requests and limits of one container."""
    requests: ResourceList = Field(default_factory=dict)
    limits: ResourceList = Field(default_factory=dict)


class Container(BaseModel):
    name: str
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)


class Workload(BaseModel):
    """
    A pending or running workload (a pod).

    Fields:
        uid             → Identity used by the assignment tracker.
        node_name       → Node the workload is bound to. None while pending.
        priority        → Numeric scheduling priority. Used to derive the
                          priority class when no label names one.
        containers      → Main containers. Run concurrently.
        init_containers → Run one at a time before the main containers.
        overhead        → Fixed per-workload runtime overhead (sandbox etc.).
    """
    name: str
    namespace: str = "default"
    uid: str = Field(default_factory=lambda: uuid.uuid4().hex)
    node_name: Optional[str] = None
    phase: WorkloadPhase = WorkloadPhase.PENDING
    priority: Optional[int] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    containers: List[Container] = Field(default_factory=list)
    init_containers: List[Container] = Field(default_factory=list)
    overhead: Optional[ResourceList] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_terminated(self) -> bool:
        return self.phase in (WorkloadPhase.SUCCEEDED, WorkloadPhase.FAILED)

    @property
    def priority_class(self) -> PriorityClass:
        return priority_class_of(self.labels, self.priority)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: NODE MODELS
# ─────────────────────────────────────────────────────────────────────────────

class Node(BaseModel):
    """
    A cluster node as the scheduler sees it.

    allocatable carries both native (cpu, memory) and extended resources
    (batch-cpu, batch-memory under either naming generation).
    annotations may carry per-node usage-threshold overrides.
    """
    name: str
    allocatable: ResourceList = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class NodeInfo(BaseModel):
    """
    A node plus the scheduler's running total of requests already placed on it.

    `requested` is maintained by the host scheduler, not by this core.
    """
    node: Node
    requested: ResourceList = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def allocatable(self) -> ResourceList:
        return self.node.allocatable


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: TELEMETRY MODEL
# ─────────────────────────────────────────────────────────────────────────────

class NodeMetricSnapshot(BaseModel):
    """
    The latest usage report for one node.

    Treated as eventually consistent: it may be missing, stale, or lag behind
    workloads the scheduler has just placed.

    Fields:
        node_usage              → Reported usage per resource. None when the
                                  reporter published a snapshot with no usage
                                  body yet.
        update_time             → When the reporter last wrote this snapshot.
                                  None means "never" and counts as expired.
                                  A timestamp without a zone is read as UTC.
        report_interval_seconds → The reporter's collection interval. None
                                  falls back to the 60s default.
    """
    node_name: str
    node_usage: Optional[ResourceList] = None
    update_time: Optional[datetime] = None
    report_interval_seconds: Optional[int] = Field(None, gt=0)

    @field_validator("update_time")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: DECISION MODELS
# What the filters and the scorer hand back to the scheduling loop.
# ─────────────────────────────────────────────────────────────────────────────

class BatchResource(BaseModel):
    """Batch-tier footprint: milli-cpu and memory bytes."""
    milli_cpu: int = 0
    memory: int = 0

    @property
    def is_zero(self) -> bool:
        return self.milli_cpu == 0 and self.memory == 0


class InsufficientResource(BaseModel):
    """One violated capacity constraint, with the figures behind it."""
    resource_name: str
    reason: str
    requested: int
    used: int
    capacity: int


class Status(BaseModel):
    """
    Outcome of a filter / reserve call, or the status part of a score.

    Never raised. Every plugin method returns one of these and leaves the
    decision about aborting the cycle to the caller.
    """
    code: StatusCode = StatusCode.SUCCESS
    reasons: List[str] = Field(default_factory=list)
    insufficient_resources: List[InsufficientResource] = Field(default_factory=list)

    @classmethod
    def success(cls) -> "Status":
        return cls()

    @classmethod
    def unschedulable(cls, *reasons: str) -> "Status":
        return cls(code=StatusCode.UNSCHEDULABLE, reasons=list(reasons))

    @classmethod
    def error(cls, reason: str) -> "Status":
        return cls(code=StatusCode.ERROR, reasons=[reason])

    def is_success(self) -> bool:
        return self.code == StatusCode.SUCCESS


class ScoreResult(BaseModel):
    """Rank of one node for one workload. score is 0 whenever status is not success."""
    node_name: str
    score: int = Field(0, ge=0)
    status: Status = Field(default_factory=Status)
