"""
loadsched/shared/config.py
──────────────────────────
LoadAwareSchedulingArgs: the plugin configuration, validated once at
construction time.

Why validate up front
---------------------
A bad weight table (all zeros) would make the scorer divide by zero on every
node of every cycle. A malformed threshold would silently reject or admit the
whole cluster. Both are operator mistakes, not per-node conditions, so they
fail loudly before the first scheduling cycle runs and never surface as a
per-node Error status.

Two layers
----------
1. pydantic coerces types (str keys, int values, optional seconds).
2. validate_args() applies the range rules and reports *every* problem in one
   ConfigurationError so an operator can fix the file in one pass.

load_args(mapping) runs both and turns a pydantic ValidationError into a
ConfigurationError, so callers only need to handle one exception type.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from loadsched.shared.resources import RESOURCE_CPU, RESOURCE_MEMORY

# ── Defaults ───────────────────────────────────────────────────────────────────
# Module-level so tests can import and assert against them directly.

DEFAULT_NODE_METRIC_EXPIRATION_SECONDS: int = 180
"""Snapshots older than this are treated as "no information".

Three missed 60s reports. Long enough to ride out a reporter restart,
short enough that a dead reporter stops influencing placement within minutes.
"""

DEFAULT_RESOURCE_WEIGHTS: Dict[str, int] = {RESOURCE_CPU: 1, RESOURCE_MEMORY: 1}

DEFAULT_USAGE_THRESHOLDS: Dict[str, int] = {RESOURCE_CPU: 65, RESOURCE_MEMORY: 95}
"""Usage percentages at or above which the load-aware filter rejects a node."""

DEFAULT_ESTIMATED_SCALING_FACTORS: Dict[str, int] = {RESOURCE_CPU: 85, RESOURCE_MEMORY: 70}
"""Fraction (percent) of a workload's request expected to be actually used."""

MAX_RESOURCE_WEIGHT: int = 100
MAX_PERCENTAGE: int = 100


class ConfigurationError(ValueError):
    """
    Raised when plugin arguments are unusable.

    Attributes:
        problems: One human-readable line per violated rule.
    """

    def __init__(self, problems: List[str]) -> None:
        self.problems = problems
        super().__init__("invalid load-aware scheduling args: " + "; ".join(problems))


class LoadAwareSchedulingArgs(BaseModel):
    """
    Plugin arguments.

    Fields:
        filter_expired_node_metrics    → Reject nodes whose snapshot is expired.
        node_metric_expiration_seconds → Expiration age. None disables every
                                         expiration check (filter and score).
        resource_weights               → Scoring basis. Zero-weight resources
                                         do not influence the score.
        usage_thresholds               → Load-aware filter ceilings (percent).
                                         0 disables the check for a resource.
        estimated_scaling_factors      → Request discount used by the estimator.
    """
    filter_expired_node_metrics: bool = True
    node_metric_expiration_seconds: Optional[int] = DEFAULT_NODE_METRIC_EXPIRATION_SECONDS
    resource_weights: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_RESOURCE_WEIGHTS)
    )
    usage_thresholds: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_USAGE_THRESHOLDS)
    )
    estimated_scaling_factors: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_ESTIMATED_SCALING_FACTORS)
    )


def validate_args(args: LoadAwareSchedulingArgs) -> None:
    """
    Apply the range rules to already-typed args.

    Raises:
        ConfigurationError: listing every violated rule.
    """
    problems: List[str] = []

    if args.node_metric_expiration_seconds is not None and args.node_metric_expiration_seconds <= 0:
        problems.append(
            f"node_metric_expiration_seconds must be > 0, got {args.node_metric_expiration_seconds}"
        )

    for resource_name, weight in args.resource_weights.items():
        if not 0 <= weight <= MAX_RESOURCE_WEIGHT:
            problems.append(
                f"resource_weights[{resource_name}] must be in [0, {MAX_RESOURCE_WEIGHT}], got {weight}"
            )
    if sum(w for w in args.resource_weights.values() if w > 0) == 0:
        problems.append("resource_weights must contain at least one positive weight")

    for field_name in ("usage_thresholds", "estimated_scaling_factors"):
        for resource_name, pct in getattr(args, field_name).items():
            if not 0 <= pct <= MAX_PERCENTAGE:
                problems.append(
                    f"{field_name}[{resource_name}] must be in [0, {MAX_PERCENTAGE}], got {pct}"
                )

    if problems:
        raise ConfigurationError(problems)


def load_args(mapping: Optional[Mapping[str, Any]] = None) -> LoadAwareSchedulingArgs:
    """
    Build and validate args from a plain mapping (e.g. a parsed YAML section).

    Missing keys take the module defaults. None / {} yields the defaults.
    """
    try:
        args = LoadAwareSchedulingArgs.model_validate(dict(mapping or {}))
    except ValidationError as exc:
        raise ConfigurationError(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        ) from exc
    validate_args(args)
    return args
