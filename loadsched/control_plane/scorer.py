"""
loadsched/control_plane/scorer.py
──────────────────────────────────
Weighted least-allocated node scoring.

The score
──────────
Per resource:

    least_requested_score(used, capacity) = ((capacity − used) × MAX_NODE_SCORE) // capacity
                                          = 0 if capacity == 0 or used > capacity

Per node:

    score = Σ weight_r × least_requested_score_r  //  Σ weight_r

Integer arithmetic throughout, truncating division, exactly as the host
scheduler expects its plugins to score. An idle node scores MAX_NODE_SCORE;
a node at or over capacity on one resource scores 0 on that dimension only.

Two renditions
───────────────
  load_aware_score()   scalar, one node. Used by the plugin's score().
  load_aware_scores()  numpy, many nodes at once. Used by score_nodes() and
                       the cycle evaluator, which score a whole candidate list
                       in one pass and rank it.

Both produce identical integers; tests/test_scorer.py checks them against
each other.

What "used" means is the caller's business (see load_aware.py): candidate
estimate + pending assignments + telemetry usage. The scorer only does the
arithmetic and holds no state.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

# ── Scorer constants ───────────────────────────────────────────────────────────

MAX_NODE_SCORE: int = 100
"""Score of a completely idle node. Scores are always in [0, MAX_NODE_SCORE]."""


# ── Scalar ─────────────────────────────────────────────────────────────────────

def least_requested_score(requested: int, capacity: int) -> int:
    if capacity == 0 or requested > capacity:
        return 0
    return ((capacity - requested) * MAX_NODE_SCORE) // capacity


def load_aware_score(
    resource_weights: Mapping[str, int],
    used: Mapping[str, int],
    allocatable: Mapping[str, int],
) -> int:
    """
    Weighted average of per-resource least-requested scores.

    Args:
        resource_weights: {resource: weight}. Validated config guarantees a
                          positive sum.
        used:             {resource: predicted usage}. Missing means 0.
        allocatable:      {resource: capacity}. Missing means 0 (scores 0).

    Returns:
        int in [0, MAX_NODE_SCORE].
    """
    node_score = 0
    weight_sum = 0
    for resource_name, weight in resource_weights.items():
        resource_score = least_requested_score(
            used.get(resource_name, 0), allocatable.get(resource_name, 0)
        )
        node_score += resource_score * weight
        weight_sum += weight
    if weight_sum == 0:
        return 0
    return node_score // weight_sum


# ── Vectorised ─────────────────────────────────────────────────────────────────

def least_requested_scores(
    requested: NDArray[np.int64],
    capacity: NDArray[np.int64],
) -> NDArray[np.int64]:
    """Element-wise least_requested_score over equally shaped int64 arrays."""
    requested = np.asarray(requested, dtype=np.int64)
    capacity = np.asarray(capacity, dtype=np.int64)
    valid = (capacity > 0) & (requested <= capacity)
    # placeholder divisor where the result is masked out anyway
    divisor = np.where(valid, capacity, 1)
    scores = ((capacity - requested) * MAX_NODE_SCORE) // divisor
    return np.where(valid, scores, 0).astype(np.int64)


def load_aware_scores(
    resource_weights: Mapping[str, int],
    used_rows: Sequence[Mapping[str, int]],
    allocatable_rows: Sequence[Mapping[str, int]],
) -> NDArray[np.int64]:
    """
    Score many nodes in one pass.

    Row i of used_rows and allocatable_rows describes node i. The result is
    an int64 array of length len(used_rows), element i equal to
    load_aware_score(resource_weights, used_rows[i], allocatable_rows[i]).
    """
    if len(used_rows) != len(allocatable_rows):
        raise ValueError(
            f"used_rows has {len(used_rows)} nodes, allocatable_rows has {len(allocatable_rows)}"
        )
    names = list(resource_weights)
    n_nodes = len(used_rows)
    weights = np.array([resource_weights[name] for name in names], dtype=np.int64)
    weight_sum = int(weights.sum())
    if n_nodes == 0 or weight_sum == 0:
        return np.zeros(n_nodes, dtype=np.int64)

    used = np.array(
        [[row.get(name, 0) for name in names] for row in used_rows], dtype=np.int64,
    ).reshape(n_nodes, len(names))
    allocatable = np.array(
        [[row.get(name, 0) for name in names] for row in allocatable_rows], dtype=np.int64,
    ).reshape(n_nodes, len(names))

    per_resource = least_requested_scores(used, allocatable)   # (n_nodes, n_resources)
    return (per_resource * weights).sum(axis=1) // weight_sum


def rank_order(scores: NDArray[np.int64]) -> NDArray[np.intp]:
    """Indices that sort scores descending; ties keep their input order."""
    return np.argsort(-np.asarray(scores, dtype=np.int64), kind="stable")
