"""
loadsched/telemetry — node usage snapshots and their freshness.

Public API:
    NodeMetricStore          — thread-safe latest-snapshot-per-node store
    NodeMetricNotFoundError  — raised by a lister for a node with no reporter
    is_node_metric_expired() — freshness check against a configured age
"""

from loadsched.telemetry.expiration import (
    is_node_metric_expired,
    node_metric_report_interval,
)
from loadsched.telemetry.store import (
    NodeMetricLookupError,
    NodeMetricNotFoundError,
    NodeMetricStore,
)

__all__ = [
    "is_node_metric_expired",
    "node_metric_report_interval",
    "NodeMetricLookupError",
    "NodeMetricNotFoundError",
    "NodeMetricStore",
]
