"""
loadsched/telemetry/expiration.py
──────────────────────────────────
Staleness helpers for node telemetry snapshots.

A snapshot is only useful while it is fresh. Two questions come up on every
filter and score call:

  is_node_metric_expired()      → "Should I trust this snapshot at all?"
  node_metric_report_interval() → "How long might a freshly placed workload
                                   stay invisible to the reporter?"

The second one drives the assignment tracker's inclusion window.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from loadsched.shared.models import NodeMetricSnapshot

DEFAULT_NODE_METRIC_REPORT_INTERVAL: timedelta = timedelta(seconds=60)
"""Reporter interval assumed when a snapshot does not declare one."""


def utcnow() -> datetime:
    """Timezone-aware current time. Every timestamp in this package is UTC-aware."""
    return datetime.now(timezone.utc)


def is_node_metric_expired(
    snapshot: Optional[NodeMetricSnapshot],
    expiration_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    True when the snapshot cannot be trusted.

    Expired means: absent, never updated, or (only when expiration_seconds > 0)
    at least expiration_seconds old. expiration_seconds <= 0 turns the age
    check off while still treating a missing update time as expired.
    """
    if snapshot is None or snapshot.update_time is None:
        return True
    if expiration_seconds <= 0:
        return False
    now = now or utcnow()
    return now - snapshot.update_time >= timedelta(seconds=expiration_seconds)


def node_metric_report_interval(snapshot: NodeMetricSnapshot) -> timedelta:
    if snapshot.report_interval_seconds is None:
        return DEFAULT_NODE_METRIC_REPORT_INTERVAL
    return timedelta(seconds=snapshot.report_interval_seconds)
