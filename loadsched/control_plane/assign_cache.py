"""
loadsched/control_plane/assign_cache.py
────────────────────────────────────────
AssignmentTracker: workloads placed on a node that telemetry has not caught
up with yet.

The blind window
─────────────────
Telemetry is reported every ~60s. A workload bound at t=5s is invisible to
the node's usage figures until the next report, and possibly one more if the
reporter's sampling window closed just before it started. Without a record
of recent placements, the scorer would see an idle node and pile every
workload of the cycle onto it.

The tracker remembers every (node, workload, time) triple and, for a given
snapshot, sums the estimator's prediction over exactly those records that the
snapshot cannot have counted yet:

    include record  ⇔  record.timestamp > snapshot.update_time
                     or (record.timestamp < snapshot.update_time
                         and snapshot.update_time − record.timestamp < report_interval)

A record taken exactly at update_time is treated as reported.

Who mutates it
───────────────
Two independent sources:
  1. The scheduling loop: reserve → assign(), unreserve → unassign().
  2. Workload lifecycle notifications: on_add / on_update / on_delete.

Invariants
───────────
  • A workload (by UID) appears in at most one node's records.
    Assigning it elsewhere moves it.
  • A workload reported deleted, unbound or terminated is never tracked.
  • Workload objects are held by reference and never modified.

Thread safety
──────────────
One ReadWriteLock for the whole structure. assign / unassign / lifecycle
handlers take it exclusively for a dict insert or delete; estimated_pending
holds it shared for the duration of its scan over a single node's records.
No I/O and no nested locking happens while it is held.

One tracker is constructed per scheduler instance and handed by reference to
both the load-aware plugin and whatever dispatches lifecycle events.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from loadsched.control_plane.estimator import estimate_workload_usage
from loadsched.shared.models import NodeMetricSnapshot, Workload
from loadsched.shared.resources import ResourceTranslator, translate_resource_name
from loadsched.telemetry.expiration import node_metric_report_interval, utcnow

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Many readers or one writer. Waiting writers block new readers so a steady
    stream of scoring calls cannot starve reserve / unreserve.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class AssignmentRecord:
    """One tentative or confirmed placement the tracker still remembers."""
    workload: Workload
    node_name: str
    timestamp: datetime


def not_yet_reported(
    assigned_at: datetime,
    update_time: datetime,
    report_interval: timedelta,
) -> bool:
    """Inclusion rule: could the snapshot taken at update_time have missed this placement?"""
    if assigned_at > update_time:
        return True
    return assigned_at < update_time and update_time - assigned_at < report_interval


class AssignmentTracker:
    """
    Concurrent, time-windowed record of node → workload assignments.

    Lifecycle:
        tracker = AssignmentTracker()
        tracker.assign("node-a", workload)          # reserve
        tracker.unassign("node-a", workload)        # unreserve (idempotent)
        tracker.on_delete(workload)                 # lifecycle notification
        pending = tracker.estimated_pending("node-a", snapshot, weights, factors)

    Args:
        clock: Returns the current timezone-aware time. Injected for tests.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._lock = ReadWriteLock()
        self._clock = clock
        # node name → {workload uid → record}, insertion-ordered
        self._items: Dict[str, Dict[str, AssignmentRecord]] = {}
        # workload uid → node name
        self._node_of: Dict[str, str] = {}

    # ── Scheduling-loop API ────────────────────────────────────────────────────

    def assign(self, node_name: str, workload: Workload) -> None:
        """
        Record that workload was just placed on node_name.

        Re-assigning restarts the record's clock; assigning to another node
        moves the record. Terminated workloads are never recorded.
        """
        if not node_name:
            return
        if workload.is_terminated:
            self.forget(workload)
            return
        with self._lock.write_locked():
            self._put_locked(node_name, workload, self._clock())
        logger.debug("assigned %s → %s", workload.key, node_name)

    def unassign(self, node_name: str, workload: Workload) -> None:
        """Drop the record of workload on node_name. A no-op when there is none."""
        with self._lock.write_locked():
            if self._node_of.get(workload.uid) != node_name:
                return
            self._remove_locked(node_name, workload.uid)
        logger.debug("unassigned %s from %s", workload.key, node_name)

    def forget(self, workload: Workload) -> None:
        """Drop the record of workload from whichever node holds it."""
        with self._lock.write_locked():
            node_name = self._node_of.get(workload.uid)
            if node_name is None:
                return
            self._remove_locked(node_name, workload.uid)
        logger.debug("forgot %s (was on %s)", workload.key, node_name)

    # ── Lifecycle notifications ────────────────────────────────────────────────

    def on_add(self, workload: Workload) -> None:
        self._sync(workload)

    def on_update(self, old: Workload, new: Workload) -> None:
        if old.node_name is not None and new.node_name is None:
            self.forget(new)
            return
        self._sync(new)

    def on_delete(self, workload: Workload) -> None:
        self.forget(workload)

    def _sync(self, workload: Workload) -> None:
        """
        Bring the tracker in line with the workload's latest known state.

        Terminated → forget. Not bound yet → leave any reservation alone.
        Bound to the node it is already tracked on → swap in the new object,
        keep the original timestamp. Bound elsewhere, or not tracked yet →
        record it now.
        """
        if workload.is_terminated:
            self.forget(workload)
            return
        if workload.node_name is None:
            return
        with self._lock.write_locked():
            current = self._node_of.get(workload.uid)
            if current == workload.node_name:
                timestamp = self._items[current][workload.uid].timestamp
            else:
                timestamp = self._clock()
            self._put_locked(workload.node_name, workload, timestamp)

    # ── Locked helpers (caller holds the write lock) ──────────────────────────

    def _put_locked(self, node_name: str, workload: Workload, timestamp: datetime) -> None:
        previous = self._node_of.get(workload.uid)
        if previous is not None and previous != node_name:
            self._remove_locked(previous, workload.uid)
        self._items.setdefault(node_name, {})[workload.uid] = AssignmentRecord(
            workload=workload, node_name=node_name, timestamp=timestamp,
        )
        self._node_of[workload.uid] = node_name

    def _remove_locked(self, node_name: str, uid: str) -> None:
        records = self._items.get(node_name)
        if records is not None:
            records.pop(uid, None)
            if not records:
                del self._items[node_name]
        self._node_of.pop(uid, None)

    # ── Queries ────────────────────────────────────────────────────────────────

    def estimated_pending(
        self,
        node_name: str,
        snapshot: NodeMetricSnapshot,
        resource_weights: Mapping[str, int],
        scaling_factors: Mapping[str, int],
        translate: ResourceTranslator = translate_resource_name,
    ) -> Dict[str, int]:
        """
        Summed usage estimate of node_name's assignments the snapshot has not seen.

        A snapshot without an update time has seen nothing, so every record
        counts.

        Returns:
            {resource name: estimated quantity}. Empty when nothing is pending.
        """
        report_interval = node_metric_report_interval(snapshot)
        update_time = snapshot.update_time
        pending: Dict[str, int] = {}
        with self._lock.read_locked():
            for record in self._items.get(node_name, {}).values():
                if update_time is not None and not not_yet_reported(
                    record.timestamp, update_time, report_interval
                ):
                    continue
                estimated = estimate_workload_usage(
                    record.workload, resource_weights, scaling_factors, translate
                )
                for resource_name, quantity in estimated.items():
                    pending[resource_name] = pending.get(resource_name, 0) + quantity
        return pending

    def assignments(self, node_name: str) -> List[AssignmentRecord]:
        """Records on node_name, in the order they were first assigned."""
        with self._lock.read_locked():
            return list(self._items.get(node_name, {}).values())

    def assigned_node(self, workload: Workload) -> Optional[str]:
        with self._lock.read_locked():
            return self._node_of.get(workload.uid)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._node_of)
