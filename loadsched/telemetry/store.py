"""
loadsched/telemetry/store.py
─────────────────────────────
NodeMetricStore: the telemetry lookup the plugins read from.

The store does not collect anything. Some producer outside this package
(a node agent, an informer, a test) calls update() whenever a report lands;
the plugins only call get().

Lookup contract
────────────────
  get(node_name) → NodeMetricSnapshot
                 → raises NodeMetricNotFoundError  (benign: no reporter on that node)
                 → raises NodeMetricLookupError    (anything else: aborts that node only)

Any object with a compatible get() can stand in for the store (see
NodeMetricLister). A lister backed by a remote cache would raise
NodeMetricLookupError on transport failures.

Thread safety
──────────────
One lock around the dict. A reader gets whichever snapshot was current when
it called get(); a newer report replaces the entry, never the object.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Protocol

from loadsched.shared.models import NodeMetricSnapshot

logger = logging.getLogger(__name__)


class NodeMetricLookupError(Exception):
    """Telemetry for a node could not be read."""

    def __init__(self, node_name: str, reason: str) -> None:
        self.node_name = node_name
        self.reason = reason
        super().__init__(f"node metric for {node_name!r}: {reason}")


class NodeMetricNotFoundError(NodeMetricLookupError):
    """No snapshot exists for the node. Expected for nodes without a reporter."""

    def __init__(self, node_name: str) -> None:
        super().__init__(node_name, "not found")


class NodeMetricLister(Protocol):
    def get(self, node_name: str) -> NodeMetricSnapshot:
        ...


class NodeMetricStore:
    """
    In-memory, thread-safe snapshot registry keyed by node name.

    Usage:
        store = NodeMetricStore()
        store.update(snapshot)
        snapshot = store.get("node-a")     # may raise NodeMetricNotFoundError
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: Dict[str, NodeMetricSnapshot] = {}

    def update(self, snapshot: NodeMetricSnapshot) -> None:
        """Store the latest snapshot for its node, replacing any older one."""
        with self._lock:
            self._snapshots[snapshot.node_name] = snapshot
        logger.debug(
            "node metric updated: node=%s update_time=%s",
            snapshot.node_name, snapshot.update_time,
        )

    def delete(self, node_name: str) -> None:
        with self._lock:
            self._snapshots.pop(node_name, None)

    def get(self, node_name: str) -> NodeMetricSnapshot:
        with self._lock:
            snapshot = self._snapshots.get(node_name)
        if snapshot is None:
            raise NodeMetricNotFoundError(node_name)
        return snapshot

    def node_names(self) -> List[str]:
        with self._lock:
            return sorted(self._snapshots)
