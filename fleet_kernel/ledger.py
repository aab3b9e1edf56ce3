"""
Capacity Ledger
===============

The single source of truth for node memory.  Every admission decision
goes through `reserve`, which checks and commits under one lock, so two
concurrent reservations can never together overshoot a node's total.
"""

from __future__ import annotations

import threading
import logging
from typing import Dict, List, Optional, Any, Tuple

from fleet_kernel.errors import (
    CapacityExceeded, DoubleRelease, DuplicateNode, UnknownNode,
)
from fleet_kernel.models.node import Node, NodeKind, AccessState
from fleet_kernel.models.workload import Placement

logger = logging.getLogger(__name__)


class CapacityLedger:
    """
    Committed vs. total memory per node, plus the placements holding it.

    Thread-safe: all state protected by RLock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}

        # Live placements, by node then by id
        self._placements: Dict[str, Dict[str, Placement]] = {}

        # Metrics
        self._reservations = 0
        self._rejections = 0
        self._releases = 0

    # ─────────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────────

    def register(self, node: Node) -> None:
        """Add a node with nothing committed."""
        with self._lock:
            if node.name in self._nodes:
                raise DuplicateNode(node.name)
            node.committed = 0.0
            self._nodes[node.name] = node
            self._placements[node.name] = {}
        logger.debug(f"Registered {node.name} ({node.kind.value}, {node.total_capacity})")

    def deregister(self, name: str) -> List[Placement]:
        """
        Remove a node.  Its placements are invalidated and returned.
        """
        with self._lock:
            if name not in self._nodes:
                raise UnknownNode(name)
            invalidated = list(self._placements.pop(name).values())
            for placement in invalidated:
                placement.released = True
                placement.invalidated = True
            del self._nodes[name]
        if invalidated:
            logger.warning(f"Deregistered {name}: {len(invalidated)} placements invalidated")
        return invalidated

    def replace(self, name: str, new_total: float) -> List[Placement]:
        """
        Swap a node for a fresh entry with a new total.

        The old entry and every placement on it are dropped; the new entry
        starts with nothing committed.
        """
        with self._lock:
            old = self._get(name)
            invalidated = self.deregister(name)
            self.register(Node(
                name=name,
                kind=old.kind,
                total_capacity=new_total,
                access=old.access,
                reserved=old.reserved,
            ))
        logger.info(f"Replaced {name}: {old.total_capacity} -> {new_total}")
        return invalidated

    def _get(self, name: str) -> Node:
        node = self._nodes.get(name)
        if node is None:
            raise UnknownNode(name)
        return node

    # ─────────────────────────────────────────────────────────────────
    # Reservations
    # ─────────────────────────────────────────────────────────────────

    def reserve(self, name: str, amount: float) -> bool:
        """
        Atomically commit `amount` if it fits.

        Returns False without side effects when it does not.
        """
        if amount <= 0:
            raise ValueError(f"reservation must be positive, got {amount}")
        with self._lock:
            node = self._get(name)
            if node.committed + amount > node.total_capacity - node.reserved:
                self._rejections += 1
                return False
            node.committed += amount
            self._check(node)
            self._reservations += 1
            return True

    def release(self, name: str, amount: float) -> None:
        """Return capacity to a node, never going below zero."""
        if amount < 0:
            raise ValueError(f"release must be non-negative, got {amount}")
        with self._lock:
            node = self._get(name)
            node.committed = max(0.0, node.committed - amount)
            self._releases += 1

    def _check(self, node: Node) -> None:
        if node.committed > node.total_capacity:
            raise CapacityExceeded(node.name, node.committed, node.total_capacity)

    def commit(self, placement: Placement) -> None:
        """Track a placement whose memory was already reserved."""
        with self._lock:
            placements = self._placements.get(placement.node)
            if placements is None:
                raise UnknownNode(placement.node)
            placements[placement.placement_id] = placement

    def release_placement(self, placement: Placement) -> None:
        """Free a finished placement's memory.  Exactly once."""
        with self._lock:
            if placement.released:
                raise DoubleRelease(placement.placement_id)
            placements = self._placements.get(placement.node, {})
            tracked = placements.pop(placement.placement_id, None)
            if tracked is None:
                raise DoubleRelease(placement.placement_id)
            placement.released = True
            self.release(placement.node, placement.ram)

    def settle(self, placement: Placement) -> bool:
        """
        Release a placement unless something already did.

        For pollers that may race each other on the same exit.
        """
        with self._lock:
            if placement.released:
                return False
            self.release_placement(placement)
            return True

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def capacity_of(self, name: str) -> Tuple[float, float]:
        """(total, committed) snapshot of a node."""
        with self._lock:
            node = self._get(name)
            return node.total_capacity, node.committed

    def free_of(self, name: str) -> float:
        """Schedulable memory on a node."""
        with self._lock:
            return self._get(name).free

    def get(self, name: str) -> Optional[Node]:
        """Copy of a node entry, or None."""
        with self._lock:
            node = self._nodes.get(name)
            return Node.from_dict(node.to_dict()) if node else None

    def set_access(self, name: str, state: AccessState) -> None:
        with self._lock:
            node = self._get(name)
            node.access = node.access.advance(state)

    def nodes(self, kind: Optional[NodeKind] = None) -> List[str]:
        with self._lock:
            return sorted(
                n.name for n in self._nodes.values()
                if kind is None or n.kind == kind
            )

    def schedulable(self) -> List[str]:
        """Nodes the scheduler may use (authorized, with memory)."""
        with self._lock:
            return sorted(
                n.name for n in self._nodes.values()
                if n.is_authorized() and n.total_capacity > 0
            )

    def placements(self, name: Optional[str] = None) -> List[Placement]:
        with self._lock:
            if name is not None:
                return list(self._placements.get(name, {}).values())
            return [p for ps in self._placements.values() for p in ps.values()]

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = []
            for name in sorted(self._nodes):
                row = self._nodes[name].to_dict()
                row["placements"] = len(self._placements[name])
                rows.append(row)
            return rows

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._nodes

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def get_stats(self) -> Dict[str, Any]:
        """Get ledger statistics."""
        with self._lock:
            total = sum(n.total_capacity for n in self._nodes.values())
            committed = sum(n.committed for n in self._nodes.values())
            return {
                "nodes": len(self._nodes),
                "total_capacity": total,
                "committed": committed,
                "utilization": committed / total if total else 0.0,
                "live_placements": sum(len(p) for p in self._placements.values()),
                "reservations": self._reservations,
                "rejections": self._rejections,
                "releases": self._releases,
            }
