"""
Fleet Manager
=============

Buys and upgrades purchased nodes under a monetary budget.

Runs as its own control loop, independent of individual workloads.  Each
tick first seeds the fleet with cheap nodes, then repeatedly doubles the
smallest node.  Once every node sits at the top tier the fleet widens with
new nodes until the node limit is reached, after which it halts for good.
"""

from __future__ import annotations

import threading
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from fleet_kernel.errors import PurchaseError
from fleet_kernel.host import HostEnvironment
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.node import Node, NodeKind, AccessState
from fleet_kernel.models.fleet import (
    DEFAULT_PREFIX, MIN_TIER, MAX_TIER,
    FleetEntry, TickResult, node_name, parse_index, valid_tiers,
)

logger = logging.getLogger(__name__)


@dataclass
class FleetPolicy:
    """Limits the fleet manager works within."""
    prefix: str = DEFAULT_PREFIX
    min_seed: int = 1
    max_nodes: int = 25
    min_tier: int = MIN_TIER
    max_tier: int = MAX_TIER
    reserve_funds: float = 0.0
    tick_interval_sec: float = 60.0
    max_actions_per_tick: int = 16
    drain_before_upgrade: bool = False

    def __post_init__(self):
        # Validates both tiers are powers of two and ordered.
        if not valid_tiers(self.min_tier, self.max_tier):
            raise ValueError(f"min_tier {self.min_tier} above max_tier {self.max_tier}")
        if self.min_seed < 0 or self.max_nodes < 0:
            raise ValueError("node counts must be non-negative")


class FleetManager:
    """
    Purchased-node lifecycle: buy, upgrade (replace at double capacity).

    Thread-safe: one tick at a time under RLock.
    """

    def __init__(
        self,
        host: HostEnvironment,
        ledger: CapacityLedger,
        policy: Optional[FleetPolicy] = None,
    ):
        self._lock = threading.RLock()
        self.host = host
        self.ledger = ledger
        self.policy = policy or FleetPolicy()

        self._entries: Dict[int, FleetEntry] = {}
        self._halted = False
        self._last_result: Optional[TickResult] = None

        # Metrics
        self._tick_count = 0
        self._purchases = 0
        self._upgrades = 0
        self._spent = 0.0

        # Threading
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # ─────────────────────────────────────────────────────────────────
    # Fleet state
    # ─────────────────────────────────────────────────────────────────

    def adopt(self) -> List[FleetEntry]:
        """
        Re-derive the fleet from the nodes the host says we own.

        Nothing is persisted between runs; this is how a restart recovers.
        """
        adopted = []
        with self._lock:
            for name in self.host.purchased_nodes():
                index = parse_index(self.policy.prefix, name)
                if index is None:
                    logger.warning(f"Ignoring purchased node with foreign name: {name}")
                    continue
                capacity = int(self.host.node_info(name).total_capacity)
                entry = FleetEntry(index=index, name=name, capacity=capacity)
                self._entries[index] = entry
                self._register(entry)
                adopted.append(entry)
        if adopted:
            logger.info(f"Adopted {len(adopted)} purchased nodes")
        return adopted

    def _register(self, entry: FleetEntry) -> None:
        if entry.name in self.ledger:
            return
        self.ledger.register(Node(
            name=entry.name,
            kind=NodeKind.PURCHASED,
            total_capacity=entry.capacity,
            access=AccessState.AUTHORIZED,
        ))

    def entries(self) -> List[FleetEntry]:
        with self._lock:
            return [self._entries[i] for i in sorted(self._entries)]

    def next_index(self) -> int:
        """Lowest unused sequence index."""
        with self._lock:
            index = 0
            while index in self._entries:
                index += 1
            return index

    def next_upgrade(self) -> Optional[FleetEntry]:
        """Smallest node that can still grow; ties go to the lowest index."""
        with self._lock:
            candidates = [
                e for e in self._entries.values()
                if e.next_tier() <= self.policy.max_tier
            ]
            if not candidates:
                return None
            return min(candidates, key=lambda e: (e.capacity, e.index))

    def budget(self) -> float:
        """Funds the manager may spend right now."""
        return self.host.current_funds() - self.policy.reserve_funds

    @property
    def halted(self) -> bool:
        with self._lock:
            return self._halted

    # ─────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────

    def _buy(self, result: TickResult) -> bool:
        """Buy one node at the cheapest tier.  False ends the tick."""
        if len(self._entries) >= self.policy.max_nodes:
            self._halt(result, "max_nodes")
            return False
        capacity = self.policy.min_tier
        cost = self.host.purchase_cost(capacity)
        if cost > self.budget():
            result.reason = "insufficient_funds"
            return False

        index = self.next_index()
        name = node_name(self.policy.prefix, index)
        try:
            self.host.purchase_node(name, capacity)
        except PurchaseError as e:
            logger.warning(f"Purchase of {name} refused: {e}")
            if len(self.host.purchased_nodes()) >= self.host.max_purchased():
                self._halt(result, "host_node_limit")
            else:
                result.reason = "purchase_refused"
            return False

        entry = FleetEntry(index=index, name=name, capacity=capacity)
        self._entries[index] = entry
        self._register(entry)
        self._purchases += 1
        self._spent += cost
        result.purchased.append(name)
        logger.info(f"Purchased {name} ({capacity}) for {cost:.0f}")
        return True

    def _upgrade(self, entry: FleetEntry, result: TickResult) -> bool:
        """Replace a node with the next tier up.  False ends the tick."""
        capacity = entry.next_tier()
        if self.policy.drain_before_upgrade and self.ledger.placements(entry.name):
            result.reason = "draining"
            return False
        cost = self.host.purchase_cost(capacity)
        if cost > self.budget():
            result.reason = "insufficient_funds"
            return False

        try:
            self.host.upgrade_node(entry.name, capacity)
        except PurchaseError as e:
            logger.warning(f"Upgrade of {entry.name} refused: {e}")
            result.reason = "upgrade_refused"
            return False

        invalidated = self.ledger.replace(entry.name, capacity)
        for placement in invalidated:
            if placement.handle is not None:
                self.host.kill_process(placement.handle)
        entry.capacity = capacity
        entry.upgrades += 1
        self._upgrades += 1
        self._spent += cost
        result.upgraded.append(entry.name)
        result.invalidated += len(invalidated)
        logger.info(f"Upgraded {entry.name} to {capacity} for {cost:.0f}")
        return True

    def _halt(self, result: TickResult, reason: str) -> None:
        if not self._halted:
            logger.info(f"Fleet growth halted: {reason}")
        self._halted = True
        result.reason = reason

    def tick(self) -> TickResult:
        """
        One pass of the fleet policy.

        Insufficient funds simply ends the pass; the next tick retries.
        """
        result = TickResult()
        with self._lock:
            self._tick_count += 1
            if self._halted:
                result.reason = "halted"
                self._last_result = result
                return result

            for _ in range(self.policy.max_actions_per_tick):
                if len(self._entries) < self.policy.min_seed:
                    if not self._buy(result):
                        break
                    continue

                entry = self.next_upgrade()
                if entry is not None:
                    if not self._upgrade(entry, result):
                        break
                    continue

                # Every node is at the top tier: widen the fleet.
                if not self._buy(result):
                    break
            else:
                result.reason = result.reason or "action_limit"

            self._last_result = result

        if result.changed():
            logger.info(
                f"Fleet tick: {len(result.purchased)} purchases, "
                f"{len(result.upgraded)} upgrades ({result.reason or 'ok'})"
            )
        return result

    # ─────────────────────────────────────────────────────────────────
    # Loop
    # ─────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background tick loop."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Fleet manager already running")
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="FleetManager",
        )
        self._thread.start()
        logger.info(f"Fleet manager started (interval: {self.policy.tick_interval_sec}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background tick loop."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info(f"Fleet manager stopped ({self._tick_count} ticks)")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.exception(f"Fleet tick error: {e}")
            if self.halted:
                logger.info("Fleet manager idle: growth halted for this run")
                break
            self._stop.wait(timeout=self.policy.tick_interval_sec)

    def get_stats(self) -> Dict[str, Any]:
        """Get fleet manager statistics."""
        with self._lock:
            return {
                "running": self.is_running(),
                "halted": self._halted,
                "nodes": [e.to_dict() for e in self.entries()],
                "tick_count": self._tick_count,
                "purchases": self._purchases,
                "upgrades": self._upgrades,
                "spent": self._spent,
                "last_reason": self._last_result.reason if self._last_result else None,
            }
