"""
Network Observer
================

Scans the network and feeds the capacity ledger.
Newly discovered nodes are registered locked; once the access
controller authorizes them they become schedulable.
"""

from __future__ import annotations

import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any

from fleet_kernel.access import AccessController
from fleet_kernel.errors import HostError
from fleet_kernel.host import HostEnvironment
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.node import Node, NodeKind, AccessState
from fleet_kernel.topology import TopologyScanner

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """Result of one scan-and-authorize pass."""
    timestamp: float = field(default_factory=time.time)
    discovered: List[str] = field(default_factory=list)
    registered: List[str] = field(default_factory=list)
    authorized: List[str] = field(default_factory=list)
    waiting: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "discovered": self.discovered,
            "registered": self.registered,
            "authorized": self.authorized,
            "waiting": self.waiting,
        }


class NetworkObserver:
    """
    Discovery and access loop.

    Thread-safe: runs monitoring in background thread.
    """

    def __init__(
        self,
        host: HostEnvironment,
        ledger: CapacityLedger,
        scanner: Optional[TopologyScanner] = None,
        access: Optional[AccessController] = None,
        poll_interval_sec: float = 10.0,
        root: Optional[str] = None,
    ):
        self._lock = threading.RLock()
        # One pass at a time, whichever thread asked for it
        self._scan_lock = threading.Lock()
        self.host = host
        self.root = root or host.home
        self.ledger = ledger
        self.scanner = scanner or TopologyScanner(host)
        self.access = access or AccessController(host)
        self._poll_interval = poll_interval_sec

        self._last: Optional[Observation] = None
        self._scan_count = 0

        # Callbacks
        self._on_authorized: List[Callable[[str], None]] = []

        # Threading
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def on_authorized(self, callback: Callable[[str], None]) -> None:
        """Register callback for newly authorized nodes."""
        with self._lock:
            self._on_authorized.append(callback)

    def observe(self) -> Observation:
        """One pass: discover, register, authorize what is due."""
        with self._scan_lock:
            obs = self._observe()

        with self._lock:
            self._last = obs
            self._scan_count += 1
            callbacks = list(self._on_authorized)

        for name in obs.authorized:
            for cb in callbacks:
                try:
                    cb(name)
                except Exception as e:
                    logger.exception(f"Authorized callback error: {e}")

        if obs.registered or obs.authorized:
            logger.info(
                f"Scan: {len(obs.discovered)} nodes, {len(obs.registered)} new, "
                f"{len(obs.authorized)} authorized, {len(obs.waiting)} waiting"
            )
        return obs

    def _observe(self) -> Observation:
        obs = Observation()
        remote = sorted(self.scanner.discover(self.root) - {self.host.home})
        obs.discovered = remote

        for name in remote:
            if name in self.ledger:
                continue
            try:
                info = self.host.node_info(name)
            except HostError as e:
                logger.warning(f"No info for {name}: {e}")
                continue
            self.ledger.register(Node(
                name=name,
                kind=NodeKind.REMOTE,
                total_capacity=info.total_capacity,
                access=self.access.state_of(name),
            ))
            obs.registered.append(name)

        for name in self.access.authorize_all(remote):
            if name in self.ledger:
                self.ledger.set_access(name, AccessState.AUTHORIZED)
            obs.authorized.append(name)

        for name, state in ((n, self.access.state_of(n)) for n in remote):
            if state == AccessState.LOCKED and name in self.ledger:
                self.ledger.set_access(name, AccessState.LOCKED)
        obs.waiting = self.access.waiting()
        return obs

    def last_observation(self) -> Optional[Observation]:
        with self._lock:
            return self._last

    def start(self) -> None:
        """Start the observer background thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Observer already running")
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="NetworkObserver",
        )
        self._thread.start()
        logger.info(f"Observer started (poll interval: {self._poll_interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the observer."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("Observer stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        logger.debug("Observer loop started")
        while not self._stop.is_set():
            try:
                self.observe()
            except Exception as e:
                logger.exception(f"Scan error: {e}")
            self._stop.wait(timeout=self._poll_interval)

    def get_stats(self) -> Dict[str, Any]:
        """Get observer statistics."""
        with self._lock:
            last = self._last
            return {
                "running": self.is_running(),
                "scan_count": self._scan_count,
                "known_nodes": len(last.discovered) if last else 0,
                "waiting": dict(last.waiting) if last else {},
                "access": self.access.get_stats(),
            }
