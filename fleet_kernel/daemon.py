"""
Kernel Daemon
=============

Main entry point for the fleet kernel.
Wires the ledger to the Observer, Scheduler, Fleet Manager and Chain
Sequencer, and answers status queries.
"""

from __future__ import annotations

import signal
import threading
import time
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Any, Sequence

from fleet_kernel.access import AccessController
from fleet_kernel.chain import ChainSequencer, StageSpec
from fleet_kernel.config import KernelConfig, load_kernel_config
from fleet_kernel.fleet import FleetManager
from fleet_kernel.host import HostEnvironment, SimulatedHost, load_snapshot
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.chain import ChainRun
from fleet_kernel.models.node import Node, NodeKind, AccessState
from fleet_kernel.models.fleet import TickResult
from fleet_kernel.models.workload import Workload
from fleet_kernel.observer import NetworkObserver, Observation
from fleet_kernel.scheduler import TaskScheduler, ScheduleResult
from fleet_kernel.topology import TopologyScanner

logger = logging.getLogger(__name__)


class KernelDaemon:
    """
    Main fleet kernel daemon.

    Coordinates all subsystems and provides external interface.
    Nothing is persisted: a restart re-scans and re-adopts the fleet.
    """

    def __init__(
        self,
        host: HostEnvironment,
        config: Optional[KernelConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.host = host
        self.config = config or KernelConfig()

        # Initialize subsystems
        self.ledger = CapacityLedger()
        self.scanner = TopologyScanner(host)
        self.access = AccessController(
            host,
            openers=self.config.access.to_openers(),
            retry=self.config.access.to_retry(),
            clock=clock,
        )
        self.observer = NetworkObserver(
            host,
            self.ledger,
            scanner=self.scanner,
            access=self.access,
            poll_interval_sec=self.config.scan.poll_interval_sec,
            root=self.config.scan.root,
        )
        self.scheduler = TaskScheduler(self.ledger, host)
        self.fleet = FleetManager(host, self.ledger, self.config.fleet.to_policy())
        self.chains = ChainSequencer(
            self.scheduler,
            host,
            poll_interval=self.config.chain.poll_interval_sec,
            retry_delay=self.config.chain.retry_delay_sec,
            max_attempts=self.config.chain.max_attempts,
            sleep=sleep,
            clock=clock,
        )

        self._register_home()
        self.fleet.adopt()

        # State
        self._running = False
        self._start_time: Optional[float] = None
        self._shutdown_event = threading.Event()
        self._reaper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def _register_home(self) -> None:
        home = self.host.home
        total = self.host.node_info(home).total_capacity
        reserved = self.config.scheduler.reserve_for(total)
        if not self.config.scheduler.use_home:
            reserved = total
        self.ledger.register(Node(
            name=home,
            kind=NodeKind.HOME,
            total_capacity=total,
            access=AccessState.AUTHORIZED,
            reserved=min(reserved, total),
        ))
        self.access.mark_authorized(home)
        logger.debug(f"Home node {home}: {total} total, {reserved} reserved")

    def start(self) -> None:
        """Start the kernel daemon."""
        if self._running:
            logger.warning("Daemon already running")
            return

        logger.info("Starting fleet kernel...")

        self.observer.start()
        if self.config.fleet.enabled:
            self.fleet.start()

        self._stop.clear()
        self._reaper = threading.Thread(
            target=self._reap_loop,
            daemon=True,
            name="PlacementReaper",
        )
        self._reaper.start()

        self._running = True
        self._start_time = time.time()
        logger.info("Fleet kernel started")

    def stop(self) -> None:
        """Stop the kernel daemon."""
        if not self._running:
            return

        logger.info("Stopping fleet kernel...")

        self._stop.set()
        if self._reaper:
            self._reaper.join(timeout=5.0)
        self.fleet.stop()
        self.observer.stop()

        self._running = False
        logger.info("Fleet kernel stopped")

    def run(self) -> None:
        """Run the daemon until signaled to stop."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.start()
        self._shutdown_event.wait()
        self.stop()

    def shutdown(self) -> None:
        """Ask a running `run()` to return."""
        self._shutdown_event.set()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutdown_event.set()

    def _reap_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.scheduler.reap()
            except Exception as e:
                logger.exception(f"Reap error: {e}")
            self._stop.wait(timeout=self.config.chain.poll_interval_sec)

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    def scan(self) -> Observation:
        """Run one discovery and authorization pass now."""
        return self.observer.observe()

    def schedule(self, workload: Workload, launch: bool = True) -> ScheduleResult:
        """Place a workload, and start it unless `launch` is False."""
        if launch:
            return self.scheduler.launch(workload)
        return self.scheduler.schedule(workload)

    def run_chain(
        self,
        stages: Sequence[StageSpec],
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> ChainRun:
        """Run a chain to completion on the calling thread."""
        return self.chains.run_chain(stages, cancel=cancel, timeout=timeout)

    def tick(self) -> TickResult:
        """Force one fleet manager pass."""
        return self.fleet.tick()

    def reap(self) -> int:
        return len(self.scheduler.reap())

    def get_status(self) -> Dict[str, Any]:
        """Get daemon status."""
        uptime = time.time() - self._start_time if self._start_time else 0
        last_decline = self.scheduler.last_decline

        return {
            "running": self._running,
            "uptime_sec": uptime,
            "nodes": self.ledger.snapshot(),
            "waiting": {
                node: f"waiting on access to {node}: {reason}"
                for node, reason in self.access.waiting().items()
            },
            "last_decline": last_decline.describe() if last_decline else None,
            "chains": self.chains.status(),
            "ledger": self.ledger.get_stats(),
            "observer": self.observer.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "fleet": self.fleet.get_stats(),
            "chain": self.chains.get_stats(),
        }


def build_daemon(
    snapshot_path: Path,
    config: Optional[KernelConfig] = None,
) -> KernelDaemon:
    """Daemon over a simulated host loaded from a snapshot file."""
    config = config or KernelConfig()
    snapshot = load_snapshot(snapshot_path)
    if snapshot.max_tier is not None:
        config.fleet.max_tier = snapshot.max_tier
    host = SimulatedHost.from_snapshot(snapshot)
    return KernelDaemon(host, config)


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Fleet kernel daemon")
    parser.add_argument(
        "--snapshot",
        type=Path,
        required=True,
        help="World snapshot YAML for the simulated host",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Kernel configuration YAML",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides the config file)",
    )

    args = parser.parse_args(argv)
    config = load_kernel_config(args.config)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level or config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    daemon = build_daemon(args.snapshot, config)
    daemon.run()


if __name__ == "__main__":
    main()
