"""
Task Scheduler
==============

Places workloads on nodes with spare memory.  Candidates are tried with
the most free memory first, so large jobs land early and small jobs fill
the fragments left at the tail.  A workload that fits nowhere is declined;
declining is the normal answer under pressure, not an error.
"""

from __future__ import annotations

import math
import threading
import logging
from typing import Dict, List, Optional, Any, Iterable, Union

from fleet_kernel.errors import HostError
from fleet_kernel.host import HostEnvironment
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.workload import (
    Workload, Placement, Declined, DeclineReason,
)

logger = logging.getLogger(__name__)

ScheduleResult = Union[Placement, Declined]


class TaskScheduler:
    """
    Capacity-aware allocator over the ledger.

    Holds no capacity state of its own: each decision reads the ledger and
    commits through `reserve`.
    """

    def __init__(
        self,
        ledger: CapacityLedger,
        host: Optional[HostEnvironment] = None,
    ):
        self._lock = threading.RLock()
        self.ledger = ledger
        self.host = host

        self._last_decline: Optional[Declined] = None

        # Metrics
        self._scheduled = 0
        self._declined = 0
        self._reaped = 0
        self._launch_failures = 0

    def _order(self, candidates: Optional[Iterable[str]]) -> List[str]:
        """Most free memory first; ties broken by name."""
        names = self.ledger.schedulable() if candidates is None else list(candidates)
        free = {}
        for name in names:
            if name in self.ledger:
                free[name] = self.ledger.free_of(name)
        return sorted(free, key=lambda n: (-free[n], n))

    def _decline(self, workload: Workload, reason: DeclineReason, detail: str = "") -> Declined:
        declined = Declined(workload=workload, reason=reason, detail=detail)
        with self._lock:
            self._declined += 1
            self._last_decline = declined
        logger.debug(f"{workload.script} -> {workload.target}: {declined.describe()}")
        return declined

    def schedule(
        self,
        workload: Workload,
        candidates: Optional[Iterable[str]] = None,
    ) -> ScheduleResult:
        """
        Choose a node and a thread count for a workload.

        The granted thread count is the most the node can afford, clamped
        to the request.  Returns Declined when no candidate fits one thread.
        """
        order = self._order(candidates)
        if not order:
            return self._decline(workload, DeclineReason.NO_CANDIDATES)

        for name in order:
            free = self.ledger.free_of(name)
            threads = min(math.floor(free / workload.ram_per_thread), workload.threads)
            if threads < 1:
                continue
            if not self.ledger.reserve(name, workload.ram_for(threads)):
                # Lost a race against another reservation; try the next node.
                continue
            placement = Placement(node=name, workload=workload, threads=threads)
            self.ledger.commit(placement)
            with self._lock:
                self._scheduled += 1
            logger.debug(
                f"Placed {workload.script} x{threads}/{workload.threads} on {name}"
            )
            return placement

        return self._decline(
            workload,
            DeclineReason.INSUFFICIENT_CAPACITY,
            f"{workload.ram_per_thread} per thread",
        )

    def schedule_spread(
        self,
        workload: Workload,
        candidates: Optional[Iterable[str]] = None,
    ) -> List[Placement]:
        """
        Split a workload across nodes until its thread request is covered.

        Returns the placements made, possibly covering fewer threads than
        requested; an empty list when nothing fits.
        """
        placements: List[Placement] = []
        remaining = workload.threads
        pool = self._order(candidates)
        while remaining > 0 and pool:
            result = self.schedule(workload.with_threads(remaining), pool)
            if not result:
                break
            placements.append(result)
            remaining -= result.threads
            pool = [n for n in pool if n != result.node]
        return placements

    def launch(
        self,
        workload: Workload,
        candidates: Optional[Iterable[str]] = None,
    ) -> ScheduleResult:
        """Schedule a workload and start its process on the chosen node."""
        if self.host is None:
            raise RuntimeError("scheduler has no host to launch on")
        result = self.schedule(workload, candidates)
        if not result:
            return result
        return self._start(result)

    def launch_spread(
        self,
        workload: Workload,
        candidates: Optional[Iterable[str]] = None,
    ) -> List[Placement]:
        """Spread a workload over several nodes and start every part."""
        if self.host is None:
            raise RuntimeError("scheduler has no host to launch on")
        started = []
        for placement in self.schedule_spread(workload, candidates):
            result = self._start(placement)
            if result:
                started.append(result)
        return started

    def _start(self, placement: Placement) -> ScheduleResult:
        workload = placement.workload
        try:
            handle = self.host.launch_process(
                placement.node, workload.script, placement.threads, workload.args
            )
        except HostError as e:
            handle = None
            detail = str(e)
        else:
            detail = "host returned no handle"

        if handle is None:
            self.ledger.release_placement(placement)
            with self._lock:
                self._launch_failures += 1
            logger.warning(f"Launch of {workload.script} on {placement.node} failed: {detail}")
            return self._decline(workload, DeclineReason.LAUNCH_FAILED, detail)

        placement.handle = handle
        logger.info(
            f"Launched {workload.script} x{placement.threads} on {placement.node} "
            f"against {workload.target} (handle {handle})"
        )
        return placement

    def is_live(self, placement: Placement) -> bool:
        """Whether a placement's process is still running."""
        if placement.released:
            return False
        if placement.handle is None or self.host is None:
            return True
        return self.host.is_process_live(placement.handle)

    def finish(self, placement: Placement) -> bool:
        """
        Release a placement whose process has exited.

        Returns False if it was already released (e.g. invalidated by a
        node upgrade).
        """
        if not self.ledger.settle(placement):
            return False
        with self._lock:
            self._reaped += 1
        return True

    def reap(self) -> List[Placement]:
        """Poll every launched placement; free the ones that have exited."""
        reaped = []
        for placement in self.ledger.placements():
            if placement.handle is None:
                continue
            if not self.is_live(placement) and self.finish(placement):
                reaped.append(placement)
        if reaped:
            logger.debug(f"Reaped {len(reaped)} finished placements")
        return reaped

    def live_placements(self) -> List[Placement]:
        return [p for p in self.ledger.placements() if not p.released]

    @property
    def last_decline(self) -> Optional[Declined]:
        with self._lock:
            return self._last_decline

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        with self._lock:
            return {
                "scheduled": self._scheduled,
                "declined": self._declined,
                "reaped": self._reaped,
                "launch_failures": self._launch_failures,
                "last_decline": self._last_decline.describe() if self._last_decline else None,
            }
