"""
Access Controller
=================

Obtains elevated access on remote nodes.  Port tools are tried in rank
order until enough ports are open; access is then elevated if the
caller's skill meets the node's requirement.  A node that cannot be
opened yet stays locked and is retried after a bounded backoff.
"""

from __future__ import annotations

import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Any

from fleet_kernel.errors import HostError
from fleet_kernel.host import HostEnvironment
from fleet_kernel.models.node import AccessState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortOpener:
    """One port tool.  Strategies are plain data tried in order."""
    name: str
    tool: str

    def open(self, host: HostEnvironment, node: str) -> bool:
        return host.try_open_port(self.tool, node)


def default_openers() -> List[PortOpener]:
    """The five port tools, cheapest first."""
    return [
        PortOpener("brute_ssh", "ssh"),
        PortOpener("ftp_crack", "ftp"),
        PortOpener("relay_smtp", "smtp"),
        PortOpener("http_worm", "http"),
        PortOpener("sql_inject", "sql"),
    ]


@dataclass
class RetryPolicy:
    """Bounded exponential backoff between authorization attempts."""
    initial_sec: float = 5.0
    factor: float = 2.0
    max_sec: float = 300.0

    def next_delay(self, previous: Optional[float]) -> float:
        if previous is None:
            return self.initial_sec
        return min(self.max_sec, previous * self.factor)


@dataclass
class AccessRecord:
    """Per-node authorization bookkeeping."""
    state: AccessState = AccessState.UNKNOWN
    attempts: int = 0
    ports_opened: int = 0
    delay_sec: Optional[float] = None
    next_retry: float = 0.0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "attempts": self.attempts,
            "ports_opened": self.ports_opened,
            "delay_sec": self.delay_sec,
            "next_retry": self.next_retry,
            "reason": self.reason,
        }


class AccessController:
    """
    Per-node access state machine.

    Thread-safe: records protected by RLock.  Host calls happen outside
    the lock.
    """

    def __init__(
        self,
        host: HostEnvironment,
        openers: Optional[List[PortOpener]] = None,
        retry: Optional[RetryPolicy] = None,
        skill: Optional[Callable[[], int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._lock = threading.RLock()
        self.host = host
        self.openers = list(openers) if openers is not None else default_openers()
        self.retry = retry or RetryPolicy()
        self._skill = skill if skill is not None else host.skill_level
        self._clock = clock

        self._records: Dict[str, AccessRecord] = {}

        # Metrics
        self._attempts = 0
        self._authorized = 0

    def _record(self, node: str) -> AccessRecord:
        with self._lock:
            record = self._records.get(node)
            if record is None:
                record = AccessRecord()
                self._records[node] = record
            return record

    def state_of(self, node: str) -> AccessState:
        with self._lock:
            record = self._records.get(node)
            return record.state if record else AccessState.UNKNOWN

    def mark_authorized(self, node: str) -> None:
        """Record access obtained elsewhere (home, purchased nodes)."""
        with self._lock:
            record = self._record(node)
            record.state = record.state.advance(AccessState.AUTHORIZED)
            record.reason = ""

    def try_authorize(self, node: str) -> AccessState:
        """
        Attempt to obtain access to a node.

        Idempotent: an authorized node returns immediately without
        touching the host.  Failure leaves the node locked.
        """
        record = self._record(node)
        if record.state == AccessState.AUTHORIZED:
            return AccessState.AUTHORIZED

        with self._lock:
            self._attempts += 1
            record.attempts += 1

        if self.host.has_access(node):
            self.mark_authorized(node)
            with self._lock:
                self._authorized += 1
            return AccessState.AUTHORIZED

        info = self.host.node_info(node)
        opened = 0
        for opener in self.openers:
            if opened >= info.required_port_count:
                break
            try:
                if opener.open(self.host, node):
                    opened += 1
            except HostError as e:
                logger.debug(f"{opener.name} failed on {node}: {e}")

        skill = self._skill()
        reason = ""
        if opened < info.required_port_count:
            reason = f"ports {opened}/{info.required_port_count}"
        elif skill < info.required_auth_level:
            reason = f"skill {skill} < {info.required_auth_level}"
        else:
            try:
                self.host.elevate_access(node)
            except HostError as e:
                reason = f"elevation refused: {e}"

        with self._lock:
            record.ports_opened = opened
            if not reason:
                record.state = record.state.advance(AccessState.AUTHORIZED)
                record.reason = ""
                record.delay_sec = None
                self._authorized += 1
                logger.info(f"Authorized {node} ({opened} ports opened)")
                return AccessState.AUTHORIZED

            record.state = record.state.advance(AccessState.LOCKED)
            record.reason = reason
            record.delay_sec = self.retry.next_delay(record.delay_sec)
            record.next_retry = self._clock() + record.delay_sec
            logger.debug(f"{node} locked: {reason}, retry in {record.delay_sec:.0f}s")
            return AccessState.LOCKED

    def is_due(self, node: str) -> bool:
        """Whether a node should be attempted now."""
        with self._lock:
            record = self._records.get(node)
            if record is None:
                return True
            if record.state == AccessState.AUTHORIZED:
                return False
            return self._clock() >= record.next_retry

    def authorize_all(self, nodes: Iterable[str]) -> List[str]:
        """Try every due node; return the ones newly authorized."""
        newly = []
        for node in nodes:
            if self.state_of(node) == AccessState.AUTHORIZED or not self.is_due(node):
                continue
            if self.try_authorize(node) == AccessState.AUTHORIZED:
                newly.append(node)
        return newly

    def authorized(self) -> List[str]:
        with self._lock:
            return sorted(
                n for n, r in self._records.items()
                if r.state == AccessState.AUTHORIZED
            )

    def waiting(self) -> Dict[str, str]:
        """Locked nodes and why, e.g. {"phantasy": "ports 1/2"}."""
        with self._lock:
            return {
                n: r.reason for n, r in sorted(self._records.items())
                if r.state == AccessState.LOCKED
            }

    def get_stats(self) -> Dict[str, Any]:
        """Get access controller statistics."""
        with self._lock:
            return {
                "attempts": self._attempts,
                "authorized": self._authorized,
                "locked": len(self.waiting()),
                "openers": [o.name for o in self.openers],
            }
