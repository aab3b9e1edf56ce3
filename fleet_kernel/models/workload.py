"""
Workload Models
===============

Workloads describe what should run; placements record where it runs.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum


class DeclineReason(str, Enum):
    """Why a workload could not be placed."""
    INSUFFICIENT_CAPACITY = "insufficient_capacity"
    NO_CANDIDATES = "no_candidates"
    LAUNCH_FAILED = "launch_failed"


@dataclass(frozen=True)
class Workload:
    """A script to run against a target, with a thread request."""
    target: str
    script: str
    threads: int
    ram_per_thread: float
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not isinstance(self.threads, int) or self.threads < 1:
            raise ValueError(f"threads must be a positive integer, got {self.threads!r}")
        if self.ram_per_thread <= 0:
            raise ValueError(f"ram_per_thread must be positive, got {self.ram_per_thread!r}")

    def ram_for(self, threads: int) -> float:
        """Memory needed to run the script with the given thread count."""
        return threads * self.ram_per_thread

    def with_threads(self, threads: int) -> Workload:
        """Same workload with a different thread request."""
        return Workload(self.target, self.script, threads, self.ram_per_thread, self.args)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "script": self.script,
            "threads": self.threads,
            "ram_per_thread": self.ram_per_thread,
            "args": list(self.args),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Workload:
        return cls(
            target=data["target"],
            script=data["script"],
            threads=int(data.get("threads", 1)),
            ram_per_thread=float(data["ram_per_thread"]),
            args=tuple(data.get("args", [])),
        )


@dataclass
class Placement:
    """An admitted assignment of a workload to a node."""
    node: str
    workload: Workload
    threads: int
    placement_id: str = field(default_factory=lambda: f"pl-{uuid.uuid4().hex[:8]}")
    handle: Optional[Any] = None
    created_at: float = field(default_factory=time.time)
    released: bool = False
    # Set when the node was upgraded or removed under the placement
    invalidated: bool = False

    @property
    def ram(self) -> float:
        return self.workload.ram_for(self.threads)

    def __bool__(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placement_id": self.placement_id,
            "node": self.node,
            "workload": self.workload.to_dict(),
            "threads": self.threads,
            "ram": self.ram,
            "handle": self.handle,
            "created_at": self.created_at,
            "released": self.released,
            "invalidated": self.invalidated,
        }


@dataclass
class Declined:
    """A workload the scheduler could not place. Falsy."""
    workload: Workload
    reason: DeclineReason = DeclineReason.INSUFFICIENT_CAPACITY
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    def __bool__(self) -> bool:
        return False

    def is_transient(self) -> bool:
        """Whether retrying later can succeed."""
        return self.reason != DeclineReason.LAUNCH_FAILED

    def describe(self) -> str:
        text = f"declined: {self.reason.value.replace('_', ' ')}"
        if self.detail:
            text += f" ({self.detail})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workload": self.workload.to_dict(),
            "reason": self.reason.value,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


def total_threads(placements: List[Placement]) -> int:
    """Threads granted across a group of placements."""
    return sum(p.threads for p in placements)
