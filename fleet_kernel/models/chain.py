"""
Chain Models
============

Ordered stages of a multi-stage automation chain.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum

from fleet_kernel.models.workload import Workload


class StageState(str, Enum):
    """Execution states of a chain stage."""
    PENDING = "pending"
    WAITING_CAPACITY = "waiting_capacity"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ChainStage:
    """Launch a workload, then wait for its process to exit."""
    name: str
    workload: Workload

    state: StageState = StageState.PENDING
    attempts: int = 0
    placement_id: Optional[str] = None
    node: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.state in (StageState.DONE, StageState.FAILED, StageState.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "workload": self.workload.to_dict(),
            "state": self.state.value,
            "attempts": self.attempts,
            "placement_id": self.placement_id,
            "node": self.node,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }


@dataclass
class ChainRun:
    """Outcome of one run of a chain."""
    stages: List[ChainStage]
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def completed(self) -> bool:
        return all(s.state == StageState.DONE for s in self.stages)

    @property
    def failed_stage(self) -> Optional[ChainStage]:
        for stage in self.stages:
            if stage.state in (StageState.FAILED, StageState.CANCELLED):
                return stage
        return None

    def current(self) -> Optional[ChainStage]:
        """First stage that has not finished."""
        for stage in self.stages:
            if not stage.is_terminal():
                return stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "completed": self.completed,
        }
