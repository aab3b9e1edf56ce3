"""
Fleet Models
============

Purchased nodes, their naming scheme and the capacity tiers they come in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

DEFAULT_PREFIX = "pserv"
MIN_TIER = 32
MAX_TIER = 2 ** 20


def node_name(prefix: str, index: int) -> str:
    """
    Deterministic name of the purchased node at a sequence index.

    Index 0 carries the bare prefix; index k carries "<prefix>-k".
    """
    if index < 0:
        raise ValueError(f"negative fleet index: {index}")
    if index == 0:
        return prefix
    return f"{prefix}-{index}"


def parse_index(prefix: str, name: str) -> Optional[int]:
    """Inverse of node_name; None if the name is not one of ours."""
    if name == prefix:
        return 0
    head = f"{prefix}-"
    if not name.startswith(head):
        return None
    tail = name[len(head):]
    if not tail.isdigit():
        return None
    index = int(tail)
    return index if index > 0 else None


def is_power_of_two(n: float) -> bool:
    n = int(n)
    return n > 0 and (n & (n - 1)) == 0


def valid_tiers(min_tier: int = MIN_TIER, max_tier: int = MAX_TIER) -> List[int]:
    """Capacities a purchased node may have, ascending powers of two."""
    if not is_power_of_two(min_tier) or not is_power_of_two(max_tier):
        raise ValueError(f"tiers must be powers of two: {min_tier}, {max_tier}")
    tiers = []
    tier = min_tier
    while tier <= max_tier:
        tiers.append(tier)
        tier *= 2
    return tiers


@dataclass
class FleetEntry:
    """One purchased node."""
    index: int
    name: str
    capacity: int
    purchased_at: float = field(default_factory=time.time)
    upgrades: int = 0

    def next_tier(self) -> int:
        """Next power of two above the current capacity."""
        return 1 << int(self.capacity).bit_length()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "capacity": self.capacity,
            "purchased_at": self.purchased_at,
            "upgrades": self.upgrades,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FleetEntry:
        return cls(
            index=data["index"],
            name=data["name"],
            capacity=data["capacity"],
            purchased_at=data.get("purchased_at", time.time()),
            upgrades=data.get("upgrades", 0),
        )


@dataclass
class TickResult:
    """What one fleet manager tick did."""
    timestamp: float = field(default_factory=time.time)
    purchased: List[str] = field(default_factory=list)
    upgraded: List[str] = field(default_factory=list)
    invalidated: int = 0
    reason: str = ""

    def changed(self) -> bool:
        return bool(self.purchased or self.upgraded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "purchased": self.purchased,
            "upgraded": self.upgraded,
            "invalidated": self.invalidated,
            "reason": self.reason,
        }
