"""
Node Models
===========

Compute nodes: the home node, purchased nodes and remote nodes found on
the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any
from enum import Enum

from fleet_kernel.errors import CapacityExceeded, InvalidTransition


class NodeKind(str, Enum):
    """Where a node comes from."""
    HOME = "home"
    PURCHASED = "purchased"
    REMOTE = "remote"


class AccessState(str, Enum):
    """Access rights we hold on a node."""
    UNKNOWN = "unknown"
    LOCKED = "locked"
    AUTHORIZED = "authorized"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def advance(self, new: AccessState) -> AccessState:
        """Return the new state, refusing to move backwards."""
        if new.rank < self.rank:
            raise InvalidTransition(f"cannot move from {self.value} to {new.value}")
        return new


_ACCESS_RANK = {
    AccessState.UNKNOWN: 0,
    AccessState.LOCKED: 1,
    AccessState.AUTHORIZED: 2,
}


@dataclass
class NodeInfo:
    """What the host reports about a node."""
    total_capacity: float = 0.0
    required_auth_level: int = 0
    required_port_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_capacity": self.total_capacity,
            "required_auth_level": self.required_auth_level,
            "required_port_count": self.required_port_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NodeInfo:
        return cls(
            total_capacity=data.get("total_capacity", 0.0),
            required_auth_level=data.get("required_auth_level", 0),
            required_port_count=data.get("required_port_count", 0),
        )


@dataclass
class Node:
    """A ledger entry: one node and its committed memory."""
    name: str
    kind: NodeKind = NodeKind.REMOTE
    total_capacity: float = 0.0
    committed: float = 0.0
    access: AccessState = AccessState.UNKNOWN

    # Held back from scheduling (home node only)
    reserved: float = 0.0

    def __post_init__(self):
        if self.total_capacity < 0:
            raise ValueError(f"{self.name}: negative capacity {self.total_capacity}")
        if self.committed > self.total_capacity:
            raise CapacityExceeded(self.name, self.committed, self.total_capacity)

    @property
    def free(self) -> float:
        """Capacity available to the scheduler."""
        return max(0.0, self.total_capacity - self.reserved - self.committed)

    def is_authorized(self) -> bool:
        return self.access == AccessState.AUTHORIZED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "total_capacity": self.total_capacity,
            "committed": self.committed,
            "access": self.access.value,
            "reserved": self.reserved,
            "free": self.free,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Node:
        kind = data.get("kind", "remote")
        if isinstance(kind, str):
            kind = NodeKind(kind)
        access = data.get("access", "unknown")
        if isinstance(access, str):
            access = AccessState(access)
        return cls(
            name=data["name"],
            kind=kind,
            total_capacity=data.get("total_capacity", 0.0),
            committed=data.get("committed", 0.0),
            access=access,
            reserved=data.get("reserved", 0.0),
        )


def home_reserve(total: float) -> float:
    """
    Capacity to keep free on the home node.

    Large homes hold back enough room for manager scripts; small ones
    hold nothing back.
    """
    if total >= 512:
        return 256.0
    if total >= 256:
        return 64.0
    return 0.0
