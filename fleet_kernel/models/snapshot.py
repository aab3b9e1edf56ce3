"""
Pydantic schema for world snapshot files.

A snapshot describes a static network, the player's funds and skill, and
the purchased nodes already owned.  The simulated host and the CLI load
these from YAML.
"""

from __future__ import annotations

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class NodeRecord(BaseModel):
    """One node in the snapshot."""
    name: str
    capacity: float = Field(0.0, description="Total memory of the node")
    required_auth_level: int = Field(0, description="Skill needed to elevate")
    required_port_count: int = Field(0, description="Ports to open before elevating")
    neighbors: List[str] = Field(default_factory=list)
    open_ports: List[str] = Field(
        default_factory=list, description="Port tools that work against this node"
    )
    authorized: bool = False


class PurchasedRecord(BaseModel):
    """A purchased node already owned."""
    name: str
    capacity: int


class WorldSnapshot(BaseModel):
    """Complete static description of a host world."""
    home: str = "home"
    home_capacity: float = Field(64.0, description="Total memory on the home node")
    funds: float = 0.0
    skill: int = Field(1, description="Caller's effective authorization level")
    tools: List[str] = Field(
        default_factory=list, description="Port tools the caller owns"
    )
    nodes: List[NodeRecord] = Field(default_factory=list)
    purchased: List[PurchasedRecord] = Field(default_factory=list)
    script_ram: Dict[str, float] = Field(
        default_factory=dict, description="Memory per thread of each script"
    )
    cost_per_unit: float = Field(55000.0, description="Purchase price per memory unit")
    max_purchased: int = 25
    max_tier: Optional[int] = None
