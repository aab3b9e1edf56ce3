"""Data models for the fleet kernel."""

from fleet_kernel.models.node import Node, NodeKind, NodeInfo, AccessState, home_reserve
from fleet_kernel.models.workload import Workload, Placement, Declined, DeclineReason
from fleet_kernel.models.fleet import FleetEntry, TickResult, node_name, valid_tiers
from fleet_kernel.models.chain import ChainStage, ChainRun, StageState
from fleet_kernel.models.snapshot import WorldSnapshot, NodeRecord, PurchasedRecord

__all__ = [
    "Node", "NodeKind", "NodeInfo", "AccessState", "home_reserve",
    "Workload", "Placement", "Declined", "DeclineReason",
    "FleetEntry", "TickResult", "node_name", "valid_tiers",
    "ChainStage", "ChainRun", "StageState",
    "WorldSnapshot", "NodeRecord", "PurchasedRecord",
]
