"""
Fleet Kernel
============

Orchestration core for a fleet of memory-limited compute nodes.

Architecture:
    TopologyScanner  - Breadth-first discovery of the network
    AccessController - Opens ports and elevates access on remote nodes
    CapacityLedger   - Committed vs. total memory per node, under one lock
    TaskScheduler    - Places workloads on the nodes with most free memory
    FleetManager     - Buys and upgrades purchased nodes under a budget
    ChainSequencer   - Runs stages strictly in order, waiting on each exit

The ledger is the only shared mutable state; every other component reads
it or asks it to change.
"""

from fleet_kernel.errors import (
    KernelError, InvariantViolation, DuplicateNode, UnknownNode,
    DoubleRelease, CapacityExceeded, InvalidTransition,
    HostError, LaunchError, PurchaseError, StarvationError,
)
from fleet_kernel.models.node import Node, NodeKind, NodeInfo, AccessState
from fleet_kernel.models.workload import Workload, Placement, Declined, DeclineReason
from fleet_kernel.models.fleet import FleetEntry, TickResult
from fleet_kernel.models.chain import ChainStage, ChainRun, StageState

from fleet_kernel.host import HostEnvironment, SimulatedHost
from fleet_kernel.topology import TopologyScanner
from fleet_kernel.access import AccessController, PortOpener, RetryPolicy
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.scheduler import TaskScheduler
from fleet_kernel.fleet import FleetManager, FleetPolicy
from fleet_kernel.chain import ChainSequencer
from fleet_kernel.observer import NetworkObserver
from fleet_kernel.config import KernelConfig, load_kernel_config
from fleet_kernel.daemon import KernelDaemon

__all__ = [
    # Errors
    "KernelError", "InvariantViolation", "DuplicateNode", "UnknownNode",
    "DoubleRelease", "CapacityExceeded", "InvalidTransition",
    "HostError", "LaunchError", "PurchaseError", "StarvationError",
    # Models
    "Node", "NodeKind", "NodeInfo", "AccessState",
    "Workload", "Placement", "Declined", "DeclineReason",
    "FleetEntry", "TickResult",
    "ChainStage", "ChainRun", "StageState",
    # Core
    "HostEnvironment", "SimulatedHost",
    "TopologyScanner",
    "AccessController", "PortOpener", "RetryPolicy",
    "CapacityLedger",
    "TaskScheduler",
    "FleetManager", "FleetPolicy",
    "ChainSequencer",
    "NetworkObserver",
    "KernelConfig", "load_kernel_config",
    "KernelDaemon",
]

__version__ = "0.1.0"
