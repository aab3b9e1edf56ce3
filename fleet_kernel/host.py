"""
Host Environment
================

The capabilities the kernel consumes from the environment it automates:
network relation, node facts, port tools, process control, funds and node
purchases.  `HostEnvironment` is the interface; `SimulatedHost` is an
in-memory world used by the tests and the CLI.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any, Sequence

import yaml

from fleet_kernel.errors import HostError, LaunchError, PurchaseError
from fleet_kernel.models.node import NodeInfo
from fleet_kernel.models.snapshot import WorldSnapshot

logger = logging.getLogger(__name__)


class HostEnvironment(ABC):
    """Abstract host.  Every method may be called from any kernel thread."""

    home: str = "home"

    # Network
    @abstractmethod
    def list_neighbors(self, node: str) -> List[str]: ...

    @abstractmethod
    def node_info(self, node: str) -> NodeInfo: ...

    @abstractmethod
    def is_purchased(self, node: str) -> bool: ...

    # Access
    @abstractmethod
    def skill_level(self) -> int: ...

    @abstractmethod
    def has_access(self, node: str) -> bool: ...

    @abstractmethod
    def try_open_port(self, tool: str, node: str) -> bool: ...

    @abstractmethod
    def elevate_access(self, node: str) -> None: ...

    # Processes
    @abstractmethod
    def launch_process(
        self, node: str, script: str, threads: int, args: Sequence[Any] = ()
    ) -> Any: ...

    @abstractmethod
    def is_process_live(self, handle: Any) -> bool: ...

    @abstractmethod
    def kill_process(self, handle: Any) -> bool: ...

    # Fleet
    @abstractmethod
    def current_funds(self) -> float: ...

    @abstractmethod
    def purchase_cost(self, capacity: int) -> float: ...

    @abstractmethod
    def purchase_node(self, name: str, capacity: int) -> str: ...

    @abstractmethod
    def upgrade_node(self, name: str, capacity: int) -> str: ...

    @abstractmethod
    def purchased_nodes(self) -> List[str]: ...

    @abstractmethod
    def max_purchased(self) -> int: ...


@dataclass
class _SimNode:
    name: str
    capacity: float
    required_auth_level: int = 0
    required_port_count: int = 0
    neighbors: List[str] = field(default_factory=list)
    open_ports: List[str] = field(default_factory=list)
    opened: set = field(default_factory=set)
    authorized: bool = False
    purchased: bool = False
    used: float = 0.0


@dataclass
class _SimProcess:
    pid: int
    node: str
    script: str
    threads: int
    ram: float
    args: tuple
    live: bool = True
    polls_left: Optional[int] = None


class SimulatedHost(HostEnvironment):
    """
    In-memory host world.

    Processes run until `finish()` is called, or until they have been
    polled `lifetime` times when the script has a lifetime configured.
    """

    def __init__(
        self,
        home: str = "home",
        home_capacity: float = 64.0,
        funds: float = 0.0,
        skill: int = 1,
        tools: Optional[Sequence[str]] = None,
        script_ram: Optional[Dict[str, float]] = None,
        cost_per_unit: float = 55000.0,
        max_purchased: int = 25,
    ):
        self._lock = threading.RLock()
        self.home = home
        self._nodes: Dict[str, _SimNode] = {
            home: _SimNode(name=home, capacity=home_capacity, authorized=True),
        }
        self._funds = funds
        self._skill = skill
        self._tools = set(tools or [])
        self._script_ram: Dict[str, float] = dict(script_ram or {})
        self._lifetimes: Dict[str, int] = {}
        self._cost_per_unit = cost_per_unit
        self._max_purchased = max_purchased
        self._processes: Dict[int, _SimProcess] = {}
        self._pids = itertools.count(1)

        # Call counters, handy for assertions
        self.launches: List[_SimProcess] = []
        self.port_attempts: List[tuple] = []

    # ─────────────────────────────────────────────────────────────
    # World building
    # ─────────────────────────────────────────────────────────────

    def add_node(
        self,
        name: str,
        capacity: float = 0.0,
        required_auth_level: int = 0,
        required_port_count: int = 0,
        open_ports: Optional[Sequence[str]] = None,
        authorized: bool = False,
    ) -> None:
        with self._lock:
            self._nodes[name] = _SimNode(
                name=name,
                capacity=capacity,
                required_auth_level=required_auth_level,
                required_port_count=required_port_count,
                open_ports=list(open_ports or []),
                authorized=authorized,
            )

    def link(self, a: str, b: str) -> None:
        """Add an undirected edge."""
        with self._lock:
            if b not in self._nodes[a].neighbors:
                self._nodes[a].neighbors.append(b)
            if a not in self._nodes[b].neighbors:
                self._nodes[b].neighbors.append(a)

    def set_funds(self, funds: float) -> None:
        with self._lock:
            self._funds = funds

    def set_skill(self, skill: int) -> None:
        with self._lock:
            self._skill = skill

    def grant_tool(self, tool: str) -> None:
        with self._lock:
            self._tools.add(tool)

    def register_script(self, script: str, ram: float, lifetime: Optional[int] = None) -> None:
        with self._lock:
            self._script_ram[script] = ram
            if lifetime is not None:
                self._lifetimes[script] = lifetime

    def script_ram(self, script: str) -> float:
        """Memory per thread of a script (the external oracle)."""
        with self._lock:
            if script not in self._script_ram:
                raise HostError(f"unknown script: {script}")
            return self._script_ram[script]

    def finish(self, handle: int) -> None:
        """Terminate a simulated process."""
        with self._lock:
            proc = self._processes.get(handle)
            if proc and proc.live:
                self._end(proc)

    def _end(self, proc: _SimProcess) -> None:
        proc.live = False
        node = self._nodes.get(proc.node)
        if node is not None:
            node.used = max(0.0, node.used - proc.ram)

    def used_ram(self, node: str) -> float:
        with self._lock:
            return self._nodes[node].used

    def live_processes(self, node: Optional[str] = None) -> List[_SimProcess]:
        with self._lock:
            return [
                p for p in self._processes.values()
                if p.live and (node is None or p.node == node)
            ]

    @classmethod
    def from_snapshot(cls, snapshot: WorldSnapshot) -> SimulatedHost:
        host = cls(
            home=snapshot.home,
            home_capacity=snapshot.home_capacity,
            funds=snapshot.funds,
            skill=snapshot.skill,
            tools=snapshot.tools,
            script_ram=snapshot.script_ram,
            cost_per_unit=snapshot.cost_per_unit,
            max_purchased=snapshot.max_purchased,
        )
        for record in snapshot.nodes:
            host.add_node(
                record.name,
                capacity=record.capacity,
                required_auth_level=record.required_auth_level,
                required_port_count=record.required_port_count,
                open_ports=record.open_ports,
                authorized=record.authorized,
            )
        for record in snapshot.nodes:
            for neighbor in record.neighbors:
                if neighbor not in host._nodes:
                    raise HostError(f"{record.name} links to unknown node {neighbor}")
                host.link(record.name, neighbor)
        for record in snapshot.purchased:
            host._nodes[record.name] = _SimNode(
                name=record.name,
                capacity=record.capacity,
                authorized=True,
                purchased=True,
            )
        return host

    @classmethod
    def from_yaml(cls, path: Path) -> SimulatedHost:
        return cls.from_snapshot(load_snapshot(path))

    # ─────────────────────────────────────────────────────────────
    # HostEnvironment
    # ─────────────────────────────────────────────────────────────

    def _node(self, name: str) -> _SimNode:
        node = self._nodes.get(name)
        if node is None:
            raise HostError(f"no such node: {name}")
        return node

    def list_neighbors(self, node: str) -> List[str]:
        with self._lock:
            if node not in self._nodes:
                return []
            return list(self._nodes[node].neighbors)

    def node_info(self, node: str) -> NodeInfo:
        with self._lock:
            n = self._node(node)
            return NodeInfo(
                total_capacity=n.capacity,
                required_auth_level=n.required_auth_level,
                required_port_count=n.required_port_count,
            )

    def is_purchased(self, node: str) -> bool:
        with self._lock:
            n = self._nodes.get(node)
            return n is not None and n.purchased

    def skill_level(self) -> int:
        with self._lock:
            return self._skill

    def has_access(self, node: str) -> bool:
        with self._lock:
            return self._node(node).authorized

    def try_open_port(self, tool: str, node: str) -> bool:
        with self._lock:
            self.port_attempts.append((tool, node))
            n = self._node(node)
            if tool not in self._tools or tool not in n.open_ports:
                return False
            n.opened.add(tool)
            return True

    def elevate_access(self, node: str) -> None:
        with self._lock:
            n = self._node(node)
            if len(n.opened) < n.required_port_count:
                raise HostError(f"{node}: not enough open ports")
            if self._skill < n.required_auth_level:
                raise HostError(f"{node}: skill {self._skill} below {n.required_auth_level}")
            n.authorized = True

    def launch_process(
        self, node: str, script: str, threads: int, args: Sequence[Any] = ()
    ) -> int:
        with self._lock:
            n = self._nodes.get(node)
            if n is None:
                raise LaunchError(f"no such node: {node}")
            if not n.authorized:
                raise LaunchError(f"no access to {node}")
            if script not in self._script_ram:
                raise LaunchError(f"script not found: {script}")
            ram = threads * self._script_ram[script]
            if n.used + ram > n.capacity:
                raise LaunchError(f"{node}: out of memory for {script} x{threads}")
            n.used += ram
            proc = _SimProcess(
                pid=next(self._pids),
                node=node,
                script=script,
                threads=threads,
                ram=ram,
                args=tuple(args),
                polls_left=self._lifetimes.get(script),
            )
            self._processes[proc.pid] = proc
            self.launches.append(proc)
            return proc.pid

    def is_process_live(self, handle: int) -> bool:
        with self._lock:
            proc = self._processes.get(handle)
            if proc is None or not proc.live:
                return False
            if proc.polls_left is not None:
                if proc.polls_left <= 0:
                    self._end(proc)
                    return False
                proc.polls_left -= 1
            return True

    def kill_process(self, handle: int) -> bool:
        with self._lock:
            proc = self._processes.get(handle)
            if proc is None or not proc.live:
                return False
            self._end(proc)
            return True

    def current_funds(self) -> float:
        with self._lock:
            return self._funds

    def purchase_cost(self, capacity: int) -> float:
        return capacity * self._cost_per_unit

    def purchase_node(self, name: str, capacity: int) -> str:
        with self._lock:
            if name in self._nodes:
                raise PurchaseError(f"name taken: {name}")
            if len(self.purchased_nodes()) >= self._max_purchased:
                raise PurchaseError("purchased node limit reached")
            cost = self.purchase_cost(capacity)
            if cost > self._funds:
                raise PurchaseError(f"cannot afford {capacity} ({cost:.0f} > {self._funds:.0f})")
            self._funds -= cost
            self._nodes[name] = _SimNode(
                name=name, capacity=capacity, authorized=True, purchased=True
            )
            logger.debug(f"Simulated purchase of {name} ({capacity})")
            return name

    def upgrade_node(self, name: str, capacity: int) -> str:
        with self._lock:
            n = self._nodes.get(name)
            if n is None or not n.purchased:
                raise PurchaseError(f"not a purchased node: {name}")
            if capacity <= n.capacity:
                raise PurchaseError(f"{name}: {capacity} is not an upgrade")
            cost = self.purchase_cost(capacity)
            if cost > self._funds:
                raise PurchaseError(f"cannot afford upgrade of {name}")
            self._funds -= cost
            # Replacing the node kills everything running on it.
            for proc in self.live_processes(name):
                self._end(proc)
            n.capacity = capacity
            n.used = 0.0
            return name

    def purchased_nodes(self) -> List[str]:
        with self._lock:
            return [n.name for n in self._nodes.values() if n.purchased]

    def max_purchased(self) -> int:
        return self._max_purchased


def load_snapshot(path: Path) -> WorldSnapshot:
    """Read and validate a world snapshot YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return WorldSnapshot(**data)
