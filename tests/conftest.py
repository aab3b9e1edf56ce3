"""
Fleet Kernel Test Configuration
===============================

Shared fixtures: a small simulated network, a fake clock for the polling
loops, and a reproducible random generator for the fuzz tests.
"""

import pytest
import numpy as np
import yaml
import sys
import os

# Add parent path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from fleet_kernel.host import SimulatedHost
from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.node import Node, AccessState



def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "concurrency: tests that start real threads")


# =============================================================================
# World
# =============================================================================

WORLD = {
    "home": "home",
    "home_capacity": 64,
    "funds": 0,
    "skill": 1,
    "tools": ["ssh"],
    "cost_per_unit": 1.0,
    "max_purchased": 25,
    "script_ram": {"hack.js": 1.7, "grow.js": 1.75, "weaken.js": 1.75},
    "nodes": [
        {"name": "n00dles", "capacity": 4, "required_auth_level": 1,
         "neighbors": ["home", "CSEC"]},
        {"name": "foodnstuff", "capacity": 16, "required_auth_level": 1,
         "neighbors": ["home", "phantasy", "zer0"]},
        {"name": "CSEC", "capacity": 8, "required_auth_level": 1,
         "required_port_count": 1, "open_ports": ["ssh"]},
        {"name": "phantasy", "capacity": 32, "required_auth_level": 1,
         "required_port_count": 2, "open_ports": ["ssh", "ftp"]},
        {"name": "zer0", "capacity": 32, "required_auth_level": 5},
    ],
}


@pytest.fixture
def world_data():
    """Snapshot dictionary of the test network."""
    return yaml.safe_load(yaml.safe_dump(WORLD))


@pytest.fixture
def snapshot_file(tmp_path, world_data):
    """The test network written as a snapshot YAML file."""
    path = tmp_path / "world.yaml"
    path.write_text(yaml.safe_dump(world_data))
    return path


@pytest.fixture
def world(world_data):
    """
    Simulated host:

        home - n00dles - CSEC (1 port)
          \\
           foodnstuff - phantasy (2 ports)
                     \\- zer0 (skill 5)
    """
    from fleet_kernel.models.snapshot import WorldSnapshot
    return SimulatedHost.from_snapshot(WorldSnapshot(**world_data))


# =============================================================================
# Time
# =============================================================================

class FakeClock:
    """Manual clock; `sleep` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Components
# =============================================================================

@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def ledger():
    return CapacityLedger()


def authorized_node(name: str, total: float, **kwargs) -> Node:
    """Ledger entry that is ready for scheduling."""
    return Node(name=name, total_capacity=total, access=AccessState.AUTHORIZED, **kwargs)


@pytest.fixture
def make_node():
    return authorized_node
