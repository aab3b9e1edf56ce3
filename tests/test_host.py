"""
Tests for the simulated host.
"""

import pytest

from fleet_kernel.errors import HostError, LaunchError, PurchaseError
from fleet_kernel.host import SimulatedHost, load_snapshot


class TestSimulatedHost:
    """Tests for the in-memory world."""

    def test_from_yaml(self, snapshot_file):
        host = SimulatedHost.from_yaml(snapshot_file)
        assert sorted(host.list_neighbors("home")) == ["foodnstuff", "n00dles"]
        assert host.node_info("phantasy").required_port_count == 2
        assert load_snapshot(snapshot_file).funds == 0

    def test_unknown_neighbor_rejected(self, world_data):
        from fleet_kernel.models.snapshot import WorldSnapshot
        world_data["nodes"][0]["neighbors"].append("atlantis")
        with pytest.raises(HostError):
            SimulatedHost.from_snapshot(WorldSnapshot(**world_data))

    def test_launch_requires_access(self, world):
        with pytest.raises(LaunchError):
            world.launch_process("phantasy", "hack.js", 1)

    def test_launch_out_of_memory(self, world):
        with pytest.raises(LaunchError):
            world.launch_process("home", "hack.js", 100)

    def test_process_lifetime(self, world):
        world.register_script("tick.js", 1.0, lifetime=1)
        handle = world.launch_process("home", "tick.js", 2)
        assert world.is_process_live(handle)
        assert not world.is_process_live(handle)
        assert world.used_ram("home") == 0

    def test_kill(self, world):
        handle = world.launch_process("home", "hack.js", 1)
        assert world.kill_process(handle)
        assert not world.kill_process(handle)

    def test_purchase_rules(self, world):
        with pytest.raises(PurchaseError):
            world.purchase_node("pserv", 32)
        world.set_funds(32)
        assert world.purchase_node("pserv", 32) == "pserv"
        assert world.current_funds() == 0
        assert world.is_purchased("pserv")
        with pytest.raises(PurchaseError):
            world.purchase_node("pserv", 32)

    def test_upgrade_rules(self, world):
        world.set_funds(1000)
        world.purchase_node("pserv", 32)
        with pytest.raises(PurchaseError):
            world.upgrade_node("pserv", 16)
        with pytest.raises(PurchaseError):
            world.upgrade_node("n00dles", 64)
        world.upgrade_node("pserv", 64)
        assert world.node_info("pserv").total_capacity == 64
