"""
Tests for the topology scanner.
"""

import pytest

from fleet_kernel.host import SimulatedHost
from fleet_kernel.topology import TopologyScanner


@pytest.fixture
def cycle_host():
    """A <-> B <-> C <-> A, unconnected to home."""
    host = SimulatedHost()
    for name in ("A", "B", "C"):
        host.add_node(name, capacity=8)
    host.link("A", "B")
    host.link("B", "C")
    host.link("C", "A")
    return host


class TestDiscover:
    """Tests for breadth-first discovery."""

    def test_cycle_visits_each_node_once(self, cycle_host):
        """A cyclic graph terminates with every node visited exactly once."""
        scanner = TopologyScanner(cycle_host)
        order = scanner.discover_order("A")
        assert sorted(order) == ["A", "B", "C"]
        assert len(order) == len(set(order))
        assert scanner.discover("A") == {"A", "B", "C"}

    def test_discover_is_deterministic(self, world):
        scanner = TopologyScanner(world)
        assert scanner.discover_order("home") == scanner.discover_order("home")

    def test_breadth_first_order(self, world):
        """Neighbours of home come before nodes two hops out."""
        order = TopologyScanner(world).discover_order("home")
        assert order[0] == "home"
        assert set(order[1:3]) == {"n00dles", "foodnstuff"}
        assert set(order[3:]) == {"CSEC", "phantasy", "zer0"}

    def test_remote_nodes_exclude_root(self, world):
        remote = TopologyScanner(world).remote_nodes("home")
        assert remote == {"n00dles", "foodnstuff", "CSEC", "phantasy", "zer0"}

    def test_empty_root(self, world):
        """A blank root still yields a singleton."""
        scanner = TopologyScanner(world)
        assert scanner.discover("") == {""}
        assert scanner.discover_order("") == [""]
        assert scanner.remote_nodes("") == set()

    def test_unknown_root(self, world):
        assert TopologyScanner(world).discover("atlantis") == {"atlantis"}

    def test_isolated_root(self):
        host = SimulatedHost()
        assert TopologyScanner(host).discover("home") == {"home"}

    def test_purchased_nodes_skipped(self, world):
        """Purchased nodes are supplied by the fleet manager, not the scan."""
        world.set_funds(1000)
        world.purchase_node("pserv", 32)
        world.link("home", "pserv")
        assert "pserv" not in TopologyScanner(world).discover("home")

    def test_custom_exclusion(self, world):
        scanner = TopologyScanner(world, exclude=lambda n: n == "foodnstuff")
        assert scanner.remote_nodes("home") == {"n00dles", "CSEC"}


class TestShortestPath:
    """Tests for routing between nodes."""

    def test_path_to_two_hop_node(self, world):
        path = TopologyScanner(world).shortest_path("home", "CSEC")
        assert path == ["home", "n00dles", "CSEC"]

    def test_path_to_self(self, world):
        assert TopologyScanner(world).shortest_path("home", "home") == ["home"]

    def test_path_in_cycle_is_shortest(self, cycle_host):
        assert TopologyScanner(cycle_host).shortest_path("A", "C") == ["A", "C"]

    def test_unreachable(self, world, cycle_host):
        assert TopologyScanner(cycle_host).shortest_path("A", "home") == []
        assert TopologyScanner(world).shortest_path("home", "nowhere") == []
