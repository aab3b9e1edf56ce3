"""
Tests for the access controller.

Port tools are tried in rank order and stop as soon as enough ports are
open; elevation needs both the ports and the skill level; failures back
off exponentially up to a bound.
"""

import pytest

from fleet_kernel.access import AccessController, PortOpener, RetryPolicy, default_openers
from fleet_kernel.errors import HostError, InvalidTransition
from fleet_kernel.models.node import AccessState


class TestRetryPolicy:
    """Tests for bounded exponential backoff."""

    def test_growth_and_bound(self):
        policy = RetryPolicy(initial_sec=5, factor=2, max_sec=30)
        delays = []
        delay = None
        for _ in range(6):
            delay = policy.next_delay(delay)
            delays.append(delay)
        assert delays == [5, 10, 20, 30, 30, 30]


class TestOpeners:
    """Tests for the ranked port tool list."""

    def test_default_rank(self):
        assert [o.tool for o in default_openers()] == ["ssh", "ftp", "smtp", "http", "sql"]


class TestTryAuthorize:
    """Tests for the per-node state machine."""

    def test_no_ports_needed(self, world):
        """A node needing no ports and low skill is authorized at once."""
        access = AccessController(world)
        assert access.try_authorize("n00dles") == AccessState.AUTHORIZED
        assert world.has_access("n00dles")
        assert access.authorized() == ["n00dles"]

    def test_opens_ports_then_elevates(self, world):
        access = AccessController(world)
        assert access.try_authorize("CSEC") == AccessState.AUTHORIZED
        assert ("ssh", "CSEC") in world.port_attempts

    def test_idempotent(self, world):
        """An authorized node returns immediately without touching the host."""
        access = AccessController(world)
        access.try_authorize("CSEC")
        attempts = len(world.port_attempts)
        assert access.try_authorize("CSEC") == AccessState.AUTHORIZED
        assert len(world.port_attempts) == attempts

    def test_short_circuit(self, world):
        """Tools stop being tried once the required count is reached."""
        world.grant_tool("ftp")
        AccessController(world).try_authorize("CSEC")
        assert world.port_attempts == [("ssh", "CSEC")]

    def test_rank_order(self, world):
        """Openers are attempted in rank order until one works."""
        world.add_node("vault", capacity=8, required_auth_level=1,
                       required_port_count=1, open_ports=["smtp"])
        world.grant_tool("smtp")
        access = AccessController(world)
        assert access.try_authorize("vault") == AccessState.AUTHORIZED
        assert [tool for tool, _ in world.port_attempts] == ["ssh", "ftp", "smtp"]

    def test_insufficient_ports_locks(self, world):
        access = AccessController(world)
        assert access.try_authorize("phantasy") == AccessState.LOCKED
        assert access.waiting() == {"phantasy": "ports 1/2"}
        assert not world.has_access("phantasy")

    def test_insufficient_skill_locks(self, world):
        access = AccessController(world)
        assert access.try_authorize("zer0") == AccessState.LOCKED
        assert access.waiting()["zer0"] == "skill 1 < 5"

    def test_skill_callable_override(self, world):
        """The effective skill can come from somewhere other than the host."""
        access = AccessController(world, skill=lambda: 10)
        world.set_skill(10)
        assert access.try_authorize("zer0") == AccessState.AUTHORIZED

    def test_locked_then_authorized(self, world):
        """A locked node can still become authorized later."""
        access = AccessController(world)
        access.try_authorize("phantasy")
        world.grant_tool("ftp")
        assert access.try_authorize("phantasy") == AccessState.AUTHORIZED
        assert access.waiting() == {}

    def test_opener_host_error_counts_as_failure(self, world):
        """An opener that raises is logged and skipped, not fatal."""
        class Broken(PortOpener):
            def open(self, host, node):
                raise HostError("tool crashed")

        access = AccessController(world, openers=[Broken("broken", "x"), PortOpener("brute_ssh", "ssh")])
        assert access.try_authorize("CSEC") == AccessState.AUTHORIZED

    def test_mark_authorized(self, world):
        access = AccessController(world)
        access.mark_authorized("home")
        assert access.state_of("home") == AccessState.AUTHORIZED
        assert not access.is_due("home")


class TestBackoff:
    """Tests for retry scheduling."""

    def test_locked_node_not_due_until_delay(self, world, clock):
        access = AccessController(world, retry=RetryPolicy(initial_sec=5, factor=2, max_sec=60), clock=clock)
        access.try_authorize("phantasy")
        assert not access.is_due("phantasy")
        clock.advance(5)
        assert access.is_due("phantasy")

    def test_delay_doubles(self, world, clock):
        access = AccessController(world, retry=RetryPolicy(initial_sec=5, factor=2, max_sec=60), clock=clock)
        access.try_authorize("phantasy")
        clock.advance(5)
        access.try_authorize("phantasy")
        clock.advance(9)
        assert not access.is_due("phantasy")
        clock.advance(1)
        assert access.is_due("phantasy")

    def test_authorize_all_skips_not_due(self, world, clock):
        access = AccessController(world, clock=clock)
        nodes = ["n00dles", "CSEC", "phantasy", "zer0"]

        assert access.authorize_all(nodes) == ["n00dles", "CSEC"]
        attempts = access.get_stats()["attempts"]

        assert access.authorize_all(nodes) == []
        assert access.get_stats()["attempts"] == attempts

        world.grant_tool("ftp")
        clock.advance(5)
        assert access.authorize_all(nodes) == ["phantasy"]
        assert set(access.waiting()) == {"zer0"}


class TestAccessState:
    """Tests for forward-only transitions."""

    def test_backward_transition_raises(self):
        with pytest.raises(InvalidTransition):
            AccessState.AUTHORIZED.advance(AccessState.LOCKED)

    def test_forward_transitions(self):
        assert AccessState.UNKNOWN.advance(AccessState.AUTHORIZED) == AccessState.AUTHORIZED
        assert AccessState.LOCKED.advance(AccessState.LOCKED) == AccessState.LOCKED
