"""
Tests for the task scheduler.

Covers thread-count computation, most-free-first ordering, declines,
spreading a workload over several nodes, and launching through a host.
"""

import pytest

from fleet_kernel.ledger import CapacityLedger
from fleet_kernel.models.node import Node, AccessState
from fleet_kernel.models.workload import Workload, Placement, Declined, DeclineReason, total_threads
from fleet_kernel.scheduler import TaskScheduler


def _workload(threads, ram, script="hack.js"):
    return Workload(target="n00dles", script=script, threads=threads, ram_per_thread=ram)


class TestSchedule:
    """Tests for placement decisions without a host."""

    def test_end_to_end_grant_then_decline(self, ledger, make_node):
        """floor(100/40) = 2 threads granted; the remaining 20 cannot fit 40."""
        ledger.register(make_node("alpha", 100))
        scheduler = TaskScheduler(ledger)

        first = scheduler.schedule(_workload(3, 40))
        assert isinstance(first, Placement)
        assert first.threads == 2
        assert first.ram == 80
        assert ledger.capacity_of("alpha") == (100, 80)

        second = scheduler.schedule(_workload(1, 40))
        assert isinstance(second, Declined)
        assert not second
        assert second.reason == DeclineReason.INSUFFICIENT_CAPACITY
        assert ledger.capacity_of("alpha") == (100, 80)

    def test_request_is_clamped(self, ledger, make_node):
        """A node with room to spare grants only what was asked."""
        ledger.register(make_node("alpha", 1000))
        placement = TaskScheduler(ledger).schedule(_workload(3, 10))
        assert placement.threads == 3
        assert ledger.capacity_of("alpha") == (1000, 30)

    def test_most_free_first(self, ledger, make_node):
        """The node with the most free memory is tried first."""
        ledger.register(make_node("small", 16))
        ledger.register(make_node("big", 64))
        ledger.register(make_node("mid", 32))
        placement = TaskScheduler(ledger).schedule(_workload(1, 2))
        assert placement.node == "big"

    def test_falls_through_to_fitting_node(self, ledger, make_node):
        """Candidates that cannot afford one thread are skipped."""
        ledger.register(make_node("a", 64))
        ledger.register(make_node("b", 64))
        ledger.reserve("a", 60)
        placement = TaskScheduler(ledger).schedule(_workload(2, 8))
        assert placement.node == "b"

    def test_candidates_restrict_choice(self, ledger, make_node):
        ledger.register(make_node("a", 64))
        ledger.register(make_node("b", 16))
        placement = TaskScheduler(ledger).schedule(_workload(1, 4), candidates=["b"])
        assert placement.node == "b"

    def test_no_candidates(self, ledger):
        """An empty ledger declines with no_candidates."""
        result = TaskScheduler(ledger).schedule(_workload(1, 1))
        assert not result
        assert result.reason == DeclineReason.NO_CANDIDATES
        assert result.is_transient()

    def test_oversized_thread_always_declined(self, ledger, make_node):
        """Memory per thread above every node's total can never be placed."""
        ledger.register(make_node("a", 8))
        scheduler = TaskScheduler(ledger)
        for _ in range(3):
            assert not scheduler.schedule(_workload(1, 9))
        assert scheduler.get_stats()["declined"] == 3
        assert scheduler.last_decline.describe().startswith("declined: insufficient capacity")

    def test_placement_never_exceeds_free(self, rng):
        """Granted memory fits the chosen node's free capacity at call time."""
        ledger = CapacityLedger()
        for i in range(6):
            ledger.register(Node(
                name=f"n{i}", total_capacity=float(rng.integers(4, 128)),
                access=AccessState.AUTHORIZED,
            ))
        scheduler = TaskScheduler(ledger)

        for _ in range(300):
            workload = _workload(int(rng.integers(1, 20)), float(rng.uniform(0.5, 16.0)))
            before = {n: ledger.free_of(n) for n in ledger.nodes()}
            result = scheduler.schedule(workload)
            if result:
                assert 1 <= result.threads <= workload.threads
                assert result.ram <= before[result.node] + 1e-9
            if rng.random() < 0.3:
                live = [p for p in ledger.placements() if not p.released]
                if live:
                    ledger.release_placement(live[int(rng.integers(0, len(live)))])

        for name in ledger.nodes():
            total, committed = ledger.capacity_of(name)
            assert committed <= total


class TestSpread:
    """Tests for splitting one workload across nodes."""

    def test_spread_covers_request(self, ledger, make_node):
        ledger.register(make_node("a", 40))
        ledger.register(make_node("b", 20))
        placements = TaskScheduler(ledger).schedule_spread(_workload(25, 2))
        assert [p.node for p in placements] == ["a", "b"]
        assert [p.threads for p in placements] == [20, 5]
        assert total_threads(placements) == 25

    def test_spread_partial_when_short(self, ledger, make_node):
        """Spreading places what fits and stops."""
        ledger.register(make_node("a", 10))
        ledger.register(make_node("b", 10))
        placements = TaskScheduler(ledger).schedule_spread(_workload(100, 5))
        assert total_threads(placements) == 4

    def test_spread_nothing_fits(self, ledger, make_node):
        ledger.register(make_node("a", 1))
        assert TaskScheduler(ledger).schedule_spread(_workload(4, 2)) == []


class TestLaunch:
    """Tests for starting processes through the host."""

    @pytest.fixture
    def setup(self, world, ledger, make_node):
        world.register_script("grow.js", 2.0)
        ledger.register(make_node("home", 64))
        return world, ledger, TaskScheduler(ledger, world)

    def test_launch_sets_handle(self, setup):
        host, ledger, scheduler = setup
        placement = scheduler.launch(_workload(8, 2.0, "grow.js"))
        assert placement.handle is not None
        assert host.used_ram("home") == 16
        assert scheduler.is_live(placement)

    def test_launch_failure_releases_capacity(self, setup):
        """A host refusal becomes a launch_failed decline with memory returned."""
        host, ledger, scheduler = setup
        result = scheduler.launch(_workload(2, 2.0, "missing.js"))
        assert not result
        assert result.reason == DeclineReason.LAUNCH_FAILED
        assert not result.is_transient()
        assert "script not found" in result.detail
        assert ledger.capacity_of("home") == (64, 0.0)
        assert scheduler.get_stats()["launch_failures"] == 1

    def test_reap_releases_finished(self, setup):
        """Exited processes are released on the next reap."""
        host, ledger, scheduler = setup
        a = scheduler.launch(_workload(4, 2.0, "grow.js"))
        b = scheduler.launch(_workload(4, 2.0, "grow.js"))
        host.finish(a.handle)

        reaped = scheduler.reap()

        assert [p.placement_id for p in reaped] == [a.placement_id]
        assert a.released and not b.released
        assert ledger.capacity_of("home") == (64, 8)
        assert scheduler.live_placements() == [b]
        assert scheduler.reap() == []

    def test_finish_after_invalidation(self, setup):
        """Finishing a placement dropped by an upgrade is a quiet no-op."""
        host, ledger, scheduler = setup
        p = scheduler.launch(_workload(1, 2.0, "grow.js"))
        ledger.deregister("home")
        assert not scheduler.finish(p)
        assert not scheduler.is_live(p)

    def test_launch_spread(self, setup, make_node):
        host, ledger, scheduler = setup
        host.add_node("helper", capacity=8, authorized=True)
        ledger.register(make_node("helper", 8))
        started = scheduler.launch_spread(_workload(34, 2.0, "grow.js"))
        assert {p.node for p in started} == {"home", "helper"}
        assert total_threads(started) == 34
        assert all(p.handle is not None for p in started)

    def test_launch_without_host(self, ledger, make_node):
        ledger.register(make_node("a", 8))
        with pytest.raises(RuntimeError):
            TaskScheduler(ledger).launch(_workload(1, 1))
