"""
Errors
======

Exception hierarchy for the fleet kernel.

Resource pressure is never an exception: a declined placement, a locked
node and an empty wallet are ordinary return values.  The classes below
cover broken invariants (fatal to the offending call) and failures of the
host environment.
"""

from __future__ import annotations


class KernelError(Exception):
    """Base class for all fleet kernel errors."""


class InvariantViolation(KernelError):
    """The capacity/access invariants were broken by a caller."""


class DuplicateNode(InvariantViolation):
    """A node was registered twice with the capacity ledger."""

    def __init__(self, name: str):
        super().__init__(f"node already registered: {name}")
        self.name = name


class UnknownNode(InvariantViolation):
    """A ledger operation referenced a node that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"node not registered: {name}")
        self.name = name


class DoubleRelease(InvariantViolation):
    """A placement's capacity was released more than once."""

    def __init__(self, placement_id: str):
        super().__init__(f"placement already released: {placement_id}")
        self.placement_id = placement_id


class CapacityExceeded(InvariantViolation):
    """Committed capacity would exceed the node's total."""

    def __init__(self, name: str, committed: float, total: float):
        super().__init__(f"{name}: committed {committed} exceeds total {total}")
        self.name = name
        self.committed = committed
        self.total = total


class InvalidTransition(InvariantViolation):
    """An access state was asked to move backwards."""


class HostError(KernelError):
    """The host environment rejected a request."""


class LaunchError(HostError):
    """A worker process could not be started."""


class PurchaseError(HostError):
    """A node purchase or upgrade was refused by the host."""


class StarvationError(KernelError):
    """A chain stage ran out of retries while waiting for capacity."""

    def __init__(self, stage: str, attempts: int):
        super().__init__(f"stage {stage} declined {attempts} times")
        self.stage = stage
        self.attempts = attempts
