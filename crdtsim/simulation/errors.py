"""
Exception types for the CRDT replica simulator.

Errors are local to one operation or one adapter call. Only
``InvariantViolation`` is fatal; everything else is reported to the caller
or logged by the simulator and the tick carries on.
"""


class SimulationError(Exception):
    """Base class for all simulator errors."""


class UnknownReplicaError(SimulationError, KeyError):
    """An adapter call named a replica id the simulator does not know."""

    def __init__(self, replica_id: str):
        super().__init__(replica_id)
        self.replica_id = replica_id

    def __str__(self) -> str:
        return f"Unknown replica: {self.replica_id!r}"


class OperationRejected(SimulationError, ValueError):
    """A variant's ``apply`` could not accept an operation.

    Attributes:
        operation: The offending operation.
        reason: Human-readable explanation.
    """

    def __init__(self, operation: object, reason: str):
        super().__init__(f"{reason}: {operation!r}")
        self.operation = operation
        self.reason = reason


class InvariantViolation(SimulationError):
    """A programming-contract breach (e.g. a duplicated id). Not recoverable."""
