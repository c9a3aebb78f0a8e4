"""
Metrics collection for the CRDT replica simulator.

Tracks operation traffic and when the replicas agreed or disagreed during a
simulation run.
"""

from dataclasses import dataclass

from .units import Milliseconds


@dataclass
class MetricsCollector:
    """Collects metrics during a simulation run.

    Attributes:
        operations_submitted: Local operations accepted by their author.
        operations_suppressed: Local operations refused by a variant guard.
        operations_emitted: Operations that left a backlog.
        operations_delivered: Buffer insertions (one per emitted op per peer).
        operations_applied: Received operations applied by ``apply``.
        operations_rejected: Received operations ``apply`` refused.
        first_converged_at: First time all replicas agreed after diverging.
        last_converged_at: Most recent time the replicas started agreeing.
        last_diverged_at: Most recent time the replicas started disagreeing.
    """

    operations_submitted: int = 0
    operations_suppressed: int = 0
    operations_emitted: int = 0
    operations_delivered: int = 0
    operations_applied: int = 0
    operations_rejected: int = 0

    first_converged_at: Milliseconds | None = None
    last_converged_at: Milliseconds | None = None
    last_diverged_at: Milliseconds | None = None

    # Internal state for tracking
    _converged: bool = True
    _last_update_time: Milliseconds = Milliseconds(0)

    def record_convergence(self, current_time: Milliseconds, converged: bool) -> None:
        """Record whether the replicas agree at *current_time*.

        Only transitions are stored, so the collector can be fed every tick.

        Args:
            current_time: Current simulation time.
            converged: Result of the simulator's convergence check.
        """
        if current_time < self._last_update_time:
            raise ValueError(f"Time went backwards: {self._last_update_time} -> {current_time}")
        self._last_update_time = current_time

        if converged and not self._converged:
            self.last_converged_at = current_time
            if self.first_converged_at is None:
                self.first_converged_at = current_time
        elif not converged and self._converged:
            self.last_diverged_at = current_time
        self._converged = converged

    @property
    def converged(self) -> bool:
        return self._converged

    def snapshot(self) -> "MetricsSnapshot":
        """Create an immutable snapshot of current metrics."""
        return MetricsSnapshot(
            operations_submitted=self.operations_submitted,
            operations_suppressed=self.operations_suppressed,
            operations_emitted=self.operations_emitted,
            operations_delivered=self.operations_delivered,
            operations_applied=self.operations_applied,
            operations_rejected=self.operations_rejected,
            converged=self._converged,
            first_converged_at=self.first_converged_at,
            last_converged_at=self.last_converged_at,
            last_diverged_at=self.last_diverged_at,
        )

    def __repr__(self) -> str:
        return (
            f"MetricsCollector(submitted={self.operations_submitted}, "
            f"emitted={self.operations_emitted}, applied={self.operations_applied}, "
            f"converged={self._converged})"
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable snapshot of metrics at a point in time."""

    operations_submitted: int
    operations_suppressed: int
    operations_emitted: int
    operations_delivered: int
    operations_applied: int
    operations_rejected: int
    converged: bool
    first_converged_at: Milliseconds | None
    last_converged_at: Milliseconds | None
    last_diverged_at: Milliseconds | None

    def __repr__(self) -> str:
        return (
            f"MetricsSnapshot(submitted={self.operations_submitted}, "
            f"applied={self.operations_applied}, converged={self.converged})"
        )
