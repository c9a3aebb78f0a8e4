"""
Tick-driven simulation engine for the CRDT replica simulator.

The simulator owns the replicas and the delivery queue. Each call to
``step(now)`` polls every replica, queues what they emit with the emitter's
delay, and hands every due message to all other replicas. Time is an
explicit argument, so tests and experiments can replay long runs instantly
while the live scheduler feeds it wall-clock time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .delivery import DeliveryQueue
from .errors import InvariantViolation, OperationRejected, UnknownReplicaError
from .events import Event, EventType
from .metrics import MetricsCollector, MetricsSnapshot
from .replica import Replica
from .units import DEFAULT_TICK_MS, Milliseconds
from .variant import Variant

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplicaSnapshot:
    """Read-only view of one replica handed to the presentation adapter."""

    replica_id: str
    state: Any
    connected: bool
    delay_ms: Milliseconds
    buffered: int = 0
    backlog: int = 0


@dataclass(frozen=True)
class SimulationSnapshot:
    """Read-only view of the whole simulation after one tick."""

    clock_ms: Milliseconds
    replicas: tuple[ReplicaSnapshot, ...]
    in_flight: int = 0

    def get(self, replica_id: str) -> ReplicaSnapshot:
        for replica in self.replicas:
            if replica.replica_id == replica_id:
                return replica
        raise UnknownReplicaError(replica_id)


@dataclass
class SimulationResult:
    """Result of a simulation run.

    Attributes:
        end_time: Final simulation time in milliseconds.
        end_reason: Why the run ended ("time_limit", "quiescent", "condition_met").
        converged: Whether all replicas agreed at the end.
        metrics: Final metrics snapshot.
        event_log: Events recorded during the run (if logging enabled).
        final_snapshot: Replica states at the end.
    """

    end_time: Milliseconds
    end_reason: str
    converged: bool
    metrics: MetricsSnapshot
    event_log: list[Event] = field(default_factory=list)
    final_snapshot: SimulationSnapshot | None = None


class Simulator:
    """Simulation engine for a set of replicas sharing one variant.

    The simulator maintains:
    - The replicas, keyed by id
    - The delivery queue of in-flight messages
    - A metrics collector and an optional event log

    All mutation happens inside ``step`` or inside the adapter-facing
    methods; nothing runs concurrently with a step.
    """

    def __init__(self, variant: Variant, log_events: bool = False):
        """Initialize the simulator.

        Args:
            variant: Variant whose ``apply`` every replica uses.
            log_events: Whether to keep a log of all events.
        """
        self.variant = variant
        self.log_events = log_events

        self.clock_ms = Milliseconds(0)
        self.replicas: dict[str, Replica] = {}
        self.in_flight = DeliveryQueue()
        self.metrics = MetricsCollector()
        self.event_log: list[Event] = []

        # Set whenever some replica state may have changed since the last
        # convergence check.
        self._dirty = False

    # -- replica management ----------------------------------------------

    def add_replica(
        self,
        replica_id: str,
        delay_ms: Milliseconds = Milliseconds(0),
        initial_state: Any = None,
        connected: bool = True,
    ) -> Replica:
        """Create a replica.

        Args:
            replica_id: Unique id.
            delay_ms: Outbound delay.
            initial_state: Starting state; defaults to the variant's initial state.
            connected: Initial connectivity.

        Returns:
            The new replica.

        Raises:
            InvariantViolation: If the id is already taken.
            ValueError: If the delay is negative.
        """
        if replica_id in self.replicas:
            raise InvariantViolation(f"Replica {replica_id!r} already exists")
        if delay_ms < 0:
            raise ValueError(f"Delay must be non-negative, got {delay_ms}")

        state = initial_state if initial_state is not None else self.variant.initial_state(replica_id)
        replica = Replica(
            replica_id=replica_id,
            state=state,
            delay_ms=Milliseconds(delay_ms),
            connected=connected,
        )
        self.replicas[replica_id] = replica
        self._dirty = True
        return replica

    def get_replica(self, replica_id: str) -> Replica:
        """Look up a replica, failing fast for unknown ids."""
        replica = self.replicas.get(replica_id)
        if replica is None:
            raise UnknownReplicaError(replica_id)
        return replica

    # -- adapter interface -------------------------------------------------

    def submit_operation(self, replica_id: str, operation: Any) -> bool:
        """Apply a locally authored operation and queue it for broadcast.

        Args:
            replica_id: Authoring replica.
            operation: Operation built by the adapter.

        Returns:
            False if the variant's local guard suppressed the operation.

        Raises:
            UnknownReplicaError: If the replica does not exist.
            OperationRejected: If ``apply`` refuses the operation.
        """
        replica = self.get_replica(replica_id)
        accepted = replica.submit(operation, self.variant)

        if not accepted:
            self.metrics.operations_suppressed += 1
            LOGGER.warning("Replica %s suppressed %r (local guard)", replica_id, operation)
            self._log(EventType.OPERATION_SUPPRESSED, replica_id, operation=operation)
            return False

        self.metrics.operations_submitted += 1
        self._dirty = True
        self._log(EventType.OPERATION_SUBMITTED, replica_id, operation=operation)
        return True

    def set_connectivity(self, replica_id: str, connected: bool) -> None:
        """Connect or disconnect a replica, effective from the next tick."""
        replica = self.get_replica(replica_id)
        replica.connected = connected
        LOGGER.debug("Replica %s is now %s", replica_id, "connected" if connected else "offline")
        self._log(EventType.CONNECTIVITY_CHANGED, replica_id, connected=connected)

    def set_delay(self, replica_id: str, delay_ms: Milliseconds) -> None:
        """Change a replica's outbound delay for operations it emits from now on."""
        if delay_ms < 0:
            raise ValueError(f"Delay must be non-negative, got {delay_ms}")
        replica = self.get_replica(replica_id)
        replica.delay_ms = Milliseconds(delay_ms)
        self._log(EventType.DELAY_CHANGED, replica_id, delay_ms=replica.delay_ms)

    # -- tick --------------------------------------------------------------

    def step(self, now: Milliseconds) -> SimulationSnapshot:
        """Advance the simulation to *now* and run one tick.

        Args:
            now: Current time; must not be earlier than the last tick.

        Returns:
            Snapshot for the render callback.
        """
        if now < self.clock_ms:
            raise ValueError(f"Time went backwards: {self.clock_ms} -> {now}")

        for replica in self.replicas.values():
            applied_before = replica.applied_count
            operation = replica.poll(now, self.variant.apply, self._rejection_handler(replica, now))
            if replica.applied_count != applied_before:
                self.metrics.operations_applied += replica.applied_count - applied_before
                self._dirty = True

            if operation is not None:
                message = self.in_flight.push(
                    replica.replica_id, operation, Milliseconds(now + replica.delay_ms)
                )
                self.metrics.operations_emitted += 1
                LOGGER.debug("Replica %s emitted %r", replica.replica_id, message)
                self._log(
                    EventType.OPERATION_EMITTED,
                    replica.replica_id,
                    now,
                    operation=operation,
                    due_at_ms=message.due_at_ms,
                )

        for message in self.in_flight.pop_due(now):
            for peer in self.replicas.values():
                if peer.replica_id == message.origin_id:
                    continue
                peer.receive(message.operation)
                self.metrics.operations_delivered += 1
                self._log(
                    EventType.OPERATION_DELIVERED,
                    peer.replica_id,
                    now,
                    operation=message.operation,
                    origin_id=message.origin_id,
                )

        self.clock_ms = Milliseconds(now)

        if self._dirty:
            self.metrics.record_convergence(self.clock_ms, self.has_converged())
            self._dirty = False

        return self.snapshot()

    def _rejection_handler(
        self, replica: Replica, now: Milliseconds
    ) -> Callable[[Any, OperationRejected], None]:
        def on_reject(operation: Any, error: OperationRejected) -> None:
            self.metrics.operations_rejected += 1
            self._log(
                EventType.OPERATION_REJECTED,
                replica.replica_id,
                now,
                operation=operation,
                reason=error.reason,
            )

        return on_reject

    def _log(
        self,
        event_type: EventType,
        replica_id: str,
        time: Milliseconds | None = None,
        **metadata: Any,
    ) -> None:
        if self.log_events:
            self.event_log.append(
                Event(
                    time=self.clock_ms if time is None else Milliseconds(time),
                    event_type=event_type,
                    replica_id=replica_id,
                    metadata=metadata,
                )
            )

    # -- observation -------------------------------------------------------

    def snapshot(self) -> SimulationSnapshot:
        """Read-only view of every replica."""
        return SimulationSnapshot(
            clock_ms=self.clock_ms,
            replicas=tuple(
                ReplicaSnapshot(
                    replica_id=replica.replica_id,
                    state=replica.state,
                    connected=replica.connected,
                    delay_ms=replica.delay_ms,
                    buffered=len(replica.inbound),
                    backlog=len(replica.pending),
                )
                for replica in self.replicas.values()
            ),
            in_flight=len(self.in_flight),
        )

    def has_converged(self) -> bool:
        """Whether every replica currently shows the same view of its state."""
        views = [self.variant.view(replica.state) for replica in self.replicas.values()]
        return all(view == views[0] for view in views[1:])

    def is_quiescent(self) -> bool:
        """True when nothing is in flight and every queue is empty."""
        return self.in_flight.is_empty() and all(
            replica.is_idle() for replica in self.replicas.values()
        )

    # -- drivers -----------------------------------------------------------

    def run_until(
        self,
        end_time: Milliseconds,
        tick_ms: Milliseconds = DEFAULT_TICK_MS,
        stop_condition: Callable[["Simulator"], bool] | None = None,
        before_tick: Callable[["Simulator", Milliseconds], None] | None = None,
    ) -> SimulationResult:
        """Step at a fixed cadence until a stopping condition is met.

        Args:
            end_time: Last tick time (inclusive).
            tick_ms: Simulated time between ticks.
            stop_condition: Checked after every tick; True ends the run.
            before_tick: Called with ``(simulator, now)`` before each tick,
                e.g. to submit scripted operations.

        Returns:
            SimulationResult with final metrics and state.
        """
        if tick_ms <= 0:
            raise ValueError(f"Tick interval must be positive, got {tick_ms}")

        end_reason = "time_limit"
        now = Milliseconds(self.clock_ms + tick_ms)

        while now <= end_time:
            if before_tick:
                before_tick(self, now)
            self.step(now)

            if stop_condition and stop_condition(self):
                end_reason = "condition_met"
                break
            now = Milliseconds(now + tick_ms)

        return self._result(end_reason)

    def run_for(self, duration: Milliseconds, tick_ms: Milliseconds = DEFAULT_TICK_MS) -> SimulationResult:
        """Run the simulation for a specified duration."""
        return self.run_until(Milliseconds(self.clock_ms + duration), tick_ms=tick_ms)

    def run_until_quiescent(
        self, max_time: Milliseconds, tick_ms: Milliseconds = DEFAULT_TICK_MS
    ) -> SimulationResult:
        """Run until every message is delivered and applied, or *max_time*.

        Disconnected replicas with queued work keep the simulation from
        becoming quiescent.
        """
        if self.is_quiescent():
            return self._result("quiescent")

        result = self.run_until(max_time, tick_ms=tick_ms, stop_condition=lambda s: s.is_quiescent())
        if result.end_reason == "condition_met":
            result.end_reason = "quiescent"
        return result

    def _result(self, end_reason: str) -> SimulationResult:
        return SimulationResult(
            end_time=self.clock_ms,
            end_reason=end_reason,
            converged=self.has_converged(),
            metrics=self.metrics.snapshot(),
            event_log=list(self.event_log) if self.log_events else [],
            final_snapshot=self.snapshot(),
        )

    def __repr__(self) -> str:
        return (
            f"Simulator({self.variant!r}, t={self.clock_ms:.0f}ms, "
            f"{len(self.replicas)} replicas, {len(self.in_flight)} in flight)"
        )
