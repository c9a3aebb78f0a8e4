"""
Replica model for the CRDT replica simulator.

A replica holds one participant's copy of the shared state together with
the two queues that connect it to the network: the inbound buffer of
received operations and the pending backlog of local operations waiting to
be broadcast.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import OperationRejected
from .units import Milliseconds
from .variant import Variant

LOGGER = logging.getLogger(__name__)

ApplyFn = Callable[[Any, Any], Any]
RejectCallback = Callable[[Any, OperationRejected], None]


@dataclass
class Replica:
    """Dynamic state of one replica during simulation.

    Attributes:
        replica_id: Unique, stable identifier.
        state: Variant state; only ever replaced with the result of ``apply``.
        delay_ms: Outbound delay added to every operation this replica emits.
        connected: Whether the replica currently drains and emits.
        inbound: Received operations awaiting application (FIFO).
        pending: Local operations awaiting broadcast (FIFO).
        history: Emitted operations with their emission time (append-only).
        applied_count: Received operations applied so far.
    """

    replica_id: str
    state: Any
    delay_ms: Milliseconds = field(default_factory=lambda: Milliseconds(0))
    connected: bool = True
    inbound: deque = field(default_factory=deque)
    pending: deque = field(default_factory=deque)
    history: list[tuple[Any, Milliseconds]] = field(default_factory=list)
    applied_count: int = 0

    def submit(self, operation: Any, variant: Variant) -> bool:
        """Apply a locally authored operation and queue it for broadcast.

        Args:
            operation: Operation built by the presentation adapter.
            variant: Variant providing the guard and ``apply``.

        Returns:
            False if the variant's local guard refused the operation
            (nothing changes), True otherwise.

        Raises:
            OperationRejected: If ``apply`` refuses the operation.
        """
        if not variant.permits(operation, self.state):
            return False

        self.state = variant.apply(operation, self.state)
        if not variant.is_local_only(operation):
            self.pending.append(operation)
        return True

    def receive(self, operation: Any) -> None:
        """Buffer an operation delivered by the network."""
        self.inbound.append(operation)

    def drain(self, apply: ApplyFn, on_reject: RejectCallback | None = None) -> int:
        """Apply every buffered operation in arrival order.

        A rejected operation is dropped and reported; the rest of the buffer
        is still applied.

        Args:
            apply: The variant's merge function.
            on_reject: Called with each rejected operation and its error.

        Returns:
            Number of operations applied.
        """
        applied = 0
        while self.inbound:
            operation = self.inbound.popleft()
            try:
                self.state = apply(operation, self.state)
            except OperationRejected as exc:
                LOGGER.warning("Replica %s rejected %r: %s", self.replica_id, operation, exc.reason)
                if on_reject:
                    on_reject(operation, exc)
                continue
            applied += 1

        self.applied_count += applied
        return applied

    def poll(
        self,
        now: Milliseconds,
        apply: ApplyFn,
        on_reject: RejectCallback | None = None,
    ) -> Any | None:
        """Run one tick of this replica.

        Disconnected replicas do nothing: both queues keep growing until the
        replica reconnects. A connected replica first drains its whole inbound
        buffer, then emits at most one pending operation.

        Args:
            now: Current simulated time.
            apply: The variant's merge function.
            on_reject: Forwarded to ``drain``.

        Returns:
            The operation to broadcast, or None.
        """
        if not self.connected:
            return None

        self.drain(apply, on_reject)

        if not self.pending:
            return None

        operation = self.pending.popleft()
        self.history.append((operation, now))
        return operation

    def is_idle(self) -> bool:
        """True when both queues are empty."""
        return not self.inbound and not self.pending

    def __repr__(self) -> str:
        status = "connected" if self.connected else "offline"
        return (
            f"Replica({self.replica_id}, {status}, delay={self.delay_ms:.0f}ms, "
            f"inbound={len(self.inbound)}, pending={len(self.pending)})"
        )
