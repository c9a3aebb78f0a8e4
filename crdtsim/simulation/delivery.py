"""
Delivery queue for the CRDT replica simulator.

Holds operations that have left a replica's backlog but have not reached
their peers yet. Each message is tagged with the time it becomes due; the
simulator flushes every due message once per tick.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator

from .units import Milliseconds


@dataclass
class InFlightMessage:
    """An operation travelling from one replica to all of its peers.

    Attributes:
        origin_id: Replica that emitted the operation.
        operation: The variant-specific operation.
        due_at_ms: Earliest simulated time at which it is delivered.
        sequence: Emission order across the whole simulation (not compared
            for equality).
    """

    origin_id: str
    operation: Any
    due_at_ms: Milliseconds
    sequence: int = field(default=0, compare=False)

    def is_due(self, now: Milliseconds) -> bool:
        return self.due_at_ms <= now

    def __repr__(self) -> str:
        return (
            f"InFlightMessage(#{self.sequence} from {self.origin_id}, "
            f"{self.operation!r}, due={self.due_at_ms:.0f}ms)"
        )


class DeliveryQueue:
    """In-flight messages kept in emission order.

    Unlike a time-ordered heap, flushing preserves emission order among the
    messages that are due together: a message emitted earlier is always
    handed to peers before one emitted later in the same flush, even if the
    later one carries an earlier due time.
    """

    def __init__(self) -> None:
        self._messages: list[InFlightMessage] = []
        self._counter = 0

    def push(
        self, origin_id: str, operation: Any, due_at_ms: Milliseconds
    ) -> InFlightMessage:
        """Add a message to the back of the queue.

        Args:
            origin_id: Emitting replica.
            operation: Operation to deliver.
            due_at_ms: Time at which it becomes deliverable.

        Returns:
            The queued message.
        """
        message = InFlightMessage(
            origin_id=origin_id,
            operation=operation,
            due_at_ms=due_at_ms,
            sequence=self._counter,
        )
        self._counter += 1
        self._messages.append(message)
        return message

    def pop_due(self, now: Milliseconds) -> list[InFlightMessage]:
        """Remove and return every message due at *now*, in emission order.

        Args:
            now: Current simulated time.

        Returns:
            Due messages (possibly empty). Not-due messages stay queued.
        """
        due: list[InFlightMessage] = []
        waiting: list[InFlightMessage] = []
        for message in self._messages:
            (due if message.is_due(now) else waiting).append(message)
        self._messages = waiting
        return due

    def next_due_time(self) -> Milliseconds | None:
        """Earliest due time among queued messages, or None if empty."""
        if not self._messages:
            return None
        return min(message.due_at_ms for message in self._messages)

    def is_empty(self) -> bool:
        return not self._messages

    def __iter__(self) -> Iterator[InFlightMessage]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"DeliveryQueue({len(self._messages)} in flight)"
