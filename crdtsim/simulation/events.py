"""
Event log for the CRDT replica simulator.

When event logging is enabled the simulator records one ``Event`` per
observable step (submission, emission, delivery, rejection, configuration
change) so that a run can be inspected or replayed after the fact.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .units import Milliseconds


class EventType(Enum):
    """Types of events recorded during simulation."""

    # Adapter-originated
    OPERATION_SUBMITTED = "operation_submitted"  # Applied locally and queued
    OPERATION_SUPPRESSED = "operation_suppressed"  # Refused by a local guard
    CONNECTIVITY_CHANGED = "connectivity_changed"
    DELAY_CHANGED = "delay_changed"

    # Tick-originated
    OPERATION_EMITTED = "operation_emitted"  # Left the backlog, now in flight
    OPERATION_DELIVERED = "operation_delivered"  # Pushed into a peer's buffer
    OPERATION_REJECTED = "operation_rejected"  # apply() refused it during a drain


@dataclass
class Event:
    """Something that happened at a specific simulated time.

    Attributes:
        time: When the event occurred (milliseconds).
        event_type: What happened.
        replica_id: The replica the event concerns.
        metadata: Additional event-specific data.

    Metadata conventions:
        - OPERATION_*: {"operation": op}
        - OPERATION_EMITTED: also {"due_at_ms": Milliseconds}
        - OPERATION_DELIVERED: also {"origin_id": str}
        - OPERATION_REJECTED: also {"reason": str}
        - CONNECTIVITY_CHANGED: {"connected": bool}
        - DELAY_CHANGED: {"delay_ms": Milliseconds}
    """

    time: Milliseconds
    event_type: EventType
    replica_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Event({self.time:.0f}ms, {self.event_type.value}, {self.replica_id})"
