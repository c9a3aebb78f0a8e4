"""
Time units for the CRDT replica simulator.

All simulated times are milliseconds. Helper functions provide readable
constructors for longer spans.
"""

from typing import NewType

# Explicit time unit - all times are in milliseconds
Milliseconds = NewType("Milliseconds", float)

# Cadence of the reference tick loop
DEFAULT_TICK_MS = Milliseconds(10.0)


def seconds(s: float) -> Milliseconds:
    """Convert seconds to milliseconds."""
    return Milliseconds(s * 1000)


def minutes(m: float) -> Milliseconds:
    """Convert minutes to milliseconds."""
    return Milliseconds(m * 60_000)
