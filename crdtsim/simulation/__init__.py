"""
Replica/network simulation package for operation-based CRDTs.

This package provides a tick-driven engine in which replicas exchange
operations over a delayed, switchable network, together with the variants
(correct and deliberately broken) whose convergence it is used to study.
"""

from .units import Milliseconds, seconds, minutes, DEFAULT_TICK_MS
from .errors import (
    SimulationError,
    UnknownReplicaError,
    OperationRejected,
    InvariantViolation,
)
from .variant import Variant, VariantKind
from .counter import CounterOperation, CounterVariant, GuardedCounterVariant
from .grid import Paint, GridVariant, GRID_SIZE, BLANK
from .text import InsertText, DeleteText, NaiveTextVariant, diff_strings
from .sequence import (
    START_ID,
    Char,
    InsertChar,
    DeleteChar,
    MoveCursor,
    SequenceState,
    SequenceTextVariant,
    make_op_id,
    parse_op_id,
)
from .catalog import make_variant
from .events import EventType, Event
from .delivery import InFlightMessage, DeliveryQueue
from .replica import Replica
from .metrics import MetricsCollector, MetricsSnapshot
from .simulator import (
    Simulator,
    SimulationResult,
    SimulationSnapshot,
    ReplicaSnapshot,
)
from .config import ReplicaSpec, SimulationConfig, build_simulator, default_replicas
from .scheduler import (
    SimulationHandle,
    DemoLauncher,
    run_tick_loop,
    start_simulation,
    wall_clock,
)

__all__ = [
    # Time units
    "Milliseconds",
    "seconds",
    "minutes",
    "DEFAULT_TICK_MS",
    # Errors
    "SimulationError",
    "UnknownReplicaError",
    "OperationRejected",
    "InvariantViolation",
    # Variants
    "Variant",
    "VariantKind",
    "CounterOperation",
    "CounterVariant",
    "GuardedCounterVariant",
    "Paint",
    "GridVariant",
    "GRID_SIZE",
    "BLANK",
    "InsertText",
    "DeleteText",
    "NaiveTextVariant",
    "diff_strings",
    "START_ID",
    "Char",
    "InsertChar",
    "DeleteChar",
    "MoveCursor",
    "SequenceState",
    "SequenceTextVariant",
    "make_op_id",
    "parse_op_id",
    "make_variant",
    # Events
    "EventType",
    "Event",
    # Delivery
    "InFlightMessage",
    "DeliveryQueue",
    # Replica
    "Replica",
    # Metrics
    "MetricsCollector",
    "MetricsSnapshot",
    # Simulator
    "Simulator",
    "SimulationResult",
    "SimulationSnapshot",
    "ReplicaSnapshot",
    # Config
    "ReplicaSpec",
    "SimulationConfig",
    "build_simulator",
    "default_replicas",
    # Scheduler
    "SimulationHandle",
    "DemoLauncher",
    "run_tick_loop",
    "start_simulation",
    "wall_clock",
]
