"""
Configuration for a CRDT replica simulation.

A ``SimulationConfig`` is the startup-time choice of variant plus the
replica roster. ``build_simulator`` turns it into a ready ``Simulator``.
"""

from dataclasses import dataclass, field
from typing import Any

from .catalog import make_variant
from .grid import GRID_SIZE
from .simulator import Simulator
from .units import DEFAULT_TICK_MS, Milliseconds
from .variant import VariantKind


@dataclass
class ReplicaSpec:
    """Static configuration for one replica.

    Attributes:
        replica_id: Unique identifier.
        delay_ms: Initial outbound delay in milliseconds.
        connected: Initial connectivity.
    """

    replica_id: str
    delay_ms: Milliseconds = field(default_factory=lambda: Milliseconds(0))
    connected: bool = True

    def __post_init__(self) -> None:
        if not self.replica_id:
            raise ValueError("Replica id must be non-empty")
        if self.delay_ms < 0:
            raise ValueError(f"Delay must be non-negative, got {self.delay_ms}")


def default_replicas() -> list[ReplicaSpec]:
    """The reference demo roster: one slow replica and two immediate ones."""
    return [
        ReplicaSpec("1", Milliseconds(3000)),
        ReplicaSpec("2", Milliseconds(0)),
        ReplicaSpec("3", Milliseconds(0)),
    ]


@dataclass
class SimulationConfig:
    """Configuration for one simulation.

    Attributes:
        variant: Which variant to run.
        replicas: Replica roster.
        tick_interval_ms: Cadence of the live tick loop.
        grid_size: Width/height of the grid variant.
        log_events: Whether the simulator keeps an event log.
    """

    variant: VariantKind = VariantKind.SEQUENCE_TEXT
    replicas: list[ReplicaSpec] = field(default_factory=default_replicas)
    tick_interval_ms: Milliseconds = DEFAULT_TICK_MS
    grid_size: int = GRID_SIZE
    log_events: bool = False

    def __post_init__(self) -> None:
        self.variant = VariantKind(self.variant)
        if self.tick_interval_ms <= 0:
            raise ValueError(f"Tick interval must be positive, got {self.tick_interval_ms}")
        if self.grid_size <= 0:
            raise ValueError(f"Grid size must be positive, got {self.grid_size}")
        if not self.replicas:
            raise ValueError("At least one replica is required")

        ids = [spec.replica_id for spec in self.replicas]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Replica ids must be unique, got {ids}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationConfig":
        """Build a config from plain data (e.g. parsed YAML).

        Expected shape::

            variant: sequence_text
            tick_interval_ms: 10
            replicas:
              - {id: "1", delay_ms: 3000}
              - {id: "2"}
        """
        kwargs: dict[str, Any] = {}
        if "variant" in data:
            kwargs["variant"] = VariantKind(data["variant"])
        if "replicas" in data:
            if any("id" not in entry for entry in data["replicas"]):
                raise ValueError('Every replica entry needs an "id"')
            kwargs["replicas"] = [
                ReplicaSpec(
                    replica_id=str(entry["id"]),
                    delay_ms=Milliseconds(float(entry.get("delay_ms", 0))),
                    connected=bool(entry.get("connected", True)),
                )
                for entry in data["replicas"]
            ]
        if "tick_interval_ms" in data:
            kwargs["tick_interval_ms"] = Milliseconds(float(data["tick_interval_ms"]))
        if "grid_size" in data:
            kwargs["grid_size"] = int(data["grid_size"])
        if "log_events" in data:
            kwargs["log_events"] = bool(data["log_events"])
        return cls(**kwargs)


def build_simulator(config: SimulationConfig) -> Simulator:
    """Create a simulator with the configured variant and replicas."""
    simulator = Simulator(
        make_variant(config.variant, grid_size=config.grid_size),
        log_events=config.log_events,
    )
    for spec in config.replicas:
        simulator.add_replica(spec.replica_id, delay_ms=spec.delay_ms, connected=spec.connected)
    return simulator
