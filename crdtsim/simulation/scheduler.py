"""
Live tick driver for the CRDT replica simulator.

The tick loop runs as an ``asyncio`` task on the caller's event loop, so
ticks and adapter calls never run at the same time: adapter code only runs
while the loop sleeps between ticks. ``start_simulation`` returns an
explicit handle; stopping the handle tears the loop down.
"""

import asyncio
import logging
import time
from typing import Callable

from .config import SimulationConfig, build_simulator
from .simulator import SimulationSnapshot, Simulator
from .units import DEFAULT_TICK_MS, Milliseconds

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], Milliseconds]
RenderCallback = Callable[[SimulationSnapshot], None]


def wall_clock(start_at: Milliseconds = Milliseconds(0)) -> Clock:
    """Clock reading elapsed wall time, offset so it starts at *start_at*."""
    origin = time.monotonic()

    def now() -> Milliseconds:
        return Milliseconds(start_at + (time.monotonic() - origin) * 1000)

    return now


async def run_tick_loop(
    simulator: Simulator,
    interval_ms: Milliseconds = DEFAULT_TICK_MS,
    render: RenderCallback | None = None,
    clock: Clock | None = None,
    max_ticks: int | None = None,
) -> int:
    """Step *simulator* every *interval_ms* until cancelled or *max_ticks*.

    Args:
        simulator: Simulation to drive.
        interval_ms: Sleep between ticks.
        render: Called with each tick's snapshot.
        clock: Source of ``now``; defaults to wall time continuing from the
            simulator's current clock.
        max_ticks: Stop after this many ticks (None = run until cancelled).

    Returns:
        Number of ticks executed.
    """
    if interval_ms <= 0:
        raise ValueError(f"Tick interval must be positive, got {interval_ms}")
    clock = clock or wall_clock(simulator.clock_ms)

    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        snapshot = simulator.step(max(simulator.clock_ms, clock()))
        if render:
            render(snapshot)
        ticks += 1
        await asyncio.sleep(interval_ms / 1000)
    return ticks


class SimulationHandle:
    """Handle to a running tick loop.

    Attributes:
        simulator: The simulation the loop drives.
    """

    def __init__(self, simulator: Simulator, task: asyncio.Task):
        self.simulator = simulator
        self._task = task

    @property
    def running(self) -> bool:
        return not self._task.done()

    def stop(self) -> None:
        """Cancel the loop. Safe to call more than once."""
        if self._task.done():
            return
        self._task.cancel()
        LOGGER.info("Stopped simulation at t=%.0fms", self.simulator.clock_ms)

    async def wait(self) -> int | None:
        """Wait for the loop to finish.

        Returns:
            Ticks executed, or None if the loop was stopped.

        Raises:
            Whatever the loop raised (e.g. ``InvariantViolation``).
        """
        try:
            return await self._task
        except asyncio.CancelledError:
            return None

    def __repr__(self) -> str:
        status = "running" if self.running else "stopped"
        return f"SimulationHandle({status}, {self.simulator!r})"


def start_simulation(
    simulator: Simulator,
    interval_ms: Milliseconds = DEFAULT_TICK_MS,
    render: RenderCallback | None = None,
    clock: Clock | None = None,
    max_ticks: int | None = None,
) -> SimulationHandle:
    """Start the tick loop on the running event loop.

    Must be called from inside a coroutine (an event loop must be running).

    Returns:
        Handle whose ``stop()`` ends the loop.
    """
    loop = asyncio.get_running_loop()
    task = loop.create_task(
        run_tick_loop(simulator, interval_ms, render=render, clock=clock, max_ticks=max_ticks)
    )
    LOGGER.info("Started %r with %.0fms ticks", simulator, interval_ms)
    return SimulationHandle(simulator, task)


class DemoLauncher:
    """Owns the single live simulation of a demo session.

    Selecting a variant stops whatever loop is running before the new
    simulator is built, so at most one loop is ever live.

    Args:
        render: Render callback passed to every loop started.
        clock_factory: Builds the clock for each new simulator; defaults to
            wall time.
    """

    def __init__(
        self,
        render: RenderCallback | None = None,
        clock_factory: Callable[[Simulator], Clock] | None = None,
    ):
        self.render = render
        self.clock_factory = clock_factory
        self._handle: SimulationHandle | None = None

    @property
    def active(self) -> SimulationHandle | None:
        """Handle of the live loop, if any."""
        if self._handle is not None and self._handle.running:
            return self._handle
        return None

    def select(self, config: SimulationConfig) -> SimulationHandle:
        """Stop the current loop and start one for *config*."""
        self.stop()

        simulator = build_simulator(config)
        clock = self.clock_factory(simulator) if self.clock_factory else None
        LOGGER.info("Selected variant %s", config.variant.value)
        self._handle = start_simulation(
            simulator,
            interval_ms=config.tick_interval_ms,
            render=self.render,
            clock=clock,
        )
        return self._handle

    def stop(self) -> None:
        """Stop the live loop, if any."""
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
