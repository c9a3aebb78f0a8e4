"""Headless demo: run a live simulation with scripted input and print each change."""

import argparse
import asyncio
import logging

from crdtsim.settings import load_config
from crdtsim.simulation import (
    CounterOperation,
    DemoLauncher,
    Paint,
    SimulationConfig,
    SimulationSnapshot,
    VariantKind,
)


def describe(state) -> str:
    if hasattr(state, "text"):
        return repr(state.text)
    if hasattr(state, "shape"):
        painted = sum(1 for cell in state.flat if cell != "white")
        return f"{painted} painted cells"
    return repr(state)


class ConsoleRenderer:
    """Prints a line whenever some replica's rendering changes."""

    def __init__(self):
        self._last = None

    def __call__(self, snapshot: SimulationSnapshot) -> None:
        lines = tuple(
            f"{r.replica_id}{'' if r.connected else ' (offline)'}: {describe(r.state)}"
            for r in snapshot.replicas
        )
        if lines != self._last:
            print(f"[{snapshot.clock_ms:7.0f}ms] " + " | ".join(lines), flush=True)
            self._last = lines


def scripted_input(simulator, kind: VariantKind):
    """(delay_s, replica_id, build_operation) steps typed by a pretend user."""
    variant = simulator.variant
    if kind in (VariantKind.COUNTER, VariantKind.GUARDED_COUNTER):
        return [
            (0.1, "1", lambda state: CounterOperation.INCREMENT),
            (0.1, "2", lambda state: CounterOperation.DECREMENT),
            (0.1, "3", lambda state: CounterOperation.DECREMENT),
        ]
    if kind == VariantKind.GRID:
        return [
            (0.1, "1", lambda state: Paint(1, 1, "black")),
            (0.1, "2", lambda state: Paint(1, 1, "red")),
        ]
    if kind == VariantKind.NAIVE_TEXT:
        return [
            (0.1, "1", lambda state: variant.edit(state, "hello")),
            (0.1, "2", lambda state: variant.edit(state, "world")),
        ]
    return [
        (0.1, "1", lambda state: variant.insert(state, "h")),
        (0.1, "1", lambda state: variant.insert(state, "i")),
        (0.1, "2", lambda state: variant.insert(state, "y")),
        (0.1, "3", lambda state: variant.backspace(state)),
    ]


async def run(config: SimulationConfig, seconds: float):
    launcher = DemoLauncher(render=ConsoleRenderer())
    handle = launcher.select(config)
    simulator = handle.simulator

    for delay, replica_id, build in scripted_input(simulator, config.variant):
        await asyncio.sleep(delay)
        built = build(simulator.get_replica(replica_id).state)
        for operation in built if isinstance(built, list) else [built]:
            if operation is not None:
                simulator.submit_operation(replica_id, operation)

    await asyncio.sleep(seconds)
    launcher.stop()
    await handle.wait()
    print("Converged" if simulator.has_converged() else "Replicas disagree")


def main():
    parser = argparse.ArgumentParser(description="Run one CRDT demo headlessly.")
    parser.add_argument("--variant", choices=[k.value for k in VariantKind], default=None,
                        help="Variant to run (default: from config, else sequence_text)")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--seconds", type=float, default=4.0, help="How long to keep running after input")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        if args.config:
            raise
        config = SimulationConfig()
    if args.variant:
        config.variant = VariantKind(args.variant)

    asyncio.run(run(config, args.seconds))


if __name__ == "__main__":
    main()
