"""
Convergence experiments for the CRDT replica simulator.

Runs many independent randomized trials of a variant (random delays,
random edits, optional offline windows) and aggregates how often the
replicas ended up agreeing and how long the network took to settle.

Each trial is a single-threaded simulation; trials can be spread over
worker processes.
"""

import logging
from collections import deque
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable

import numpy as np
from scipy import stats as scipy_stats

from .simulation.catalog import make_variant
from .simulation.metrics import MetricsSnapshot
from .simulation.simulator import Simulator
from .simulation.units import DEFAULT_TICK_MS, Milliseconds, seconds
from .simulation.variant import Variant, VariantKind

LOGGER = logging.getLogger(__name__)


@dataclass
class ExperimentConfig:
    """Configuration for a convergence experiment.

    Attributes:
        num_trials: Number of independent trials.
        num_replicas: Replicas per trial.
        ops_per_replica: Random edits each replica makes during the workload.
        workload_duration_ms: Window in which edits and outages happen.
        max_delay_ms: Each replica's delay is drawn uniformly from [0, max_delay_ms].
        disconnect_probability: Chance that a replica has one offline window.
        tick_ms: Simulated tick interval.
        settle_timeout_ms: How long after the workload to wait for quiescence.
        grid_size: Grid width/height (small grids make collisions likely).
        parallel_workers: Number of worker processes (1 = sequential).
        base_seed: Base seed for reproducibility (trial i uses base_seed + i).
    """

    num_trials: int
    num_replicas: int = 3
    ops_per_replica: int = 20
    workload_duration_ms: Milliseconds = field(default_factory=lambda: seconds(5))
    max_delay_ms: Milliseconds = field(default_factory=lambda: seconds(1))
    disconnect_probability: float = 0.0
    tick_ms: Milliseconds = DEFAULT_TICK_MS
    settle_timeout_ms: Milliseconds = field(default_factory=lambda: seconds(60))
    grid_size: int = 4
    parallel_workers: int = 1
    base_seed: int | None = None

    def __post_init__(self) -> None:
        if self.num_trials <= 0:
            raise ValueError(f"num_trials must be positive, got {self.num_trials}")
        if self.num_replicas < 2:
            raise ValueError(f"At least two replicas are needed, got {self.num_replicas}")
        if self.ops_per_replica < 0:
            raise ValueError(f"ops_per_replica must be non-negative, got {self.ops_per_replica}")
        if self.max_delay_ms < 0:
            raise ValueError(f"max_delay_ms must be non-negative, got {self.max_delay_ms}")
        if not 0.0 <= self.disconnect_probability <= 1.0:
            raise ValueError(
                f"disconnect_probability must be in [0, 1], got {self.disconnect_probability}"
            )
        if self.tick_ms <= 0:
            raise ValueError(f"tick_ms must be positive, got {self.tick_ms}")


@dataclass
class TrialResult:
    """Outcome of one trial.

    Attributes:
        seed: Seed the trial ran with.
        converged: Whether all replicas agreed at the end.
        quiescent: Whether every message was delivered before the timeout.
        settle_time_ms: Time from end of workload to quiescence (None if it timed out).
        metrics: Final metrics of the trial.
    """

    seed: int | None
    converged: bool
    quiescent: bool
    settle_time_ms: Milliseconds | None
    metrics: MetricsSnapshot


class RandomWorkload:
    """Random edits and offline windows for one trial.

    Actions are drawn up front and replayed by ``before_tick``; each edit is
    authored against the replica's state at the moment it happens.
    """

    def __init__(
        self,
        variant: Variant,
        replica_ids: list[str],
        config: ExperimentConfig,
        rng: np.random.Generator,
    ):
        self.variant = variant
        self.rng = rng

        duration = config.workload_duration_ms
        actions: list[tuple[float, str, str]] = []
        for replica_id in replica_ids:
            for at in rng.uniform(0, duration, size=config.ops_per_replica):
                actions.append((float(at), "edit", replica_id))

            if rng.random() < config.disconnect_probability:
                start = float(rng.uniform(0, duration))
                end = min(duration, start + float(rng.uniform(0, duration / 2)))
                actions.append((start, "disconnect", replica_id))
                actions.append((end, "reconnect", replica_id))

        actions.sort(key=lambda action: action[0])
        self._actions = deque(actions)

    def before_tick(self, simulator: Simulator, now: Milliseconds) -> None:
        while self._actions and self._actions[0][0] <= now:
            _, kind, replica_id = self._actions.popleft()
            if kind == "edit":
                state = simulator.get_replica(replica_id).state
                for operation in self.variant.author_random_operations(state, replica_id, self.rng):
                    simulator.submit_operation(replica_id, operation)
            else:
                simulator.set_connectivity(replica_id, kind == "reconnect")

    def is_done(self) -> bool:
        return not self._actions


def _run_single_trial(
    variant_kind: VariantKind,
    config: ExperimentConfig,
    seed: int | None,
) -> TrialResult:
    """Run one trial (module-level to support multiprocessing)."""
    rng = np.random.default_rng(seed)
    simulator = Simulator(make_variant(variant_kind, grid_size=config.grid_size))

    replica_ids = [f"r{i}" for i in range(config.num_replicas)]
    for replica_id in replica_ids:
        delay = Milliseconds(float(rng.uniform(0, config.max_delay_ms)))
        simulator.add_replica(replica_id, delay_ms=delay)

    workload = RandomWorkload(simulator.variant, replica_ids, config, rng)
    simulator.run_until(
        config.workload_duration_ms,
        tick_ms=config.tick_ms,
        before_tick=workload.before_tick,
    )

    # Everyone comes back online for the settle phase
    for replica_id in replica_ids:
        simulator.set_connectivity(replica_id, True)

    workload_end = simulator.clock_ms
    result = simulator.run_until_quiescent(
        max_time=Milliseconds(workload_end + config.settle_timeout_ms),
        tick_ms=config.tick_ms,
    )
    quiescent = result.end_reason == "quiescent"

    return TrialResult(
        seed=seed,
        converged=result.converged,
        quiescent=quiescent,
        settle_time_ms=Milliseconds(result.end_time - workload_end) if quiescent else None,
        metrics=result.metrics,
    )


@dataclass
class ExperimentResults:
    """Aggregated results of an experiment on one variant."""

    variant: VariantKind
    trials: list[TrialResult] = field(default_factory=list)

    def convergence_rate(self) -> float:
        """Fraction of trials in which the replicas agreed at the end."""
        if not self.trials:
            return 0.0
        return sum(1 for trial in self.trials if trial.converged) / len(self.trials)

    def convergence_rate_ci(self, confidence_level: float = 0.95) -> tuple[float, float] | None:
        """Wilson confidence interval for the convergence rate.

        Returns:
            Tuple of (lower_bound, upper_bound), or None if there are no trials.
        """
        if not self.trials:
            return None
        converged = sum(1 for trial in self.trials if trial.converged)
        interval = scipy_stats.binomtest(converged, len(self.trials)).proportion_ci(
            confidence_level=confidence_level, method="wilson"
        )
        return (float(interval.low), float(interval.high))

    def settle_time_samples(self) -> list[float]:
        """Settle times of trials that reached quiescence."""
        return [trial.settle_time_ms for trial in self.trials if trial.settle_time_ms is not None]

    def settle_time_mean(self) -> float | None:
        samples = self.settle_time_samples()
        if not samples:
            return None
        return float(np.mean(samples))

    def settle_time_percentile(self, p: float) -> float | None:
        """Percentile (0-100) of settle time, or None without samples."""
        samples = self.settle_time_samples()
        if not samples:
            return None
        return float(np.percentile(samples, p))

    def settle_time_cdf(self) -> tuple[np.ndarray, np.ndarray]:
        """Empirical CDF of settle time as (sorted_times, cumulative_probabilities)."""
        samples = self.settle_time_samples()
        if not samples:
            return np.array([]), np.array([])
        sorted_samples = np.sort(samples)
        cdf = np.arange(1, len(sorted_samples) + 1) / len(sorted_samples)
        return sorted_samples, cdf

    def total_suppressed(self) -> int:
        return sum(trial.metrics.operations_suppressed for trial in self.trials)

    def summary(self) -> str:
        """Generate a text summary of results."""
        lines = [
            f"{self.variant.value} ({len(self.trials)} trials)",
            f"  Converged: {self.convergence_rate()*100:.1f}%",
        ]

        ci = self.convergence_rate_ci()
        if ci is not None:
            lines[-1] += f" (95% CI: [{ci[0]*100:.1f}, {ci[1]*100:.1f}]%)"

        mean = self.settle_time_mean()
        if mean is not None:
            p99 = self.settle_time_percentile(99)
            lines.append(f"  Settle time: mean {mean:.0f}ms, p99 {p99:.0f}ms")
        else:
            lines.append("  Settle time: no trial reached quiescence")

        suppressed = self.total_suppressed()
        if suppressed:
            lines.append(f"  Suppressed by local guard: {suppressed} operations")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ExperimentResults({self.variant.value}, n={len(self.trials)}, "
            f"converged={self.convergence_rate()*100:.1f}%)"
        )


class ExperimentRunner:
    """Runs the trials of an experiment and aggregates the results.

    Supports parallel execution for faster results on multi-core systems.
    """

    def __init__(self, config: ExperimentConfig):
        self.config = config

    def _seed(self, index: int) -> int | None:
        if self.config.base_seed is None:
            return None
        return self.config.base_seed + index

    def run(
        self,
        variant_kind: VariantKind,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> ExperimentResults:
        """Run every trial for *variant_kind*.

        Args:
            variant_kind: Variant under test.
            progress_callback: Optional callback(completed, total).

        Returns:
            Aggregated ExperimentResults.
        """
        results = ExperimentResults(variant=VariantKind(variant_kind))
        LOGGER.info("Running %d trials of %s", self.config.num_trials, results.variant.value)

        if self.config.parallel_workers > 1:
            self._run_parallel(results, progress_callback)
        else:
            self._run_sequential(results, progress_callback)

        return results

    def _run_sequential(
        self,
        results: ExperimentResults,
        progress_callback: Callable[[int, int], None] | None,
    ) -> None:
        for i in range(self.config.num_trials):
            results.trials.append(_run_single_trial(results.variant, self.config, self._seed(i)))
            if progress_callback:
                progress_callback(i + 1, self.config.num_trials)

    def _run_parallel(
        self,
        results: ExperimentResults,
        progress_callback: Callable[[int, int], None] | None,
    ) -> None:
        completed = 0

        with ProcessPoolExecutor(max_workers=self.config.parallel_workers) as executor:
            futures = [
                executor.submit(_run_single_trial, results.variant, self.config, self._seed(i))
                for i in range(self.config.num_trials)
            ]

            for future in as_completed(futures):
                results.trials.append(future.result())

                completed += 1
                if progress_callback:
                    progress_callback(completed, self.config.num_trials)

        # Keep trial order independent of completion order
        results.trials.sort(key=lambda trial: -1 if trial.seed is None else trial.seed)


def run_experiment(
    variant_kind: VariantKind | str,
    num_trials: int = 100,
    seed: int | None = None,
    **config_kwargs,
) -> ExperimentResults:
    """Convenience function to run a convergence experiment.

    Args:
        variant_kind: Variant under test.
        num_trials: Number of trials.
        seed: Base random seed.
        **config_kwargs: Further ExperimentConfig fields.

    Returns:
        Aggregated ExperimentResults.
    """
    config = ExperimentConfig(num_trials=num_trials, base_seed=seed, **config_kwargs)
    return ExperimentRunner(config).run(VariantKind(variant_kind))


def compare_variants(
    config: ExperimentConfig,
    variant_kinds: list[VariantKind] | None = None,
) -> dict[VariantKind, ExperimentResults]:
    """Run the same experiment against several variants.

    Args:
        config: Shared experiment configuration.
        variant_kinds: Variants to run (default: all of them).

    Returns:
        Results keyed by variant.
    """
    runner = ExperimentRunner(config)
    return {kind: runner.run(kind) for kind in (variant_kinds or list(VariantKind))}
