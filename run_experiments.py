"""Run convergence experiments across variants and write a CSV summary."""

import argparse
import csv
import logging
import os

from crdtsim.experiments import ExperimentConfig, ExperimentRunner
from crdtsim.graphing_utils import make_convergence_bar_chart
from crdtsim.simulation import VariantKind, seconds

FIELDNAMES = ["variant", "trials", "convergence_rate", "ci_low", "ci_high", "settle_mean_ms", "settle_p99_ms"]


def _row(results):
    ci = results.convergence_rate_ci() or (float("nan"), float("nan"))
    mean = results.settle_time_mean()
    p99 = results.settle_time_percentile(99)
    return {
        "variant": results.variant.value,
        "trials": len(results.trials),
        "convergence_rate": results.convergence_rate(),
        "ci_low": ci[0],
        "ci_high": ci[1],
        "settle_mean_ms": mean if mean is not None else float("nan"),
        "settle_p99_ms": p99 if p99 is not None else float("nan"),
    }


def main():
    parser = argparse.ArgumentParser(description="Measure how often each variant converges.")
    parser.add_argument("--variants", nargs="+", choices=[k.value for k in VariantKind],
                        default=[k.value for k in VariantKind], help="Variants to run (default: all)")
    parser.add_argument("--trials", type=int, default=200, help="Trials per variant")
    parser.add_argument("--replicas", type=int, default=3, help="Replicas per trial")
    parser.add_argument("--ops", type=int, default=20, help="Edits per replica")
    parser.add_argument("--max-delay", type=float, default=1.0, help="Max outbound delay in seconds")
    parser.add_argument("--disconnect", type=float, default=0.2, help="Probability of an offline window")
    parser.add_argument("--workers", type=int, default=os.cpu_count() or 1, help="Worker processes")
    parser.add_argument("--seed", type=int, default=42, help="Base random seed")
    parser.add_argument("--csv", default="convergence_results.csv", help="CSV output file")
    parser.add_argument("--plot", default=None, help="Write a convergence bar chart to this HTML file")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")

    config = ExperimentConfig(
        num_trials=args.trials,
        num_replicas=args.replicas,
        ops_per_replica=args.ops,
        max_delay_ms=seconds(args.max_delay),
        disconnect_probability=args.disconnect,
        parallel_workers=args.workers,
        base_seed=args.seed,
    )
    runner = ExperimentRunner(config)

    all_results = []
    for name in args.variants:
        results = runner.run(VariantKind(name))
        all_results.append(results)
        print(results.summary(), flush=True)

    with open(args.csv, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
        writer.writeheader()
        writer.writerows(_row(results) for results in all_results)
    print(f"Wrote {len(all_results)} rows to {args.csv}")

    if args.plot:
        make_convergence_bar_chart(all_results).write_html(args.plot)
        print(f"Wrote chart to {args.plot}")


if __name__ == "__main__":
    main()
