"""
Command-line interface entry points.

Registered as a console script in pyproject.toml. Usage after installing:
    prior-sensitivity
    prior-sensitivity --seed 7 --workers 1 --n-warmup 500 --n-sampling 500
"""

import argparse
from pathlib import Path

from .analysis import posterior_summary, summarize_experiment
from .config import EXPERIMENT_DIR, ExperimentConfig, configure_plotting
from .errors import ConfigurationError
from .experiment import run_from_config
from .visualization import PriorSensitivityVisualizer


def _build_parser() -> argparse.ArgumentParser:
    defaults = ExperimentConfig()
    parser = argparse.ArgumentParser(
        description="Fit y = a + b*x under four slope priors for several sample sizes and compare posteriors."
    )
    parser.add_argument("--seed", type=int, default=defaults.seed)
    parser.add_argument("--workers", type=int, default=defaults.n_parallel_workers,
                        help="cells sampled concurrently (default: %(default)s)")
    parser.add_argument("--true-intercept", type=float, default=defaults.true_intercept)
    parser.add_argument("--true-slope", type=float, default=defaults.true_slope)
    parser.add_argument("--true-noise-sd", type=float, default=defaults.true_noise_sd)
    parser.add_argument("--sizes", type=int, nargs="+", default=list(defaults.sample_sizes))
    parser.add_argument("--slope-prior-sds", type=float, nargs="+", default=None,
                        help="slope prior sds, 0 for flat (default: flat 10 1 0.1)")
    parser.add_argument("--intercept-prior-sd", type=float, default=defaults.intercept_prior_sd)
    parser.add_argument("--noise-prior-sd", type=float, default=defaults.noise_prior_sd)
    parser.add_argument("--chains", type=int, default=defaults.n_chains)
    parser.add_argument("--n-warmup", type=int, default=defaults.n_warmup)
    parser.add_argument("--n-sampling", type=int, default=defaults.n_sampling_iters)
    parser.add_argument("--target-acceptance", type=float, default=defaults.target_acceptance)
    parser.add_argument("--max-tree-depth", type=int, default=defaults.max_tree_depth)
    parser.add_argument("--out-dir", type=Path, default=EXPERIMENT_DIR)
    parser.add_argument("--no-plots", action="store_true")
    return parser


def prior_sensitivity_experiment(argv=None):
    """Run the prior-sensitivity experiment and write tables and plots."""
    args = _build_parser().parse_args(argv)
    try:
        prior_sds = {}
        if args.slope_prior_sds is not None:
            prior_sds["prior_slope_sds"] = tuple(args.slope_prior_sds)
        config = ExperimentConfig(
            true_intercept=args.true_intercept,
            true_slope=args.true_slope,
            true_noise_sd=args.true_noise_sd,
            sample_sizes=tuple(args.sizes),
            intercept_prior_sd=args.intercept_prior_sd,
            noise_prior_sd=args.noise_prior_sd,
            n_chains=args.chains,
            n_warmup=args.n_warmup,
            n_sampling_iters=args.n_sampling,
            target_acceptance=args.target_acceptance,
            max_tree_depth=args.max_tree_depth,
            seed=args.seed,
            n_parallel_workers=args.workers,
            **prior_sds,
        )
    except ConfigurationError as exc:
        raise SystemExit(f"Invalid configuration: {exc}")

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    result = run_from_config(config)
    report = summarize_experiment(result)

    table = result.to_frame()
    csv_path = out_dir / "cell_summary.csv"
    table.to_csv(csv_path, index=False)
    print(f"\nResults saved to {csv_path}")

    for key, cell in result.items():
        if cell.failed:
            continue
        name, n = key
        print(f"\n{name}, n={n}")
        print(posterior_summary(cell.chains).round(3))

    if result.failures():
        print("\nFailed cells:")
        for failure in result.failures():
            print(f"  {failure.prior_name}, n={failure.sample_size}: {failure.error_type}: {failure.message}")

    if report.skipped:
        print("\nCells without a density curve:")
        for skipped in report.skipped:
            print(f"  {skipped.prior_name}, n={skipped.sample_size}: {skipped.message}")

    if not args.no_plots:
        configure_plotting()
        print("\nGenerating plots...")
        PriorSensitivityVisualizer.plot_slope_densities(report, str(out_dir))

    print("\n" + "=" * 70)
    print("PRIOR SENSITIVITY EXPERIMENT COMPLETE!")
    print("=" * 70)
    return result, report


if __name__ == "__main__":
    prior_sensitivity_experiment()
