"""
Prior-sensitivity experiment over a (sample size, prior) grid.

For every sample size one dataset is drawn (seeded with the experiment seed,
so different sizes are separate draws rather than nested subsets) and reused
for every prior. Each (prior, size) cell then gets its own model, chains and
diagnostics. A cell whose sampling fails is recorded as a CellFailure and the
remaining cells still run.
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .chains import run_chains
from .config import ExperimentConfig
from .diagnostics import DiagnosticsReport, evaluate
from .errors import ConfigurationError, ConvergenceWarning, SamplingError
from .model import LinearRegressionModel
from .sampler import ChainResult, MCMCConfig
from .sim import LinearDataGenerator, LinearDGP
from .types import PARAM_NAMES, CellFailure, Dataset, PriorSpec

CellKey = Tuple[str, int]


@dataclass
class CellResult:
    """Outcome of one (prior, sample size) cell."""

    prior: PriorSpec
    sample_size: int
    chains: List[ChainResult] = field(default_factory=list)
    diagnostics: Optional[DiagnosticsReport] = None
    failure: Optional[CellFailure] = None

    @property
    def key(self) -> CellKey:
        return (self.prior.name, self.sample_size)

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @property
    def warnings(self) -> Tuple[str, ...]:
        if self.diagnostics is None or self.diagnostics.ok:
            return ()
        return self.diagnostics.messages

    def draws(self, constrained: bool = True) -> np.ndarray:
        """All post-warmup draws stacked over chains, (n_total, 3)."""
        if not self.chains:
            return np.empty((0, len(PARAM_NAMES)))
        draws = np.concatenate([c.draws for c in self.chains], axis=0)
        return LinearRegressionModel.constrain(draws) if constrained else draws

    @property
    def slope_draws(self) -> np.ndarray:
        return self.draws(constrained=False)[:, PARAM_NAMES.index("slope")]

    def to_frame(self) -> pd.DataFrame:
        """Posterior draws table: intercept, slope, sigma, lp__, chain, iteration."""
        if not self.chains:
            return pd.DataFrame(columns=["intercept", "slope", "sigma", "lp__", "chain", "iteration"])
        frames = []
        for c in self.chains:
            constrained = LinearRegressionModel.constrain(c.draws)
            frames.append(pd.DataFrame({
                "intercept": constrained[:, 0],
                "slope": constrained[:, 1],
                "sigma": constrained[:, 2],
                "lp__": c.log_density,
                "chain": c.chain_id,
                "iteration": c.n_warmup + np.arange(len(c)),
            }))
        return pd.concat(frames, ignore_index=True)


class ExperimentResult(Mapping):
    """Read-only mapping (prior name, sample size) -> CellResult, in run order."""

    def __init__(self, cells: Sequence[CellResult], datasets: Dict[int, Dataset],
                 true_params: Optional[LinearDGP] = None):
        self._cells: Dict[CellKey, CellResult] = {c.key: c for c in cells}
        self.datasets = dict(datasets)
        self.true_params = true_params

    @staticmethod
    def _key(key) -> CellKey:
        prior, size = key
        name = prior.name if isinstance(prior, PriorSpec) else str(prior)
        return (name, int(size))

    def __getitem__(self, key) -> CellResult:
        return self._cells[self._key(key)]

    def __iter__(self) -> Iterator[CellKey]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    @property
    def sample_sizes(self) -> List[int]:
        return list(dict.fromkeys(size for _, size in self._cells))

    @property
    def priors(self) -> List[PriorSpec]:
        seen: Dict[str, PriorSpec] = {}
        for cell in self._cells.values():
            seen.setdefault(cell.prior.name, cell.prior)
        return list(seen.values())

    def slope_draws(self, prior: Union[str, PriorSpec], sample_size: int) -> np.ndarray:
        return self[(prior, sample_size)].slope_draws

    def failures(self) -> List[CellFailure]:
        return [c.failure for c in self._cells.values() if c.failure is not None]

    def to_frame(self) -> pd.DataFrame:
        """One row per cell: slope summary, diagnostics and failure status."""
        rows = []
        for cell in self._cells.values():
            row = {
                "sample_size": cell.sample_size,
                "prior": cell.prior.name,
                "slope_prior_sd": np.nan if cell.prior.is_flat else cell.prior.slope_prior_sd,
                "failed": cell.failed,
                "error": cell.failure.message if cell.failed else "",
            }
            slope = cell.slope_draws
            if slope.size:
                lo, hi = np.percentile(slope, [2.5, 97.5])
                row.update({
                    "slope_mean": float(np.mean(slope)),
                    "slope_sd": float(np.std(slope, ddof=1)),
                    "slope_p2p5": float(lo),
                    "slope_p97p5": float(hi),
                })
            else:
                row.update({"slope_mean": np.nan, "slope_sd": np.nan, "slope_p2p5": np.nan, "slope_p97p5": np.nan})
            d = cell.diagnostics
            row.update({
                "rhat": d.rhat if d else np.nan,
                "ess": d.ess if d else np.nan,
                "ok": d.ok if d else False,
                "n_divergent": d.n_divergent if d else 0,
            })
            rows.append(row)
        return pd.DataFrame(rows)


def _run_cell(
    dataset: Dataset,
    prior: PriorSpec,
    n_chains: int,
    config: MCMCConfig,
    seed: np.random.SeedSequence,
    rhat_threshold: float,
    min_ess_fraction: float,
) -> CellResult:
    n = dataset.n
    model = LinearRegressionModel(dataset, prior)
    try:
        chains = run_chains(model, n_chains, config.n_warmup, config.n_sampling, seed, config=config)
    except SamplingError as exc:
        return CellResult(
            prior=prior,
            sample_size=n,
            failure=CellFailure(prior.name, n, type(exc).__name__, str(exc)),
        )
    diagnostics = evaluate(chains, rhat_threshold=rhat_threshold, min_ess_fraction=min_ess_fraction)
    return CellResult(prior=prior, sample_size=n, chains=chains, diagnostics=diagnostics)


def _validate_grid(sample_sizes: Sequence[int], priors: Sequence[PriorSpec]) -> List[int]:
    if not sample_sizes:
        raise ConfigurationError("sample_sizes must not be empty")
    sizes = []
    for n in sample_sizes:
        if isinstance(n, bool) or int(n) != n or int(n) < 2:
            raise ConfigurationError(f"sample sizes must be integers >= 2, got {n!r}")
        sizes.append(int(n))
    if len(set(sizes)) != len(sizes):
        raise ConfigurationError("sample_sizes must not contain duplicates")
    if not priors:
        raise ConfigurationError("priors must not be empty")
    if any(not isinstance(p, PriorSpec) for p in priors):
        raise ConfigurationError("priors must be PriorSpec instances")
    names = [p.name for p in priors]
    if len(set(names)) != len(names):
        raise ConfigurationError("prior names must be unique")
    return sizes


def _report_cell(cell: CellResult, verbose: bool) -> None:
    if cell.failed:
        if verbose:
            print(f"  n={cell.sample_size:<5d} {cell.prior.name:<10s} FAILED: {cell.failure.message}", flush=True)
        return
    d = cell.diagnostics
    slope = cell.slope_draws
    if verbose:
        status = "OK" if d.ok else "WARNING"
        print(
            f"  n={cell.sample_size:<5d} {cell.prior.name:<10s} slope={np.mean(slope):.3f} "
            f"(sd {np.std(slope):.3f}), rhat={d.rhat:.3f}, ess={d.ess:.0f} {status}",
            flush=True,
        )
    if not d.ok:
        warnings.warn(
            f"cell ({cell.prior.name}, n={cell.sample_size}): " + "; ".join(d.messages),
            ConvergenceWarning,
            stacklevel=3,
        )


def run_experiment(
    sample_sizes: Sequence[int],
    priors: Sequence[PriorSpec],
    true_params: Union[LinearDGP, Tuple[float, float, float]],
    seed: int,
    *,
    n_chains: int = 3,
    mcmc_config: Optional[MCMCConfig] = None,
    n_workers: int = 1,
    rhat_threshold: float = 1.1,
    min_ess_fraction: float = 0.1,
    verbose: bool = True,
) -> ExperimentResult:
    """Run every (sample size, prior) cell and collect posterior draws.

    Args:
        sample_sizes: Dataset sizes in run order
        priors: Prior configurations compared on every dataset
        true_params: LinearDGP, or an (intercept, slope, noise_sd) tuple
        seed: Seed for every dataset and, through spawned streams, every chain
        n_chains: Chains per cell
        mcmc_config: Sampler settings (warmup/sampling budget, target acceptance)
        n_workers: Bound on cells run concurrently in a process pool
        rhat_threshold / min_ess_fraction: Diagnostics thresholds

    Returns:
        ExperimentResult keyed by (prior name, sample size)
    """
    sizes = _validate_grid(sample_sizes, priors)
    if isinstance(n_chains, bool) or int(n_chains) != n_chains or int(n_chains) <= 0:
        raise ConfigurationError("n_chains must be a positive integer")
    if int(n_workers) <= 0:
        raise ConfigurationError("n_workers must be positive")
    if not isinstance(true_params, LinearDGP):
        intercept, slope, noise_sd = true_params
        true_params = LinearDGP(intercept=float(intercept), slope=float(slope), noise_sd=float(noise_sd))
    config = mcmc_config if mcmc_config is not None else MCMCConfig()

    if verbose:
        print("\n" + "=" * 70)
        print("PRIOR SENSITIVITY EXPERIMENT")
        print("=" * 70)
        print(f"True parameters: {true_params}")
        print(f"Sample sizes: {sizes}")
        print(f"Priors: {[p.name for p in priors]}")
        print(f"Chains: {n_chains} x ({config.n_warmup} warmup + {config.n_sampling} draws), workers: {n_workers}")

    generator = LinearDataGenerator(true_params)
    datasets = {n: generator.generate(n, seed=seed) for n in sizes}

    tasks = []
    for i, n in enumerate(sizes):
        for j, prior in enumerate(priors):
            cell_seed = np.random.SeedSequence(seed, spawn_key=(i, j))
            tasks.append((datasets[n], prior, int(n_chains), config, cell_seed, rhat_threshold, min_ess_fraction))

    cells: List[CellResult] = []
    if int(n_workers) == 1:
        for task in tasks:
            cell = _run_cell(*task)
            _report_cell(cell, verbose)
            cells.append(cell)
    else:
        with ProcessPoolExecutor(max_workers=int(n_workers)) as pool:
            futures = [pool.submit(_run_cell, *task) for task in tasks]
            for future in futures:
                cell = future.result()
                _report_cell(cell, verbose)
                cells.append(cell)

    result = ExperimentResult(cells, datasets, true_params)
    if verbose:
        n_failed = len(result.failures())
        print(f"\nExperiment complete: {len(result) - n_failed}/{len(result)} cells sampled", flush=True)
    return result


def run_from_config(config: ExperimentConfig, *, verbose: bool = True) -> ExperimentResult:
    """Run the experiment described by an ExperimentConfig."""
    mcmc_config = MCMCConfig(
        n_warmup=config.n_warmup,
        n_sampling=config.n_sampling_iters,
        target_accept=config.target_acceptance,
        max_tree_depth=config.max_tree_depth,
    )
    return run_experiment(
        config.sample_sizes,
        config.priors(),
        LinearDGP(config.true_intercept, config.true_slope, config.true_noise_sd),
        config.seed,
        n_chains=config.n_chains,
        mcmc_config=mcmc_config,
        n_workers=config.n_parallel_workers,
        verbose=verbose,
    )
