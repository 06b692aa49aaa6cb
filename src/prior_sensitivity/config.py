"""
Global configuration for plotting, paths, and the experiment surface.

This module centralizes the settings of the prior-sensitivity experiment:
the true generative parameters, the (prior, sample size) grid, the MCMC
budget and the worker pool bound. Everything is validated when the
configuration is constructed so that nothing is sampled from a bad grid.
"""

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns

from .errors import ConfigurationError
from .types import FLAT, PriorSpec


def configure_plotting():
    """Set up publication-quality plotting defaults.

    Call this function at the start of any script that generates plots.
    """
    sns.set_style("whitegrid")
    sns.set_context("paper", font_scale=1.2)
    plt.rcParams.update({
        'figure.dpi': 100,
        'savefig.dpi': 300,
        'axes.labelsize': 11,
        'axes.titlesize': 12,
        'xtick.labelsize': 10,
        'ytick.labelsize': 10,
        'legend.fontsize': 10,
        'figure.titlesize': 13,
    })


# Path constants
REPO_ROOT = Path(__file__).resolve().parents[2]
OUTPUTS_DIR = REPO_ROOT / "outputs"
EXPERIMENT_DIR = OUTPUTS_DIR / "prior_sensitivity"

# Plot colours / labels, one per prior in the default grid order
PRIOR_COLORS = ("black", "red", "blue", "green")
TRUE_VALUE_COLOR = "orange"


def _require_positive_int(label: str, value) -> int:
    if isinstance(value, bool) or int(value) != value or int(value) <= 0:
        raise ConfigurationError(f"{label} must be a positive integer, got {value!r}")
    return int(value)


def _require_positive(label: str, value) -> float:
    value = float(value)
    if not math.isfinite(value) or value <= 0.0:
        raise ConfigurationError(f"{label} must be positive and finite, got {value!r}")
    return value


@dataclass
class ExperimentConfig:
    """Configuration surface of the prior-sensitivity experiment.

    Attributes:
        true_intercept: Intercept of the generating line
        true_slope: Slope of the generating line
        true_noise_sd: Residual standard deviation of the generating process
        sample_sizes: Dataset sizes, in the order the cells are run
        prior_slope_sds: Slope prior sds; ``FLAT`` (None) or 0 is the flat prior
        intercept_prior_sd: Normal prior sd on the intercept
        noise_prior_sd: Half-normal prior scale on the noise sd
        n_chains: Independent chains per cell
        n_warmup: Adaptation iterations per chain (discarded)
        n_sampling_iters: Retained iterations per chain
        target_acceptance: Dual-averaging target for the acceptance statistic
        max_tree_depth: Cap on NUTS trajectory doublings
        seed: Master seed; datasets and chains derive their streams from it
        n_parallel_workers: Worker pool bound (1 runs everything in-process)
    """
    true_intercept: float = 1.0
    true_slope: float = 2.0
    true_noise_sd: float = 0.5
    sample_sizes: Tuple[int, ...] = (100, 1000, 10)
    prior_slope_sds: Tuple[Optional[float], ...] = (FLAT, 10.0, 1.0, 0.1)
    intercept_prior_sd: float = 10.0
    noise_prior_sd: float = 10.0
    n_chains: int = 3
    n_warmup: int = 1000
    n_sampling_iters: int = 1000
    target_acceptance: float = 0.8
    max_tree_depth: int = 10
    seed: int = 123
    n_parallel_workers: int = 3

    def __post_init__(self):
        for label in ("true_intercept", "true_slope"):
            if not math.isfinite(float(getattr(self, label))):
                raise ConfigurationError(f"{label} must be finite")
        self.true_noise_sd = _require_positive("true_noise_sd", self.true_noise_sd)
        self.intercept_prior_sd = _require_positive("intercept_prior_sd", self.intercept_prior_sd)
        self.noise_prior_sd = _require_positive("noise_prior_sd", self.noise_prior_sd)

        if not self.sample_sizes:
            raise ConfigurationError("sample_sizes must not be empty")
        sizes = tuple(_require_positive_int("sample size", n) for n in self.sample_sizes)
        if any(n < 2 for n in sizes):
            raise ConfigurationError("every sample size must be >= 2")
        if len(set(sizes)) != len(sizes):
            raise ConfigurationError("sample_sizes must not contain duplicates")
        self.sample_sizes = sizes

        if not self.prior_slope_sds:
            raise ConfigurationError("prior_slope_sds must not be empty")
        # PriorSpec validates each sd (and normalises 0 to the flat sentinel)
        names = [p.name for p in self.priors()]
        if len(set(names)) != len(names):
            raise ConfigurationError("prior_slope_sds must not contain duplicates")

        self.n_chains = _require_positive_int("n_chains", self.n_chains)
        self.n_warmup = _require_positive_int("n_warmup", self.n_warmup)
        self.n_sampling_iters = _require_positive_int("n_sampling_iters", self.n_sampling_iters)
        self.max_tree_depth = _require_positive_int("max_tree_depth", self.max_tree_depth)
        self.n_parallel_workers = _require_positive_int("n_parallel_workers", self.n_parallel_workers)
        if not (0.0 < float(self.target_acceptance) < 1.0):
            raise ConfigurationError("target_acceptance must be in (0, 1)")
        if isinstance(self.seed, bool) or int(self.seed) != self.seed or int(self.seed) < 0:
            raise ConfigurationError("seed must be a non-negative integer")
        self.seed = int(self.seed)

    def priors(self) -> List[PriorSpec]:
        return [
            PriorSpec.from_slope_sd(
                sd,
                intercept_prior_sd=self.intercept_prior_sd,
                noise_prior_sd=self.noise_prior_sd,
            )
            for sd in self.prior_slope_sds
        ]
