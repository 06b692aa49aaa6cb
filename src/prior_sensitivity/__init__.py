"""
Prior Sensitivity: Bayesian Linear Regression under Competing Slope Priors

Tools for simulating linear-Gaussian data, fitting the same regression under
several slope priors with a hand-written NUTS sampler, and comparing the
resulting posteriors across sample sizes.

Modules live under src/prior_sensitivity/:
- sim.py: True-parameter dataclass and synthetic data generator
- model.py: Log-posterior and analytic gradient of the regression model
- kernels.py: Numba kernels for the log-density and gradient
- sampler.py: NUTS / static HMC sampler with warmup adaptation
- chains.py: Multi-chain runner (optionally in a process pool)
- diagnostics.py: Split R-hat and effective sample size
- experiment.py: (prior, sample size) grid orchestration
- analysis.py: Density curves and posterior summaries
- visualization.py: Comparison plots
- cli.py: Command-line entry point
- config.py: Experiment configuration, plotting and path constants
- errors.py: Exception and warning types
"""

from .config import ExperimentConfig, configure_plotting

from .errors import (
    ConfigurationError,
    ConvergenceWarning,
    NumericalDegeneracy,
    PriorSensitivityError,
    SamplingError,
)

from .types import FLAT, CellFailure, Dataset, PosteriorSample, PriorSpec

from .sim import LinearDGP, LinearDataGenerator, generate_dataset

from .model import LinearRegressionModel

from .sampler import ChainResult, MCMCConfig, NUTSSampler

from .chains import ChainRunner, run_chains

from .diagnostics import DiagnosticsReport, evaluate

from .experiment import CellResult, ExperimentResult, run_experiment, run_from_config

from .analysis import DensityEstimate, SlopeDensityReport, summarize, summarize_experiment

from .visualization import PriorSensitivityVisualizer

__version__ = "0.1.0"

__all__ = [
    # Config
    "ExperimentConfig",
    "configure_plotting",
    # Errors
    "ConfigurationError",
    "ConvergenceWarning",
    "NumericalDegeneracy",
    "PriorSensitivityError",
    "SamplingError",
    # Data model
    "FLAT",
    "CellFailure",
    "Dataset",
    "PosteriorSample",
    "PriorSpec",
    # Data generation
    "LinearDGP",
    "LinearDataGenerator",
    "generate_dataset",
    # Model
    "LinearRegressionModel",
    # Sampling
    "ChainResult",
    "MCMCConfig",
    "NUTSSampler",
    "ChainRunner",
    "run_chains",
    # Diagnostics
    "DiagnosticsReport",
    "evaluate",
    # Experiment
    "CellResult",
    "ExperimentResult",
    "run_experiment",
    "run_from_config",
    # Analysis
    "DensityEstimate",
    "SlopeDensityReport",
    "summarize",
    "summarize_experiment",
    # Visualization
    "PriorSensitivityVisualizer",
]
