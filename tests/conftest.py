"""Shared fixtures for the prior-sensitivity tests.

Provides small datasets, the four comparison priors and a short MCMC budget.
The full-grid experiment fixture is session-scoped because it is the slowest
piece of the suite.
"""

import numpy as np
import pytest

from prior_sensitivity import FLAT, MCMCConfig, PriorSpec, generate_dataset, run_experiment
from prior_sensitivity.sim import LinearDGP

TRUE_INTERCEPT = 1.0
TRUE_SLOPE = 2.0
TRUE_NOISE_SD = 0.5
SEED = 123


# ── Data ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def dataset_100():
    return generate_dataset(100, TRUE_INTERCEPT, TRUE_SLOPE, TRUE_NOISE_SD, seed=SEED)


@pytest.fixture
def dataset_10():
    return generate_dataset(10, TRUE_INTERCEPT, TRUE_SLOPE, TRUE_NOISE_SD, seed=SEED)


@pytest.fixture
def priors():
    """flat, N(0,10), N(0,1), N(0,0.1) on the slope."""
    return [PriorSpec.from_slope_sd(sd) for sd in (FLAT, 10.0, 1.0, 0.1)]


@pytest.fixture
def short_config():
    return MCMCConfig(n_warmup=300, n_sampling=300)


# ── Full grid ────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def grid_result():
    """Four priors x (n=10, n=1000), 3 chains of 500 warmup + 1000 draws."""
    priors = [PriorSpec.from_slope_sd(sd) for sd in (FLAT, 10.0, 1.0, 0.1)]
    return run_experiment(
        [10, 1000],
        priors,
        LinearDGP(TRUE_INTERCEPT, TRUE_SLOPE, TRUE_NOISE_SD),
        SEED,
        n_chains=3,
        mcmc_config=MCMCConfig(n_warmup=500, n_sampling=1000),
        verbose=False,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def make_chain():
    """Factory for ChainResult objects built from given draws."""
    from prior_sensitivity import ChainResult

    def _make(draws, chain_id=0, *, adaptation_ok=True, n_warmup=100, divergent=None):
        draws = np.asarray(draws, dtype=float)
        if draws.ndim == 1:
            draws = draws.reshape(-1, 1)
        n = draws.shape[0]
        return ChainResult(
            chain_id=chain_id,
            draws=draws,
            log_density=np.zeros(n),
            accept_stat=np.full(n, 0.8),
            tree_depth=np.full(n, 2, dtype=np.int64),
            n_leapfrog=np.full(n, 3, dtype=np.int64),
            divergent=np.zeros(n, dtype=bool) if divergent is None else np.asarray(divergent, dtype=bool),
            step_size=0.5,
            inv_metric=np.ones(draws.shape[1]),
            n_warmup=n_warmup,
            warmup_accept_rate=0.8 if adaptation_ok else 0.3,
            adaptation_ok=adaptation_ok,
        )

    return _make
