from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace
from typing import List, Optional, Union

import numpy as np

from .errors import ConfigurationError, NumericalDegeneracy
from .sampler import ChainResult, MCMCConfig, NUTSSampler

SeedLike = Union[None, int, np.random.SeedSequence]


def initial_point(model, rng: np.random.Generator, *, radius: float = 2.0, max_attempts: int = 100) -> np.ndarray:
    """Uniform(-radius, radius) jitter in unconstrained space, retried until finite."""
    for _ in range(int(max_attempts)):
        theta = rng.uniform(-radius, radius, size=model.dim)
        logp, grad = model.logp_and_grad(theta)
        if np.isfinite(logp) and np.all(np.isfinite(grad)):
            return theta
    raise NumericalDegeneracy(f"no finite initial point found after {max_attempts} attempts")


def _run_single_chain(model, config: MCMCConfig, chain_id: int, seed: np.random.SeedSequence) -> ChainResult:
    rng = np.random.default_rng(seed)
    init = initial_point(model, rng, radius=config.init_radius, max_attempts=config.max_init_attempts)
    return NUTSSampler(model, config, rng=rng, chain_id=chain_id).run(init)


def _as_seed_sequence(seed: SeedLike) -> np.random.SeedSequence:
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


class ChainRunner:
    """Run independent chains of one model, sequentially or in a process pool.

    Every chain gets its own child SeedSequence, so results depend only on
    the seed and never on how many workers were used.
    """

    def __init__(self, config: Optional[MCMCConfig] = None, *, n_workers: int = 1):
        if int(n_workers) <= 0:
            raise ConfigurationError("n_workers must be positive")
        self.config = config if config is not None else MCMCConfig()
        self.n_workers = int(n_workers)

    def run(
        self,
        model,
        n_chains: int,
        n_warmup: Optional[int] = None,
        n_sampling: Optional[int] = None,
        seed: SeedLike = None,
    ) -> List[ChainResult]:
        if isinstance(n_chains, bool) or int(n_chains) != n_chains or int(n_chains) <= 0:
            raise ConfigurationError("n_chains must be a positive integer")
        n_chains = int(n_chains)

        config = self.config
        if n_warmup is not None:
            config = replace(config, n_warmup=int(n_warmup))
        if n_sampling is not None:
            config = replace(config, n_sampling=int(n_sampling))

        seeds = _as_seed_sequence(seed).spawn(n_chains)

        if self.n_workers == 1 or n_chains == 1:
            return [_run_single_chain(model, config, i, seeds[i]) for i in range(n_chains)]

        with ProcessPoolExecutor(max_workers=min(self.n_workers, n_chains)) as pool:
            futures = [pool.submit(_run_single_chain, model, config, i, seeds[i]) for i in range(n_chains)]
            # Barrier: diagnostics need every chain of the cell
            return [f.result() for f in futures]


def run_chains(
    model,
    n_chains: int,
    n_warmup: int,
    n_sampling: int,
    seed: SeedLike = None,
    *,
    config: Optional[MCMCConfig] = None,
    n_workers: int = 1,
) -> List[ChainResult]:
    """Run ``n_chains`` chains and return one draw sequence of length ``n_sampling`` per chain."""
    return ChainRunner(config, n_workers=n_workers).run(
        model, n_chains, n_warmup=n_warmup, n_sampling=n_sampling, seed=seed
    )
