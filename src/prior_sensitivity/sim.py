from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import ConfigurationError
from .types import Dataset


@dataclass(frozen=True)
class LinearDGP:
    """True parameters of y = intercept + slope * x + N(0, noise_sd^2), x ~ U(0, 1)."""

    intercept: float = 1.0
    slope: float = 2.0
    noise_sd: float = 0.5

    def __post_init__(self) -> None:
        if not (math.isfinite(self.intercept) and math.isfinite(self.slope)):
            raise ConfigurationError("intercept and slope must be finite")
        if not math.isfinite(self.noise_sd) or self.noise_sd <= 0:
            raise ConfigurationError("noise_sd must be positive")


class LinearDataGenerator:
    def __init__(self, dgp: LinearDGP):
        self.dgp = dgp

    def generate(self, n: int, seed: Optional[int] = None) -> Dataset:
        """Draw n covariates uniformly on [0, 1], then n Gaussian responses.

        The covariates are drawn before the responses from a generator seeded
        with ``seed`` alone, so the same (seed, n) always gives the same data
        while different n with the same seed are separate draws.
        """
        if isinstance(n, bool) or int(n) != n or int(n) < 2:
            raise ConfigurationError(f"n must be an integer >= 2, got {n!r}")
        n = int(n)

        rng = np.random.default_rng(seed)
        x = rng.uniform(0.0, 1.0, size=n)
        y = rng.normal(self.dgp.intercept + self.dgp.slope * x, self.dgp.noise_sd)
        return Dataset(x=x, y=y, seed=seed)


def generate_dataset(
    n: int,
    intercept_true: float,
    slope_true: float,
    noise_sd_true: float,
    seed: Optional[int] = None,
) -> Dataset:
    """Generate one synthetic dataset; fails on n < 2 or noise_sd_true <= 0."""
    dgp = LinearDGP(intercept=float(intercept_true), slope=float(slope_true), noise_sd=float(noise_sd_true))
    return LinearDataGenerator(dgp).generate(n, seed=seed)
