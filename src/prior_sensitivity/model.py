"""
Log-posterior of the linear-Gaussian regression model.

Model:
    y_i ~ N(intercept + slope * x_i, sigma^2)
    intercept ~ N(0, intercept_prior_sd^2)
    slope ~ N(0, slope_prior_sd^2)      (term omitted under the flat prior)
    sigma ~ HalfNormal(noise_prior_sd)

The sampler works on the unconstrained vector
theta = (intercept, slope, log_sigma), so the log-density carries the
log-Jacobian of sigma = exp(log_sigma).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .kernels import linreg_logp_grad
from .types import PARAM_NAMES, Dataset, PriorSpec

# Beyond this |log_sigma| the likelihood under/overflows; treated as zero density.
LOG_SIGMA_LIMIT = 300.0


@dataclass(frozen=True)
class LinearRegressionModel:
    dataset: Dataset
    prior: PriorSpec

    @property
    def dim(self) -> int:
        return len(PARAM_NAMES)

    @property
    def param_names(self) -> Tuple[str, ...]:
        return PARAM_NAMES

    def logp_and_grad(self, theta: np.ndarray) -> Tuple[float, np.ndarray]:
        """Log-posterior (up to the evidence) and its gradient at theta.

        Returns (-inf, NaN gradient) for non-finite or out-of-range input.
        """
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (3,):
            raise ValueError(f"theta must have shape (3,), got {theta.shape}")
        if not np.all(np.isfinite(theta)) or abs(theta[2]) > LOG_SIGMA_LIMIT:
            return -np.inf, np.full(3, np.nan)

        slope_sd = 0.0 if self.prior.is_flat else float(self.prior.slope_prior_sd)
        lp, grad = linreg_logp_grad(
            theta,
            self.dataset.x,
            self.dataset.y,
            float(self.prior.intercept_prior_sd),
            slope_sd,
            float(self.prior.noise_prior_sd),
        )
        return float(lp), grad

    def log_posterior(self, theta: np.ndarray) -> float:
        return self.logp_and_grad(theta)[0]

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        return self.logp_and_grad(theta)[1]

    @staticmethod
    def constrain(draws: np.ndarray) -> np.ndarray:
        """Map unconstrained draws (..., 3) to (intercept, slope, sigma)."""
        out = np.array(draws, dtype=float, copy=True)
        out[..., 2] = np.exp(out[..., 2])
        return out
