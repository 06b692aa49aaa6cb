from __future__ import annotations

import math
from typing import Tuple

import numpy as np

try:
    from numba import njit
except Exception as exc:  # pragma: no cover
    raise RuntimeError(
        "Numba is required for the log-density kernels (performance-critical). "
        "Install numba to use this package."
    ) from exc

_LOG_2PI = math.log(2.0 * math.pi)
_LOG_2 = math.log(2.0)


@njit(cache=True)
def normal_logpdf_grad(value: float, sd: float) -> Tuple[float, float]:
    """log N(value | 0, sd^2) and its derivative in value."""
    z = value / sd
    return -0.5 * z * z - math.log(sd) - 0.5 * _LOG_2PI, -value / (sd * sd)


@njit(cache=True)
def gaussian_loglik_grad(
    intercept: float,
    slope: float,
    log_sigma: float,
    x: np.ndarray,
    y: np.ndarray,
) -> Tuple[float, float, float, float]:
    """Sum of log N(y_i | intercept + slope * x_i, exp(log_sigma)^2) and its gradient.

    Returns (loglik, d/d intercept, d/d slope, d/d log_sigma).
    """
    n = x.shape[0]
    ss = 0.0
    sr = 0.0
    srx = 0.0
    for i in range(n):
        r = y[i] - intercept - slope * x[i]
        ss += r * r
        sr += r
        srx += r * x[i]

    inv_var = math.exp(-2.0 * log_sigma)
    loglik = -0.5 * n * _LOG_2PI - n * log_sigma - 0.5 * ss * inv_var
    return loglik, sr * inv_var, srx * inv_var, -float(n) + ss * inv_var


@njit(cache=True)
def linreg_logp_grad(
    theta: np.ndarray,
    x: np.ndarray,
    y: np.ndarray,
    intercept_sd: float,
    slope_sd: float,
    noise_scale: float,
) -> Tuple[float, np.ndarray]:
    """Log-posterior and gradient for theta = (intercept, slope, log_sigma).

    slope_sd <= 0 means a flat slope prior (no term, no gradient).
    The noise sd has a half-normal(noise_scale) prior; since it is sampled as
    log_sigma the log-Jacobian log_sigma is added.
    """
    intercept = theta[0]
    slope = theta[1]
    log_sigma = theta[2]
    grad = np.zeros(3)

    lp, g = normal_logpdf_grad(intercept, intercept_sd)
    grad[0] += g

    if slope_sd > 0.0:
        lp_b, g = normal_logpdf_grad(slope, slope_sd)
        lp += lp_b
        grad[1] += g

    sigma = math.exp(log_sigma)
    z = sigma / noise_scale
    lp += _LOG_2 - 0.5 * _LOG_2PI - math.log(noise_scale) - 0.5 * z * z + log_sigma
    grad[2] += -z * z + 1.0

    ll, ga, gb, gs = gaussian_loglik_grad(intercept, slope, log_sigma, x, y)
    lp += ll
    grad[0] += ga
    grad[1] += gb
    grad[2] += gs
    return lp, grad
