"""
Results analysis: density curves and posterior summaries.

This module turns raw posterior draws into the comparison artifact consumed
by the plotting code (one slope density curve per prior, per sample size),
plus tabular summaries and the analytic references used to check shrinkage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde

from .diagnostics import DiagnosticsReport, effective_sample_size, split_rhat
from .types import CellFailure, Dataset, PriorSpec


@dataclass(frozen=True)
class DensityEstimate:
    """Kernel density of one set of draws evaluated on a grid."""

    grid: np.ndarray
    density: np.ndarray
    bandwidth: float
    n_samples: int
    mean: float
    sd: float
    ci_lower: float
    ci_upper: float


def bandwidth_nrd0(samples: np.ndarray) -> float:
    """Silverman's rule of thumb, 0.9 * min(sd, IQR / 1.34) * n^(-1/5)."""
    samples = np.asarray(samples, dtype=float)
    sd = float(np.std(samples, ddof=1))
    q75, q25 = np.percentile(samples, [75, 25])
    spread = min(sd, (q75 - q25) / 1.34)
    if spread <= 0.0:
        spread = sd
    return 0.9 * spread * samples.size ** (-0.2)


def default_grid(samples: np.ndarray, *, n_points: int = 512, cut: float = 3.0) -> np.ndarray:
    """Grid from min - cut*bw to max + cut*bw."""
    samples = np.asarray(samples, dtype=float)
    bw = bandwidth_nrd0(samples)
    return np.linspace(samples.min() - cut * bw, samples.max() + cut * bw, int(n_points))


def summarize(
    samples: Sequence[float],
    grid: Optional[np.ndarray] = None,
    *,
    n_points: int = 512,
) -> DensityEstimate:
    """Gaussian KDE of ``samples`` on ``grid`` (or a default grid around the draws)."""
    samples = np.asarray(samples, dtype=float).ravel()
    if samples.size < 2:
        raise ValueError("need at least two samples for a density estimate")
    if not np.all(np.isfinite(samples)):
        raise ValueError("samples must be finite")
    if np.ptp(samples) == 0.0:
        raise ValueError("samples are constant; density is undefined")

    bw = bandwidth_nrd0(samples)
    kde = gaussian_kde(samples, bw_method=bw / float(np.std(samples, ddof=1)))
    grid = default_grid(samples, n_points=n_points) if grid is None else np.asarray(grid, dtype=float)

    lo, hi = np.percentile(samples, [2.5, 97.5])
    return DensityEstimate(
        grid=grid,
        density=kde(grid),
        bandwidth=float(bw),
        n_samples=int(samples.size),
        mean=float(np.mean(samples)),
        sd=float(np.std(samples, ddof=1)),
        ci_lower=float(lo),
        ci_upper=float(hi),
    )


@dataclass(frozen=True)
class SlopeDensityReport:
    """Grid -> density-curve mapping for the comparison plots.

    ``curves[sample_size][prior_name]`` is a DensityEstimate, or None when the
    cell failed (listed in ``failures``) or its draws admit no density
    (listed in ``skipped``, e.g. a stuck chain that never moved).
    """

    curves: Dict[int, Dict[str, Optional[DensityEstimate]]]
    diagnostics: Dict[Tuple[str, int], Optional[DiagnosticsReport]]
    failures: Tuple[CellFailure, ...]
    true_slope: Optional[float] = None
    skipped: Tuple[CellFailure, ...] = ()
    recovery: Dict[Tuple[str, int], Dict[str, float]] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for n, by_prior in self.curves.items():
            for name, est in by_prior.items():
                d = self.diagnostics.get((name, n))
                rec = self.recovery.get((name, n), {})
                rows.append({
                    "sample_size": n,
                    "prior": name,
                    "available": est is not None,
                    "mean": est.mean if est else np.nan,
                    "sd": est.sd if est else np.nan,
                    "ci_lower": est.ci_lower if est else np.nan,
                    "ci_upper": est.ci_upper if est else np.nan,
                    "bias": rec.get("bias", np.nan),
                    "rmse": rec.get("rmse", np.nan),
                    "covered": rec.get("covered", False),
                    "rhat": d.rhat if d else np.nan,
                    "ess": d.ess if d else np.nan,
                    "ok": d.ok if d else False,
                })
        return pd.DataFrame(rows)


def _usable(samples: np.ndarray) -> bool:
    return samples.size >= 2 and bool(np.all(np.isfinite(samples))) and np.ptp(samples) > 0.0


def summarize_experiment(result, *, n_points: int = 512) -> SlopeDensityReport:
    """Slope densities for every cell, on one shared grid per sample size.

    Cells whose draws cannot carry a density (fewer than two, non-finite or
    constant) get no curve and are listed in ``skipped``; the rest of the
    report is still built.
    """
    curves: Dict[int, Dict[str, Optional[DensityEstimate]]] = {}
    diagnostics: Dict[Tuple[str, int], Optional[DiagnosticsReport]] = {}
    recovery: Dict[Tuple[str, int], Dict[str, float]] = {}
    skipped: List[CellFailure] = []
    true_slope = None if result.true_params is None else float(result.true_params.slope)

    for n in result.sample_sizes:
        cells = [result[(p, n)] for p in result.priors if (p.name, n) in result]
        pooled = [c.slope_draws for c in cells if not c.failed and _usable(c.slope_draws)]
        grid = None
        if pooled:
            lo = min(float(np.min(s) - 3.0 * bandwidth_nrd0(s)) for s in pooled)
            hi = max(float(np.max(s) + 3.0 * bandwidth_nrd0(s)) for s in pooled)
            grid = np.linspace(lo, hi, int(n_points))

        curves[n] = {}
        for cell in cells:
            diagnostics[cell.key] = cell.diagnostics
            curves[n][cell.prior.name] = None
            if cell.failed:
                continue
            slope = cell.slope_draws
            if not _usable(slope):
                skipped.append(CellFailure(
                    cell.prior.name, n, "DegenerateDraws",
                    f"{slope.size} slope draws with range {np.ptp(slope) if slope.size else 0.0:g}; no density",
                ))
                continue
            curves[n][cell.prior.name] = summarize(slope, grid)
            if true_slope is not None:
                recovery[cell.key] = slope_recovery(slope, true_slope)

    return SlopeDensityReport(
        curves=curves,
        diagnostics=diagnostics,
        failures=tuple(result.failures()),
        true_slope=true_slope,
        skipped=tuple(skipped),
        recovery=recovery,
    )


def slope_recovery(samples: np.ndarray, true_value: float) -> Dict[str, float]:
    """Bias, RMSE and 95%-interval coverage of the draws around the true value."""
    samples = np.asarray(samples, dtype=float)
    lo, hi = np.percentile(samples, [2.5, 97.5])
    return {
        "bias": float(np.mean(samples) - true_value),
        "rmse": float(np.sqrt(np.mean((samples - true_value) ** 2))),
        "covered": bool(lo <= true_value <= hi),
    }


def posterior_summary(chains: List, *, constrained: bool = True) -> pd.DataFrame:
    """Per-parameter mean, sd, quantiles, ESS and split R-hat (Stan print layout)."""
    draws = np.stack([np.asarray(c.draws, dtype=float) for c in chains], axis=0)  # (m, n, 3)
    names = ["intercept", "slope", "sigma" if constrained else "log_sigma"]
    if constrained:
        draws = draws.copy()
        draws[..., 2] = np.exp(draws[..., 2])

    rows = []
    for j, name in enumerate(names):
        x = draws[:, :, j]
        flat = x.ravel()
        q = np.percentile(flat, [2.5, 50, 97.5])
        rows.append({
            "param": name,
            "mean": float(np.mean(flat)),
            "sd": float(np.std(flat, ddof=1)),
            "p2p5": float(q[0]),
            "p50": float(q[1]),
            "p97p5": float(q[2]),
            "ess": effective_sample_size(x),
            "rhat": split_rhat(x),
        })
    return pd.DataFrame(rows).set_index("param")


def ols_fit(dataset: Dataset) -> Dict[str, float]:
    """Least-squares intercept, slope and residual sd (ddof = 2)."""
    X = np.column_stack([np.ones(dataset.n), dataset.x])
    coef, *_ = np.linalg.lstsq(X, dataset.y, rcond=None)
    resid = dataset.y - X @ coef
    dof = max(1, dataset.n - 2)
    return {
        "intercept": float(coef[0]),
        "slope": float(coef[1]),
        "sigma": float(np.sqrt(np.sum(resid * resid) / dof)),
    }


def conditional_coefficient_posterior(
    dataset: Dataset, prior: PriorSpec, sigma: float
) -> Tuple[np.ndarray, np.ndarray]:
    """Gaussian posterior of (intercept, slope) given the noise sd.

    With zero-mean normal priors this is conjugate:
        V_post = (V0^-1 + X'X / sigma^2)^-1
        mean   = V_post X'y / sigma^2
    A flat slope prior contributes zero precision.
    """
    X = np.column_stack([np.ones(dataset.n), dataset.x])
    slope_precision = 0.0 if prior.is_flat else 1.0 / prior.slope_prior_sd ** 2
    V0_inv = np.diag([1.0 / prior.intercept_prior_sd ** 2, slope_precision])
    V_post = np.linalg.inv(V0_inv + X.T @ X / sigma ** 2)
    mean = V_post @ (X.T @ dataset.y / sigma ** 2)
    return mean, V_post
