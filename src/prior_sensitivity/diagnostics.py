"""
Convergence diagnostics for multi-chain MCMC output.

- split R-hat (Gelman et al., BDA3 Sec. 11.4): each chain is cut in half and
  the between/within variance ratio is computed over the halves
- effective sample size with Geyer's initial monotone sequence estimator,
  using the multi-chain autocorrelation of BDA3 / Stan
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .types import PARAM_NAMES


@dataclass(frozen=True)
class DiagnosticsReport:
    """Worst-case R-hat / ESS over the parameters plus the ok flag."""

    rhat: float
    ess: float
    ok: bool
    rhat_by_param: Dict[str, float] = field(default_factory=dict)
    ess_by_param: Dict[str, float] = field(default_factory=dict)
    n_chains: int = 0
    n_draws: int = 0
    min_ess: float = 0.0
    n_divergent: int = 0
    messages: Tuple[str, ...] = ()

    def as_dict(self) -> Dict:
        return {"rhat": self.rhat, "ess": self.ess, "ok": self.ok}


def _as_draw_array(chain) -> np.ndarray:
    draws = getattr(chain, "draws", chain)
    draws = np.asarray(draws, dtype=float)
    if draws.ndim == 1:
        draws = draws.reshape(-1, 1)
    if draws.ndim != 2:
        raise ValueError("each chain must be 1D (n,) or 2D (n, d)")
    return draws


def _stack_chains(chains: Sequence) -> np.ndarray:
    """Stack chains into (m, n, d), truncating to the shortest chain."""
    if len(chains) == 0:
        raise ValueError("need at least one chain")
    arrays = [_as_draw_array(c) for c in chains]
    d = arrays[0].shape[1]
    if any(a.shape[1] != d for a in arrays):
        raise ValueError("chains have different numbers of parameters")
    n = min(a.shape[0] for a in arrays)
    return np.stack([a[:n] for a in arrays], axis=0)


def split_chains(x: np.ndarray) -> np.ndarray:
    """(m, n) -> (2m, n // 2); a middle draw of an odd-length chain is dropped."""
    m, n = x.shape
    half = n // 2
    return np.concatenate([x[:, :half], x[:, n - half:]], axis=0)


def split_rhat(x: np.ndarray) -> float:
    """Split R-hat of one parameter; x is (m, n)."""
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(1, -1)
    if x.shape[1] < 4:
        return float("nan")
    xs = split_chains(x)
    n = xs.shape[1]

    chain_means = xs.mean(axis=1)
    B = n * np.var(chain_means, ddof=1)
    W = np.mean(np.var(xs, axis=1, ddof=1))
    var_plus = ((n - 1) / n) * W + B / n

    if W <= 0.0:
        # Constant halves: identical -> undefined, different -> no mixing at all
        return float("inf") if B > 0.0 else float("nan")
    return float(np.sqrt(var_plus / W))


def _autocovariance(x: np.ndarray) -> np.ndarray:
    """Biased autocovariance of a 1D series via FFT."""
    n = x.shape[0]
    x = x - x.mean()
    size = 2 ** int(np.ceil(np.log2(2 * n)))
    f = np.fft.rfft(x, n=size)
    acov = np.fft.irfft(f * np.conjugate(f), n=size)[:n]
    return acov / n


def effective_sample_size(x: np.ndarray) -> float:
    """Multi-chain ESS of one parameter (x is (m, n)), computed on split chains."""
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(1, -1)
    if x.shape[1] < 8:
        return float("nan")
    xs = split_chains(x)
    m, n = xs.shape

    acov = np.stack([_autocovariance(c) for c in xs], axis=0)
    chain_var = acov[:, 0] * n / (n - 1.0)
    mean_var = float(np.mean(chain_var))
    var_plus = mean_var * (n - 1.0) / n
    if m > 1:
        var_plus += float(np.var(xs.mean(axis=1), ddof=1))
    if not var_plus > 0.0:
        return float("nan")

    rho = np.zeros(n)
    rho[0] = 1.0
    rho_even = 1.0
    rho_odd = 1.0 - (mean_var - np.mean(acov[:, 1])) / var_plus
    rho[1] = rho_odd

    # Geyer's initial positive sequence over pairs of autocorrelations
    t = 1
    while t < n - 5 and rho_even + rho_odd > 0.0:
        rho_even = 1.0 - (mean_var - np.mean(acov[:, t + 1])) / var_plus
        rho_odd = 1.0 - (mean_var - np.mean(acov[:, t + 2])) / var_plus
        if rho_even + rho_odd >= 0.0:
            rho[t + 1] = rho_even
            rho[t + 2] = rho_odd
        t += 2
    max_t = t
    if rho_even > 0.0:
        rho[max_t + 1] = rho_even

    # Initial monotone sequence
    t = 1
    while t <= max_t - 2:
        if rho[t + 1] + rho[t + 2] > rho[t - 1] + rho[t]:
            rho[t + 1] = (rho[t - 1] + rho[t]) / 2.0
            rho[t + 2] = rho[t + 1]
        t += 2

    n_total = m * n
    tau = -1.0 + 2.0 * np.sum(rho[: max_t + 1]) + np.sum(rho[max_t + 1: max_t + 2])
    tau = max(tau, 1.0 / np.log10(n_total))
    return float(n_total / tau)


def evaluate(
    chains: Sequence,
    *,
    param_names: Optional[Sequence[str]] = None,
    rhat_threshold: float = 1.1,
    min_ess_fraction: float = 0.1,
    min_ess: Optional[float] = None,
) -> DiagnosticsReport:
    """Split R-hat and ESS per parameter; ``ok`` is False when a fit is unreliable.

    Args:
        chains: Chain results or arrays shaped (n,) / (n, d), one per chain
        param_names: Names for the d columns (defaults to the regression parameters)
        rhat_threshold: Maximum acceptable R-hat
        min_ess_fraction: Minimum ESS as a fraction of the total number of draws
        min_ess: Absolute ESS floor, overrides ``min_ess_fraction``

    Returns:
        DiagnosticsReport with the largest R-hat and smallest ESS across parameters.
        A chain whose warmup missed its acceptance band also makes ``ok`` False.
    """
    x = _stack_chains(chains)
    m, n, d = x.shape
    if param_names is None:
        param_names = PARAM_NAMES if d == len(PARAM_NAMES) else [f"x{j}" for j in range(d)]
    if len(param_names) != d:
        raise ValueError("param_names length does not match the number of parameters")

    rhat_by_param = {name: split_rhat(x[:, :, j]) for j, name in enumerate(param_names)}
    ess_by_param = {name: effective_sample_size(x[:, :, j]) for j, name in enumerate(param_names)}

    rhats = np.array(list(rhat_by_param.values()), dtype=float)
    esses = np.array(list(ess_by_param.values()), dtype=float)
    rhat = float(np.inf) if np.any(np.isposinf(rhats)) else float(np.max(rhats))
    ess = float(np.min(esses))

    n_draws = m * n
    floor = float(min_ess) if min_ess is not None else float(min_ess_fraction) * n_draws

    messages: List[str] = []
    ok = True
    if not np.isfinite(rhat) or rhat > rhat_threshold:
        ok = False
        messages.append(f"R-hat {rhat:.3f} exceeds {rhat_threshold}")
    if not np.isfinite(ess) or ess < floor:
        ok = False
        messages.append(f"ESS {ess:.1f} below minimum {floor:.1f}")

    n_divergent = 0
    for c in chains:
        if not getattr(c, "adaptation_ok", True):
            ok = False
            messages.append(
                f"chain {c.chain_id}: warmup acceptance {c.warmup_accept_rate:.2f} outside the target band"
            )
        n_divergent += int(getattr(c, "n_divergent", 0))
    if n_divergent:
        messages.append(f"{n_divergent} divergent transitions after warmup")

    return DiagnosticsReport(
        rhat=rhat,
        ess=ess,
        ok=ok,
        rhat_by_param=rhat_by_param,
        ess_by_param=ess_by_param,
        n_chains=m,
        n_draws=n_draws,
        min_ess=floor,
        n_divergent=n_divergent,
        messages=tuple(messages),
    )
