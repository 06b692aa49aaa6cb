"""
Gradient-based MCMC sampler (NUTS and static-trajectory HMC).

This module contains:
- MCMCConfig: sampler settings (warmup/sampling budget, acceptance target)
- DualAveraging / WarmupSchedule / RunningVariance: warmup adaptation of the
  step size and of a diagonal inverse metric
- NUTSSampler: one chain's Markov transitions
- ChainResult: the retained draws of one chain plus per-iteration statistics

The sampler only needs a model exposing ``dim`` and
``logp_and_grad(theta) -> (float, ndarray)``. Non-finite log-densities or
gradients met along a trajectory give that point zero weight; they are never
stored as chain state.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError, NumericalDegeneracy
from .types import PARAM_NAMES, PosteriorSample

# Energy error beyond which a trajectory is declared divergent (Stan's value).
MAX_DELTA_H = 1000.0


@dataclass
class MCMCConfig:
    n_warmup: int = 1000
    n_sampling: int = 1000
    target_accept: float = 0.8
    max_tree_depth: int = 10

    # "nuts" (no-U-turn stopping) or "hmc" (fixed integration time)
    algorithm: str = "nuts"
    trajectory_length: float = 1.0

    # Chains start from uniform(-init_radius, init_radius) in unconstrained space
    init_radius: float = 2.0
    max_init_attempts: int = 100

    adapt_metric: bool = True
    # Warmup is flagged when the terminal-buffer acceptance misses the target by more
    acceptance_tolerance: float = 0.25

    log_every: int = 0

    def __post_init__(self):
        if int(self.n_warmup) < 0:
            raise ConfigurationError("n_warmup must be non-negative")
        if int(self.n_sampling) <= 0:
            raise ConfigurationError("n_sampling must be positive")
        if not (0.0 < float(self.target_accept) < 1.0):
            raise ConfigurationError("target_accept must be in (0, 1)")
        if int(self.max_tree_depth) <= 0:
            raise ConfigurationError("max_tree_depth must be positive")
        if self.algorithm not in ("nuts", "hmc"):
            raise ConfigurationError("algorithm must be 'nuts' or 'hmc'")
        if not float(self.trajectory_length) > 0.0:
            raise ConfigurationError("trajectory_length must be positive")
        if not float(self.init_radius) > 0.0:
            raise ConfigurationError("init_radius must be positive")
        if int(self.max_init_attempts) <= 0:
            raise ConfigurationError("max_init_attempts must be positive")


class DualAveraging:
    """Nesterov dual averaging of log(step size) (Hoffman & Gelman 2014, Sec. 3.2)."""

    def __init__(self, step_size: float, target_accept: float, *,
                 gamma: float = 0.05, t0: float = 10.0, kappa: float = 0.75):
        self.target_accept = float(target_accept)
        self.gamma = gamma
        self.t0 = t0
        self.kappa = kappa
        self.restart(step_size)

    def restart(self, step_size: float) -> None:
        self.mu = math.log(10.0 * step_size)
        self.step_size = float(step_size)
        self.counter = 0
        self.s_bar = 0.0
        self.x_bar = 0.0

    def update(self, accept_stat: float) -> float:
        self.counter += 1
        accept_stat = min(1.0, float(accept_stat))
        eta = 1.0 / (self.counter + self.t0)
        self.s_bar = (1.0 - eta) * self.s_bar + eta * (self.target_accept - accept_stat)
        x = self.mu - self.s_bar * math.sqrt(self.counter) / self.gamma
        x_eta = self.counter ** (-self.kappa)
        self.x_bar = x_eta * x + (1.0 - x_eta) * self.x_bar
        self.step_size = math.exp(x)
        return self.step_size

    @property
    def final_step_size(self) -> float:
        if self.counter == 0:
            return self.step_size
        return math.exp(self.x_bar)


class RunningVariance:
    """Welford accumulator for the diagonal metric estimate."""

    def __init__(self, dim: int):
        self.n = 0
        self.mean = np.zeros(dim)
        self.m2 = np.zeros(dim)

    def add(self, x: np.ndarray) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (x - self.mean)

    def regularized(self) -> np.ndarray:
        """Sample variance shrunk toward 1e-3, as Stan regularizes its metric."""
        n = self.n
        if n < 2:
            return np.ones_like(self.mean)
        var = self.m2 / (n - 1)
        return (n / (n + 5.0)) * var + 1e-3 * (5.0 / (n + 5.0))


class WarmupSchedule:
    """Stan-style windows: fast init buffer, doubling slow windows, fast terminal buffer."""

    def __init__(self, n_warmup: int, *, adapt_metric: bool = True,
                 init_buffer: int = 75, term_buffer: int = 50, base_window: int = 25):
        self.n_warmup = int(n_warmup)
        self.windows: List[Tuple[int, int]] = []

        if not adapt_metric or self.n_warmup < 20:
            self.term_buffer = max(1, self.n_warmup // 10) if self.n_warmup else 0
            return

        if init_buffer + term_buffer + base_window > self.n_warmup:
            init_buffer = int(0.15 * self.n_warmup)
            term_buffer = int(0.1 * self.n_warmup)
            base_window = self.n_warmup - init_buffer - term_buffer
        self.term_buffer = term_buffer

        end_all = self.n_warmup - term_buffer
        start = init_buffer
        size = base_window
        while start < end_all:
            end = start + size
            if end + 2 * size > end_all:
                end = end_all
            self.windows.append((start, end))
            start = end
            size *= 2

    def in_slow_window(self, i: int) -> bool:
        return any(start <= i < end for start, end in self.windows)

    def is_window_end(self, i: int) -> bool:
        return any(i + 1 == end for _, end in self.windows)


@dataclass(frozen=True)
class Transition:
    theta: np.ndarray
    logp: float
    grad: np.ndarray
    accept_stat: float
    tree_depth: int
    n_leapfrog: int
    diverged: bool
    n_finite: int


class _Tree:
    __slots__ = (
        "theta_minus", "r_minus", "grad_minus",
        "theta_plus", "r_plus", "grad_plus",
        "theta_prop", "logp_prop", "grad_prop",
        "n_valid", "keep_going", "sum_alpha", "n_alpha", "diverged", "n_finite",
    )


@dataclass(frozen=True, eq=False)
class ChainResult(Sequence):
    """Post-warmup draws of one chain.

    ``draws`` is (n_sampling, 3) in the unconstrained space
    (intercept, slope, log_sigma). Indexing yields PosteriorSample records.
    """

    chain_id: int
    draws: np.ndarray
    log_density: np.ndarray
    accept_stat: np.ndarray
    tree_depth: np.ndarray
    n_leapfrog: np.ndarray
    divergent: np.ndarray
    step_size: float
    inv_metric: np.ndarray
    n_warmup: int
    warmup_accept_rate: float
    adaptation_ok: bool
    init: np.ndarray = field(repr=False, default=None)

    def __len__(self) -> int:
        return int(self.draws.shape[0])

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            raise IndexError("draw index out of range")
        intercept, slope, log_sigma = (float(v) for v in self.draws[index])
        return PosteriorSample(
            intercept=intercept,
            slope=slope,
            log_sigma=log_sigma,
            log_density=float(self.log_density[index]),
            chain_id=self.chain_id,
            iteration=self.n_warmup + index,
        )

    def param(self, name: str) -> np.ndarray:
        return self.draws[:, PARAM_NAMES.index(name)]

    @property
    def n_divergent(self) -> int:
        return int(np.sum(self.divergent))

    @property
    def mean_accept_stat(self) -> float:
        return float(np.mean(self.accept_stat))


class NUTSSampler:
    """One chain of NUTS (or static HMC) with warmup adaptation.

    Warmup tunes the step size by dual averaging toward ``target_accept`` and,
    inside the slow windows, a diagonal inverse metric from the chain's own
    draws. Sampling then keeps both fixed and retains every iteration.
    """

    def __init__(self, model, config: MCMCConfig, *,
                 rng: Optional[np.random.Generator] = None, chain_id: int = 0):
        self.model = model
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng()
        self.chain_id = int(chain_id)
        self.dim = int(model.dim)

    # ------------------------------------------------------------------
    # Hamiltonian dynamics
    # ------------------------------------------------------------------

    def _draw_momentum(self, inv_metric: np.ndarray) -> np.ndarray:
        return self.rng.standard_normal(self.dim) / np.sqrt(inv_metric)

    @staticmethod
    def _kinetic(r: np.ndarray, inv_metric: np.ndarray) -> float:
        return 0.5 * float(np.dot(r, inv_metric * r))

    def _leapfrog(self, theta, r, grad, step_size, inv_metric):
        r_half = r + 0.5 * step_size * grad
        theta_new = theta + step_size * inv_metric * r_half
        logp_new, grad_new = self.model.logp_and_grad(theta_new)
        r_new = r_half + 0.5 * step_size * grad_new
        return theta_new, r_new, logp_new, grad_new

    def _joint(self, logp: float, r: np.ndarray, grad: np.ndarray, inv_metric: np.ndarray) -> float:
        """log p(theta) - K(r); -inf whenever anything is non-finite."""
        if not np.isfinite(logp) or not np.all(np.isfinite(grad)):
            return -np.inf
        joint = logp - self._kinetic(r, inv_metric)
        return joint if np.isfinite(joint) else -np.inf

    @staticmethod
    def _no_uturn(theta_minus, theta_plus, r_minus, r_plus, inv_metric) -> bool:
        dtheta = theta_plus - theta_minus
        return bool(np.dot(dtheta, inv_metric * r_minus) >= 0.0
                    and np.dot(dtheta, inv_metric * r_plus) >= 0.0)

    def _initial_step_size(self, theta, logp, grad, inv_metric, step_size: float = 1.0) -> float:
        """Double or halve the step until one leapfrog step crosses acceptance 0.8."""
        log_target = math.log(0.8)
        r = self._draw_momentum(inv_metric)
        joint0 = self._joint(logp, r, grad, inv_metric)
        direction = 0
        for _ in range(100):
            _, r1, logp1, grad1 = self._leapfrog(theta, r, grad, step_size, inv_metric)
            delta = self._joint(logp1, r1, grad1, inv_metric) - joint0
            if direction == 0:
                direction = 1 if delta > log_target else -1
            if direction == 1 and not delta > log_target:
                break
            if direction == -1 and not delta < log_target:
                break
            step_size = step_size * 2.0 if direction == 1 else step_size * 0.5
            if step_size > 1e7 or step_size < 1e-10:
                break
        return float(min(max(step_size, 1e-10), 1e7))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _build_tree(self, theta, r, grad, log_u, direction, depth, step_size, inv_metric, joint0) -> _Tree:
        if depth == 0:
            theta1, r1, logp1, grad1 = self._leapfrog(theta, r, grad, direction * step_size, inv_metric)
            joint = self._joint(logp1, r1, grad1, inv_metric)
            finite = np.isfinite(joint)

            tree = _Tree()
            tree.theta_minus = tree.theta_plus = tree.theta_prop = theta1
            tree.r_minus = tree.r_plus = r1
            tree.grad_minus = tree.grad_plus = tree.grad_prop = grad1
            tree.logp_prop = logp1
            tree.n_valid = int(log_u <= joint)
            tree.keep_going = bool(log_u < joint + MAX_DELTA_H)
            tree.diverged = not tree.keep_going
            tree.sum_alpha = math.exp(min(0.0, joint - joint0)) if finite else 0.0
            tree.n_alpha = 1
            tree.n_finite = int(finite)
            return tree

        tree = self._build_tree(theta, r, grad, log_u, direction, depth - 1, step_size, inv_metric, joint0)
        if not tree.keep_going:
            return tree

        if direction == -1:
            other = self._build_tree(tree.theta_minus, tree.r_minus, tree.grad_minus, log_u,
                                     direction, depth - 1, step_size, inv_metric, joint0)
            tree.theta_minus, tree.r_minus, tree.grad_minus = other.theta_minus, other.r_minus, other.grad_minus
        else:
            other = self._build_tree(tree.theta_plus, tree.r_plus, tree.grad_plus, log_u,
                                     direction, depth - 1, step_size, inv_metric, joint0)
            tree.theta_plus, tree.r_plus, tree.grad_plus = other.theta_plus, other.r_plus, other.grad_plus

        total = tree.n_valid + other.n_valid
        if other.n_valid > 0 and self.rng.uniform() < other.n_valid / total:
            tree.theta_prop, tree.logp_prop, tree.grad_prop = other.theta_prop, other.logp_prop, other.grad_prop

        tree.n_valid = total
        tree.sum_alpha += other.sum_alpha
        tree.n_alpha += other.n_alpha
        tree.diverged = tree.diverged or other.diverged
        tree.n_finite += other.n_finite
        tree.keep_going = other.keep_going and self._no_uturn(
            tree.theta_minus, tree.theta_plus, tree.r_minus, tree.r_plus, inv_metric
        )
        return tree

    def _nuts_transition(self, theta, logp, grad, step_size, inv_metric) -> Transition:
        r0 = self._draw_momentum(inv_metric)
        joint0 = logp - self._kinetic(r0, inv_metric)
        # Slice variable u ~ U(0, exp(joint0)), kept on the log scale
        log_u = joint0 - self.rng.exponential()

        theta_minus = theta_plus = theta
        r_minus = r_plus = r0
        grad_minus = grad_plus = grad
        theta_new, logp_new, grad_new = theta, logp, grad

        n_valid = 1
        depth = 0
        keep_going = True
        sum_alpha = 0.0
        n_alpha = 0
        diverged = False
        n_finite = 0

        while keep_going and depth < self.config.max_tree_depth:
            direction = 1 if self.rng.uniform() < 0.5 else -1
            if direction == -1:
                sub = self._build_tree(theta_minus, r_minus, grad_minus, log_u, -1, depth,
                                       step_size, inv_metric, joint0)
                theta_minus, r_minus, grad_minus = sub.theta_minus, sub.r_minus, sub.grad_minus
            else:
                sub = self._build_tree(theta_plus, r_plus, grad_plus, log_u, 1, depth,
                                       step_size, inv_metric, joint0)
                theta_plus, r_plus, grad_plus = sub.theta_plus, sub.r_plus, sub.grad_plus

            if sub.keep_going and sub.n_valid > 0 and self.rng.uniform() < sub.n_valid / n_valid:
                theta_new, logp_new, grad_new = sub.theta_prop, sub.logp_prop, sub.grad_prop

            n_valid += sub.n_valid
            sum_alpha += sub.sum_alpha
            n_alpha += sub.n_alpha
            diverged = diverged or sub.diverged
            n_finite += sub.n_finite
            keep_going = sub.keep_going and self._no_uturn(theta_minus, theta_plus, r_minus, r_plus, inv_metric)
            depth += 1

        return Transition(
            theta=theta_new,
            logp=float(logp_new),
            grad=grad_new,
            accept_stat=sum_alpha / n_alpha if n_alpha else 0.0,
            tree_depth=depth,
            n_leapfrog=n_alpha,
            diverged=diverged,
            n_finite=n_finite,
        )

    def _hmc_transition(self, theta, logp, grad, step_size, inv_metric) -> Transition:
        max_steps = 2 ** self.config.max_tree_depth
        n_steps = int(min(max(1, math.ceil(self.config.trajectory_length / step_size)), max_steps))

        r0 = self._draw_momentum(inv_metric)
        joint0 = logp - self._kinetic(r0, inv_metric)

        theta1, r1, logp1, grad1 = theta, r0, logp, grad
        n_finite = 0
        joint1 = joint0
        for _ in range(n_steps):
            theta1, r1, logp1, grad1 = self._leapfrog(theta1, r1, grad1, step_size, inv_metric)
            joint1 = self._joint(logp1, r1, grad1, inv_metric)
            if not np.isfinite(joint1):
                break
            n_finite += 1

        if not np.isfinite(joint1):
            return Transition(theta, logp, grad, 0.0, 0, n_finite + 1, True, n_finite)

        diverged = (joint0 - joint1) > MAX_DELTA_H
        accept_prob = math.exp(min(0.0, joint1 - joint0))
        if not diverged and self.rng.uniform() < accept_prob:
            return Transition(theta1, float(logp1), grad1, accept_prob, 0, n_steps, False, n_finite)
        return Transition(theta, logp, grad, accept_prob, 0, n_steps, diverged, n_finite)

    def transition(self, theta, logp, grad, step_size, inv_metric) -> Transition:
        if self.config.algorithm == "hmc":
            return self._hmc_transition(theta, logp, grad, step_size, inv_metric)
        return self._nuts_transition(theta, logp, grad, step_size, inv_metric)

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    def run(self, init: np.ndarray) -> ChainResult:
        """Warm up from ``init`` and return the retained draws."""
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            return self._run(init)

    def _run(self, init: np.ndarray) -> ChainResult:
        cfg = self.config
        theta = np.asarray(init, dtype=float).copy()
        logp, grad = self.model.logp_and_grad(theta)
        if not np.isfinite(logp) or not np.all(np.isfinite(grad)):
            raise NumericalDegeneracy(f"chain {self.chain_id}: initial point has non-finite log-density")

        n_warmup = int(cfg.n_warmup)
        n_sampling = int(cfg.n_sampling)
        log_every = int(cfg.log_every or 0)

        inv_metric = np.ones(self.dim)
        step_size = self._initial_step_size(theta, logp, grad, inv_metric)
        adapter = DualAveraging(step_size, cfg.target_accept)
        schedule = WarmupSchedule(n_warmup, adapt_metric=cfg.adapt_metric)
        variance = RunningVariance(self.dim)

        warmup_accept = np.zeros(n_warmup)
        n_finite_total = 0

        for i in range(n_warmup):
            t = self.transition(theta, logp, grad, step_size, inv_metric)
            theta, logp, grad = t.theta, t.logp, t.grad
            n_finite_total += t.n_finite
            warmup_accept[i] = t.accept_stat
            step_size = adapter.update(t.accept_stat)

            if schedule.in_slow_window(i):
                variance.add(theta)
            if schedule.is_window_end(i):
                inv_metric = variance.regularized()
                variance = RunningVariance(self.dim)
                step_size = self._initial_step_size(theta, logp, grad, inv_metric, step_size)
                adapter.restart(step_size)

            if log_every > 0 and (i + 1) % log_every == 0:
                print(f"  Chain {self.chain_id} warmup {i+1}/{n_warmup}: "
                      f"step={step_size:.4f}, acc={np.mean(warmup_accept[:i+1]):.2f}", flush=True)

        if n_warmup > 0:
            step_size = adapter.final_step_size

        draws = np.empty((n_sampling, self.dim))
        log_density = np.empty(n_sampling)
        accept_stat = np.empty(n_sampling)
        tree_depth = np.empty(n_sampling, dtype=np.int64)
        n_leapfrog = np.empty(n_sampling, dtype=np.int64)
        divergent = np.zeros(n_sampling, dtype=bool)

        for i in range(n_sampling):
            t = self.transition(theta, logp, grad, step_size, inv_metric)
            theta, logp, grad = t.theta, t.logp, t.grad
            n_finite_total += t.n_finite

            draws[i] = theta
            log_density[i] = logp
            accept_stat[i] = t.accept_stat
            tree_depth[i] = t.tree_depth
            n_leapfrog[i] = t.n_leapfrog
            divergent[i] = t.diverged

            if log_every > 0 and (i + 1) % log_every == 0:
                print(f"  Chain {self.chain_id} sampling {i+1}/{n_sampling}: "
                      f"slope={theta[1]:.3f}, acc={np.mean(accept_stat[:i+1]):.2f}, "
                      f"divergent={int(np.sum(divergent[:i+1]))}", flush=True)

        if n_finite_total == 0:
            raise NumericalDegeneracy(
                f"chain {self.chain_id}: every proposal had a non-finite log-density or gradient"
            )

        if n_warmup > 0:
            term = max(1, min(schedule.term_buffer, n_warmup))
            warmup_accept_rate = float(np.mean(warmup_accept[-term:]))
            adaptation_ok = abs(warmup_accept_rate - cfg.target_accept) <= cfg.acceptance_tolerance
        else:
            warmup_accept_rate = float("nan")
            adaptation_ok = True

        return ChainResult(
            chain_id=self.chain_id,
            draws=draws,
            log_density=log_density,
            accept_stat=accept_stat,
            tree_depth=tree_depth,
            n_leapfrog=n_leapfrog,
            divergent=divergent,
            step_size=float(step_size),
            inv_metric=inv_metric,
            n_warmup=n_warmup,
            warmup_accept_rate=warmup_accept_rate,
            adaptation_ok=bool(adaptation_ok),
            init=np.asarray(init, dtype=float).copy(),
        )
