from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError

PARAM_NAMES = ("intercept", "slope", "log_sigma")

# Sentinel for an improper flat prior on the slope.
FLAT = None


def _readonly(values: Sequence[float]) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class Dataset:
    """Synthetic regression data; the arrays are read-only once constructed."""

    x: np.ndarray
    y: np.ndarray
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        x = _readonly(self.x)
        y = _readonly(self.y)
        if x.ndim != 1 or x.shape != y.shape:
            raise ConfigurationError("x and y must be 1D arrays of equal length")
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)

    @property
    def n(self) -> int:
        return int(self.x.shape[0])

    def __len__(self) -> int:
        return self.n

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        for xi, yi in zip(self.x, self.y):
            yield float(xi), float(yi)


@dataclass(frozen=True)
class PriorSpec:
    """Named prior configuration.

    ``slope_prior_sd`` of ``None`` (or 0) encodes the improper flat prior; the
    slope term is then dropped from the log-posterior entirely.
    """

    name: str
    intercept_prior_sd: float = 10.0
    slope_prior_sd: Optional[float] = 10.0
    noise_prior_sd: float = 10.0

    def __post_init__(self) -> None:
        for label in ("intercept_prior_sd", "noise_prior_sd"):
            value = getattr(self, label)
            if value is None or not math.isfinite(float(value)) or float(value) <= 0.0:
                raise ConfigurationError(f"{label} must be a positive finite number, got {value!r}")
            object.__setattr__(self, label, float(value))

        sd = self.slope_prior_sd
        if sd is not None:
            sd = float(sd)
            if not math.isfinite(sd) or sd < 0.0:
                raise ConfigurationError(f"slope_prior_sd must be >= 0 or FLAT, got {self.slope_prior_sd!r}")
            if sd == 0.0:
                sd = None
        object.__setattr__(self, "slope_prior_sd", sd)

    @property
    def is_flat(self) -> bool:
        return self.slope_prior_sd is None

    @classmethod
    def from_slope_sd(
        cls,
        slope_prior_sd: Optional[float],
        *,
        intercept_prior_sd: float = 10.0,
        noise_prior_sd: float = 10.0,
    ) -> "PriorSpec":
        """Build a prior labelled the way the comparison plots label them."""
        if slope_prior_sd is None or float(slope_prior_sd) == 0.0:
            name = "flat"
        else:
            name = f"N(0,{float(slope_prior_sd):g})"
        return cls(
            name=name,
            intercept_prior_sd=intercept_prior_sd,
            slope_prior_sd=slope_prior_sd,
            noise_prior_sd=noise_prior_sd,
        )


@dataclass(frozen=True)
class PosteriorSample:
    """One retained draw in the unconstrained space."""

    intercept: float
    slope: float
    log_sigma: float
    log_density: float
    chain_id: int
    iteration: int

    @property
    def sigma(self) -> float:
        return math.exp(self.log_sigma)


@dataclass(frozen=True)
class CellFailure:
    """Record of a (prior, sample size) cell whose sampling failed."""

    prior_name: str
    sample_size: int
    error_type: str
    message: str
