"""
Exception and warning types.

Configuration problems are fatal and raised before any sampling starts.
Numerical problems inside a trajectory are handled by the sampler itself;
only a chain that never produced a finite state escalates to an exception.
"""


class PriorSensitivityError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(PriorSensitivityError, ValueError):
    """Invalid experiment grid or parameter (e.g. n < 2, non-positive sd)."""


class SamplingError(PriorSensitivityError, RuntimeError):
    """A chain could not produce a usable set of draws."""


class NumericalDegeneracy(SamplingError):
    """Every proposal in a chain had a non-finite log-density or gradient."""


class ConvergenceWarning(UserWarning):
    """R-hat / ESS out of band, or warmup failed to reach the target acceptance."""
