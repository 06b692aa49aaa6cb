"""Tests for the synthetic data generator.

Run: pytest tests/test_sim.py -v
"""

import numpy as np
import pytest

from prior_sensitivity import ConfigurationError, Dataset, generate_dataset
from prior_sensitivity.sim import LinearDataGenerator, LinearDGP

# ── Reproducibility ──────────────────────────────────────────────────────────


class TestReproducibility:
    """Same seed and n must give bit-identical data."""

    def test_same_seed_bit_identical(self):
        a = generate_dataset(100, 1.0, 2.0, 0.5, seed=123)
        b = generate_dataset(100, 1.0, 2.0, 0.5, seed=123)
        assert a.x.tobytes() == b.x.tobytes()
        assert a.y.tobytes() == b.y.tobytes()

    def test_generator_class_matches_function(self):
        a = LinearDataGenerator(LinearDGP(1.0, 2.0, 0.5)).generate(50, seed=9)
        b = generate_dataset(50, 1.0, 2.0, 0.5, seed=9)
        np.testing.assert_array_equal(a.x, b.x)
        np.testing.assert_array_equal(a.y, b.y)

    def test_different_seed_differs(self):
        a = generate_dataset(100, 1.0, 2.0, 0.5, seed=1)
        b = generate_dataset(100, 1.0, 2.0, 0.5, seed=2)
        assert not np.array_equal(a.x, b.x)

    def test_sizes_are_separate_draws(self):
        """Same seed, different n: the small set is not a subset of the large one."""
        small = generate_dataset(10, 1.0, 2.0, 0.5, seed=123)
        large = generate_dataset(100, 1.0, 2.0, 0.5, seed=123)
        assert not np.array_equal(small.y, large.y[:10])


# ── Shape and distribution ───────────────────────────────────────────────────


class TestGeneratedData:
    def test_length(self):
        ds = generate_dataset(37, 1.0, 2.0, 0.5, seed=0)
        assert ds.n == 37
        assert len(ds) == 37
        assert ds.x.shape == ds.y.shape == (37,)

    def test_covariates_in_unit_interval(self):
        ds = generate_dataset(1000, 1.0, 2.0, 0.5, seed=0)
        assert ds.x.min() >= 0.0
        assert ds.x.max() <= 1.0

    def test_residuals_match_noise_sd(self):
        ds = generate_dataset(5000, 1.0, 2.0, 0.5, seed=0)
        resid = ds.y - (1.0 + 2.0 * ds.x)
        assert abs(np.mean(resid)) < 0.05
        assert abs(np.std(resid) - 0.5) < 0.03

    def test_iterates_pairs(self):
        ds = generate_dataset(3, 1.0, 2.0, 0.5, seed=0)
        pairs = list(ds)
        assert len(pairs) == 3
        assert pairs[0] == (float(ds.x[0]), float(ds.y[0]))


# ── Immutability ─────────────────────────────────────────────────────────────


class TestImmutability:
    def test_arrays_read_only(self):
        ds = generate_dataset(10, 1.0, 2.0, 0.5, seed=0)
        with pytest.raises(ValueError):
            ds.x[0] = 5.0

    def test_cannot_rebind_fields(self):
        ds = generate_dataset(10, 1.0, 2.0, 0.5, seed=0)
        with pytest.raises(AttributeError):
            ds.x = np.zeros(10)  # type: ignore[misc]

    def test_mismatched_lengths_rejected(self):
        with pytest.raises(ConfigurationError):
            Dataset(x=np.zeros(3), y=np.zeros(4))


# ── Invalid arguments ────────────────────────────────────────────────────────


class TestInvalidArguments:
    @pytest.mark.parametrize("n", [0, 1, -5])
    def test_too_few_observations(self, n):
        with pytest.raises(ConfigurationError):
            generate_dataset(n, 1.0, 2.0, 0.5, seed=0)

    @pytest.mark.parametrize("noise_sd", [0.0, -1.0])
    def test_non_positive_noise(self, noise_sd):
        with pytest.raises(ConfigurationError):
            generate_dataset(10, 1.0, 2.0, noise_sd, seed=0)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            generate_dataset(1, 1.0, 2.0, 0.5, seed=0)
