"""Tests for the (prior, sample size) experiment grid.

The scenario tests share the session-scoped ``grid_result`` fixture (four
priors at n=10 and n=1000); the rest run small grids with short chains.

Run: pytest tests/test_experiment.py -v
"""

import warnings

import numpy as np
import pytest

import prior_sensitivity.experiment as experiment_module
from prior_sensitivity import (
    FLAT,
    ConfigurationError,
    ConvergenceWarning,
    ExperimentConfig,
    MCMCConfig,
    NumericalDegeneracy,
    PriorSpec,
    run_experiment,
    run_from_config,
)
from prior_sensitivity.analysis import conditional_coefficient_posterior, ols_fit
from prior_sensitivity.sim import LinearDGP

TRUE_SLOPE = 2.0

SMALL = MCMCConfig(n_warmup=150, n_sampling=150)
TRUTH = (1.0, 2.0, 0.5)


def _small_grid(priors, sizes=(10, 20), **kwargs):
    kwargs.setdefault("mcmc_config", SMALL)
    kwargs.setdefault("n_chains", 2)
    kwargs.setdefault("verbose", False)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        return run_experiment(list(sizes), priors, TRUTH, 123, **kwargs)


# ── Scenario: flat prior, large sample ──────────────────────────────────────


@pytest.mark.slow
class TestLargeSampleFlatPrior:
    def test_posterior_mean_matches_least_squares(self, grid_result):
        cell = grid_result[("flat", 1000)]
        ols = ols_fit(grid_result.datasets[1000])
        # Measured against least squares: on this data stream the OLS slope itself sits about 0.07 from 2.0
        assert abs(np.mean(cell.slope_draws) - ols["slope"]) < 0.02

    def test_true_slope_inside_credible_interval(self, grid_result):
        lo, hi = np.percentile(grid_result.slope_draws("flat", 1000), [0.5, 99.5])
        assert lo < TRUE_SLOPE < hi

    def test_chains_converged(self, grid_result):
        d = grid_result[("flat", 1000)].diagnostics
        assert d.rhat < 1.01
        assert d.ess > 300


# ── Scenario: shrinkage at n=10 ──────────────────────────────────────────────


@pytest.mark.slow
class TestSmallSampleShrinkage:
    def test_tight_prior_pulls_slope_toward_zero(self, grid_result):
        tight = np.mean(grid_result.slope_draws("N(0,0.1)", 10))
        flat = np.mean(grid_result.slope_draws("flat", 10))
        assert abs(tight) < abs(flat)
        assert abs(tight) < 0.5

    def test_posterior_sd_ordering(self, grid_result):
        sd = {p.name: np.std(grid_result.slope_draws(p, 10)) for p in grid_result.priors}
        assert sd["N(0,0.1)"] < sd["N(0,10)"]
        assert sd["N(0,0.1)"] < sd["N(0,1)"] < sd["flat"]

    def test_conditional_variance_strictly_ordered(self, grid_result):
        """Given sigma, the slope variance shrinks monotonically with the prior sd."""
        ds = grid_result.datasets[10]
        var = {
            sd: conditional_coefficient_posterior(ds, PriorSpec.from_slope_sd(sd), 0.5)[1][1, 1]
            for sd in (FLAT, 10.0, 1.0, 0.1)
        }
        assert var[0.1] < var[1.0] < var[10.0] < var[FLAT]

    def test_all_cells_mix(self, grid_result):
        for cell in grid_result.values():
            assert not cell.failed
            assert cell.diagnostics.rhat < 1.05


# ── Scenario: priors agree as n grows ────────────────────────────────────────


@pytest.mark.slow
class TestPriorWashout:
    def test_weak_priors_agree_at_large_n(self, grid_result):
        means = [np.mean(grid_result.slope_draws(name, 1000)) for name in ("flat", "N(0,10)", "N(0,1)")]
        assert max(means) - min(means) < 0.05

    def test_spread_across_priors_shrinks_with_n(self, grid_result):
        def spread(n):
            means = [np.mean(grid_result.slope_draws(p, n)) for p in grid_result.priors]
            return max(means) - min(means)

        assert spread(1000) < spread(10)


# ── Grid structure ───────────────────────────────────────────────────────────


class TestGridStructure:
    def test_every_cell_present(self, grid_result):
        assert len(grid_result) == 8
        assert grid_result.sample_sizes == [10, 1000]
        assert [p.name for p in grid_result.priors] == ["flat", "N(0,10)", "N(0,1)", "N(0,0.1)"]

    def test_lookup_by_prior_spec_or_name(self, grid_result, priors):
        assert grid_result[(priors[2], 10)] is grid_result[("N(0,1)", 10)]

    def test_cell_draw_counts(self, grid_result):
        cell = grid_result[("N(0,1)", 10)]
        assert len(cell.chains) == 3
        assert cell.slope_draws.shape == (3000,)
        assert cell.draws().shape == (3000, 3)
        assert np.all(cell.draws()[:, 2] > 0.0)

    def test_dataset_shared_across_priors(self, priors, monkeypatch):
        seen = {}
        original = experiment_module.run_chains

        def recording(model, *args, **kwargs):
            seen.setdefault(model.dataset.n, set()).add(id(model.dataset))
            return original(model, *args, **kwargs)

        monkeypatch.setattr(experiment_module, "run_chains", recording)
        result = _small_grid(priors)
        assert {n: len(ids) for n, ids in seen.items()} == {10: 1, 20: 1}
        assert set(result.datasets) == {10, 20}

    def test_cells_run_size_major(self, priors):
        result = _small_grid(priors[:2])
        assert list(result) == [("flat", 10), ("N(0,10)", 10), ("flat", 20), ("N(0,10)", 20)]

    def test_true_params_tuple_accepted(self, priors):
        result = _small_grid(priors[:1], sizes=(10,))
        assert result.true_params == LinearDGP(1.0, 2.0, 0.5)


# ── Failure isolation ────────────────────────────────────────────────────────


class TestFailureIsolation:
    def test_failed_cell_recorded_and_others_complete(self, priors, monkeypatch):
        original = experiment_module.run_chains

        def flaky(model, *args, **kwargs):
            if model.prior.name == "N(0,1)" and model.dataset.n == 20:
                raise NumericalDegeneracy("no finite initial point found after 100 attempts")
            return original(model, *args, **kwargs)

        monkeypatch.setattr(experiment_module, "run_chains", flaky)
        result = _small_grid(priors)

        failures = result.failures()
        assert len(failures) == 1
        assert failures[0].prior_name == "N(0,1)"
        assert failures[0].sample_size == 20
        assert failures[0].error_type == "NumericalDegeneracy"

        failed = result[("N(0,1)", 20)]
        assert failed.failed
        assert failed.chains == []
        assert failed.slope_draws.size == 0
        assert sum(not c.failed for c in result.values()) == 7

        table = result.to_frame()
        row = table[(table.prior == "N(0,1)") & (table.sample_size == 20)].iloc[0]
        assert row.failed
        assert np.isnan(row.slope_mean)

    def test_unexpected_errors_propagate(self, priors, monkeypatch):
        def broken(*args, **kwargs):
            raise KeyError("bug")

        monkeypatch.setattr(experiment_module, "run_chains", broken)
        with pytest.raises(KeyError):
            _small_grid(priors[:1], sizes=(10,))


# ── Reproducibility ──────────────────────────────────────────────────────────


class TestReproducibility:
    def test_same_seed_same_draws(self, priors):
        a = _small_grid(priors[:2])
        b = _small_grid(priors[:2])
        for key in a:
            np.testing.assert_array_equal(a[key].slope_draws, b[key].slope_draws)

    def test_parallel_cells_match_sequential(self, priors):
        sequential = _small_grid(priors[:2])
        parallel = _small_grid(priors[:2], n_workers=2)
        assert list(parallel) == list(sequential)
        for key in sequential:
            np.testing.assert_array_equal(sequential[key].slope_draws, parallel[key].slope_draws)

    def test_cells_use_independent_streams(self, priors):
        copy = PriorSpec(name="N(0,10) copy", slope_prior_sd=10.0)
        result = _small_grid([priors[1], copy], sizes=(10,))
        assert not np.array_equal(result[("N(0,10)", 10)].slope_draws,
                                  result[("N(0,10) copy", 10)].slope_draws)


# ── Reporting ────────────────────────────────────────────────────────────────


class TestReporting:
    def test_verbose_progress_printed(self, priors, capsys):
        _small_grid(priors[:1], sizes=(10,), verbose=True)
        out = capsys.readouterr().out
        assert "PRIOR SENSITIVITY EXPERIMENT" in out
        assert "n=10" in out

    def test_convergence_warning_for_unreliable_cell(self, priors):
        # No R-hat can pass a zero threshold
        with pytest.warns(ConvergenceWarning):
            run_experiment([10], priors[:1], TRUTH, 123, n_chains=2,
                           mcmc_config=MCMCConfig(n_warmup=20, n_sampling=20),
                           rhat_threshold=0.0, verbose=False)

    def test_cell_frame_columns(self, priors):
        result = _small_grid(priors[:1], sizes=(10,))
        frame = result[("flat", 10)].to_frame()
        assert list(frame.columns) == ["intercept", "slope", "sigma", "lp__", "chain", "iteration"]
        assert len(frame) == 2 * 150
        assert frame.iteration.min() == 150
        assert (frame.sigma > 0).all()

    def test_experiment_frame_one_row_per_cell(self, priors):
        result = _small_grid(priors[:2])
        frame = result.to_frame()
        assert len(frame) == 4
        assert np.isnan(frame.loc[frame.prior == "flat", "slope_prior_sd"]).all()


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.parametrize("sizes", [[], [1], [10, 10], [2.5]])
    def test_bad_sample_sizes(self, sizes, priors):
        with pytest.raises(ConfigurationError):
            run_experiment(sizes, priors, TRUTH, 1, verbose=False)

    def test_empty_priors(self):
        with pytest.raises(ConfigurationError):
            run_experiment([10], [], TRUTH, 1, verbose=False)

    def test_duplicate_prior_names(self):
        prior = PriorSpec.from_slope_sd(1.0)
        with pytest.raises(ConfigurationError):
            run_experiment([10], [prior, prior], TRUTH, 1, verbose=False)

    def test_bad_chain_count(self, priors):
        with pytest.raises(ConfigurationError):
            run_experiment([10], priors, TRUTH, 1, n_chains=0, verbose=False)

    def test_bad_truth(self, priors):
        with pytest.raises(ConfigurationError):
            run_experiment([10], priors, (1.0, 2.0, -0.5), 1, verbose=False)


class TestExperimentConfig:
    def test_defaults(self):
        config = ExperimentConfig()
        assert config.sample_sizes == (100, 1000, 10)
        assert [p.name for p in config.priors()] == ["flat", "N(0,10)", "N(0,1)", "N(0,0.1)"]
        assert config.n_chains == 3
        assert config.seed == 123

    @pytest.mark.parametrize("kwargs", [
        {"sample_sizes": ()},
        {"sample_sizes": (10, 1)},
        {"sample_sizes": (10, 10)},
        {"prior_slope_sds": ()},
        {"prior_slope_sds": (1.0, 1.0)},
        {"prior_slope_sds": (-1.0,)},
        {"true_noise_sd": 0.0},
        {"n_chains": 0},
        {"n_warmup": 0},
        {"target_acceptance": 1.5},
        {"n_parallel_workers": 0},
        {"seed": -1},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            ExperimentConfig(**kwargs)

    def test_zero_slope_sd_is_flat(self):
        config = ExperimentConfig(prior_slope_sds=(0.0, 1.0))
        assert config.priors()[0].is_flat

    def test_run_from_config(self):
        config = ExperimentConfig(sample_sizes=(10,), prior_slope_sds=(FLAT, 1.0), n_chains=2,
                                  n_warmup=100, n_sampling_iters=100, n_parallel_workers=1)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            result = run_from_config(config, verbose=False)
        assert len(result) == 2
        assert len(result[("flat", 10)].chains[0]) == 100
