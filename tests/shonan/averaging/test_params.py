"""Unit tests for the averaging and solver parameter sets."""

import dataclasses

import pytest

from shonan.averaging import LevenbergMarquardtParams, ShonanAveragingParameters


class TestLevenbergMarquardtParams:
    def test_defaults(self):
        lm = LevenbergMarquardtParams()
        assert lm.max_iterations == 100
        assert lm.initial_mu == 1e-3

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            LevenbergMarquardtParams().initial_mu = 1.0

    @pytest.mark.parametrize(
        "changes",
        [
            {"max_iterations": 0},
            {"initial_mu": 0.0},
            {"initial_mu": 1.0, "mu_upper_bound": 0.5},
            {"gradient_tol": -1.0},
        ],
    )
    def test_validation(self, changes):
        with pytest.raises(ValueError):
            LevenbergMarquardtParams(**changes)

    def test_with_initial_mu_keeps_upper_bound_above(self):
        lm = LevenbergMarquardtParams(mu_upper_bound=1.0).with_initial_mu(0.5)
        assert lm.initial_mu == 0.5
        assert lm.mu_upper_bound == 5.0

    def test_optimize_kwargs(self):
        kwargs = LevenbergMarquardtParams(relative_error_tol=1e-6).optimize_kwargs()
        assert kwargs["tol"] == 1e-6
        assert kwargs["max_iterations"] == 100
        assert set(kwargs) >= {"initial_mu", "mu_upper_bound", "absolute_tol", "gradient_tol"}


class TestShonanAveragingParameters:
    def test_defaults(self):
        params = ShonanAveragingParameters()
        assert params.prior and params.karcher
        assert params.optimality_threshold == -1e-4
        assert (params.p_min, params.p_max) == (5, 20)
        assert params.max_divergence_retries == 1

    def test_setters_return_copies(self):
        params = ShonanAveragingParameters()
        changed = params.set_prior(False).set_karcher(False).set_noise_sigma(0.1)
        assert params.prior and params.karcher and params.noise_sigma == 0.0
        assert not changed.prior and not changed.karcher
        assert changed.noise_sigma == 0.1

    def test_with_lm(self):
        params = ShonanAveragingParameters().with_lm(max_iterations=7)
        assert params.lm.max_iterations == 7

    def test_with_staircase(self):
        params = ShonanAveragingParameters(with_descent=False).with_staircase(3, 8)
        assert (params.p_min, params.p_max, params.with_descent) == (3, 8, False)

    @pytest.mark.parametrize(
        "changes",
        [
            {"p_min": 1},
            {"p_min": 6, "p_max": 5},
            {"optimality_threshold": 1e-3},
            {"noise_sigma": -0.1},
            {"max_divergence_retries": -1},
            {"divergence_retry_mu_factor": 0.5},
            {"karcher_beta": 0.0},
        ],
    )
    def test_validation(self, changes):
        with pytest.raises(ValueError):
            ShonanAveragingParameters(**changes)

    def test_lm_type_checked(self):
        with pytest.raises(TypeError):
            ShonanAveragingParameters(lm={"max_iterations": 10})
