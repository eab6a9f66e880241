"""Tests for maximum-likelihood fitting, gradients, Hessians and intervals."""

from dataclasses import replace

import numpy as np
import pytest

from pulseddm.fitting import (
    FitOptions,
    Objective,
    confidence_intervals,
    fit,
    gradient,
    hessian,
    likelihood_ratio_confidence_intervals,
)
from pulseddm.likelihood import total_log_likelihood
from pulseddm.links import Softplus
from pulseddm.parameters import (
    ChoiceParams,
    LatentParams,
    ParameterSet,
    Prior,
    default_parameters,
    split_parameters,
)
from pulseddm.simulate import simulate_trial_set

BIAS, LAPSE = 7, 8


def generative_parameters(free: tuple[int, ...], **initial: float) -> ParameterSet:
    """Default parameter set starting at the generative values, fitting only `free`."""
    params = default_parameters(generative=True)
    fit_mask = np.zeros(params.fit.size, dtype=bool)
    fit_mask[list(free)] = True
    start = params.generative.copy()
    for name, value in initial.items():
        start[params.names.index(name)] = value
    return replace(params, fit=fit_mask, initial=start)


def log_likelihood_at(trial_sets, params: ParameterSet, x: np.ndarray) -> float:
    latent, observation = split_parameters(x, params.layout)
    return total_log_likelihood(latent, observation, trial_sets)


@pytest.fixture(scope="module")
def generative() -> ParameterSet:
    return default_parameters(generative=True)


@pytest.fixture(scope="module")
def trial_sets(generative: ParameterSet) -> list:
    latent, observation = split_parameters(generative.generative, generative.layout)
    rng = np.random.default_rng(seed=1)
    return [simulate_trial_set(60, latent, rng, choice=observation.choice)]


class TestObjective:
    """Tests for Objective class."""

    def test_full_restores_fixed_values(self, trial_sets) -> None:
        """Test that free values are merged back among the fixed ones."""
        params = generative_parameters((BIAS,))
        objective = Objective(trial_sets, params, FitOptions())

        full = objective.full(np.array([2.5]))

        assert full[BIAS] == 2.5
        np.testing.assert_array_equal(np.delete(full, BIAS), np.delete(params.initial, BIAS))

    def test_counts_evaluations(self, trial_sets) -> None:
        """Test that each call is counted and equals minus the log-likelihood."""
        params = generative_parameters((BIAS,))
        objective = Objective(trial_sets, params, FitOptions())

        value = objective(objective.free)

        assert objective.n_calls == 1
        np.testing.assert_allclose(value, -log_likelihood_at(trial_sets, params, params.initial))

    def test_steps_point_away_from_upper_bound(self, trial_sets) -> None:
        """Test that finite-difference steps flip sign at the upper bound."""
        params = generative_parameters((BIAS, LAPSE))
        objective = Objective(trial_sets, params, FitOptions())

        steps = objective.steps(np.array([0.0, 1.0]), 1e-4)

        assert steps[0] > 0
        assert steps[1] < 0

    def test_stereo_option_reaches_likelihood(self, trial_sets) -> None:
        """Test that FitOptions.stereo is passed to the likelihood."""
        params = generative_parameters((BIAS,))
        latent, observation = split_parameters(params.initial, params.layout)
        bias = np.array([params.initial[BIAS]])

        silenced = Objective(trial_sets, params, FitOptions(stereo=True))(bias)
        plain = Objective(trial_sets, params, FitOptions())(bias)

        expected = -total_log_likelihood(latent, observation, trial_sets, stereo=True)
        np.testing.assert_allclose(silenced, expected)
        assert silenced != plain


class Cubic(Objective):
    """Objective replaced by sum(x**3) to check the difference scheme."""

    def __call__(self, free):
        return float(np.sum(np.asarray(free) ** 3))


class TestCentralGradient:
    """Tests for Objective.central_gradient."""

    def test_second_order_accurate(self, trial_sets) -> None:
        """Test that the error is O(h**2) rather than O(h)."""
        objective = Cubic(trial_sets, generative_parameters((BIAS,)), FitOptions())

        grad = objective.central_gradient(np.array([2.0]), 1e-2)

        # h = 0.02: central gives 12 + h**2, forward would give 12.12
        np.testing.assert_allclose(grad, [12.0004])

    def test_one_sided_at_bound(self, trial_sets) -> None:
        """Test that a coordinate on its upper bound is differenced inside the bounds."""
        objective = Cubic(trial_sets, generative_parameters((LAPSE,)), FitOptions())

        grad = objective.central_gradient(np.array([1.0]), 1e-2)

        # Backward difference over [0.99, 1.0]
        np.testing.assert_allclose(grad, [(1.0 - 0.99**3) / 0.01])


class TestFit:
    """Tests for fit function."""

    def test_bias_fit_is_local_maximum(self, trial_sets) -> None:
        """Test that the fitted bias beats its neighbours and the start."""
        params = generative_parameters((BIAS,), bias=-2.0)

        result = fit(trial_sets, params)

        x = result.x
        ll_start = log_likelihood_at(trial_sets, params, params.initial)
        np.testing.assert_allclose(result.log_likelihood, log_likelihood_at(trial_sets, params, x))
        assert result.log_likelihood > ll_start
        for h in (-0.1, 0.1):
            neighbour = x.copy()
            neighbour[BIAS] += h
            assert result.log_likelihood >= log_likelihood_at(trial_sets, params, neighbour) - 1e-6

    def test_fixed_parameters_untouched(self, trial_sets) -> None:
        """Test that only free entries change."""
        params = generative_parameters((BIAS,), bias=0.0)

        result = fit(trial_sets, params)

        np.testing.assert_array_equal(np.delete(result.x, BIAS), np.delete(params.initial, BIAS))
        assert result.latent == LatentParams.from_array(params.initial[:7])
        assert isinstance(result.observation.choice, ChoiceParams)
        assert params.final is None

    def test_start_clipped_into_bounds(self, trial_sets) -> None:
        """Test that a starting value outside the bounds is clipped."""
        params = generative_parameters((LAPSE,), lapse=1.5)

        result = fit(trial_sets, params, FitOptions(maxiter=3))

        assert 0.0 <= result.x[LAPSE] <= 1.0
        assert result.n_iterations <= 3

    def test_prior_pulls_estimate(self, trial_sets) -> None:
        """Test that a strong prior draws the bias toward its mean."""
        params = generative_parameters((BIAS,), bias=0.0)
        prior = Prior(index=np.array([BIAS]), mu=np.array([-5.0]), beta=np.array([100.0]))

        result = fit(trial_sets, params, prior=prior)

        assert abs(result.x[BIAS] + 5.0) < 0.5


class TestDerivatives:
    """Tests for gradient and hessian functions."""

    def test_gradient_matches_central_difference(self, trial_sets) -> None:
        """Test the gradient against a central difference of the log-likelihood."""
        params = generative_parameters((BIAS, LAPSE))
        x = params.initial

        grad = gradient(trial_sets, params)

        h = 1e-4
        for k, i in enumerate((BIAS, LAPSE)):
            up, down = x.copy(), x.copy()
            up[i] += h
            down[i] -= h
            ll_up = log_likelihood_at(trial_sets, params, up)
            ll_down = log_likelihood_at(trial_sets, params, down)
            expected = -(ll_up - ll_down) / (2 * h)
            np.testing.assert_allclose(grad[k], expected, rtol=1e-2, atol=1e-2)

    def test_hessian_symmetric(self, trial_sets) -> None:
        """Test that the Hessian is square, finite and symmetric."""
        params = generative_parameters((BIAS, LAPSE))

        H = hessian(trial_sets, params)

        assert H.shape == (2, 2)
        assert np.all(np.isfinite(H))
        np.testing.assert_array_equal(H, H.T)

    def test_hessian_single_parameter(self, trial_sets) -> None:
        """Test that one free parameter gives a 1 x 1 Hessian."""
        H = hessian(trial_sets, generative_parameters((BIAS,)))

        assert H.shape == (1, 1)


class TestConfidenceIntervals:
    """Tests for confidence_intervals and likelihood_ratio_confidence_intervals."""

    def test_hessian_intervals_fill_parameter_set(self, trial_sets) -> None:
        """Test that free entries get +/- 2 sd and fixed entries zero width."""
        params = generative_parameters((BIAS, LAPSE))
        H = np.diag([4.0, 100.0])

        updated, intervals = confidence_intervals(trial_sets, params, H=H)

        x = params.current
        np.testing.assert_allclose(updated.ci_lower[[BIAS, LAPSE]], x[[BIAS, LAPSE]] - [1.0, 0.2])
        np.testing.assert_allclose(updated.ci_upper[[BIAS, LAPSE]], x[[BIAS, LAPSE]] + [1.0, 0.2])
        np.testing.assert_array_equal(updated.ci_lower[:7], x[:7])
        assert intervals.positive_definite

    def test_likelihood_ratio_intervals_bracket_estimate(self, trial_sets) -> None:
        """Test that the likelihood-ratio interval contains the fitted bias."""
        params = fit(trial_sets, generative_parameters((BIAS,))).parameters
        params = replace(params, lower=np.where(params.fit, -10.0, params.lower))
        params = replace(params, upper=np.where(params.fit, 10.0, params.upper))

        updated, intervals = likelihood_ratio_confidence_intervals(trial_sets, params, n_points=15)

        assert updated.ci_lower[BIAS] < params.final[BIAS] < updated.ci_upper[BIAS]
        assert intervals.xs[0].shape == (15,)

    def test_likelihood_ratio_intervals_unbounded_link_parameters(self) -> None:
        """Test that free link parameters with infinite bounds get finite intervals."""
        latent = LatentParams(B=10.0, lam=-0.5, sigma2_a=5.0, sigma2_s=1.5, phi=0.4, tau_phi=0.02)
        neural = (10.0, 1.0, 0.0)
        trial_set = simulate_trial_set(
            10, latent, np.random.default_rng(seed=3), links=(Softplus(),), neural=(neural,)
        )
        params = default_parameters(choice=False)
        params = replace(params, fit=np.zeros(7, dtype=bool), initial=latent.to_array())
        params = params.with_neurons(((np.array(neural),),))
        assert np.all(np.isinf(params.upper[params.fit]))

        updated, intervals = likelihood_ratio_confidence_intervals([trial_set], params, n_points=9)

        free = params.fit
        assert np.all(np.isfinite(updated.ci_lower[free]))
        assert np.all(np.isfinite(updated.ci_upper[free]))
        assert np.all(updated.ci_lower[free] < params.initial[free])
        assert np.all(params.initial[free] < updated.ci_upper[free])
        # Scan windows are centred on the estimate: p1 = 10 spans [-10, 30]
        np.testing.assert_allclose(intervals.xs[0][[0, -1]], [-10.0, 30.0])


@pytest.mark.slow
class TestParameterRecovery:
    """End-to-end recovery of model parameters from simulated data."""

    def test_recovers_bias_and_lapse(self, generative: ParameterSet) -> None:
        """Test that bias and lapse are recovered from 1000 simulated choices."""
        latent, observation = split_parameters(generative.generative, generative.layout)
        trial_sets = [
            simulate_trial_set(1000, latent, np.random.default_rng(seed=7), choice=observation.choice)
        ]
        params = generative_parameters((BIAS, LAPSE), bias=0.0, lapse=0.01)

        result = fit(trial_sets, params)

        assert abs(result.x[BIAS] - generative.generative[BIAS]) < 0.75
        assert abs(result.x[LAPSE] - generative.generative[LAPSE]) < 0.05
        for i in (BIAS, LAPSE):
            for h in (-1e-2, 1e-2):
                neighbour = result.x.copy()
                neighbour[i] = np.clip(neighbour[i] + h, params.lower[i], params.upper[i])
                assert result.log_likelihood >= log_likelihood_at(trial_sets, params, neighbour) - 1e-4

    def test_recovers_latent_parameters(self, generative: ParameterSet) -> None:
        """Test recovery of B, lam, sigma2_a and phi with the choice block from 2000 trials."""
        names = ("B", "lam", "sigma2_a", "phi", "bias", "lapse")
        tolerance = {"B": 6.0, "lam": 1.0, "sigma2_a": 4.0, "phi": 0.2, "bias": 0.75, "lapse": 0.05}
        free = tuple(generative.names.index(name) for name in names)
        truth = generative.generative
        latent, observation = split_parameters(truth, generative.layout)
        trial_sets = [
            simulate_trial_set(2000, latent, np.random.default_rng(seed=11), choice=observation.choice)
        ]
        start = {name: truth[generative.names.index(name)] * 1.1 for name in names}
        params = generative_parameters(free, **start)

        result = fit(trial_sets, params)

        for name, i in zip(names, free):
            assert abs(result.x[i] - truth[i]) < tolerance[name], name
        for i in free:
            step = 0.02 * max(abs(result.x[i]), 0.5)
            for h in (-step, step):
                neighbour = result.x.copy()
                neighbour[i] = np.clip(neighbour[i] + h, params.lower[i], params.upper[i])
                if neighbour[i] == result.x[i]:
                    continue
                ll = log_likelihood_at(trial_sets, params, neighbour)
                assert result.log_likelihood >= ll - 1e-6, params.names[i]
