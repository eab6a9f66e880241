"""Tests for synthetic data generation."""

import numpy as np
import pytest

from pulseddm.data import Trial
from pulseddm.links import Softplus
from pulseddm.parameters import ChoiceParams, LatentParams
from pulseddm.simulate import (
    sample_choice,
    sample_clicks,
    sample_latent,
    sample_spikes,
    simulate_trial_set,
)

rng = np.random.default_rng(seed=42)


class TestSampleClicks:
    """Tests for sample_clicks function."""

    def test_trains_sorted_within_duration(self) -> None:
        """Test that every train is sorted and inside the stimulus."""
        stimuli = sample_clicks(50, rng)

        assert len(stimuli) == 50
        for left, right, duration in stimuli:
            assert 0.2 <= duration <= 1.0
            for times in (left, right):
                assert np.all(np.diff(times) >= 0)
                assert np.all((times >= 0) & (times <= duration))

    def test_stereo_first_click(self) -> None:
        """Test that stereo trials start with a click on both sides at t = 0."""
        for left, right, _ in sample_clicks(10, rng, stereo_onset=True):
            assert left[0] == 0.0
            assert right[0] == 0.0

    def test_rates_follow_gamma(self) -> None:
        """Test that a large positive gamma gives mostly right clicks."""
        stimuli = sample_clicks(200, rng, gammas=(3.0,), stereo_onset=False)

        n_left = sum(left.size for left, _, _ in stimuli)
        n_right = sum(right.size for _, right, _ in stimuli)
        assert n_right > 10 * n_left


class TestSampleLatent:
    """Tests for sample_latent function."""

    def test_path_length(self) -> None:
        """Test one accumulator value per time bin."""
        trial = Trial(left=[0.05], right=[0.1, 0.2], duration=0.33)

        path = sample_latent(trial, LatentParams(), rng)

        assert path.shape == (33,)

    def test_sticks_at_bound(self) -> None:
        """Test that a strongly driven accumulator stays at the bound."""
        right = np.linspace(0.0, 0.1, 60)
        trial = Trial(left=[], right=right, duration=0.5)
        latent = LatentParams(B=5.0, lam=0.0, sigma2_a=1.0, sigma2_s=0.1, phi=1.0)

        path = sample_latent(trial, latent, rng)

        hit = np.flatnonzero(path == 5.0)
        assert hit.size > 0
        np.testing.assert_array_equal(path[hit[0] :], 5.0)

    def test_noiseless_sums_clicks(self) -> None:
        """Test that without noise or leak the path is the running click difference."""
        trial = Trial(left=[0.015], right=[0.005, 0.025, 0.027], duration=0.04)
        latent = LatentParams(sigma2_i=0.0, lam=0.0, sigma2_a=0.0, sigma2_s=0.0, phi=1.0)

        path = sample_latent(trial, latent, rng)

        np.testing.assert_allclose(path, [1.0, 0.0, 2.0, 2.0])

    def test_silenced_stereo_pair_adds_no_noise(self) -> None:
        """Test that a silenced stereo pair leaves a noise-free accumulator at zero."""
        trial = Trial(left=[0.0], right=[0.0], duration=0.02)
        latent = LatentParams(sigma2_i=0.0, lam=0.0, sigma2_a=0.0, sigma2_s=1.0, phi=1.0)

        silenced = sample_latent(trial, latent, rng, stereo=True)
        plain = sample_latent(trial, latent, rng)

        np.testing.assert_array_equal(silenced, [0.0, 0.0])
        assert plain[0] != 0.0


class TestSampleObservations:
    """Tests for sample_choice and sample_spikes functions."""

    def test_choice_without_lapse(self) -> None:
        """Test that the choice follows the sign of a_final - bias."""
        choice = ChoiceParams(bias=1.0, lapse=0.0)

        assert sample_choice(1.5, choice, rng)
        assert not sample_choice(0.5, choice, rng)

    def test_full_lapse_is_random(self) -> None:
        """Test that lapse == 1 gives roughly half right choices."""
        choice = ChoiceParams(bias=0.0, lapse=1.0)

        choices = [sample_choice(10.0, choice, rng) for _ in range(2000)]

        assert 0.4 < np.mean(choices) < 0.6

    def test_spike_counts(self) -> None:
        """Test that spike counts have one column per neuron and track the rate."""
        path = np.full(20000, 2.0)
        params = [(10.0, 0.0, 0.0), (0.0, 0.0, -50.0)]

        counts = sample_spikes(path, [Softplus(), Softplus()], params, rng)

        assert counts.shape == (20000, 2)
        np.testing.assert_allclose(counts[:, 0].mean(), (10.0 + np.log(2.0)) * 0.01, rtol=0.1)
        assert counts[:, 1].sum() == 0


class TestSimulateTrialSet:
    """Tests for simulate_trial_set function."""

    def test_choice_only(self) -> None:
        """Test a choice-only trial-set."""
        trial_set = simulate_trial_set(20, LatentParams(), rng)

        assert len(trial_set) == 20
        assert trial_set.n_neurons == 0
        assert all(trial.spikes is None for trial in trial_set.trials)

    def test_with_neurons(self) -> None:
        """Test that spikes are binned at dt for every neuron."""
        trial_set = simulate_trial_set(
            5, LatentParams(), rng, links=(Softplus(),), neural=((20.0, 0.5, 0.0),), dt=0.01
        )

        assert trial_set.n_neurons == 1
        for trial in trial_set.trials:
            assert trial.spikes.shape == (trial.n_bins(0.01), 1)

    def test_choices_follow_evidence(self) -> None:
        """Test that strongly rightward trials are mostly chosen right."""
        latent = LatentParams(B=15.0, lam=0.0, sigma2_a=1.0, sigma2_s=0.1, phi=1.0)
        trial_set = simulate_trial_set(300, latent, rng, choice=ChoiceParams(bias=0.0, lapse=0.0))

        evidence = np.array([t.right.size - t.left.size for t in trial_set.trials])
        choices = np.array([t.choice for t in trial_set.trials])
        assert choices[evidence >= 5].mean() > 0.9
        assert choices[evidence <= -5].mean() < 0.1

    def test_mismatched_neurons_raise_error(self) -> None:
        """Test that links and parameters of different lengths raise ValueError."""
        with pytest.raises(ValueError, match="parameter blocks"):
            simulate_trial_set(3, LatentParams(), rng, links=(Softplus(),), neural=())
