"""Synthetic clicks, accumulator trajectories, choices and spikes."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray

from .data import Trial, TrialSet
from .likelihood import DEFAULT_DT, trial_inputs
from .links import LinkFunction
from .parameters import ChoiceParams, LatentParams
from .transition import drift_factors

logger = logging.getLogger(__name__)

# Log-ratios of right to left click rates
DEFAULT_GAMMAS = (-4.0, -3.0, -2.0, -1.0, -0.5, 0.5, 1.0, 2.0, 3.0, 4.0)


def sample_clicks(
    n_trials: int,
    rng: np.random.Generator,
    total_rate: float = 40.0,
    gammas: Sequence[float] = DEFAULT_GAMMAS,
    duration_range: tuple[float, float] = (0.2, 1.0),
    stereo_onset: bool = True,
) -> list[tuple[NDArray[np.floating], NDArray[np.floating], float]]:
    """Poisson click trains.

    Each trial draws a duration uniformly from `duration_range` and a rate
    log-ratio gamma from `gammas`; right and left clicks are Poisson processes
    with rates total_rate * e^gamma / (1 + e^gamma) and the remainder.

    Parameters
    ----------
    n_trials : int
    rng : np.random.Generator
    total_rate : float, optional
        Summed left and right click rate in Hz. Default is 40.
    gammas : sequence of float, optional
        Candidate log-ratios of right to left rate.
    duration_range : tuple of float, optional
        Shortest and longest stimulus in seconds. Default is (0.2, 1.0).
    stereo_onset : bool, optional
        Start every trial with a simultaneous left and right click at t = 0.

    Returns
    -------
    stimuli : list of (left, right, duration)
    """
    stimuli = []
    for _ in range(n_trials):
        duration = float(rng.uniform(*duration_range))
        gamma = float(rng.choice(np.asarray(gammas, dtype=float)))
        rate_right = total_rate * np.exp(gamma) / (1.0 + np.exp(gamma))
        rate_left = total_rate - rate_right

        trains = []
        for rate in (rate_left, rate_right):
            n_clicks = rng.poisson(rate * duration)
            times = np.sort(rng.uniform(0.0, duration, size=n_clicks))
            if stereo_onset:
                times = np.concatenate([[0.0], times])
            trains.append(times)
        stimuli.append((trains[0], trains[1], duration))
    return stimuli


def sample_latent(
    trial: Trial,
    latent: LatentParams,
    rng: np.random.Generator,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
) -> NDArray[np.floating]:
    """Simulate the accumulator over one trial.

    The state is advanced bin by bin with the same Gaussian steps that the
    likelihood discretizes, and sticks once it reaches a bound. With
    `stereo`, a simultaneous first left and right click carries no input.

    Returns
    -------
    a : np.ndarray
        Accumulator value at the end of every bin. Shape (n_bins,).
    """
    inputs = trial_inputs(trial, latent, dt, cross, stereo)
    growth, gain, variance_scale = drift_factors(latent.lam, dt)
    B = latent.B

    a = trial.initial_offset + np.sqrt(latent.sigma2_i) * rng.standard_normal()
    a = float(np.clip(a, -B, B))
    path = np.empty(inputs.n_bins, dtype=float)
    noise = rng.standard_normal(inputs.n_bins)
    for t in range(inputs.n_bins):
        if abs(a) < B:
            variance = (latent.sigma2_a * dt + latent.sigma2_s * inputs.total[t]) * variance_scale
            a = a * growth + inputs.net[t] / dt * gain + np.sqrt(variance) * noise[t]
            a = float(np.clip(a, -B, B))
        path[t] = a
    return path


def sample_choice(a_final: float, choice: ChoiceParams, rng: np.random.Generator) -> bool:
    """Right if the accumulator ends above the bias, or at random on a lapse."""
    if rng.uniform() < choice.lapse:
        return bool(rng.uniform() < 0.5)
    return bool(a_final > choice.bias)


def sample_spikes(
    path: NDArray[np.floating],
    links: Sequence[LinkFunction],
    params: Sequence[Sequence[float]],
    rng: np.random.Generator,
    dt: float = DEFAULT_DT,
) -> NDArray[np.int_]:
    """Poisson spike counts driven by the accumulator, shape (n_bins, n_neurons)."""
    rates = np.column_stack(
        [link.evaluate(np.asarray(p, dtype=float), path) for link, p in zip(links, params)]
    )
    return rng.poisson(np.maximum(rates, 0.0) * dt)


def simulate_trial_set(
    n_trials: int,
    latent: LatentParams,
    rng: np.random.Generator,
    choice: ChoiceParams | None = None,
    links: Sequence[LinkFunction] = (),
    neural: Sequence[Sequence[float]] = (),
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
    **click_kwargs,
) -> TrialSet:
    """Simulate a complete trial-set from known parameters.

    Parameters
    ----------
    n_trials : int
    latent : LatentParams
        Generative accumulator parameters.
    rng : np.random.Generator
    choice : ChoiceParams, optional
        Generative choice readout. Defaults to no bias and no lapse.
    links : sequence of LinkFunction, optional
        Link function of each simulated neuron.
    neural : sequence of sequence of float, optional
        Link parameters of each simulated neuron.
    dt : float, optional
        Bin width in seconds.
    cross : bool, optional
        Cross-stream click adaptation.
    stereo : bool, optional
        Silence the simultaneous first click pair in the accumulator.
    **click_kwargs
        Passed to `sample_clicks`.

    Returns
    -------
    trial_set : TrialSet
    """
    if len(links) != len(neural):
        raise ValueError(f"got {len(neural)} parameter blocks for {len(links)} neurons")
    choice = ChoiceParams(bias=0.0, lapse=0.0) if choice is None else choice

    logger.info("simulating %d trials with %d neurons", n_trials, len(links))
    trials = []
    for left, right, duration in sample_clicks(n_trials, rng, **click_kwargs):
        stimulus = Trial(left=left, right=right, duration=duration)
        path = sample_latent(stimulus, latent, rng, dt=dt, cross=cross, stereo=stereo)
        spikes = sample_spikes(path, links, neural, rng, dt=dt) if links else None
        trials.append(
            Trial(
                left=left,
                right=right,
                duration=duration,
                choice=sample_choice(path[-1], choice, rng),
                spikes=spikes,
            )
        )
    return TrialSet(trials=tuple(trials), links=tuple(links))
