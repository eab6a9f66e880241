"""Log-likelihood of choices and spikes summed over trials and trial-sets."""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from concurrent.futures import Executor
from functools import partial

import numpy as np
from numpy.typing import NDArray

from ._validation import DegenerateLikelihoodWarning
from .adaptation import adapt_clicks
from .data import Trial, TrialSet
from .forward import ClickInputs, TrialScratch, bin_click_inputs, forward_pass, posterior
from .grid import LatentGrid, build_grid
from .links import LinkFunction
from .observations import choice_log_likelihood, choice_probabilities, spike_log_emissions
from .parameters import (
    ChoiceParams,
    LatentParams,
    ObservationParams,
    ParameterLayout,
    Prior,
    combine_parameters,
    split_parameters,
)
from .transition import initial_distribution, no_input_matrix

DEFAULT_N = 53
DEFAULT_DT = 1e-2


def trial_inputs(
    trial: Trial, latent: LatentParams, dt: float, cross: bool = False, stereo: bool = False
) -> ClickInputs:
    """Adapted, binned click input of one trial.

    With `stereo`, a simultaneous first left and right click carries no input.
    """
    left, right = adapt_clicks(
        latent.phi, latent.tau_phi, trial.left, trial.right, cross=cross, stereo=stereo
    )
    left_bins, right_bins = trial.click_bins(dt)
    return bin_click_inputs(left, right, left_bins, right_bins, trial.n_bins(dt))


def neuron_rates(
    links: Sequence[LinkFunction], params: Sequence[Sequence[float]], grid: LatentGrid
) -> NDArray[np.floating]:
    """Firing rate of every neuron at every latent bin, shape (n, n_neurons)."""
    if len(links) != len(params):
        raise ValueError(f"got {len(params)} parameter blocks for {len(links)} neurons")
    rates = np.empty((grid.n, len(links)), dtype=float)
    for k, (link, p) in enumerate(zip(links, params)):
        if len(p) != link.n_params:
            raise ValueError(f"neuron {k}: {link!r} takes {link.n_params} parameters, got {len(p)}")
        rates[:, k] = link.evaluate(np.asarray(p, dtype=float), grid.centers)
    return rates


def trial_log_emissions(
    trial: Trial, rates: NDArray[np.floating] | None, dt: float
) -> NDArray[np.floating] | None:
    """Log-likelihood of the trial's spikes at every time and latent bin."""
    if trial.spikes is None or rates is None:
        return None
    trial.check_spikes(dt)
    return spike_log_emissions(trial.spikes, rates, dt, baseline=trial.baseline)


def trial_log_likelihood(
    trial: Trial,
    latent: LatentParams,
    choice: ChoiceParams | None,
    rates: NDArray[np.floating] | None,
    grid: LatentGrid,
    M: NDArray[np.floating],
    P0: NDArray[np.floating],
    dt: float,
    cross: bool = False,
    stereo: bool = False,
) -> float:
    """Log-likelihood of one trial's spikes and/or choice.

    Parameters
    ----------
    trial : Trial
    latent : LatentParams
    choice : ChoiceParams or None
        Choice readout; the choice is ignored if None.
    rates : np.ndarray or None
        Firing rates at each latent bin, shape (n, n_neurons); spikes are
        ignored if None.
    grid : LatentGrid
    M : np.ndarray
        No-click transition matrix for these parameters.
    P0 : np.ndarray
        Initial distribution for trials without an initial offset.
    dt : float
    cross : bool
        Cross-stream click adaptation.
    stereo : bool
        Silence a simultaneous first left and right click.

    Returns
    -------
    log_likelihood : float
        -inf if the observations have zero probability under the model.
    """
    if trial.initial_offset != 0.0:
        P0 = initial_distribution(latent.sigma2_i, grid, trial.initial_offset)

    result = forward_pass(
        P0,
        M,
        trial_inputs(trial, latent, dt, cross, stereo),
        latent,
        grid,
        dt,
        log_emissions=trial_log_emissions(trial, rates, dt),
        scratch=TrialScratch(grid.n),
    )
    if result.degenerate:
        return -np.inf

    ll = result.log_likelihood
    if choice is not None:
        ll += choice_log_likelihood(result.P_final, trial.choice, choice.bias, choice.lapse, grid)
    return ll


def _set_rates(
    trial_set: TrialSet, observation: ObservationParams, set_index: int, grid: LatentGrid
) -> NDArray[np.floating] | None:
    if trial_set.n_neurons == 0:
        return None
    if set_index >= len(observation.neural):
        raise ValueError(f"no link parameters for trial-set {set_index}")
    return neuron_rates(trial_set.links, observation.neural[set_index], grid)


def trial_set_log_likelihoods(
    latent: LatentParams,
    observation: ObservationParams,
    trial_set: TrialSet,
    set_index: int = 0,
    n: int = DEFAULT_N,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
    executor: Executor | None = None,
) -> NDArray[np.floating]:
    """Log-likelihood of every trial in a trial-set.

    The grid, the no-click matrix and the firing rates are computed once and
    shared read-only by all trials.

    Parameters
    ----------
    latent : LatentParams
    observation : ObservationParams
    trial_set : TrialSet
    set_index : int, optional
        Position of the trial-set, selecting its link parameters.
    n : int, optional
        Number of latent bins. Default is 53.
    dt : float, optional
        Bin width in seconds. Default is 0.01.
    cross : bool, optional
        Cross-stream click adaptation. Default is False.
    stereo : bool, optional
        Silence a simultaneous first left and right click. Default is False.
    executor : concurrent.futures.Executor, optional
        If given, trials are evaluated with `executor.map`.

    Returns
    -------
    log_likelihoods : np.ndarray
        Shape (n_trials,).
    """
    grid = build_grid(latent.B, n)
    M = no_input_matrix(latent.lam, latent.sigma2_a, grid, dt)
    P0 = initial_distribution(latent.sigma2_i, grid)
    rates = _set_rates(trial_set, observation, set_index, grid)

    evaluate = partial(
        trial_log_likelihood,
        latent=latent,
        choice=observation.choice,
        rates=rates,
        grid=grid,
        M=M,
        P0=P0,
        dt=dt,
        cross=cross,
        stereo=stereo,
    )
    mapper = map if executor is None else executor.map
    return np.fromiter(mapper(evaluate, trial_set.trials), dtype=float, count=len(trial_set))


def log_likelihoods(
    latent: LatentParams,
    observation: ObservationParams,
    trial_sets: Sequence[TrialSet],
    n: int = DEFAULT_N,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
    executor: Executor | None = None,
) -> list[NDArray[np.floating]]:
    """Per-trial log-likelihoods of every trial-set."""
    if observation.choice is None and not any(s.n_neurons for s in trial_sets):
        raise ValueError("nothing to fit: no choice model and no neurons in any trial-set")
    return [
        trial_set_log_likelihoods(
            latent, observation, s, i, n=n, dt=dt, cross=cross, stereo=stereo, executor=executor
        )
        for i, s in enumerate(trial_sets)
    ]


def total_log_likelihood(
    latent: LatentParams,
    observation: ObservationParams,
    trial_sets: Sequence[TrialSet],
    n: int = DEFAULT_N,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
    prior: Prior | None = None,
    executor: Executor | None = None,
) -> float:
    """Log-likelihood summed over all trials of all trial-sets.

    Trials are conditionally independent given the parameters, so the total
    is the sum of per-trial terms, plus the Gaussian log-prior if given.

    Warns
    -----
    DegenerateLikelihoodWarning
        If some trials have zero probability; the warning lists them as
        (trial-set, trial) pairs and the total is -inf.
    """
    per_set = log_likelihoods(
        latent, observation, trial_sets, n=n, dt=dt, cross=cross, stereo=stereo, executor=executor
    )

    bad = [(s, int(i)) for s, lls in enumerate(per_set) for i in np.flatnonzero(~np.isfinite(lls))]
    if bad:
        warnings.warn(
            f"{len(bad)} trial(s) have zero likelihood (trial-set, trial): {bad[:10]}"
            + (" ..." if len(bad) > 10 else ""),
            DegenerateLikelihoodWarning,
            stacklevel=2,
        )
        return -np.inf

    ll = float(sum(float(np.sum(lls)) for lls in per_set))
    if prior is not None:
        ll += prior.log_prior(combine_parameters(latent, observation))
    return ll


def negative_log_likelihood(
    x: NDArray[np.floating],
    layout: ParameterLayout,
    trial_sets: Sequence[TrialSet],
    n: int = DEFAULT_N,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
    prior: Prior | None = None,
    executor: Executor | None = None,
) -> float:
    """Objective minimized by the optimizer: minus `total_log_likelihood` at flat vector x."""
    latent, observation = split_parameters(x, layout)
    return -total_log_likelihood(
        latent,
        observation,
        trial_sets,
        n=n,
        dt=dt,
        cross=cross,
        stereo=stereo,
        prior=prior,
        executor=executor,
    )


def trial_posteriors(
    latent: LatentParams,
    observation: ObservationParams,
    trial_set: TrialSet,
    set_index: int = 0,
    n: int = DEFAULT_N,
    dt: float = DEFAULT_DT,
    cross: bool = False,
    stereo: bool = False,
) -> list[NDArray[np.floating]]:
    """Smoothed accumulator distribution of every trial, given its spikes and choice.

    Returns
    -------
    posteriors : list of np.ndarray
        One (n_bins, n) array per trial.
    """
    grid = build_grid(latent.B, n)
    M = no_input_matrix(latent.lam, latent.sigma2_a, grid, dt)
    rates = _set_rates(trial_set, observation, set_index, grid)
    scratch = TrialScratch(grid.n)

    posteriors = []
    for trial in trial_set.trials:
        P0 = initial_distribution(latent.sigma2_i, grid, trial.initial_offset)
        inputs = trial_inputs(trial, latent, dt, cross, stereo)
        log_emissions = trial_log_emissions(trial, rates, dt)
        if observation.choice is not None:
            if log_emissions is None:
                log_emissions = np.zeros((inputs.n_bins, grid.n))
            choice = observation.choice
            p_choice = choice_probabilities(trial.choice, choice.bias, choice.lapse, grid)
            with np.errstate(divide="ignore"):
                log_emissions[-1] += np.log(p_choice)
        posteriors.append(
            posterior(P0, M, inputs, latent, grid, dt, log_emissions=log_emissions, scratch=scratch)
        )
    return posteriors
