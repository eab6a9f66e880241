"""Model parameters and their flat-vector representation.

The optimizer works on a single flat vector. This module maps between that
vector and the named parameter blocks: the latent block shared by all
trials, an optional choice block, and the firing-rate link parameters of
every neuron in every trial-set.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

import numpy as np
from numpy.typing import NDArray

from ._validation import validate_mask, validate_vector_length

LATENT_NAMES = ("sigma2_i", "B", "lam", "sigma2_a", "sigma2_s", "phi", "tau_phi")
CHOICE_NAMES = ("bias", "lapse")
N_LATENT = len(LATENT_NAMES)


@dataclass(frozen=True)
class LatentParams:
    """Parameters of the accumulator shared by all trials."""

    sigma2_i: float = float(np.finfo(float).eps)  # initial-point variance
    B: float = 15.0  # bound
    lam: float = -0.1  # drift (leak) rate
    sigma2_a: float = 20.0  # accumulation noise
    sigma2_s: float = 0.5  # per-click noise
    phi: float = 0.8  # adaptation strength
    tau_phi: float = 0.008  # adaptation time constant (s)

    def to_array(self) -> NDArray[np.floating]:
        return np.array([getattr(self, name) for name in LATENT_NAMES], dtype=float)

    @classmethod
    def from_array(cls, x: NDArray[np.floating]) -> LatentParams:
        x = validate_vector_length(x, N_LATENT, name="latent parameters")
        return cls(*(float(v) for v in x))


@dataclass(frozen=True)
class ChoiceParams:
    """Decision readout: criterion and lapse rate."""

    bias: float = 0.0
    lapse: float = 0.01


@dataclass(frozen=True)
class ObservationParams:
    """Observation-model parameters.

    Attributes
    ----------
    choice : ChoiceParams or None
        Choice readout, or None when choices are not modelled.
    neural : tuple
        neural[s][k] holds the link-function parameters of neuron k in
        trial-set s, as a tuple of floats.
    """

    choice: ChoiceParams | None = None
    neural: tuple[tuple[tuple[float, ...], ...], ...] = ()


@dataclass(frozen=True)
class ParameterLayout:
    """Shape of the flat parameter vector.

    Attributes
    ----------
    choice : bool
        Whether the (bias, lapse) block follows the latent block.
    neural : tuple
        neural[s][k] is the number of link parameters of neuron k in
        trial-set s.
    """

    choice: bool = True
    neural: tuple[tuple[int, ...], ...] = ()

    @property
    def size(self) -> int:
        return N_LATENT + (len(CHOICE_NAMES) if self.choice else 0) + sum(map(sum, self.neural))

    @property
    def names(self) -> tuple[str, ...]:
        names = list(LATENT_NAMES)
        if self.choice:
            names.extend(CHOICE_NAMES)
        for s, counts in enumerate(self.neural):
            for k, count in enumerate(counts):
                names.extend(f"set{s}_neuron{k}_p{j}" for j in range(count))
        return tuple(names)

    @classmethod
    def from_observation(cls, observation: ObservationParams) -> ParameterLayout:
        return cls(
            choice=observation.choice is not None,
            neural=tuple(tuple(len(p) for p in neurons) for neurons in observation.neural),
        )


def combine_parameters(latent: LatentParams, observation: ObservationParams) -> NDArray[np.floating]:
    """Concatenate latent and observation parameters into one flat vector.

    Order: the seven latent parameters, then (bias, lapse) if present, then
    the link parameters neuron by neuron, trial-set by trial-set.
    """
    parts = [latent.to_array()]
    if observation.choice is not None:
        parts.append(np.array([observation.choice.bias, observation.choice.lapse], dtype=float))
    for neurons in observation.neural:
        for params in neurons:
            parts.append(np.asarray(params, dtype=float))
    return np.concatenate(parts)


def split_parameters(
    x: NDArray[np.floating], layout: ParameterLayout
) -> tuple[LatentParams, ObservationParams]:
    """Inverse of `combine_parameters`.

    Parameters
    ----------
    x : np.ndarray
        Flat parameter vector of length `layout.size`.
    layout : ParameterLayout
        Shape of the observation block.

    Returns
    -------
    latent : LatentParams
    observation : ObservationParams

    Raises
    ------
    ValueError
        If x does not have length `layout.size`.

    Examples
    --------
    >>> from pulseddm.parameters import (
    ...     ChoiceParams, LatentParams, ObservationParams, ParameterLayout,
    ...     combine_parameters, split_parameters)
    >>> obs = ObservationParams(choice=ChoiceParams(bias=0.5, lapse=0.1))
    >>> x = combine_parameters(LatentParams(), obs)
    >>> split_parameters(x, ParameterLayout(choice=True)) == (LatentParams(), obs)
    True
    """
    x = validate_vector_length(x, layout.size)

    latent = LatentParams.from_array(x[:N_LATENT])
    i = N_LATENT

    choice = None
    if layout.choice:
        choice = ChoiceParams(bias=float(x[i]), lapse=float(x[i + 1]))
        i += len(CHOICE_NAMES)

    neural = []
    for counts in layout.neural:
        neurons = []
        for count in counts:
            neurons.append(tuple(float(v) for v in x[i : i + count]))
            i += count
        neural.append(tuple(neurons))

    return latent, ObservationParams(choice=choice, neural=tuple(neural))


def split_free(
    x: NDArray[np.floating], fit: NDArray[np.bool_]
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Split a full vector into its free (fitted) and fixed entries."""
    x = np.asarray(x, dtype=float)
    fit = validate_mask(fit, x.size)
    return x[fit], x[~fit]


def merge_free(
    free: NDArray[np.floating], fixed: NDArray[np.floating], fit: NDArray[np.bool_]
) -> NDArray[np.floating]:
    """Inverse of `split_free`."""
    fit = np.asarray(fit, dtype=bool)
    x = np.empty(fit.size, dtype=float)
    x[fit] = free
    x[~fit] = fixed
    return x


def gaussian_prior(
    p: NDArray[np.floating], mu: NDArray[np.floating], beta: NDArray[np.floating]
) -> float:
    """Log of an (unnormalized) Gaussian prior, -sum(beta * (p - mu)**2)."""
    p, mu, beta = (np.asarray(a, dtype=float) for a in (p, mu, beta))
    return float(-np.sum(beta * (p - mu) ** 2))


@dataclass(frozen=True)
class Prior:
    """Gaussian penalty on a subset of the flat parameter vector.

    Attributes
    ----------
    index : np.ndarray
        Integer positions in the flat parameter vector that are penalized.
    mu : np.ndarray
        Prior means, same length as index.
    beta : np.ndarray
        Penalty weights, same length as index. Must be non-negative.
    """

    index: NDArray[np.int_]
    mu: NDArray[np.floating]
    beta: NDArray[np.floating]

    def __post_init__(self) -> None:
        index = np.asarray(self.index, dtype=int)
        mu = np.asarray(self.mu, dtype=float)
        beta = np.asarray(self.beta, dtype=float)
        if not (index.shape == mu.shape == beta.shape) or index.ndim != 1:
            raise ValueError(
                f"index, mu and beta must be 1D with equal length, got "
                f"{index.shape}, {mu.shape}, {beta.shape}"
            )
        if np.any(beta < 0):
            raise ValueError("beta must be non-negative")
        object.__setattr__(self, "index", index)
        object.__setattr__(self, "mu", mu)
        object.__setattr__(self, "beta", beta)

    def log_prior(self, x: NDArray[np.floating]) -> float:
        return gaussian_prior(np.asarray(x, dtype=float)[self.index], self.mu, self.beta)


@dataclass
class ParameterSet:
    """Values of the flat parameter vector at each stage of a fit.

    Attributes
    ----------
    names : tuple of str
        Name of every entry.
    fit : np.ndarray
        Boolean mask, True for entries that are optimized.
    lower, upper : np.ndarray
        Bounds used by the optimizer.
    initial : np.ndarray
        Starting values.
    generative : np.ndarray or None
        Values used to simulate data, when known.
    final : np.ndarray or None
        Fitted values.
    ci_lower, ci_upper : np.ndarray or None
        Confidence bounds of the fitted values.
    """

    names: tuple[str, ...]
    fit: NDArray[np.bool_]
    lower: NDArray[np.floating]
    upper: NDArray[np.floating]
    initial: NDArray[np.floating]
    generative: NDArray[np.floating] | None = None
    final: NDArray[np.floating] | None = None
    ci_lower: NDArray[np.floating] | None = None
    ci_upper: NDArray[np.floating] | None = None
    layout: ParameterLayout = field(default_factory=ParameterLayout)

    def __post_init__(self) -> None:
        size = len(self.names)
        if size != self.layout.size:
            raise ValueError(f"names has {size} entries but the layout needs {self.layout.size}")
        self.fit = validate_mask(self.fit, size)
        self.lower = validate_vector_length(self.lower, size, name="lower")
        self.upper = validate_vector_length(self.upper, size, name="upper")
        self.initial = validate_vector_length(self.initial, size, name="initial")
        if np.any(self.lower > self.upper):
            bad = [self.names[i] for i in np.flatnonzero(self.lower > self.upper)]
            raise ValueError(f"lower bound exceeds upper bound for {bad}")

    @property
    def current(self) -> NDArray[np.floating]:
        """Final values if fitted, otherwise the initial values."""
        return self.initial if self.final is None else self.final

    def with_neurons(
        self,
        neural: tuple[tuple[NDArray[np.floating], ...], ...],
        lower: float = -np.inf,
        upper: float = np.inf,
    ) -> ParameterSet:
        """Append free link parameters for every neuron of every trial-set."""
        neural = tuple(tuple(np.asarray(p, dtype=float) for p in ps) for ps in neural)
        extra = np.concatenate([p for ps in neural for p in ps]) if neural else np.empty(0)
        layout = ParameterLayout(
            choice=self.layout.choice,
            neural=self.layout.neural + tuple(tuple(p.size for p in ps) for ps in neural),
        )
        return replace(
            self,
            names=self.names + layout.names[len(self.names) :],
            fit=np.concatenate([self.fit, np.ones(extra.size, dtype=bool)]),
            lower=np.concatenate([self.lower, np.full(extra.size, lower)]),
            upper=np.concatenate([self.upper, np.full(extra.size, upper)]),
            initial=np.concatenate([self.initial, extra]),
            generative=None,
            final=None,
            ci_lower=None,
            ci_upper=None,
            layout=layout,
        )


def default_parameters(*, generative: bool = False, choice: bool = True) -> ParameterSet:
    """Default initial values, bounds and fit mask.

    Parameters
    ----------
    generative : bool, optional
        If True, also fill in the values used to simulate the reference
        synthetic data set. Default is False.
    choice : bool, optional
        Whether the (bias, lapse) block is included. Default is True.

    Returns
    -------
    parameters : ParameterSet
    """
    eps = float(np.finfo(float).eps)
    fit = [False, True, True, True, True, True, True]
    initial = [eps, 15.0, -0.1, 20.0, 0.5, 0.8, 0.008]
    lower = [0.0, 8.0, -5.0, 0.0, 0.0, 0.01, 0.005]
    upper = [2.0, 30.0, 5.0, 100.0, 2.5, 1.2, 1.0]
    truth = [eps, 18.0, -0.5, 5.0, 1.5, 0.4, 0.02]
    names = list(LATENT_NAMES)

    if choice:
        fit += [True, True]
        initial += [0.0, 0.01]
        lower += [-30.0, 0.0]
        upper += [30.0, 1.0]
        truth += [1.0, 0.05]
        names += list(CHOICE_NAMES)

    return ParameterSet(
        names=tuple(names),
        fit=np.array(fit, dtype=bool),
        lower=np.array(lower, dtype=float),
        upper=np.array(upper, dtype=float),
        initial=np.array(initial, dtype=float),
        generative=np.array(truth, dtype=float) if generative else None,
        layout=ParameterLayout(choice=choice),
    )
