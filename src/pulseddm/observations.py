"""Observation models: choices and spike counts given the accumulator."""

import numpy as np
from numpy.typing import NDArray
from scipy.special import gammaln

from ._validation import validate_probability
from .grid import LatentGrid
from .links import softplus

DEFAULT_EPS = 1e-10


def fraction_above(bias: float, grid: LatentGrid) -> NDArray[np.floating]:
    """Fraction of each bin lying above the decision criterion.

    Each bin is treated as the interval [xc - dx/2, xc + dx/2]; the bin that
    straddles `bias` contributes the linearly interpolated fraction.
    """
    upper = grid.centers + grid.dx / 2
    return np.clip((upper - bias) / grid.dx, 0.0, 1.0)


def mass_above(P: NDArray[np.floating], bias: float, grid: LatentGrid) -> float:
    """Probability mass of P lying above `bias`."""
    return float(np.dot(P, fraction_above(bias, grid)))


def choice_probabilities(
    choice: bool, bias: float, lapse: float, grid: LatentGrid
) -> NDArray[np.floating]:
    """Probability of the observed choice given each accumulator bin."""
    p_right = (1.0 - lapse) * fraction_above(bias, grid) + lapse / 2.0
    return p_right if choice else 1.0 - p_right


def choice_log_likelihood(
    P: NDArray[np.floating],
    choice: bool,
    bias: float,
    lapse: float,
    grid: LatentGrid,
    eps: float = DEFAULT_EPS,
) -> float:
    """Log-probability of a choice given the final accumulator distribution.

    Parameters
    ----------
    P : np.ndarray
        Distribution over bins at the end of the trial. Shape (n,).
    choice : bool
        True for a right choice, False for left.
    bias : float
        Decision criterion; the model chooses right when the accumulator
        ends above it.
    lapse : float
        Fraction of choices made at random. Must be in [0, 1].
    grid : LatentGrid
        Latent state grid.
    eps : float, optional
        The probability of a right choice is clipped to [eps, 1 - eps].

    Returns
    -------
    log_likelihood : float

    Examples
    --------
    >>> import numpy as np
    >>> from pulseddm.grid import build_grid
    >>> from pulseddm.observations import choice_log_likelihood
    >>> grid = build_grid(10.0, 7)
    >>> P = np.full(7, 1 / 7)
    >>> bool(np.isclose(choice_log_likelihood(P, True, 0.0, 0.0, grid), np.log(0.5)))
    True
    """
    validate_probability(lapse, "lapse")
    p_right = (1.0 - lapse) * mass_above(P, bias, grid) + lapse / 2.0
    p_right = min(max(p_right, eps), 1.0 - eps)
    return float(np.log(p_right if choice else 1.0 - p_right))


def poisson_log_likelihood(
    k: NDArray[np.floating], rate: NDArray[np.floating], dt: float
) -> NDArray[np.floating]:
    """Poisson log-probability of k spikes at `rate` over a bin of width dt.

    k * log(rate * dt) - rate * dt - log(k!), with log(k!) computed by the
    log-gamma function. Broadcasts over k and rate. A bin with no spikes and
    zero rate has log-probability 0. A negative rate is impossible and has
    log-probability -inf whatever the count.
    """
    k = np.asarray(k, dtype=float)
    mu = np.asarray(rate, dtype=float) * dt
    with np.errstate(divide="ignore", invalid="ignore"):
        term = np.where(k == 0, 0.0, k * np.log(mu))
        ll = term - mu - gammaln(k + 1.0)
    return np.where(mu < 0, -np.inf, ll)


def spike_log_emissions(
    counts: NDArray[np.floating],
    rates: NDArray[np.floating],
    dt: float,
    baseline: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Summed log-likelihood of all neurons' counts for every time and latent bin.

    Parameters
    ----------
    counts : np.ndarray
        Spike counts. Shape (n_time, n_neurons).
    rates : np.ndarray
        Firing rate of each neuron at each latent bin. Shape (n, n_neurons).
    dt : float
        Bin width in seconds.
    baseline : np.ndarray, optional
        Time-varying input added to each neuron's drive. When given, the rate
        at time t is softplus(rates + baseline[t]). Shape (n_time, n_neurons).

    Returns
    -------
    log_emissions : np.ndarray
        Shape (n_time, n).
    """
    counts = np.asarray(counts, dtype=float)
    rates = np.asarray(rates, dtype=float)
    if counts.ndim != 2 or rates.ndim != 2 or counts.shape[1] != rates.shape[1]:
        raise ValueError(
            f"counts must be (n_time, n_neurons) and rates (n, n_neurons), "
            f"got {counts.shape} and {rates.shape}"
        )

    if baseline is None:
        # (n_time, 1, n_neurons) against (1, n, n_neurons)
        lam = rates[np.newaxis, :, :]
    else:
        baseline = np.asarray(baseline, dtype=float)
        if baseline.shape != counts.shape:
            raise ValueError(
                f"baseline must have the same shape as counts, got {baseline.shape} vs {counts.shape}"
            )
        lam = softplus(rates[np.newaxis, :, :] + baseline[:, np.newaxis, :])

    return poisson_log_likelihood(counts[:, np.newaxis, :], lam, dt).sum(axis=2)
