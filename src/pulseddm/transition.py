"""Discretized transition operators of the latent diffusion."""

import numpy as np
from numpy.typing import NDArray
from scipy.special import ndtr

from .grid import LatentGrid


def drift_factors(lam: float, dt: float) -> tuple[float, float, float]:
    """Exact one-step factors of the linear drift dx = (lam * x + u) dt.

    Parameters
    ----------
    lam : float
        Drift (leak) rate. Negative values are leaky, positive unstable.
    dt : float
        Step size in seconds.

    Returns
    -------
    growth : float
        exp(lam * dt), multiplier of the starting state.
    gain : float
        (exp(lam * dt) - 1) / lam, multiplier of a constant input rate u.
        Equal to dt when lam == 0.
    variance_scale : float
        (exp(2 * lam * dt) - 1) / (2 * lam * dt), the factor converting
        noise accumulated at rate variance / dt into the variance of the
        state after dt. Equal to 1 when lam == 0.
    """
    if lam == 0.0:
        return 1.0, dt, 1.0
    x = lam * dt
    return float(np.exp(x)), float(np.expm1(x) / lam), float(np.expm1(2.0 * x) / (2.0 * x))


def transition_matrix(
    F: NDArray[np.floating],
    lam: float,
    variance: float,
    net_input: float,
    grid: LatentGrid,
    dt: float,
) -> NDArray[np.floating]:
    """Fill F with the one-step transition matrix of the accumulator.

    F[i, j] is the probability of moving from bin j to bin i, so that a
    distribution P over bins is propagated as F @ P. Every column sums to 1.

    Parameters
    ----------
    F : np.ndarray
        Output buffer of shape (n, n). Overwritten in place.
    lam : float
        Drift (leak) rate.
    variance : float
        Variance added to the state over the step (before drift scaling).
    net_input : float
        Input rate over the step, so that the state moves by net_input * dt
        when lam == 0.
    grid : LatentGrid
        Latent state grid.
    dt : float
        Step size in seconds.

    Returns
    -------
    F : np.ndarray
        The same buffer, filled.

    Notes
    -----
    Starting from the center of each interior bin, the state after dt is
    Gaussian with mean xc * exp(lam dt) + net_input * (exp(lam dt) - 1) / lam.
    The mass landing in each bin is the difference of the Gaussian CDF
    across that bin's boundaries. Mass below -B collapses into bin 0 and
    mass above B into bin n - 1. Both edge bins are absorbing.
    """
    n = grid.n
    if F.shape != (n, n):
        raise ValueError(f"F must have shape ({n}, {n}), got {F.shape}")

    growth, gain, variance_scale = drift_factors(lam, dt)
    means = grid.centers[1:-1] * growth + net_input * gain  # (n - 2,)
    std = np.sqrt(max(variance * variance_scale, 0.0))
    edges = grid.edges[:, np.newaxis]  # (n - 1, 1)

    if std > 0:
        z = (edges - means) / std
        cdf = ndtr(z)  # (n - 1, n - 2)
        upper_tail = ndtr(-z[-1])
    else:
        # No noise: all mass lands in the bin containing the mean
        cdf = (edges >= means).astype(float)
        upper_tail = 1.0 - cdf[-1]

    F.fill(0.0)
    F[0, 1:-1] = cdf[0]
    F[1:-1, 1:-1] = np.diff(cdf, axis=0)
    F[-1, 1:-1] = upper_tail
    F[0, 0] = 1.0
    F[-1, -1] = 1.0

    return F


def no_input_matrix(lam: float, sigma2_a: float, grid: LatentGrid, dt: float) -> NDArray[np.floating]:
    """Transition matrix for time bins without clicks.

    Computed once per parameter vector and reused for every click-free bin.
    """
    M = np.empty((grid.n, grid.n), dtype=float)
    return transition_matrix(M, lam, sigma2_a * dt, 0.0, grid, dt)


def initial_distribution(
    sigma2_i: float, grid: LatentGrid, offset: float = 0.0
) -> NDArray[np.floating]:
    """Distribution over bins at the start of a trial.

    A point mass on the zero bin, shifted by `offset` and spread with
    variance `sigma2_i` through one transition step.

    Parameters
    ----------
    sigma2_i : float
        Initial-point variance.
    grid : LatentGrid
        Latent state grid.
    offset : float, optional
        Initial mean of the accumulator (e.g. from trial history).
        Default is 0.

    Returns
    -------
    P0 : np.ndarray
        Shape (n,), sums to 1.
    """
    F = np.empty((grid.n, grid.n), dtype=float)
    # lam = 0 and dt = 1 make the mean shift equal to the offset itself
    transition_matrix(F, 0.0, sigma2_i, offset, grid, 1.0)
    return F[:, grid.center_index].copy()
