"""Confidence intervals from the Hessian or from likelihood-ratio scans."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import brentq

from ._validation import ConfidenceIntervalWarning, HessianWarning

logger = logging.getLogger(__name__)

# Half of the 95% quantile of chi-square with one degree of freedom
LR_THRESHOLD = 1.92
IMPOSSIBLE = 1e10


@dataclass(frozen=True)
class HessianIntervals:
    """Asymptotic confidence intervals from the Hessian of -log-likelihood.

    Attributes
    ----------
    lower, upper : np.ndarray
        x - 2 sd and x + 2 sd; -inf and inf on unreliable dimensions.
    reliable : np.ndarray
        False for dimensions that load on a non-positive eigenvalue.
    positive_definite : bool
        Whether the Hessian was positive definite as given.
    """

    lower: NDArray[np.floating]
    upper: NDArray[np.floating]
    reliable: NDArray[np.bool_]
    positive_definite: bool


def nearest_psd(H: NDArray[np.floating], rtol: float = 1e-10) -> tuple[NDArray[np.floating], bool]:
    """Nearest symmetric positive definite matrix by eigenvalue clipping.

    Parameters
    ----------
    H : np.ndarray
        Square matrix.
    rtol : float, optional
        Eigenvalues are raised to at least rtol times the largest absolute
        eigenvalue.

    Returns
    -------
    H_psd : np.ndarray
        Symmetrized H with clipped eigenvalues.
    was_positive_definite : bool
        True if no eigenvalue needed clipping.
    """
    H = np.asarray(H, dtype=float)
    if H.ndim != 2 or H.shape[0] != H.shape[1]:
        raise ValueError(f"H must be a square matrix, got shape {H.shape}")
    sym = (H + H.T) / 2
    evals, evecs = np.linalg.eigh(sym)
    floor = rtol * max(np.max(np.abs(evals), initial=0.0), np.finfo(float).tiny)
    if np.all(evals > floor):
        return sym, True
    clipped = np.maximum(evals, floor)
    return (evecs * clipped) @ evecs.T, False


def hessian_intervals(
    H: NDArray[np.floating], x: NDArray[np.floating], loading: float = 0.5
) -> HessianIntervals:
    """Confidence intervals x +/- 2 sqrt(diag(inv(H))).

    Parameters
    ----------
    H : np.ndarray
        Hessian of the negative log-likelihood at x. Shape (m, m).
    x : np.ndarray
        Parameter estimate. Shape (m,).
    loading : float, optional
        A dimension is unreliable if its component in an eigenvector with a
        non-positive eigenvalue exceeds this in absolute value. Default 0.5.

    Returns
    -------
    intervals : HessianIntervals

    Warns
    -----
    HessianWarning
        If H is not positive definite.
    """
    H = np.asarray(H, dtype=float)
    x = np.asarray(x, dtype=float)
    if H.shape != (x.size, x.size):
        raise ValueError(f"H must have shape ({x.size}, {x.size}), got {H.shape}")

    sym = (H + H.T) / 2
    evals, evecs = np.linalg.eigh(sym)
    bad_modes = evals <= 0
    reliable = ~np.any(np.abs(evecs[:, bad_modes]) > loading, axis=1)

    half_width = np.full(x.size, np.inf)
    sub, positive_definite = None, True
    if reliable.any():
        sub, positive_definite = nearest_psd(sym[np.ix_(reliable, reliable)])
    positive_definite = positive_definite and not bad_modes.any()
    if sub is not None:
        half_width[reliable] = 2.0 * np.sqrt(np.diag(np.linalg.inv(sub)))

    if not positive_definite:
        warnings.warn(
            "Hessian is not positive definite; intervals use the nearest positive "
            f"definite approximation and {int((~reliable).sum())} dimension(s) are unreliable.",
            HessianWarning,
            stacklevel=2,
        )

    return HessianIntervals(
        lower=x - half_width,
        upper=x + half_width,
        reliable=reliable,
        positive_definite=positive_definite,
    )


def threshold_crossings(
    f: Callable[[float], float], lo: float, hi: float, n_points: int = 50
) -> tuple[NDArray[np.floating], NDArray[np.floating], NDArray[np.floating]]:
    """Locate the roots of a 1D function by scanning for sign changes.

    f is evaluated on `n_points` evenly spaced points of [lo, hi]; every
    interval where the sign changes is refined with Brent's method. Roots
    falling exactly on a grid point are reported once.

    Returns
    -------
    roots : np.ndarray
        Sorted roots.
    xs : np.ndarray
        Scan points, shape (n_points,).
    values : np.ndarray
        f at the scan points, shape (n_points,).
    """
    if not (np.isfinite(lo) and np.isfinite(hi) and lo < hi):
        raise ValueError(f"need finite lo < hi, got [{lo}, {hi}]")

    xs = np.linspace(lo, hi, n_points)
    values = np.array([f(v) for v in xs], dtype=float)
    signs = np.sign(values)

    roots = [xs[0]] if signs[0] == 0 else []
    for i in np.flatnonzero(np.diff(signs) != 0):
        if signs[i] == 0:
            continue
        if signs[i + 1] == 0:
            roots.append(xs[i + 1])
        else:
            roots.append(brentq(f, xs[i], xs[i + 1]))

    return np.sort(np.array(roots, dtype=float)), xs, values


@dataclass(frozen=True)
class LikelihoodRatioIntervals:
    """Confidence intervals from 1D likelihood-ratio scans.

    Attributes
    ----------
    lower, upper : np.ndarray
        Interval ends for each scanned parameter.
    roots : list of np.ndarray
        All threshold crossings found for each parameter.
    xs, values : list of np.ndarray
        Scan points and log-likelihood drop minus threshold at each.
    """

    lower: NDArray[np.floating]
    upper: NDArray[np.floating]
    roots: list[NDArray[np.floating]]
    xs: list[NDArray[np.floating]]
    values: list[NDArray[np.floating]]


def likelihood_ratio_intervals(
    log_likelihood: Callable[[NDArray[np.floating]], float],
    x: NDArray[np.floating],
    lower: NDArray[np.floating],
    upper: NDArray[np.floating],
    n_points: int = 50,
    threshold: float = LR_THRESHOLD,
) -> LikelihoodRatioIntervals:
    """Intervals where the log-likelihood stays within `threshold` of its maximum.

    Each coordinate is varied on its own, all others held at x. The interval
    for coordinate i runs from the nearest crossing below x[i] to the nearest
    crossing above it; a side with no crossing extends to the bound.

    Parameters
    ----------
    log_likelihood : callable
        Log-likelihood of a full parameter vector.
    x : np.ndarray
        Maximum-likelihood estimate. Shape (m,).
    lower, upper : np.ndarray
        Finite scan range of each coordinate. Shape (m,).
    n_points : int, optional
        Scan points per coordinate. Default is 50.
    threshold : float, optional
        Log-likelihood drop defining the interval. Default 1.92, the 95%
        chi-square threshold for one degree of freedom.

    Returns
    -------
    intervals : LikelihoodRatioIntervals

    Warns
    -----
    ConfidenceIntervalWarning
        If a scan finds more than two crossings.
    """
    x = np.asarray(x, dtype=float)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    ll_max = log_likelihood(x)

    ci_lower, ci_upper = lower.copy(), upper.copy()
    all_roots, all_xs, all_values = [], [], []
    for i in range(x.size):
        logger.info("likelihood-ratio scan of coordinate %d", i)

        def drop(v: float, i: int = i) -> float:
            xi = x.copy()
            xi[i] = v
            # Impossible parameter values sit far below the threshold
            return max(log_likelihood(xi) - (ll_max - threshold), -IMPOSSIBLE)

        roots, xs, values = threshold_crossings(drop, lower[i], upper[i], n_points=n_points)
        if roots.size > 2:
            warnings.warn(
                f"coordinate {i}: {roots.size} threshold crossings found; "
                "the log-likelihood is not unimodal along this coordinate",
                ConfidenceIntervalWarning,
                stacklevel=2,
            )

        below, above = roots[roots < x[i]], roots[roots > x[i]]
        if below.size:
            ci_lower[i] = below.max()
        if above.size:
            ci_upper[i] = above.min()

        all_roots.append(roots)
        all_xs.append(xs)
        all_values.append(values)

    return LikelihoodRatioIntervals(
        lower=ci_lower, upper=ci_upper, roots=all_roots, xs=all_xs, values=all_values
    )
