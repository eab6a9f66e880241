"""Forward and backward propagation of the accumulator distribution.

Each trial is a hidden Markov model over the bins of a `LatentGrid`. The
forward pass alternates a transition step with an optional emission update
and a renormalization; the log of each normalizer is accumulated so that
their sum is the log-likelihood of the trial's observations. The backward
pass reuses those normalizers to produce smoothed posteriors.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .grid import LatentGrid
from .parameters import LatentParams
from .transition import transition_matrix


@dataclass(frozen=True)
class ClickInputs:
    """Click input to the accumulator in every time bin of one trial.

    Attributes
    ----------
    net : np.ndarray
        Sum of adapted right magnitudes minus sum of adapted left magnitudes
        in each bin. Shape (n_bins,).
    total : np.ndarray
        Sum of all adapted magnitudes in each bin. Shape (n_bins,).
    has_clicks : np.ndarray
        True for bins containing at least one click. Shape (n_bins,).
    """

    net: NDArray[np.floating]
    total: NDArray[np.floating]
    has_clicks: NDArray[np.bool_]

    @property
    def n_bins(self) -> int:
        return self.net.size


def bin_click_inputs(
    left_magnitudes: NDArray[np.floating],
    right_magnitudes: NDArray[np.floating],
    left_bins: NDArray[np.int_],
    right_bins: NDArray[np.int_],
    n_bins: int,
) -> ClickInputs:
    """Aggregate adapted click magnitudes into time bins.

    Clicks falling in the same bin are summed.
    """
    left_sum = np.bincount(left_bins, weights=left_magnitudes, minlength=n_bins)
    right_sum = np.bincount(right_bins, weights=right_magnitudes, minlength=n_bins)
    count = np.bincount(left_bins, minlength=n_bins) + np.bincount(right_bins, minlength=n_bins)
    return ClickInputs(
        net=right_sum - left_sum,
        total=right_sum + left_sum,
        has_clicks=count > 0,
    )


class TrialScratch:
    """Transition-matrix buffer owned by a single trial computation.

    Every click bin overwrites `F`. A reference to `F` is only valid until
    the next call to `latent_step`, and a scratch object must never be shared
    between trials evaluated concurrently.
    """

    def __init__(self, n: int) -> None:
        self.F = np.zeros((n, n), dtype=float)


def step_matrix(
    t: int,
    inputs: ClickInputs,
    latent: LatentParams,
    grid: LatentGrid,
    M: NDArray[np.floating],
    dt: float,
    scratch: TrialScratch,
) -> NDArray[np.floating]:
    """Transition matrix for time bin t.

    Returns `M` itself for bins without clicks and the refilled scratch
    buffer otherwise.
    """
    if not inputs.has_clicks[t]:
        return M
    variance = latent.sigma2_s * inputs.total[t] + latent.sigma2_a * dt
    # Clicks are instantaneous; spreading them over the bin gives a rate
    return transition_matrix(scratch.F, latent.lam, variance, inputs.net[t] / dt, grid, dt)


def latent_step(
    P: NDArray[np.floating],
    t: int,
    inputs: ClickInputs,
    latent: LatentParams,
    grid: LatentGrid,
    M: NDArray[np.floating],
    dt: float,
    scratch: TrialScratch,
    backward: bool = False,
) -> NDArray[np.floating]:
    """Propagate P through time bin t (or back through it if `backward`)."""
    F = step_matrix(t, inputs, latent, grid, M, dt, scratch)
    return F.T @ P if backward else F @ P


def renormalize(
    P: NDArray[np.floating], log_emission: NDArray[np.floating] | None = None
) -> tuple[NDArray[np.floating], float]:
    """Multiply in an emission likelihood and rescale P to sum to 1.

    Parameters
    ----------
    P : np.ndarray
        Unnormalized distribution over bins. Shape (n,).
    log_emission : np.ndarray, optional
        Log-likelihood of the time bin's observations at every latent bin.
        Shape (n,).

    Returns
    -------
    P : np.ndarray
        Normalized distribution, or all zeros if no mass remains.
    log_normalizer : float
        Log of the mass before rescaling (including the emission), or -inf
        if no mass remains.

    Notes
    -----
    The emission is shifted by its maximum before exponentiation and the
    shift is added back to the log-normalizer, so large spike counts do not
    underflow.
    """
    scale = 0.0
    if log_emission is not None:
        scale = np.max(log_emission)
        if not np.isfinite(scale):
            return np.zeros_like(P), -np.inf
        P = P * np.exp(log_emission - scale)

    total = P.sum()
    if not (np.isfinite(total) and total > 0):
        return np.zeros_like(P), -np.inf

    return P / total, float(np.log(total) + scale)


@dataclass(frozen=True)
class ForwardResult:
    """Output of `forward_pass`.

    Attributes
    ----------
    P_final : np.ndarray
        Filtered distribution after the last bin. Shape (n,).
    log_normalizers : np.ndarray
        log c_t for every bin. Shape (n_bins,).
    filtered : np.ndarray or None
        Filtered distribution after every bin, shape (n_bins, n), if requested.
    """

    P_final: NDArray[np.floating]
    log_normalizers: NDArray[np.floating]
    filtered: NDArray[np.floating] | None = None

    @property
    def log_likelihood(self) -> float:
        return float(np.sum(self.log_normalizers))

    @property
    def degenerate(self) -> bool:
        """True if the observations had zero probability at some bin."""
        return bool(np.any(np.isneginf(self.log_normalizers)))


def forward_pass(
    P0: NDArray[np.floating],
    M: NDArray[np.floating],
    inputs: ClickInputs,
    latent: LatentParams,
    grid: LatentGrid,
    dt: float,
    log_emissions: NDArray[np.floating] | None = None,
    scratch: TrialScratch | None = None,
    keep_filtered: bool = False,
) -> ForwardResult:
    """Run the forward recursion over one trial.

    Parameters
    ----------
    P0 : np.ndarray
        Distribution at the start of the trial. Shape (n,). Not modified.
    M : np.ndarray
        Transition matrix for bins without clicks. Shape (n, n).
    inputs : ClickInputs
        Binned click input of the trial.
    latent : LatentParams
        Accumulator parameters.
    grid : LatentGrid
        Latent state grid.
    dt : float
        Bin width in seconds.
    log_emissions : np.ndarray, optional
        Log-likelihood of each bin's observations at each latent bin.
        Shape (n_bins, n). If None, only the latent dynamics are propagated.
    scratch : TrialScratch, optional
        Buffer for click-bin transition matrices. Allocated if not given.
    keep_filtered : bool, optional
        Whether to store the filtered distribution of every bin.

    Returns
    -------
    result : ForwardResult

    Notes
    -----
    If the normalizer of some bin is zero, its log-normalizer is -inf and the
    recursion stops there; later bins keep a log-normalizer of 0 and
    the filtered distributions are zero.
    """
    n_bins = inputs.n_bins
    if log_emissions is not None and log_emissions.shape != (n_bins, grid.n):
        raise ValueError(
            f"log_emissions must have shape ({n_bins}, {grid.n}), got {log_emissions.shape}"
        )
    if scratch is None:
        scratch = TrialScratch(grid.n)

    P = np.array(P0, dtype=float)
    log_c = np.zeros(n_bins, dtype=float)
    filtered = np.zeros((n_bins, grid.n), dtype=float) if keep_filtered else None

    for t in range(n_bins):
        P = latent_step(P, t, inputs, latent, grid, M, dt, scratch)
        P, log_c[t] = renormalize(P, None if log_emissions is None else log_emissions[t])
        if np.isneginf(log_c[t]):
            break
        if filtered is not None:
            filtered[t] = P

    return ForwardResult(P_final=P, log_normalizers=log_c, filtered=filtered)


def backward_pass(
    M: NDArray[np.floating],
    inputs: ClickInputs,
    latent: LatentParams,
    grid: LatentGrid,
    dt: float,
    log_normalizers: NDArray[np.floating],
    log_emissions: NDArray[np.floating] | None = None,
    scratch: TrialScratch | None = None,
) -> NDArray[np.floating]:
    """Scaled backward messages of one trial.

    Starts from all ones at the last bin and runs

        beta_t = F_{t+1}^T (e_{t+1} * beta_{t+1}) / c_{t+1}

    where e are the emission likelihoods and c the forward normalizers.

    Returns
    -------
    beta : np.ndarray
        Shape (n_bins, n).
    """
    n_bins = inputs.n_bins
    if scratch is None:
        scratch = TrialScratch(grid.n)

    beta = np.ones((n_bins, grid.n), dtype=float)
    for t in range(n_bins - 2, -1, -1):
        if log_emissions is None:
            weights = np.exp(-log_normalizers[t + 1])
        else:
            weights = np.exp(log_emissions[t + 1] - log_normalizers[t + 1])
        beta[t] = latent_step(
            beta[t + 1] * weights, t + 1, inputs, latent, grid, M, dt, scratch, backward=True
        )

    return beta


def posterior(
    P0: NDArray[np.floating],
    M: NDArray[np.floating],
    inputs: ClickInputs,
    latent: LatentParams,
    grid: LatentGrid,
    dt: float,
    log_emissions: NDArray[np.floating] | None = None,
    scratch: TrialScratch | None = None,
) -> NDArray[np.floating]:
    """Smoothed distribution of the accumulator given all of a trial's data.

    Returns
    -------
    posterior : np.ndarray
        P(state_t | all observations), shape (n_bins, n). Each row sums to 1.

    Raises
    ------
    FloatingPointError
        If the observations have zero probability under the model.
    """
    if scratch is None:
        scratch = TrialScratch(grid.n)

    forward = forward_pass(
        P0,
        M,
        inputs,
        latent,
        grid,
        dt,
        log_emissions=log_emissions,
        scratch=scratch,
        keep_filtered=True,
    )
    if forward.degenerate:
        raise FloatingPointError("observations have zero probability; posterior is undefined")

    beta = backward_pass(M, inputs, latent, grid, dt, forward.log_normalizers, log_emissions, scratch)
    post = forward.filtered * beta
    # Rows already sum to 1 up to rounding
    return post / post.sum(axis=1, keepdims=True)
