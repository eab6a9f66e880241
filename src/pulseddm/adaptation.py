"""Short-term adaptation of click magnitudes."""

import numpy as np
from numpy.typing import NDArray

from ._validation import validate_click_times, validate_positive


def _adapt_stream(phi: float, tau_phi: float, times: NDArray[np.floating]) -> NDArray[np.floating]:
    """Run the adaptation recurrence over one ordered stream of clicks."""
    magnitudes = np.ones(times.size, dtype=float)
    if times.size < 2:
        return magnitudes

    decay = np.exp(-np.diff(times) / tau_phi)
    for k in range(1, times.size):
        magnitudes[k] = 1.0 + (phi * magnitudes[k - 1] - 1.0) * decay[k - 1]

    return magnitudes


def adapt_clicks(
    phi: float,
    tau_phi: float,
    left: NDArray[np.floating],
    right: NDArray[np.floating],
    *,
    cross: bool = False,
    stereo: bool = False,
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Compute adapted magnitudes of left and right clicks.

    Each click starts with magnitude 1. Every later click relaxes back toward
    1 from the depressed (or facilitated) magnitude of the preceding click:

        C_k = 1 + (phi * C_{k-1} - 1) * exp(-dt_k / tau_phi)

    Parameters
    ----------
    phi : float
        Adaptation strength. phi < 1 depresses, phi > 1 facilitates and
        phi == 1 disables adaptation.
    tau_phi : float
        Recovery time constant in seconds. Must be > 0.
    left, right : np.ndarray
        Click times in seconds, each sorted in increasing order.
    cross : bool, optional
        If True both streams share one adaptation state and the interval
        dt_k is measured to the previous click on either side. Otherwise
        each stream adapts independently. Default is False.
    stereo : bool, optional
        If True and the first left and first right clicks are simultaneous,
        both are given magnitude 0. Default is False.

    Returns
    -------
    left_adapted, right_adapted : np.ndarray
        Adapted magnitudes, same lengths and order as `left` and `right`.

    Raises
    ------
    ValueError
        If either stream is unsorted or tau_phi is not positive.

    Examples
    --------
    >>> import numpy as np
    >>> from pulseddm.adaptation import adapt_clicks
    >>> La, Ra = adapt_clicks(1.0, 0.1, np.array([0.1, 0.2]), np.array([0.15]))
    >>> La.tolist(), Ra.tolist()
    ([1.0, 1.0], [1.0])
    """
    left = validate_click_times(left, "left")
    right = validate_click_times(right, "right")
    validate_positive(tau_phi, "tau_phi")

    if phi == 1.0:
        left_adapted = np.ones(left.size, dtype=float)
        right_adapted = np.ones(right.size, dtype=float)
    elif cross:
        times = np.concatenate([left, right])
        # Stable sort keeps left before right on exact ties
        order = np.argsort(times, kind="stable")
        merged = _adapt_stream(phi, tau_phi, times[order])
        adapted = np.empty_like(merged)
        adapted[order] = merged
        left_adapted, right_adapted = adapted[: left.size], adapted[left.size :]
    else:
        left_adapted = _adapt_stream(phi, tau_phi, left)
        right_adapted = _adapt_stream(phi, tau_phi, right)

    if stereo and left.size > 0 and right.size > 0 and left[0] == right[0]:
        left_adapted[0] = 0.0
        right_adapted[0] = 0.0

    return left_adapted, right_adapted
