"""Discretization of the latent accumulator."""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from ._validation import validate_grid_size, validate_positive


@dataclass(frozen=True)
class LatentGrid:
    """Discrete states of the accumulator.

    Attributes
    ----------
    bound : float
        Absorbing bound B.
    n : int
        Number of bins, including the two absorbing edge bins.
    dx : float
        Bin width, 2B / (n - 2).
    centers : np.ndarray
        Bin centers, shape (n,), strictly increasing and symmetric about 0.
    """

    bound: float
    n: int
    dx: float
    centers: NDArray[np.floating]

    @property
    def edges(self) -> NDArray[np.floating]:
        """Boundaries between consecutive bins, shape (n - 1,), from -B to B."""
        return self.centers[:-1] + self.dx / 2

    @property
    def center_index(self) -> int:
        return self.n // 2


def build_grid(bound: float, n: int) -> LatentGrid:
    """Build the latent state grid.

    Parameters
    ----------
    bound : float
        Absorbing bound B. Must be > 0.
    n : int
        Number of bins. Must be odd and >= 3.

    Returns
    -------
    grid : LatentGrid

    Raises
    ------
    ValueError
        If n or bound are invalid.

    Examples
    --------
    >>> from pulseddm.grid import build_grid
    >>> grid = build_grid(10.0, 7)
    >>> grid.dx
    4.0
    >>> grid.centers.tolist()
    [-12.0, -8.0, -4.0, 0.0, 4.0, 8.0, 12.0]

    Notes
    -----
    The n - 2 inner bins tile [-B, B] with width dx. The two edge bins hold
    the mass that has reached a bound; their centers sit half a bin beyond
    ±B, at ±(B + dx/2), rather than on the bound itself, so that all
    centers are uniformly spaced. Mass reaching an edge bin never leaves it,
    and the choice readout treats the edge bins like any other bin of width dx.
    """
    validate_grid_size(n)
    validate_positive(bound, "bound")

    dx = 2.0 * bound / (n - 2)
    half = n // 2
    # Build from the integer offsets so the middle bin is exactly zero
    centers = np.arange(-half, half + 1, dtype=float) * dx

    return LatentGrid(bound=float(bound), n=int(n), dx=float(dx), centers=centers)
