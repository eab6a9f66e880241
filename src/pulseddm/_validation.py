"""Validation utilities for model configuration and inputs."""

import numpy as np
from numpy.typing import NDArray


class DegenerateLikelihoodWarning(RuntimeWarning):
    """One or more trials had zero probability under the model."""


class HessianWarning(RuntimeWarning):
    """The Hessian was not positive definite."""


class ConfidenceIntervalWarning(RuntimeWarning):
    """A likelihood-ratio scan crossed its threshold an unexpected number of times."""


def validate_grid_size(n: int) -> None:
    """Validate the number of latent bins.

    Parameters
    ----------
    n : int
        Number of bins, including the two absorbing edge bins.

    Raises
    ------
    ValueError
        If n is not an odd integer >= 3.
    """
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)):
        raise ValueError(f"n must be an integer, got {type(n).__name__}")
    if n < 3:
        raise ValueError(f"n must be >= 3, got {n}")
    if n % 2 == 0:
        raise ValueError(f"n must be odd so that a bin is centred on zero, got {n}")


def validate_positive(value: float, name: str) -> None:
    """Validate that a scalar is finite and strictly positive."""
    if not np.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be finite and > 0, got {value}")


def validate_probability(value: float, name: str) -> None:
    """Validate that a scalar lies in [0, 1]."""
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def validate_click_times(times: NDArray[np.floating], name: str = "clicks") -> NDArray[np.floating]:
    """Validate a stream of click times.

    Parameters
    ----------
    times : array_like
        Click times in seconds.
    name : str
        Name for error messages

    Returns
    -------
    times : np.ndarray
        1D float array of the same times.

    Raises
    ------
    ValueError
        If the times are not 1D, contain non-finite values, or are not sorted.
    """
    arr = np.asarray(times, dtype=float)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values (NaN or inf).")
    if arr.size > 1 and np.any(np.diff(arr) < 0):
        raise ValueError(f"{name} must be sorted in increasing time order.")
    return arr


def validate_mask(mask: NDArray[np.bool_], size: int, name: str = "fit") -> NDArray[np.bool_]:
    """Validate a boolean mask against the length of a parameter vector."""
    arr = np.asarray(mask)
    if arr.dtype != np.bool_:
        raise ValueError(f"{name} must be a boolean array, got dtype {arr.dtype}")
    if arr.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {arr.shape}")
    return arr


def validate_vector_length(x: NDArray[np.floating], size: int, name: str = "x") -> NDArray[np.floating]:
    """Validate a flat parameter vector has the expected length."""
    arr = np.asarray(x, dtype=float)
    if arr.ndim != 1 or arr.size != size:
        raise ValueError(f"{name} must be a flat vector of length {size}, got shape {arr.shape}")
    return arr
