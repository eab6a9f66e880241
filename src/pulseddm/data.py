"""Trial and trial-set containers."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from ._validation import validate_click_times, validate_positive
from .links import LinkFunction


def n_time_bins(duration: float, dt: float) -> int:
    """Number of bins of width dt covering `duration` seconds."""
    # Round first so that e.g. 0.3 / 0.1 does not become 4 bins
    return max(int(np.ceil(np.round(duration / dt, 9))), 1)


def bin_index(times: NDArray[np.floating], dt: float, n_bins: int) -> NDArray[np.int_]:
    """Bin containing each time; bin k covers [k dt, (k + 1) dt)."""
    idx = np.floor(np.round(np.asarray(times, dtype=float) / dt, 9)).astype(int)
    return np.clip(idx, 0, n_bins - 1)


@dataclass(frozen=True)
class Trial:
    """One trial of the clicks task.

    Attributes
    ----------
    left, right : np.ndarray
        Click times in seconds from stimulus onset, sorted.
    duration : float
        Length of the stimulus period in seconds.
    choice : bool
        True if the subject chose right.
    spikes : np.ndarray or None
        Spike counts, shape (n_bins, n_neurons), binned at the model's dt.
    baseline : np.ndarray or None
        Per-neuron time-varying input to the firing rate, same shape as spikes.
    initial_offset : float
        Starting value of the accumulator (e.g. a trial-history bias).
    """

    left: NDArray[np.floating]
    right: NDArray[np.floating]
    duration: float
    choice: bool = False
    spikes: NDArray[np.int_] | None = None
    baseline: NDArray[np.floating] | None = None
    initial_offset: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "left", validate_click_times(self.left, "left"))
        object.__setattr__(self, "right", validate_click_times(self.right, "right"))
        validate_positive(self.duration, "duration")
        if self.spikes is not None:
            spikes = np.asarray(self.spikes)
            if spikes.ndim != 2:
                raise ValueError(f"spikes must be (n_bins, n_neurons), got shape {spikes.shape}")
            if np.any(spikes < 0):
                raise ValueError("spikes must be non-negative counts")
            object.__setattr__(self, "spikes", spikes)
        if self.baseline is not None:
            if self.spikes is None or np.shape(self.baseline) != self.spikes.shape:
                raise ValueError("baseline requires spikes of the same shape")
            object.__setattr__(self, "baseline", np.asarray(self.baseline, dtype=float))

    def n_bins(self, dt: float) -> int:
        return n_time_bins(self.duration, dt)

    def click_bins(self, dt: float) -> tuple[NDArray[np.int_], NDArray[np.int_]]:
        """Time-bin index of every left and right click."""
        n = self.n_bins(dt)
        return bin_index(self.left, dt, n), bin_index(self.right, dt, n)

    def check_spikes(self, dt: float) -> None:
        if self.spikes is not None and self.spikes.shape[0] != self.n_bins(dt):
            raise ValueError(
                f"spikes has {self.spikes.shape[0]} time bins but the trial spans "
                f"{self.n_bins(dt)} bins of {dt} s"
            )


@dataclass(frozen=True)
class TrialSet:
    """Trials sharing the same simultaneously recorded neurons.

    Attributes
    ----------
    trials : tuple of Trial
    links : tuple of LinkFunction
        Link function of each neuron. Empty for choice-only data.
    """

    trials: tuple[Trial, ...]
    links: tuple[LinkFunction, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "trials", tuple(self.trials))
        object.__setattr__(self, "links", tuple(self.links))
        n_neurons = len(self.links)
        for i, trial in enumerate(self.trials):
            observed = 0 if trial.spikes is None else trial.spikes.shape[1]
            if observed != n_neurons:
                raise ValueError(
                    f"trial {i} has spikes from {observed} neurons but the set has {n_neurons} links"
                )

    def __len__(self) -> int:
        return len(self.trials)

    @property
    def n_neurons(self) -> int:
        return len(self.links)


def delta_clicks(trial: Trial, dt: float) -> NDArray[np.floating]:
    """Cumulative right-minus-left click count at the end of each bin."""
    n = trial.n_bins(dt)
    left_bins, right_bins = trial.click_bins(dt)
    diff = np.bincount(right_bins, minlength=n) - np.bincount(left_bins, minlength=n)
    return np.cumsum(diff).astype(float)


def initialize_links(trial_set: TrialSet, dt: float) -> tuple[NDArray[np.floating], ...]:
    """Initial link parameters of every neuron in a trial-set."""
    if trial_set.n_neurons == 0:
        return ()
    delta = np.concatenate([delta_clicks(trial, dt) for trial in trial_set.trials])
    counts = np.concatenate([trial.spikes for trial in trial_set.trials], axis=0)
    return tuple(
        link.initialize(delta, counts[:, k], dt) for k, link in enumerate(trial_set.links)
    )
