"""Simulate a clicks-task data set, refit it and plot the recovery.

Generates choices (and optionally spikes) from the default generative
parameters, fits the free parameters by maximum likelihood, computes
Hessian-based confidence intervals and saves a figure with the
psychometric curve and the smoothed accumulator of a few trials.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

import matplotlib.pyplot as plt
import numpy as np

from pulseddm import (
    FitOptions,
    Softplus,
    confidence_intervals,
    default_parameters,
    fit,
    initialize_links,
    simulate_trial_set,
    split_parameters,
    trial_posteriors,
)
from pulseddm.grid import build_grid


@dataclass
class RecoveryParams:
    """Settings of the recovery run."""

    n_trials: int = 2000
    n_neurons: int = 0
    n: int = 53
    dt: float = 1e-2
    base_seed: int = 0
    n_workers: int = 4
    n_example_trials: int = 4
    save_path_base: str = "parameter_recovery"


def psychometric(trial_set, bin_edges):
    """Fraction of right choices in bins of the final click difference."""
    evidence = np.array([t.right.size - t.left.size for t in trial_set.trials])
    choices = np.array([t.choice for t in trial_set.trials], dtype=float)
    idx = np.digitize(evidence, bin_edges)
    centers, fraction = [], []
    for k in np.unique(idx):
        centers.append(evidence[idx == k].mean())
        fraction.append(choices[idx == k].mean())
    return np.array(centers), np.array(fraction)


def run_recovery(params: RecoveryParams) -> None:
    """Simulate, fit and plot."""
    rng = np.random.default_rng(params.base_seed)
    parameters = default_parameters(generative=True)
    latent, observation = split_parameters(parameters.generative, parameters.layout)

    links = tuple(Softplus() for _ in range(params.n_neurons))
    neural = tuple((5.0, float(s), 0.0) for s in rng.choice([-2.0, 2.0], size=params.n_neurons))
    trial_set = simulate_trial_set(
        params.n_trials,
        latent,
        rng,
        choice=observation.choice,
        links=links,
        neural=neural,
        dt=params.dt,
    )
    if params.n_neurons:
        truth = np.concatenate([parameters.generative] + [np.array(p) for p in neural])
        parameters = parameters.with_neurons((initialize_links(trial_set, params.dt),))
        parameters = replace(parameters, generative=truth)

    print("=" * 60)
    print("PARAMETER RECOVERY")
    print("=" * 60)
    print(f"  trials: {len(trial_set)}, neurons: {trial_set.n_neurons}")
    print(f"  grid: n = {params.n}, dt = {params.dt}")

    with ThreadPoolExecutor(max_workers=params.n_workers) as executor:
        options = FitOptions(n=params.n, dt=params.dt, executor=executor)
        result = fit([trial_set], parameters, options)
        parameters, _ = confidence_intervals([trial_set], result.parameters, options)

    print(f"\nconverged: {result.converged} ({result.message}) after {result.n_iterations} iterations")
    print(f"log-likelihood: {result.log_likelihood:.3f}\n")
    print(f"{'name':<20}{'truth':>10}{'initial':>10}{'fit':>10}{'ci':>24}")
    for i, name in enumerate(parameters.names):
        if not parameters.fit[i]:
            continue
        ci = f"[{parameters.ci_lower[i]:.3f}, {parameters.ci_upper[i]:.3f}]"
        print(
            f"{name:<20}{parameters.generative[i]:>10.3f}{parameters.initial[i]:>10.3f}"
            f"{parameters.final[i]:>10.3f}{ci:>24}"
        )

    fig, axes = plt.subplots(1, 2, figsize=(7.0, 2.8), constrained_layout=True, dpi=150)

    ax = axes[0]
    x, frac = psychometric(trial_set, np.arange(-30, 31, 4))
    ax.plot(x, frac, "o", color="#0072B2", markersize=3)
    ax.axhline(0.5, color="0.7", linewidth=0.5)
    ax.axvline(0.0, color="0.7", linewidth=0.5)
    ax.set_xlabel("#R - #L clicks")
    ax.set_ylabel("P(right)")
    ax.set_ylim(0, 1)
    ax.spines[["top", "right"]].set_visible(False)

    ax = axes[1]
    examples = replace(trial_set, trials=trial_set.trials[: params.n_example_trials])
    posteriors = trial_posteriors(result.latent, result.observation, examples, n=params.n, dt=params.dt)
    centers = build_grid(result.latent.B, params.n).centers
    for trial, post in zip(examples.trials, posteriors):
        t = (np.arange(post.shape[0]) + 1) * params.dt
        color = "#D55E00" if trial.choice else "#009E73"
        ax.plot(t, post @ centers, color=color, linewidth=1)
    ax.set_xlabel("time (s)")
    ax.set_ylabel("E[a | data]")
    ax.spines[["top", "right"]].set_visible(False)

    plt.savefig(f"{params.save_path_base}.png", dpi=300, bbox_inches="tight")
    plt.close(fig)
    print(f"\nFigure saved to {params.save_path_base}.png")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    # For a quick smoke test use fewer trials, e.g. RecoveryParams(n_trials=200)
    run_recovery(RecoveryParams())
