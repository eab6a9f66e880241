"""Maximum-likelihood fitting and derived quantities."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from concurrent.futures import Executor
from dataclasses import dataclass, replace

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import approx_fprime, minimize

from ._validation import DegenerateLikelihoodWarning
from .data import TrialSet
from .intervals import (
    HessianIntervals,
    LikelihoodRatioIntervals,
    hessian_intervals,
    likelihood_ratio_intervals,
)
from .likelihood import DEFAULT_DT, DEFAULT_N, negative_log_likelihood
from .parameters import (
    LatentParams,
    ObservationParams,
    ParameterSet,
    Prior,
    merge_free,
    split_free,
    split_parameters,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitOptions:
    """Settings of the likelihood and the optimizer.

    Attributes
    ----------
    n : int
        Number of latent bins.
    dt : float
        Time bin width in seconds.
    cross : bool
        Cross-stream click adaptation.
    stereo : bool
        Silence a simultaneous first left and right click in every trial.
    ftol, gtol : float
        L-BFGS-B stopping tolerances on the objective and projected gradient.
    maxiter : int
        Maximum optimizer iterations.
    step : float
        Relative finite-difference step for gradients. L-BFGS-B takes
        forward differences with it; `gradient` and the inner gradient of
        `hessian` take central differences.
    hessian_step : float
        Relative finite-difference step for the outer difference of the Hessian.
    executor : concurrent.futures.Executor or None
        Evaluates trials in parallel when given.
    """

    n: int = DEFAULT_N
    dt: float = DEFAULT_DT
    cross: bool = False
    stereo: bool = False
    ftol: float = 1e-10
    gtol: float = 1e-5
    maxiter: int = 2000
    step: float = 1e-6
    hessian_step: float = 1e-4
    executor: Executor | None = None


@dataclass(frozen=True)
class FitResult:
    """Outcome of `fit`.

    A fit that stops without converging still carries the best parameters
    found; check `converged` and `message`.
    """

    parameters: ParameterSet
    latent: LatentParams
    observation: ObservationParams
    log_likelihood: float
    converged: bool
    n_iterations: int
    message: str

    @property
    def x(self) -> NDArray[np.floating]:
        return self.parameters.final


class Objective:
    """Negative log-likelihood as a function of the free parameters only."""

    def __init__(
        self,
        trial_sets: Sequence[TrialSet],
        parameters: ParameterSet,
        options: FitOptions,
        prior: Prior | None = None,
        x: NDArray[np.floating] | None = None,
    ) -> None:
        self.trial_sets = tuple(trial_sets)
        self.parameters = parameters
        self.options = options
        self.prior = prior
        self.free, self.fixed = split_free(parameters.current if x is None else x, parameters.fit)
        self.lower = parameters.lower[parameters.fit]
        self.upper = parameters.upper[parameters.fit]
        self.n_calls = 0

    def full(self, free: NDArray[np.floating]) -> NDArray[np.floating]:
        return merge_free(free, self.fixed, self.parameters.fit)

    def __call__(self, free: NDArray[np.floating]) -> float:
        self.n_calls += 1
        value = negative_log_likelihood(
            self.full(free),
            self.parameters.layout,
            self.trial_sets,
            n=self.options.n,
            dt=self.options.dt,
            cross=self.options.cross,
            stereo=self.options.stereo,
            prior=self.prior,
            executor=self.options.executor,
        )
        logger.debug("evaluation %d: -LL = %.6f", self.n_calls, value)
        return value

    def steps(self, free: NDArray[np.floating], relative: float) -> NDArray[np.floating]:
        """Finite-difference steps scaled to each parameter, pointing away from its upper bound."""
        h = relative * np.maximum(np.abs(free), 1e-2)
        return np.where(free + h > self.upper, -h, h)

    def central_gradient(self, free: NDArray[np.floating], relative: float) -> NDArray[np.floating]:
        """Central-difference gradient, one-sided along coordinates sitting on a bound."""
        free = np.asarray(free, dtype=float)
        h = relative * np.maximum(np.abs(free), 1e-2)
        grad = np.zeros(free.size, dtype=float)
        for i in range(free.size):
            up, down = free.copy(), free.copy()
            up[i] = min(free[i] + h[i], self.upper[i])
            down[i] = max(free[i] - h[i], self.lower[i])
            if up[i] > down[i]:
                grad[i] = (self(up) - self(down)) / (up[i] - down[i])
        return grad


def fit(
    trial_sets: Sequence[TrialSet],
    parameters: ParameterSet,
    options: FitOptions | None = None,
    prior: Prior | None = None,
) -> FitResult:
    """Maximize the log-likelihood over the free parameters.

    Parameters
    ----------
    trial_sets : sequence of TrialSet
    parameters : ParameterSet
        Fit mask, bounds and starting values. Starting values outside the
        bounds are clipped into them.
    options : FitOptions, optional
    prior : Prior, optional
        Gaussian penalty added to the log-likelihood.

    Returns
    -------
    result : FitResult
        `result.parameters.final` holds the full fitted vector.
    """
    options = FitOptions() if options is None else options
    objective = Objective(trial_sets, parameters, options, prior)
    x0 = np.clip(objective.free, objective.lower, objective.upper)

    logger.info("fitting %d of %d parameters", x0.size, parameters.fit.size)
    output = minimize(
        objective,
        x0,
        method="L-BFGS-B",
        bounds=list(zip(objective.lower, objective.upper)),
        options={
            "maxiter": options.maxiter,
            "ftol": options.ftol,
            "gtol": options.gtol,
            "eps": options.step,
        },
    )

    final = objective.full(output.x)
    latent, observation = split_parameters(final, parameters.layout)
    converged = bool(output.success)
    if converged:
        logger.info("converged after %d iterations: -LL = %.6f", output.nit, output.fun)
    else:
        logger.warning("did not converge after %d iterations: %s", output.nit, output.message)

    return FitResult(
        parameters=replace(parameters, final=final),
        latent=latent,
        observation=observation,
        log_likelihood=-float(output.fun),
        converged=converged,
        n_iterations=int(output.nit),
        message=str(output.message),
    )


def gradient(
    trial_sets: Sequence[TrialSet],
    parameters: ParameterSet,
    options: FitOptions | None = None,
    prior: Prior | None = None,
    x: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Gradient of the negative log-likelihood with respect to the free parameters.

    Evaluated at the full vector `x`, or at `parameters.current` if not given.
    """
    options = FitOptions() if options is None else options
    objective = Objective(trial_sets, parameters, options, prior, x)
    return objective.central_gradient(objective.free, options.step)


def hessian(
    trial_sets: Sequence[TrialSet],
    parameters: ParameterSet,
    options: FitOptions | None = None,
    prior: Prior | None = None,
    x: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Hessian of the negative log-likelihood with respect to the free parameters.

    Forward differences of the central-difference gradient, symmetrized.
    """
    options = FitOptions() if options is None else options
    objective = Objective(trial_sets, parameters, options, prior, x)

    def grad(free: NDArray[np.floating]) -> NDArray[np.floating]:
        return objective.central_gradient(free, options.step)

    logger.info("computing %dx%d Hessian", objective.free.size, objective.free.size)
    H = approx_fprime(objective.free, grad, objective.steps(objective.free, options.hessian_step))
    H = np.atleast_2d(H)
    return (H + H.T) / 2


def confidence_intervals(
    trial_sets: Sequence[TrialSet],
    parameters: ParameterSet,
    options: FitOptions | None = None,
    prior: Prior | None = None,
    H: NDArray[np.floating] | None = None,
) -> tuple[ParameterSet, HessianIntervals]:
    """Hessian-based confidence intervals of the free parameters.

    Fixed parameters get a zero-width interval. Returns the parameter set
    with `ci_lower` and `ci_upper` filled in.
    """
    if H is None:
        H = hessian(trial_sets, parameters, options, prior)
    free, _ = split_free(parameters.current, parameters.fit)
    intervals = hessian_intervals(H, free)

    x = parameters.current
    ci_lower, ci_upper = x.copy(), x.copy()
    ci_lower[parameters.fit] = intervals.lower
    ci_upper[parameters.fit] = intervals.upper
    return replace(parameters, ci_lower=ci_lower, ci_upper=ci_upper), intervals


def likelihood_ratio_confidence_intervals(
    trial_sets: Sequence[TrialSet],
    parameters: ParameterSet,
    options: FitOptions | None = None,
    prior: Prior | None = None,
    n_points: int = 50,
    window: float = 2.0,
) -> tuple[ParameterSet, LikelihoodRatioIntervals]:
    """Likelihood-ratio confidence intervals of the free parameters.

    Each free parameter is scanned between its bounds with the others held
    at `parameters.current`. An infinite bound is replaced by the estimate
    moved `window * max(|x|, 1)` toward it. Trials made impossible during the
    scan count as a large drop in log-likelihood and are not reported.
    """
    options = FitOptions() if options is None else options
    objective = Objective(trial_sets, parameters, options, prior)
    width = window * np.maximum(np.abs(objective.free), 1.0)
    lower = np.where(np.isfinite(objective.lower), objective.lower, objective.free - width)
    upper = np.where(np.isfinite(objective.upper), objective.upper, objective.free + width)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DegenerateLikelihoodWarning)
        intervals = likelihood_ratio_intervals(
            lambda free: -objective(free),
            objective.free,
            lower,
            upper,
            n_points=n_points,
        )

    x = parameters.current
    ci_lower, ci_upper = x.copy(), x.copy()
    ci_lower[parameters.fit] = intervals.lower
    ci_upper[parameters.fit] = intervals.upper
    return replace(parameters, ci_lower=ci_lower, ci_upper=ci_upper), intervals
