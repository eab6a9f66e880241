"""Drift-diffusion models of pulse-based evidence accumulation.

This package fits a bounded accumulator driven by left and right clicks to
choices and simultaneously recorded spike counts. The accumulator is
discretized into bins and each trial is treated as a hidden Markov model,
whose forward pass yields the likelihood of the data.
"""

from pulseddm._validation import (
    ConfidenceIntervalWarning,
    DegenerateLikelihoodWarning,
    HessianWarning,
)
from pulseddm.adaptation import adapt_clicks
from pulseddm.data import Trial, TrialSet, initialize_links
from pulseddm.fitting import (
    FitOptions,
    FitResult,
    confidence_intervals,
    fit,
    gradient,
    hessian,
    likelihood_ratio_confidence_intervals,
)
from pulseddm.forward import backward_pass, forward_pass, posterior
from pulseddm.grid import LatentGrid, build_grid
from pulseddm.links import Exponential, LinkFunction, Sigmoid, Softplus
from pulseddm.likelihood import (
    negative_log_likelihood,
    total_log_likelihood,
    trial_posteriors,
    trial_set_log_likelihoods,
)
from pulseddm.observations import choice_log_likelihood, poisson_log_likelihood
from pulseddm.parameters import (
    ChoiceParams,
    LatentParams,
    ObservationParams,
    ParameterLayout,
    ParameterSet,
    Prior,
    combine_parameters,
    default_parameters,
    split_parameters,
)
from pulseddm.simulate import simulate_trial_set
from pulseddm.transition import no_input_matrix, transition_matrix

__version__ = "0.1.0"

__all__ = [
    "build_grid",
    "LatentGrid",
    "adapt_clicks",
    "transition_matrix",
    "no_input_matrix",
    "forward_pass",
    "backward_pass",
    "posterior",
    "choice_log_likelihood",
    "poisson_log_likelihood",
    "LinkFunction",
    "Softplus",
    "Sigmoid",
    "Exponential",
    "Trial",
    "TrialSet",
    "initialize_links",
    "LatentParams",
    "ChoiceParams",
    "ObservationParams",
    "ParameterLayout",
    "ParameterSet",
    "Prior",
    "combine_parameters",
    "split_parameters",
    "default_parameters",
    "trial_set_log_likelihoods",
    "total_log_likelihood",
    "negative_log_likelihood",
    "trial_posteriors",
    "FitOptions",
    "FitResult",
    "fit",
    "gradient",
    "hessian",
    "confidence_intervals",
    "likelihood_ratio_confidence_intervals",
    "simulate_trial_set",
    "DegenerateLikelihoodWarning",
    "HessianWarning",
    "ConfidenceIntervalWarning",
]
