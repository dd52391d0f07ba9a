"""
State-Space Model for Flight Paths from Radio-Telemetry

This package smooths noisy point estimates of animal locations (with
per-point standard errors) into a continuous flight path using a difference
correlated random walk (DCRW) fitted by MCMC, and summarises the posterior
trajectory with credible intervals, step distances and speeds.

Model equations:
    x(t) = x(t-1) + γ·(x(t-1) - x(t-2)) + ε(t)
    y(t) ~ t₅(w(t)·x(t) + (1 - w(t))·x(t-1), s(t))

where:
    x(t): True location
    y(t): Point estimate with standard error s(t)
    w(t): Interval weight
    γ: Move persistence (state-specific in the multi-state model)
"""

__version__ = "0.1.0"

from . import geo_calc
from . import data_preprocessing
from . import posterior_summary
from . import bayesian_model
from . import utils
from .track import track, track_multistate

__all__ = ['geo_calc', 'data_preprocessing', 'posterior_summary',
           'bayesian_model', 'utils', 'track', 'track_multistate']
