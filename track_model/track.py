"""
Flight Path Estimation from Point Estimates

Runs the state-space models over every individual of a point estimate
table and collects the posterior trajectory summaries.

Key functions:
- track: One DCRW fit per individual
- track_multistate: One joint multi-state fit over all individuals
"""

import os
import pandas as pd
from tqdm import tqdm
from typing import List, Optional

from .data_preprocessing import (
    validate_track_data,
    filter_short_tracks,
    split_tracks,
    bundle_track_data,
    structure_multi_track_data,
    MIN_OBSERVATIONS
)
from .bayesian_model import DCRWModel, MultiStateDCRWModel, PyMCSampler
from .posterior_summary import CredibleInterval, summarize_draws

DEFAULT_CI = 'HDI'
DEFAULT_PROB = 0.9


def _check_options(ci, prob: float) -> CredibleInterval:
    method = CredibleInterval.parse(ci)
    if not 0 < prob <= 1:
        raise ValueError("Probability mass must be between 0 (exclusive) and 1.")
    return method


def _prepare(data: Optional[pd.DataFrame], ci, prob: float):
    # Fail fast before anything is sampled
    validate_track_data(data)
    method = _check_options(ci, prob)
    data = filter_short_tracks(data, min_obs=MIN_OBSERVATIONS)
    return data, method


def track(
    data: Optional[pd.DataFrame] = None,
    ci=DEFAULT_CI,
    prob: float = DEFAULT_PROB,
    output_dir: Optional[str] = '.',
    sampler=None,
    model=DCRWModel,
    verbose: bool = True,
    **sample_kwargs
) -> pd.DataFrame:
    """
    Model flight paths from point estimates using a DCRW model.

    Individuals are processed one at a time, in order of first appearance;
    each fit may run several chains in parallel.

    Parameters
    ----------
    data : pd.DataFrame
        Point estimates with columns ID, ts, lon, lat, lon_sd, lat_sd, w
    ci : str or CredibleInterval, default='HDI'
        Credible interval method: 'HDI' (highest density) or 'ETI' (equal-tailed)
    prob : float, default=0.9
        Probability mass of the credible intervals, in (0, 1]
    output_dir : str, optional
        Directory to save each fit to as model-<ID>.pkl. Defaults to the
        current working directory; None disables saving.
    sampler : object, optional
        Object with fit(model, data, options). Defaults to PyMCSampler().
    model : type, default=DCRWModel
        Model class passed to the sampler
    verbose : bool, default=True
        Print progress
    **sample_kwargs
        Passed verbatim to the sampler (pm.sample() for PyMCSampler)

    Returns
    -------
    summary : pd.DataFrame
        One row per ID and timestamp with columns:
        time, mean_lon, median_lon, lower_lon, upper_lon,
        mean_lat, median_lat, lower_lat, upper_lat, ID,
        distance (m), speed (m/min)
    """
    data, method = _prepare(data, ci, prob)

    if sampler is None:
        sampler = PyMCSampler()

    summaries: List[pd.DataFrame] = []
    tracks = list(split_tracks(data))

    for track_id, track_df in tqdm(tracks, desc="Modelling tracks", disable=not verbose):
        bundle = bundle_track_data(track_df)

        try:
            fit = sampler.fit(model, bundle, sample_kwargs)
        except Exception as err:
            raise RuntimeError(f"Sampling failed for ID {track_id}: {err}") from err

        if output_dir is not None:
            fit.save(os.path.join(output_dir, f"model-{track_id}.pkl"))

        summaries.append(summarize_draws(fit.draws(), track_id, method, prob))

        if verbose:
            print(f"Done with ID {track_id}.")

    if not summaries:
        return pd.DataFrame(columns=_summary_columns())

    return pd.concat(summaries, ignore_index=True)


def track_multistate(
    data: Optional[pd.DataFrame] = None,
    n_states: int = 2,
    covariates: Optional[List[str]] = None,
    ci=DEFAULT_CI,
    prob: float = DEFAULT_PROB,
    output_dir: Optional[str] = '.',
    sampler=None,
    verbose: bool = True,
    **sample_kwargs
) -> pd.DataFrame:
    """
    Model flight paths of all individuals jointly with a multi-state DCRW model.

    Parameters
    ----------
    data : pd.DataFrame
        Point estimates with columns ID, ts, lon, lat, lon_sd, lat_sd, w
        (plus any covariate columns)
    n_states : int, default=2
        Number of behavioural states
    covariates : list of str, optional
        Columns driving the transition probabilities
    ci : str or CredibleInterval, default='HDI'
        Credible interval method: 'HDI' or 'ETI'
    prob : float, default=0.9
        Probability mass of the credible intervals, in (0, 1]
    output_dir : str, optional
        Directory to save the fit to as model-multistate.pkl; None disables saving
    sampler : object, optional
        Object with fit(model, data, options). Defaults to PyMCSampler().
    verbose : bool, default=True
        Print progress
    **sample_kwargs
        Passed verbatim to the sampler

    Returns
    -------
    summary : pd.DataFrame
        Same columns as track()
    """
    data, method = _prepare(data, ci, prob)

    if data.empty:
        return pd.DataFrame(columns=_summary_columns())

    if sampler is None:
        sampler = PyMCSampler()

    data_dict = structure_multi_track_data(data, covariates=covariates, n_states=n_states)

    try:
        fit = sampler.fit(MultiStateDCRWModel, data_dict, sample_kwargs)
    except Exception as err:
        raise RuntimeError(f"Sampling failed for the multi-state model: {err}") from err

    if output_dir is not None:
        fit.save(os.path.join(output_dir, "model-multistate.pkl"))

    draws = fit.draws()
    summaries = []
    for track_id, start, end in zip(data_dict['ids'], data_dict['track_start'],
                                    data_dict['track_end']):
        track_draws = draws.isel(time=slice(int(start), int(end)))
        summaries.append(summarize_draws(track_draws, track_id, method, prob))

        if verbose:
            print(f"Done with ID {track_id}.")

    return pd.concat(summaries, ignore_index=True)


def _summary_columns() -> List[str]:
    return ['time',
            'mean_lon', 'median_lon', 'lower_lon', 'upper_lon',
            'mean_lat', 'median_lat', 'lower_lat', 'upper_lat',
            'ID', 'distance', 'speed']
