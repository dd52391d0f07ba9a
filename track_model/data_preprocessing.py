"""
Data Preprocessing Module for the Flight Path Model

This module validates point estimate tables produced by the location
estimation stage and structures them for the state-space models.

Key functions:
- validate_track_data: Check required columns and values
- filter_short_tracks: Drop individuals with too few observations
- split_tracks: Iterate over individuals in order of appearance
- bundle_track_data: Structure one track for DCRWModel
- structure_multi_track_data: Structure all tracks for MultiStateDCRWModel
"""

import numpy as np
import pandas as pd
import warnings
from typing import Dict, Iterator, List, Optional, Tuple

from .posterior_summary import elapsed_minutes

# Columns of the point estimate table
REQUIRED_COLUMNS = ['ID', 'ts', 'lon', 'lat', 'lon_sd', 'lat_sd', 'w']

# Minimum number of observations for a track to be modelled
MIN_OBSERVATIONS = 3


def validate_track_data(df: Optional[pd.DataFrame]) -> pd.DataFrame:
    """
    Check a point estimate table before any model is built.

    Parameters
    ----------
    df : pd.DataFrame
        Point estimates with columns ID, ts, lon, lat, lon_sd, lat_sd, w

    Returns
    -------
    df : pd.DataFrame
        The same table (unchanged)
    """
    if df is None or len(df) == 0:
        raise ValueError("No data provided.")

    missing_cols = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    if df['ID'].isna().any():
        raise ValueError("Column 'ID' must not contain missing values.")

    if df['ts'].isna().any():
        raise ValueError("Column 'ts' must not contain missing values.")

    if not np.all(np.isfinite(df[['lon', 'lat']].to_numpy(dtype=float))):
        raise ValueError("Columns 'lon' and 'lat' must not contain missing or infinite values.")

    sd = df[['lon_sd', 'lat_sd']].to_numpy(dtype=float)
    if not np.all(np.isfinite(sd)) or np.any(sd <= 0):
        raise ValueError("Columns 'lon_sd' and 'lat_sd' must be positive and finite.")

    return df


def filter_short_tracks(
    df: pd.DataFrame,
    min_obs: int = MIN_OBSERVATIONS
) -> pd.DataFrame:
    """
    Remove individuals with fewer than `min_obs` observations.

    A single UserWarning names every removed ID.

    Parameters
    ----------
    df : pd.DataFrame
        Validated point estimates
    min_obs : int, default=3
        Minimum number of observations per ID

    Returns
    -------
    df : pd.DataFrame
        Point estimates of the remaining IDs
    """
    counts = df.groupby('ID', sort=False).size()
    ids = counts[counts < min_obs].index.tolist()

    if len(ids) > 0:
        single = len(ids) < 2
        warnings.warn(
            f"{'ID' if single else 'IDs'} {', '.join(str(i) for i in ids)} "
            f"had less than {min_obs} observations and "
            f"{'was' if single else 'were'} not modelled. You may want to "
            f"decrease the sampling interval of the location estimation to "
            f"increase the number of observations."
        )
        df = df[~df['ID'].isin(ids)].copy()

    return df


def split_tracks(df: pd.DataFrame) -> Iterator[Tuple[object, pd.DataFrame]]:
    """
    Iterate over tracks in order of first appearance.

    Yields
    ------
    track_id : object
        Individual identifier
    track_df : pd.DataFrame
        Observations of this individual sorted by timestamp
    """
    for track_id in pd.unique(df['ID']):
        track_df = df[df['ID'] == track_id]
        yield track_id, track_df.sort_values('ts', kind='stable').reset_index(drop=True)


def bundle_track_data(track_df: pd.DataFrame) -> Dict:
    """
    Structure one track for the DCRW model.

    Parameters
    ----------
    track_df : pd.DataFrame
        Observations of a single individual sorted by timestamp

    Returns
    -------
    bundle : dict
        Dictionary with keys:
        - 'loc': (N, 2) observed lon/lat
        - 'sigma': (N, 2) standard errors of lon/lat
        - 'N': Number of observations
        - 'w': (N,) interval weights (first and missing weights set to 1)
        - 'time': (N,) timestamps
        - 'ID': Individual identifier
    """
    w = track_df['w'].to_numpy(dtype=float).copy()
    # The first weight has no previous state to interpolate from
    w[0] = 1.0
    w[np.isnan(w)] = 1.0

    return {
        'loc': track_df[['lon', 'lat']].to_numpy(dtype=float),
        'sigma': track_df[['lon_sd', 'lat_sd']].to_numpy(dtype=float),
        'N': len(track_df),
        'w': w,
        'time': track_df['ts'].to_numpy(),
        'ID': track_df['ID'].iloc[0]
    }


def structure_multi_track_data(
    df: pd.DataFrame,
    covariates: Optional[List[str]] = None,
    n_states: int = 2
) -> Dict:
    """
    Structure all tracks for the multi-state model.

    Tracks are concatenated in order of first appearance. An intercept column
    is always prepended to the covariate matrix.

    Parameters
    ----------
    df : pd.DataFrame
        Validated and filtered point estimates
    covariates : list of str, optional
        Columns used as transition covariates
    n_states : int, default=2
        Number of behavioural states

    Returns
    -------
    data_dict : dict
        Concatenated track bundle (keys of bundle_track_data) plus:
        - 'X': (N, K) covariate matrix
        - 'track_start': Index of the first observation of each track
        - 'track_end': Index one past the last observation of each track
        - 'n_tracks': Number of tracks
        - 'n_states': Number of behavioural states
        - 'ids': Track identifiers
    """
    if n_states < 1:
        raise ValueError(f"n_states must be at least 1, got {n_states}.")

    covariates = [] if covariates is None else list(covariates)
    missing_cols = [col for col in covariates if col not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing covariate columns: {missing_cols}")

    bundles = []
    covariate_list = []
    for _, track_df in split_tracks(df):
        bundles.append(bundle_track_data(track_df))
        covariate_list.append(track_df[covariates].to_numpy(dtype=float))

    lengths = np.array([b['N'] for b in bundles], dtype=int)
    track_end = np.cumsum(lengths)
    track_start = track_end - lengths

    covariate_values = np.concatenate(covariate_list)
    if not np.all(np.isfinite(covariate_values)):
        raise ValueError("Covariates must not contain missing or infinite values.")
    X = np.column_stack([np.ones(len(covariate_values)), covariate_values])

    return {
        'loc': np.concatenate([b['loc'] for b in bundles]),
        'sigma': np.concatenate([b['sigma'] for b in bundles]),
        'N': int(lengths.sum()),
        'w': np.concatenate([b['w'] for b in bundles]),
        'time': np.concatenate([b['time'] for b in bundles]),
        'X': X,
        'track_start': track_start,
        'track_end': track_end,
        'n_tracks': len(bundles),
        'n_states': n_states,
        'ids': [b['ID'] for b in bundles]
    }


def get_data_summary(df: pd.DataFrame) -> pd.DataFrame:
    """
    Generate a summary dataframe of point estimates.

    Parameters
    ----------
    df : pd.DataFrame
        Point estimates

    Returns
    -------
    summary_df : pd.DataFrame
        One row per ID with observation count, first/last timestamp and
        duration in minutes
    """
    summary_rows = []

    for track_id, track_df in split_tracks(df):
        ts = track_df['ts']
        duration = np.nansum(elapsed_minutes(ts.to_numpy()))

        summary_rows.append({
            'ID': track_id,
            'n_obs': len(track_df),
            'first_ts': ts.iloc[0],
            'last_ts': ts.iloc[-1],
            'duration_min': duration
        })

    return pd.DataFrame(summary_rows)
