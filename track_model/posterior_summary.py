"""
Posterior Summaries for the Flight Path Model

Reduces posterior draws of the true locations to point estimates and
credible intervals, and derives step distance and speed from the
summarised trajectory.

Draws are passed as an xarray.DataArray with dims ('draw', 'time', 'coord')
(see bayesian_model.DRAW_DIMS).
"""

import numpy as np
import pandas as pd
import xarray as xr
from enum import Enum
from typing import Tuple, Union

from .geo_calc import lagged_distances


class CredibleInterval(Enum):
    """Credible interval estimator, chosen once per run."""
    ETI = 'ETI'  # Equal-tailed interval
    HDI = 'HDI'  # Highest density interval

    @classmethod
    def parse(cls, value: Union[str, 'CredibleInterval']) -> 'CredibleInterval':
        """Resolve 'HDI' / 'ETI' (or a member) to a CredibleInterval."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                "Invalid credible interval method. Available options are 'HDI' and 'ETI'."
            ) from None


def equal_tailed_interval(samples: np.ndarray, prob: float) -> Tuple[float, float]:
    """
    Equal-tailed interval: same probability mass in both tails.

    Parameters
    ----------
    samples : np.ndarray
        1D posterior samples
    prob : float
        Probability mass of the interval

    Returns
    -------
    lower, upper : float
    """
    lower, upper = np.quantile(samples, [(1 - prob) / 2, 1 - (1 - prob) / 2])
    return float(lower), float(upper)


def highest_density_interval(samples: np.ndarray, prob: float) -> Tuple[float, float]:
    """
    Narrowest interval containing `prob` of the sorted samples.

    Parameters
    ----------
    samples : np.ndarray
        1D posterior samples
    prob : float
        Probability mass of the interval

    Returns
    -------
    lower, upper : float
    """
    x = np.sort(np.asarray(samples, dtype=float))
    n = len(x)
    exclude = max(n - int(np.floor(n * prob)), 1)

    low_poss = x[:exclude]
    upp_poss = x[n - exclude:]
    best = np.argmin(upp_poss - low_poss)

    return float(low_poss[best]), float(upp_poss[best])


def credible_interval(
    samples: np.ndarray,
    prob: float,
    method: CredibleInterval
) -> Tuple[float, float]:
    """Compute a credible interval with the selected estimator."""
    if method is CredibleInterval.ETI:
        return equal_tailed_interval(samples, prob)
    return highest_density_interval(samples, prob)


def elapsed_minutes(times) -> np.ndarray:
    """
    Minutes elapsed since the previous timestamp.

    Datetime-like timestamps are differenced directly; numeric timestamps
    are taken as seconds. The first value is NaN.
    """
    times = pd.Series(np.asarray(times))

    if pd.api.types.is_numeric_dtype(times):
        seconds = times.astype(float).diff()
    else:
        seconds = pd.to_datetime(times).diff().dt.total_seconds()

    return (seconds / 60).to_numpy(dtype=float)


def summarize_coordinate(
    draws: xr.DataArray,
    coord: str,
    method: CredibleInterval,
    prob: float
) -> pd.DataFrame:
    """
    Summarise the draws of one coordinate per timestamp.

    Returns
    -------
    summary : pd.DataFrame
        Columns time, mean, median, lower, upper
    """
    values = draws.sel(coord=coord).transpose('draw', 'time').values
    intervals = np.array([credible_interval(values[:, i], prob, method)
                          for i in range(values.shape[1])]).reshape(-1, 2)

    return pd.DataFrame({
        'time': draws['time'].values,
        'mean': values.mean(axis=0),
        'median': np.median(values, axis=0),
        'lower': intervals[:, 0],
        'upper': intervals[:, 1]
    })


def join_coordinates(lon: pd.DataFrame, lat: pd.DataFrame) -> pd.DataFrame:
    """
    Join per-coordinate summaries into one wide row per timestamp.

    Both summaries must cover exactly the same timestamps. Repeated
    timestamps are matched in order of appearance.
    """
    if (len(lon) != len(lat) or
            not np.array_equal(np.sort(lon['time'].to_numpy()), np.sort(lat['time'].to_numpy()))):
        raise AssertionError(
            "Longitude and latitude summaries do not share the same timestamps."
        )

    lon = lon.assign(_repeat=lon.groupby('time', sort=False).cumcount())
    lat = lat.assign(_repeat=lat.groupby('time', sort=False).cumcount())

    summary = lon.merge(lat, on=['time', '_repeat'], suffixes=('_lon', '_lat'),
                        validate='one_to_one')
    summary = summary.drop(columns='_repeat')
    return summary.sort_values('time', kind='stable').reset_index(drop=True)


def summarize_draws(
    draws: xr.DataArray,
    track_id,
    method: CredibleInterval = CredibleInterval.HDI,
    prob: float = 0.9
) -> pd.DataFrame:
    """
    Summarise posterior draws of one track.

    Parameters
    ----------
    draws : xr.DataArray
        Draws of the true locations with dims ('draw', 'time', 'coord')
    track_id : object
        Individual identifier attached to every row
    method : CredibleInterval, default=CredibleInterval.HDI
        Credible interval estimator
    prob : float, default=0.9
        Probability mass of the credible intervals

    Returns
    -------
    summary : pd.DataFrame
        One row per timestamp with columns:
        time, mean_lon, median_lon, lower_lon, upper_lon,
        mean_lat, median_lat, lower_lat, upper_lat, ID,
        distance (m), speed (m/min)
    """
    lon = summarize_coordinate(draws, 'lon', method, prob)
    lat = summarize_coordinate(draws, 'lat', method, prob)

    summary = join_coordinates(lon, lat)
    summary['ID'] = track_id
    summary['distance'] = lagged_distances(summary)

    minutes = elapsed_minutes(summary['time'].to_numpy())
    with np.errstate(divide='ignore', invalid='ignore'):
        speed = summary['distance'].to_numpy() / minutes
    speed[~(minutes > 0)] = np.nan
    summary['speed'] = speed

    return summary
