"""
Geodesic Utilities for the Flight Path Model

Spherical helper functions shared by the location estimation stage and the
trajectory summaries:

- to_radians / to_degrees: Angle conversion
- circular_difference: Smallest separation between two bearings
- great_circle_distance: Haversine distance between geographic points
- destination_point: Forward projection from a start point
- lagged_distances: Step lengths along a summarised trajectory
"""

import numpy as np
import pandas as pd
from typing import Tuple, Union

ArrayLike = Union[float, np.ndarray]

# Equatorial radius (WGS84) in km
EARTH_RADIUS_KM = 6378.137


def to_radians(deg: ArrayLike) -> ArrayLike:
    """Convert degrees to radians."""
    return deg * np.pi / 180


def to_degrees(rad: ArrayLike) -> ArrayLike:
    """Convert radians to degrees."""
    return rad * 180 / np.pi


def circular_difference(x: ArrayLike, y: ArrayLike) -> ArrayLike:
    """
    Smallest angular separation between two bearings.

    Parameters
    ----------
    x, y : float or np.ndarray
        Bearings in degrees [0, 360]

    Returns
    -------
    diff : float or np.ndarray
        Separation in degrees [0, 180]
    """
    return 180 - np.abs(np.abs(x - y) - 180)


def great_circle_distance(
    lon1: ArrayLike,
    lat1: ArrayLike,
    lon2: ArrayLike,
    lat2: ArrayLike,
    radius: float = EARTH_RADIUS_KM
) -> ArrayLike:
    """
    Great-circle distance between geographic points (haversine formula).

    Parameters
    ----------
    lon1, lat1 : float or np.ndarray
        First point in degrees
    lon2, lat2 : float or np.ndarray
        Second point in degrees
    radius : float, default=6378.137
        Sphere radius in km

    Returns
    -------
    distance : float or np.ndarray
        Distance in km
    """
    d_lon = to_radians(np.subtract(lon2, lon1))
    d_lat = to_radians(np.subtract(lat2, lat1))

    lat1 = to_radians(np.asarray(lat1, dtype=float))
    lat2 = to_radians(np.asarray(lat2, dtype=float))

    a = (np.sin(d_lat / 2) ** 2 +
         np.sin(d_lon / 2) ** 2 * np.cos(lat1) * np.cos(lat2))

    # Floating point overshoot would put sqrt(1 - a) out of domain
    a = np.clip(a, 0.0, 1.0)

    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return radius * c


def destination_point(
    lon1: ArrayLike,
    lat1: ArrayLike,
    bearing: ArrayLike,
    distance: ArrayLike,
    radius: float = EARTH_RADIUS_KM
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Destination reached from a start point given an initial bearing and distance.

    Parameters
    ----------
    lon1, lat1 : float or np.ndarray
        Start point in degrees
    bearing : float or np.ndarray
        Initial bearing in degrees (clockwise from north)
    distance : float or np.ndarray
        Travelled distance in km
    radius : float, default=6378.137
        Sphere radius in km

    Returns
    -------
    lon2, lat2 : float or np.ndarray
        Destination in degrees
    """
    lon1 = to_radians(np.asarray(lon1, dtype=float))
    lat1 = to_radians(np.asarray(lat1, dtype=float))
    a = to_radians(np.asarray(bearing, dtype=float))
    delta = np.asarray(distance, dtype=float) / radius

    lat2 = np.arcsin(np.sin(lat1) * np.cos(delta) +
                     np.cos(lat1) * np.sin(delta) * np.cos(a))
    lon2 = lon1 + np.arctan2(np.sin(a) * np.sin(delta) * np.cos(lat1),
                             np.cos(delta) - np.sin(lat1) * np.sin(lat2))

    return to_degrees(lon2), to_degrees(lat2)


def lagged_distances(summary: pd.DataFrame) -> np.ndarray:
    """
    Distances between consecutive rows of a summarised trajectory.

    Parameters
    ----------
    summary : pd.DataFrame
        Time-ordered summary of a single track with 'mean_lon' and 'mean_lat'

    Returns
    -------
    distance : np.ndarray
        Distance to the previous row in metres. First value is NaN.
    """
    n = len(summary)
    dist = np.full(n, np.nan)
    if n < 2:
        return dist

    lon = summary['mean_lon'].to_numpy(dtype=float)
    lat = summary['mean_lat'].to_numpy(dtype=float)

    dist[1:] = great_circle_distance(lon[1:], lat[1:], lon[:-1], lat[:-1])
    return dist * 1e3
