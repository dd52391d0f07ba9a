"""
Pytest configuration and shared fixtures for flight path model tests.

Provides point estimate tables and a deterministic stand-in for the MCMC
sampler so the driver and summaries can be tested without sampling.
"""

import pytest
import numpy as np
import pandas as pd
import xarray as xr

from ..bayesian_model import DRAW_DIMS, COORDS


class FakeFit:
    """Fitted model stand-in with fixed, symmetric draws around the observations."""

    def __init__(self, data, n_draws=201, spread=0.01):
        self.data = data
        self.saved = []
        offsets = np.linspace(-spread, spread, n_draws)
        values = data['loc'][None, :, :] + offsets[:, None, None]
        self._draws = xr.DataArray(
            values,
            dims=DRAW_DIMS,
            coords={'draw': np.arange(n_draws), 'time': data['time'], 'coord': COORDS}
        )

    def draws(self):
        return self._draws

    def save(self, path):
        self.saved.append(path)


class FakeSampler:
    """Records every fit request and returns FakeFit objects."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fits = []
        self.fail_on = fail_on

    def fit(self, model, data, options):
        self.calls.append((model, data, options))
        if self.fail_on is not None and data.get('ID') == self.fail_on:
            raise FloatingPointError("divergent chains")
        fit = FakeFit(data)
        self.fits.append(fit)
        return fit


def make_track(track_id, n_obs, start='2024-05-01 20:00', step_min=10,
               lon0=8.68, lat0=50.11, seed=0):
    """Point estimates of a bird flying roughly north-east."""
    rng = np.random.default_rng(seed)
    ts = pd.date_range(start, periods=n_obs, freq=f'{step_min}min')
    steps = np.arange(n_obs)
    w = np.full(n_obs, 0.5)
    w[0] = np.nan
    return pd.DataFrame({
        'ID': track_id,
        'ts': ts,
        'lon': lon0 + 0.01 * steps + rng.normal(0, 0.001, n_obs),
        'lat': lat0 + 0.005 * steps + rng.normal(0, 0.001, n_obs),
        'lon_sd': np.full(n_obs, 0.002),
        'lat_sd': np.full(n_obs, 0.0015),
        'w': w
    })


@pytest.fixture
def fake_sampler():
    """Deterministic sampler stand-in."""
    return FakeSampler()


@pytest.fixture
def point_estimates():
    """One 5-observation track ('a') and one 2-observation track ('b')."""
    return pd.concat([make_track('a', 5), make_track('b', 2, seed=1)],
                     ignore_index=True)


@pytest.fixture
def two_valid_tracks():
    """Two modellable tracks with interleaved rows, 'y' appearing first."""
    x = make_track('x', 4, seed=2)
    y = make_track('y', 6, lon0=9.0, seed=3)
    df = pd.concat([y.iloc[:2], x, y.iloc[2:]], ignore_index=True)
    return df


@pytest.fixture
def track_bundle():
    """Bundle of a single 6-observation track."""
    from ..data_preprocessing import bundle_track_data
    return bundle_track_data(make_track('a', 6))


@pytest.fixture
def draws_ensemble(track_bundle):
    """Fixed draws ensemble of a single track."""
    return FakeFit(track_bundle).draws()
