"""
Tests for the flight path estimation driver.

All tests use the deterministic FakeSampler from conftest.py.
"""

import warnings

import pytest
import numpy as np
import pandas as pd

from ..track import track, track_multistate
from ..bayesian_model import DCRWModel, MultiStateDCRWModel
from ..posterior_summary import CredibleInterval
from .conftest import FakeSampler, make_track


class TestTrackValidation:
    """Test that invalid options fail before any sampling."""

    def test_no_data(self, fake_sampler):
        with pytest.raises(ValueError, match="No data provided"):
            track(None, sampler=fake_sampler)
        assert fake_sampler.calls == []

    def test_invalid_interval_method(self, point_estimates, fake_sampler):
        with pytest.raises(ValueError, match="Invalid credible interval method"):
            track(point_estimates, ci='quantile', sampler=fake_sampler)
        assert fake_sampler.calls == []

    def test_missing_id_or_timestamp(self, point_estimates, fake_sampler):
        with_missing_id = pd.concat([point_estimates, make_track(np.nan, 4)], ignore_index=True)
        with pytest.raises(ValueError, match="'ID'"):
            track(with_missing_id, sampler=fake_sampler, output_dir=None)

        point_estimates.loc[2, 'ts'] = pd.NaT
        with pytest.raises(ValueError, match="'ts'"):
            track(point_estimates, sampler=fake_sampler, output_dir=None)
        assert fake_sampler.calls == []

    @pytest.mark.parametrize("prob", [-0.1, 0.0, 1.5])
    def test_invalid_probability(self, point_estimates, fake_sampler, prob):
        with pytest.raises(ValueError, match="Probability mass"):
            track(point_estimates, prob=prob, sampler=fake_sampler)
        assert fake_sampler.calls == []


class TestTrack:
    """Test per-individual fitting and summaries."""

    def test_end_to_end(self, point_estimates, fake_sampler):
        with pytest.warns(UserWarning, match="ID b"):
            summary = track(point_estimates, ci='HDI', prob=0.9, output_dir=None,
                            sampler=fake_sampler, verbose=False)

        assert len(summary) == 5
        assert (summary['ID'] == 'a').all()
        assert np.isnan(summary['distance'].iloc[0])
        assert np.isnan(summary['speed'].iloc[0])
        assert np.all(summary['distance'].iloc[1:] >= 0)
        assert np.all(np.isfinite(summary['speed'].iloc[1:]))

        assert len(fake_sampler.calls) == 1
        assert fake_sampler.fits[0].saved == []

    def test_bundle_passed_to_sampler(self, point_estimates, fake_sampler):
        with pytest.warns(UserWarning):
            track(point_estimates, output_dir=None, sampler=fake_sampler, verbose=False)

        model, data, options = fake_sampler.calls[0]
        assert model is DCRWModel
        assert data['ID'] == 'a'
        assert data['N'] == 5
        assert data['loc'].shape == (5, 2)
        assert options == {}

    def test_sampler_options_forwarded(self, two_valid_tracks, fake_sampler):
        track(two_valid_tracks, output_dir=None, sampler=fake_sampler, verbose=False,
              chains=2, draws=50, random_seed=1)

        for _, _, options in fake_sampler.calls:
            assert options == {'chains': 2, 'draws': 50, 'random_seed': 1}

    def test_track_order(self, two_valid_tracks, fake_sampler):
        summary = track(two_valid_tracks, output_dir=None, sampler=fake_sampler, verbose=False)

        assert summary['ID'].tolist() == ['y'] * 6 + ['x'] * 4
        for _, group in summary.groupby('ID'):
            assert group['time'].is_monotonic_increasing
            assert np.isnan(group['distance'].iloc[0])
        assert summary.index.tolist() == list(range(10))

    def test_interval_method_applied(self, two_valid_tracks):
        hdi = track(two_valid_tracks, ci='HDI', output_dir=None,
                    sampler=FakeSampler(), verbose=False)
        eti = track(two_valid_tracks, ci=CredibleInterval.ETI, output_dir=None,
                    sampler=FakeSampler(), verbose=False)

        pd.testing.assert_series_equal(hdi['mean_lon'], eti['mean_lon'])
        assert not np.allclose(hdi['lower_lon'], eti['lower_lon'])

    def test_fits_saved(self, two_valid_tracks, fake_sampler, tmp_path):
        track(two_valid_tracks, output_dir=str(tmp_path), sampler=fake_sampler, verbose=False)

        saved = [fit.saved for fit in fake_sampler.fits]
        assert saved == [[str(tmp_path / "model-y.pkl")], [str(tmp_path / "model-x.pkl")]]

    def test_sampler_failure_aborts_run(self, two_valid_tracks):
        sampler = FakeSampler(fail_on='x')

        with pytest.raises(RuntimeError, match="Sampling failed for ID x") as excinfo:
            track(two_valid_tracks, output_dir=None, sampler=sampler, verbose=False)

        assert isinstance(excinfo.value.__cause__, FloatingPointError)
        assert len(sampler.calls) == 2

    def test_all_tracks_too_short(self, fake_sampler):
        df = pd.concat([make_track('a', 2), make_track('b', 1)], ignore_index=True)

        with pytest.warns(UserWarning, match="IDs a, b"):
            summary = track(df, output_dir=None, sampler=fake_sampler, verbose=False)

        assert summary.empty
        assert 'speed' in summary.columns
        assert fake_sampler.calls == []

    def test_progress_messages(self, two_valid_tracks, fake_sampler, capsys):
        track(two_valid_tracks, output_dir=None, sampler=fake_sampler, verbose=True)

        out = capsys.readouterr().out
        assert "Done with ID y." in out
        assert "Done with ID x." in out


class TestTrackMultistate:
    """Test the joint multi-state driver."""

    def test_summaries_per_track(self, point_estimates, fake_sampler):
        df = pd.concat([point_estimates, make_track('c', 4, lon0=9.0, seed=5)],
                       ignore_index=True)

        with pytest.warns(UserWarning, match="ID b"):
            summary = track_multistate(df, n_states=2, output_dir=None,
                                       sampler=fake_sampler, verbose=False)

        assert summary['ID'].tolist() == ['a'] * 5 + ['c'] * 4
        first_rows = summary.groupby('ID').head(1)
        assert first_rows['distance'].isna().all()
        assert first_rows['speed'].isna().all()

        model, data, _ = fake_sampler.calls[0]
        assert model is MultiStateDCRWModel
        assert data['n_states'] == 2
        assert data['ids'] == ['a', 'c']

    def test_covariates_and_saving(self, two_valid_tracks, fake_sampler, tmp_path):
        df = two_valid_tracks.assign(wind=1.0)

        with warnings.catch_warnings():
            warnings.simplefilter('error')
            track_multistate(df, covariates=['wind'], output_dir=str(tmp_path),
                             sampler=fake_sampler, verbose=False)

        _, data, _ = fake_sampler.calls[0]
        assert data['X'].shape == (10, 2)
        assert fake_sampler.fits[0].saved == [str(tmp_path / "model-multistate.pkl")]
