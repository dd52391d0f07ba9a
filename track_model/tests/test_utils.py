"""
Tests for reporting helpers.
"""

import numpy as np
import pandas as pd
import pytest

from ..utils import format_parameter_table, summarize_trajectories, print_model_summary


@pytest.fixture
def params():
    return {
        'sigma[lon]': {'mean': 0.0123, 'sd': 0.002, 'hdi_lower': 0.009, 'hdi_upper': 0.0161},
        'gamma': {'mean': 0.71, 'sd': 0.05, 'hdi_lower': 0.62, 'hdi_upper': 0.79}
    }


def test_format_parameter_table(params):
    table = format_parameter_table(params, hdi_prob=0.9)

    assert table['Parameter'].tolist() == ['sigma[lon]', 'gamma']
    assert table.loc[1, 'Mean'] == '0.710'
    assert table.loc[0, '90% HDI'] == '[0.009, 0.016]'


def test_summarize_trajectories():
    summary = pd.DataFrame({
        'ID': ['a', 'a', 'a', 'b', 'b'],
        'distance': [np.nan, 100.0, 300.0, np.nan, 50.0],
        'speed': [np.nan, 10.0, 30.0, np.nan, np.nan]
    })

    totals = summarize_trajectories(summary)

    assert totals['ID'].tolist() == ['a', 'b']
    assert totals['n_locations'].tolist() == [3, 2]
    assert totals['total_distance'].tolist() == [400.0, 50.0]
    assert totals.loc[0, 'mean_speed'] == 20.0
    assert totals.loc[0, 'max_speed'] == 30.0
    assert np.isnan(totals.loc[1, 'mean_speed'])


def test_print_model_summary(params, capsys):
    class FittedModel:
        data = {'N': 12, 'n_tracks': 2}

        def extract_parameters(self, hdi_prob):
            return params

    print_model_summary(FittedModel(), hdi_prob=0.9)

    out = capsys.readouterr().out
    assert "MODEL SUMMARY: FittedModel" in out
    assert "Tracks: 2" in out
    assert "gamma" in out
