"""
Utility Functions for the Flight Path Model

Helper functions for reporting parameter estimates and trajectory summaries.
"""

import numpy as np
import pandas as pd
from typing import Dict


def format_parameter_table(
    params: Dict,
    hdi_prob: float = 0.9
) -> pd.DataFrame:
    """
    Format parameter estimates as a publication-ready table.

    Parameters
    ----------
    params : dict
        Output from model.extract_parameters()
    hdi_prob : float, default=0.9
        HDI probability

    Returns
    -------
    table : pd.DataFrame
        Formatted table
    """
    rows = []

    for param_name, param_data in params.items():
        rows.append({
            'Parameter': param_name,
            'Mean': f"{param_data['mean']:.3f}",
            'SD': f"{param_data['sd']:.3f}",
            f'{hdi_prob*100:.0f}% HDI': f"[{param_data['hdi_lower']:.3f}, {param_data['hdi_upper']:.3f}]"
        })

    return pd.DataFrame(rows)


def summarize_trajectories(summary: pd.DataFrame) -> pd.DataFrame:
    """
    Per-individual totals of a trajectory summary.

    Parameters
    ----------
    summary : pd.DataFrame
        Output of track.track()

    Returns
    -------
    totals : pd.DataFrame
        One row per ID: n_locations, total_distance (m),
        mean_speed and max_speed (m/min)
    """
    rows = []

    for track_id, group in summary.groupby('ID', sort=False):
        speed = group['speed'].to_numpy(dtype=float)
        has_speed = np.any(np.isfinite(speed))

        rows.append({
            'ID': track_id,
            'n_locations': len(group),
            'total_distance': np.nansum(group['distance'].to_numpy(dtype=float)),
            'mean_speed': np.nanmean(speed) if has_speed else np.nan,
            'max_speed': np.nanmax(speed) if has_speed else np.nan
        })

    return pd.DataFrame(rows)


def print_model_summary(model, hdi_prob: float = 0.9):
    """
    Print a formatted summary of model results.

    Parameters
    ----------
    model : DCRWModel or MultiStateDCRWModel
        Fitted model
    hdi_prob : float, default=0.9
        HDI probability
    """
    params = model.extract_parameters(hdi_prob=hdi_prob)

    print("\n" + "="*80)
    print(f"MODEL SUMMARY: {type(model).__name__}")
    print("="*80)

    print("\nDATA:")
    print(f"  Observations: {model.data['N']:,}")
    if 'n_tracks' in model.data:
        print(f"  Tracks: {model.data['n_tracks']}")

    print("\nPARAMETERS:")
    for param_name, param_data in params.items():
        print(f"  {param_name:14s}: {param_data['mean']:7.3f}  "
              f"{hdi_prob*100:.0f}% HDI: [{param_data['hdi_lower']:6.3f}, {param_data['hdi_upper']:6.3f}]")

    print("="*80)
