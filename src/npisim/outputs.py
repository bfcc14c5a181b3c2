"""
===========================================================
outputs.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Post-processing of a simulated Trajectory:
        - to_long_form(): tidy table, one row per (time, compartment)
        - iter_long_records(): the same rows as LongRecord tuples
        - summary(): peak, final size and duration statistics

Example Usage:
    from npisim.outputs import to_long_form, summary
    df = to_long_form(traj)        # columns: time, compartment, value
    stats = summary(traj, config.npi_window)

Notes:
    - Rows are ordered by time first, then S, I, R.
    - The reshape is a 1:1 pivot: no filtering, aggregation or
      unit conversion.
-----------------------------------------------------------
License: MIT
===========================================================
"""
from __future__ import annotations
import numpy as np
import pandas as pd
from typing import Dict, Iterator, NamedTuple, Optional

from npisim.sir_npi import COMPARTMENTS, NPIWindow
from npisim.solver import Trajectory


class LongRecord(NamedTuple):
    time: float
    compartment: str
    value: float


def to_long_form(trajectory: Trajectory) -> pd.DataFrame:
    """Pivot the wide trajectory (time x compartment) into a long table"""
    n = len(trajectory)
    return pd.DataFrame({
        "time": np.repeat(trajectory.times, len(COMPARTMENTS)),
        "compartment": np.tile(np.array(COMPARTMENTS, dtype=object), n),
        # row-major ravel gives S, I, R for the first time, then the next time, ...
        "value": trajectory.states.ravel(),
    })


def iter_long_records(trajectory: Trajectory) -> Iterator[LongRecord]:
    for t, state in trajectory:
        for name, value in zip(COMPARTMENTS, state):
            yield LongRecord(t, name, value)


def summary(trajectory: Trajectory, npi_window: Optional[NPIWindow] = None) -> Dict[str, Optional[float]]:
    """
    Compute key epidemic metrics from a trajectory.

    Returns:
    --------
    metrics : dict
        - peak_day: time at which I is largest
        - peak_infected: largest I
        - peak_prevalence: peak_infected / initial total
        - final_size: R at the last time / initial total
        - epidemic_duration: time from the first grid point until I falls
          below 1% of its peak after the peak (full span if it never does)
        - npi_start, npi_end: window bounds for annotation, None without NPI
    """
    t, I, R = trajectory.times, trajectory.I, trajectory.R
    N0 = float(trajectory.totals[0])
    peak_idx = int(np.argmax(I))
    peak_infected = float(I[peak_idx])

    threshold = 0.01 * peak_infected
    below = np.where(I[peak_idx:] < threshold)[0]
    if len(below) > 0:
        epidemic_duration = float(t[peak_idx + below[0]] - t[0])
    else:
        epidemic_duration = float(t[-1] - t[0])

    return {
        "peak_day": float(t[peak_idx]),
        "peak_infected": peak_infected,
        "peak_prevalence": peak_infected / N0 if N0 > 0 else np.nan,
        "final_size": float(R[-1]) / N0 if N0 > 0 else np.nan,
        "epidemic_duration": epidemic_duration,
        "npi_start": float(npi_window.t_start) if npi_window is not None else None,
        "npi_end": float(npi_window.t_end) if npi_window is not None else None,
    }
