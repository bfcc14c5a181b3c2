"""
===========================================================
config.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Immutable, validated bundle of everything one simulation
    run needs: initial state, rates, NPI window and the output
    time grid.

Example Usage:
    from npisim.config import build_config
    config = build_config(epsilon=0.3, npi_start=20, npi_end=60)

Notes:
    - Every invariant is checked in __post_init__ and violations
      raise InvalidParameterError; nothing is silently coerced.
    - npi_window=None runs the model with a constant beta_0.
-----------------------------------------------------------
License: MIT
===========================================================
"""
from __future__ import annotations
import dataclasses
import math
import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence

from npisim.exceptions import InvalidParameterError
from npisim.sir_npi import NPIWindow, SIRNPIParams, State, require_real

# relative tolerance when checking S0 + I0 + R0 against the declared population
POPULATION_RTOL = 1e-9


@dataclass(frozen=True, eq=False)
class SimulationConfig:
    """
    Parameters:
    -----------
    initial_state: State or (S0, I0, R0)
        Compartment values at time_grid[0]
    parameters: SIRNPIParams
        beta_0, gamma, epsilon
    npi_window: NPIWindow, optional
        Interval with the reduced transmission rate; None for no NPI
    time_grid: sequence of float
        Strictly increasing output times; the first entry is the start time
    total_population: float
        Declared population the initial state must sum to (1.0 for fractions)
    """
    initial_state: State
    parameters: SIRNPIParams
    npi_window: Optional[NPIWindow]
    time_grid: np.ndarray
    total_population: float = 1.0

    def __post_init__(self):
        if not isinstance(self.parameters, SIRNPIParams):
            raise InvalidParameterError(
                f"parameters must be SIRNPIParams, got {type(self.parameters).__name__}")
        if self.npi_window is not None and not isinstance(self.npi_window, NPIWindow):
            raise InvalidParameterError(
                f"npi_window must be NPIWindow or None, got {type(self.npi_window).__name__}")

        # frozen dataclass: normalized values go in through object.__setattr__
        object.__setattr__(self, "initial_state", self._check_initial_state())
        object.__setattr__(self, "time_grid", self._check_time_grid())

    def _check_initial_state(self) -> State:
        if isinstance(self.initial_state, (str, bytes)) or not hasattr(self.initial_state, "__len__"):
            raise InvalidParameterError(
                f"initial_state must be a sequence of (S, I, R), got {self.initial_state!r}")
        if len(self.initial_state) != len(State._fields):
            raise InvalidParameterError(
                f"initial_state needs {len(State._fields)} values (S, I, R), got {len(self.initial_state)}")
        state = State(*(require_real(f"initial {name}", v) for name, v in zip(State._fields, self.initial_state)))
        for name, value in zip(State._fields, state):
            if not math.isfinite(value) or value < 0:
                raise InvalidParameterError(f"initial {name} must be finite and >= 0, got {value}")

        total = require_real("total_population", self.total_population)
        if not (math.isfinite(total) and total > 0):
            raise InvalidParameterError(f"total_population must be > 0, got {self.total_population}")
        if not math.isclose(state.total, total, rel_tol=POPULATION_RTOL, abs_tol=0.0):
            raise InvalidParameterError(
                f"initial state sums to {state.total}, expected total_population {total}")
        return state

    def _check_time_grid(self) -> np.ndarray:
        try:
            raw = np.asarray(self.time_grid)
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"time_grid is not a numeric sequence: {e}") from e
        if raw.size and raw.dtype.kind not in "iuf":
            raise InvalidParameterError(f"time_grid must hold real numbers, got dtype {raw.dtype}")
        grid = np.array(raw, dtype=float)
        if grid.ndim != 1 or grid.size == 0:
            raise InvalidParameterError("time_grid must be a non-empty 1-D sequence")
        if not np.all(np.isfinite(grid)):
            raise InvalidParameterError("time_grid must contain only finite values")
        if np.any(np.diff(grid) <= 0):
            raise InvalidParameterError("time_grid must be strictly increasing")
        grid.setflags(write=False)
        return grid

    @property
    def t_start(self) -> float:
        return float(self.time_grid[0])

    @property
    def t_end(self) -> float:
        return float(self.time_grid[-1])

    def replace(self, **changes) -> "SimulationConfig":
        """Return a new validated config with some fields swapped out"""
        return dataclasses.replace(self, **changes)

    def with_epsilon(self, epsilon: float) -> "SimulationConfig":
        return self.replace(parameters=dataclasses.replace(self.parameters, epsilon=epsilon))


def build_config(beta_0: float = 0.25,
                 gamma: float = 1 / 7,
                 epsilon: float = 0.5,
                 npi_start: Optional[float] = 10.0,
                 npi_end: Optional[float] = 51.0,
                 S0: float = 0.99,
                 I0: float = 0.01,
                 R0_init: float = 0.0,
                 time_grid: Optional[Sequence[float]] = None,
                 total_population: float = 1.0) -> SimulationConfig:
    """
    Keyword factory for a SimulationConfig. Defaults describe a one-year
    run (days 1..365) of an outbreak with R0 = 1.75 and a 50 % effective
    NPI from day 10 to day 51. Pass npi_start=None for no intervention.
    """
    if time_grid is None:
        time_grid = np.arange(1, 366, dtype=float)
    if npi_start is None:
        window = None
    elif npi_end is None:
        raise InvalidParameterError("npi_end is required when npi_start is given")
    else:
        window = NPIWindow(t_start=npi_start, t_end=npi_end)
    return SimulationConfig(
        initial_state=State(S0, I0, R0_init),
        parameters=SIRNPIParams(beta_0=beta_0, gamma=gamma, epsilon=epsilon),
        npi_window=window,
        time_grid=time_grid,
        total_population=total_population,
    )
