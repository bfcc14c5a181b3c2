"""
===========================================================
sir_npi.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Deterministic SIR model with a scheduled non-pharmaceutical
    intervention (NPI). The transmission rate drops from beta_0
    to (1 - epsilon) * beta_0 while t lies inside a closed NPI
    window [t_start, t_end], and is beta_0 everywhere else.

API:
    - NPIWindow(t_start, t_end)
    - SIRNPIParams(beta_0, gamma, epsilon)
    - effective_beta(t, beta_0, window, epsilon)
    - sir_npi_rhs(t, y, params, window)
    - SIRNPIModel(params, window, rhs=sir_npi_rhs): derivative bound
      to one parameter set, model(t, y)

Notes:
    - State is in fractions (or counts) with no normalization by N,
      so beta is scaled to the units of the state.
    - The schedule is a pure comparison on the continuous time the
      solver passes in, so intermediate solver steps see the same
      policy as the output grid.
    - No births, deaths or exposed class: strictly SIR.
-----------------------------------------------------------
License: MIT
===========================================================
"""
from __future__ import annotations
import math
import numbers
import numpy as np
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from npisim.exceptions import InvalidParameterError

COMPARTMENTS = ("S", "I", "R")


def require_real(name: str, value) -> float:
    """Return value as float, rejecting strings, booleans and other non-numbers"""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidParameterError(f"{name} must be a real number, got {value!r}")
    return float(value)


class State(NamedTuple):
    S: float
    I: float
    R: float

    @property
    def total(self) -> float:
        return self.S + self.I + self.R


@dataclass(frozen=True)
class NPIWindow:
    """
    Closed time interval during which the intervention is active.

    Parameters:
    -----------
    t_start: float
        First day the reduced rate applies (inclusive)
    t_end: float
        Last day the reduced rate applies (inclusive)
    """
    t_start: float
    t_end: float

    def __post_init__(self):
        require_real("t_start", self.t_start)
        require_real("t_end", self.t_end)
        if not (math.isfinite(self.t_start) and math.isfinite(self.t_end)):
            raise InvalidParameterError(
                f"NPI window bounds must be finite, got [{self.t_start}, {self.t_end}]")
        if self.t_start > self.t_end:
            raise InvalidParameterError(
                f"NPI window start {self.t_start} is after its end {self.t_end}")

    @property
    def duration(self) -> float:
        return self.t_end - self.t_start

    def contains(self, t: float) -> bool:
        return self.t_start <= t <= self.t_end


@dataclass(frozen=True)
class SIRNPIParams:
    beta_0: float     # baseline transmission rate
    gamma: float      # recovery rate [1/gamma = infectious period]
    epsilon: float    # NPI effectiveness, fraction of beta_0 removed in the window

    def __post_init__(self):
        for name in ("beta_0", "gamma", "epsilon"):
            require_real(name, getattr(self, name))
        if not self.beta_0 > 0:
            raise InvalidParameterError(f"beta_0 must be > 0, got {self.beta_0}")
        if not self.gamma > 0:
            raise InvalidParameterError(f"gamma must be > 0, got {self.gamma}")
        if not 0.0 <= self.epsilon <= 1.0:
            raise InvalidParameterError(f"epsilon must be in [0, 1], got {self.epsilon}")

    @classmethod
    def from_periods(cls, R0: float, infectious_period: float, epsilon: float = 0.0) -> "SIRNPIParams":
        """Build rates from a basic reproduction number and a mean infectious period (days)"""
        if not require_real("infectious_period", infectious_period) > 0:
            raise InvalidParameterError(
                f"infectious_period must be > 0, got {infectious_period}")
        gamma = 1.0 / infectious_period
        return cls(beta_0=R0 * gamma, gamma=gamma, epsilon=epsilon)

    @property
    def R0(self) -> float:
        """Basic reproduction number before the intervention"""
        return self.beta_0 / self.gamma

    @property
    def R0_npi(self) -> float:
        """Reproduction number in a fully susceptible population while the NPI is active"""
        return (1.0 - self.epsilon) * self.beta_0 / self.gamma


def effective_beta(t: float, beta_0: float, window: Optional[NPIWindow], epsilon: float) -> float:
    """Transmission rate at time t: reduced inside the closed NPI window, beta_0 outside"""
    if window is not None and window.t_start <= t <= window.t_end:
        return (1.0 - epsilon) * beta_0
    return beta_0


def sir_npi_rhs(t: float, y, params: SIRNPIParams, window: Optional[NPIWindow]) -> np.ndarray:
    """
    Right-hand side of the SIR equations with the NPI rate schedule.

    Parameters:
    -----------
    t: float
        current time, any value the solver chooses
    y: array-like
        current state [S, I, R]
    params: SIRNPIParams
    window: NPIWindow or None

    Returns:
    --------
    dydt: np.ndarray
        Derivatives [dS/dt, dI/dt, dR/dt]; they sum to zero
    """
    S, I, R = y
    beta = effective_beta(t, params.beta_0, window, params.epsilon)
    inf = beta * S * I
    dS = -inf
    dI = inf - params.gamma * I
    dR = params.gamma * I
    return np.array([dS, dI, dR])


class SIRNPIModel:
    """
    SIR model with an NPI window, bound to one parameter set.

    model(t, y) evaluates rhs(t, y, params, window). The integration
    driver binds every derivative function to its config through this
    class, and also accepts an instance directly as long as it carries
    the config's parameters and window.
    """
    def __init__(self, params: SIRNPIParams, window: Optional[NPIWindow] = None, rhs=sir_npi_rhs):
        self.params = params
        self.window = window
        self.rhs = rhs

    @property
    def R0(self) -> float:
        return self.params.R0

    def beta_at(self, t: float) -> float:
        return effective_beta(t, self.params.beta_0, self.window, self.params.epsilon)

    def breakpoints(self, t_start: float, t_end: float) -> Tuple[float, ...]:
        """
        Times strictly inside (t_start, t_end) where beta jumps. The solver
        is restarted at each one so that no step straddles a window edge.
        No jumps when there is no window or epsilon is 0.
        """
        if self.window is None or self.params.epsilon == 0:
            return ()
        edges = sorted({self.window.t_start, self.window.t_end})
        return tuple(float(e) for e in edges if t_start < e < t_end)

    def __call__(self, t: float, y) -> np.ndarray:
        return self.rhs(t, y, self.params, self.window)

    def __repr__(self) -> str:
        return f"SIRNPIModel(params={self.params!r}, window={self.window!r})"
