"""
===========================================================
solver.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Integration driver: hands the SIR-NPI right-hand side to
    SciPy's LSODA (automatic Adams / BDF switching for non-stiff
    and stiff regimes) and packs the result into a Trajectory.

Example Usage:
    from npisim.config import build_config
    from npisim.solver import integrate
    traj = integrate(build_config())

Notes:
    - Both back ends run LSODA: solve_ivp(method="LSODA") or odeint.
    - Output is evaluated exactly on config.time_grid, never past
      its last point. The first row is the initial state itself.
    - The solver is restarted at the NPI window edges, so a window
      shorter than a solver step still takes effect.
    - Any solver failure raises SimulationFailedError. There are no
      retries and no partial trajectories.
-----------------------------------------------------------
License: MIT
===========================================================
"""
from __future__ import annotations
import logging
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Tuple
from scipy.integrate import odeint, solve_ivp

from npisim.config import SimulationConfig
from npisim.exceptions import InvalidParameterError, SimulationFailedError
from npisim.sir_npi import COMPARTMENTS, SIRNPIModel, State, sir_npi_rhs

logger = logging.getLogger(__name__)

DEFAULT_SOLVER_ARGS = {"rtol": 1e-8, "atol": 1e-10, "min_step": 1e-10, "max_nfev": 200_000}


class SolverType:
    """
    Options for the ODE back end. Both wrap LSODA.
    """

    SOLVE_IVP = "solve_ivp"
    ODE_INT = "odeint"


@dataclass(frozen=True, eq=False)
class Trajectory:
    """
    Wide-form simulation output.

    times: (n,) array, same values and order as the config time grid
    states: (n, 3) array, columns S, I, R
    """
    times: np.ndarray
    states: np.ndarray

    def __post_init__(self):
        times = np.array(self.times, dtype=float)
        states = np.array(self.states, dtype=float)
        if states.shape != (len(times), len(COMPARTMENTS)):
            raise ValueError(
                f"states shape {states.shape} does not match {len(times)} times x {len(COMPARTMENTS)} compartments")
        times.setflags(write=False)
        states.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "states", states)

    def __len__(self) -> int:
        return len(self.times)

    def __iter__(self) -> Iterator[Tuple[float, State]]:
        for t, row in zip(self.times, self.states):
            yield float(t), State(*(float(v) for v in row))

    @property
    def S(self) -> np.ndarray:
        return self.states[:, 0]

    @property
    def I(self) -> np.ndarray:
        return self.states[:, 1]

    @property
    def R(self) -> np.ndarray:
        return self.states[:, 2]

    @property
    def totals(self) -> np.ndarray:
        return self.states.sum(axis=1)

    def to_dataframe(self) -> pd.DataFrame:
        """Wide form: one row per time, one column per compartment"""
        df = pd.DataFrame(self.states, columns=list(COMPARTMENTS))
        df.insert(0, "time", self.times)
        return df


def solve_ode(solver_type: str,
              ode_func: Callable[[float, np.ndarray], np.ndarray],
              values: np.ndarray,
              times: np.ndarray,
              solver_args: dict) -> np.ndarray:
    """
    Solve dy/dt = ode_func(t, y) from values at times[0], returning one
    row per requested time. Raises SimulationFailedError on failure.
    """
    if solver_type == SolverType.SOLVE_IVP:
        return solve_with_ivp(ode_func, values, times, solver_args)
    elif solver_type == SolverType.ODE_INT:
        return solve_with_odeint(ode_func, values, times, solver_args)
    else:
        raise ValueError(f"Solver type {solver_type!r} is not available")


def solve_with_ivp(ode_func, values: np.ndarray, times: np.ndarray, solver_args: dict) -> np.ndarray:
    """
    Solve with SciPy's solve_ivp using the LSODA method.

    solve_ivp has no step limit of its own, so the RHS evaluations are
    counted and the run is abandoned after max_nfev of them. min_step
    stops the step size from shrinking without bound near a blow-up.

    https://docs.scipy.org/doc/scipy/reference/generated/scipy.integrate.solve_ivp.html
    """
    kwargs = {"rtol": solver_args.get("rtol", DEFAULT_SOLVER_ARGS["rtol"]),
              "atol": solver_args.get("atol", DEFAULT_SOLVER_ARGS["atol"]),
              "min_step": solver_args.get("min_step", DEFAULT_SOLVER_ARGS["min_step"])}
    if "max_step" in solver_args:
        kwargs["max_step"] = solver_args["max_step"]
    max_nfev = solver_args.get("max_nfev", DEFAULT_SOLVER_ARGS["max_nfev"])

    nfev = 0

    def _counted_func(t, y):
        nonlocal nfev
        nfev += 1
        if nfev > max_nfev:
            raise SimulationFailedError(
                f"solve_ivp (LSODA) exceeded {max_nfev} RHS evaluations at t={t}",
                solver_message="max_nfev exceeded")
        return ode_func(t, y)

    t_span = (times[0], times[-1])
    sol = solve_ivp(_counted_func, t_span, values, method="LSODA", t_eval=times, **kwargs)
    if not sol.success:
        raise SimulationFailedError(f"solve_ivp (LSODA) failed: {sol.message}", solver_message=sol.message)
    logger.debug("solve_ivp finished with %s RHS evaluations", sol.nfev)
    return sol.y.transpose()


def solve_with_odeint(ode_func, values: np.ndarray, times: np.ndarray, solver_args: dict) -> np.ndarray:
    """
    Solve with SciPy's odeint (ODEPACK LSODA). The last requested time is
    passed as a critical point so the solver never steps beyond it.

    https://docs.scipy.org/doc/scipy/reference/generated/scipy.integrate.odeint.html
    """
    def _ode_func(y, t):
        """Reverse parameters"""
        return ode_func(t, y)

    rtol = solver_args.get("rtol", DEFAULT_SOLVER_ARGS["rtol"])
    atol = solver_args.get("atol", DEFAULT_SOLVER_ARGS["atol"])
    hmin = solver_args.get("min_step", DEFAULT_SOLVER_ARGS["min_step"])
    results, info = odeint(_ode_func, values, times, rtol=rtol, atol=atol, hmin=hmin,
                           tcrit=[times[-1]], full_output=True)
    message = info["message"]
    if message != "Integration successful.":
        raise SimulationFailedError(f"odeint (LSODA) failed: {message}", solver_message=message)
    logger.debug("odeint finished with %s RHS evaluations", int(info["nfe"][-1]) if len(info["nfe"]) else 0)
    return results


def _segments(times: np.ndarray, breakpoints) -> Iterator[np.ndarray]:
    """
    Split the output grid at the breakpoints. Each segment starts and ends
    on a grid point or breakpoint and holds the grid points in between.
    """
    edges = sorted({float(times[0]), float(times[-1]), *breakpoints})
    for a, b in zip(edges[:-1], edges[1:]):
        inside = times[(times > a) & (times < b)]
        yield np.concatenate(([a], inside, [b]))


def integrate(config: SimulationConfig,
              model=sir_npi_rhs,
              solver_type: str = SolverType.SOLVE_IVP,
              solver_args: Optional[dict] = None) -> Trajectory:
    """
    Run one simulation.

    Parameters:
    -----------
    config: SimulationConfig
        Validated initial state, rates, NPI window and output times
    model: callable or SIRNPIModel
        model(t, y, params, window) -> dydt, bound to the config's parameters
        and NPI window through SIRNPIModel. A SIRNPIModel built with the
        config's parameters and window is used as is.
    solver_type: str
        SolverType.SOLVE_IVP (default) or SolverType.ODE_INT
    solver_args: dict, optional
        rtol, atol, min_step, and for solve_ivp max_step and max_nfev

    Returns:
    --------
    Trajectory with one state per entry of config.time_grid. The first row
    is exactly the initial state.
    """
    solver_args = solver_args or {}
    times = config.time_grid
    y0 = np.array(config.initial_state, dtype=float)

    if isinstance(model, SIRNPIModel):
        if model.params != config.parameters or model.window != config.npi_window:
            raise InvalidParameterError(
                f"{model!r} does not match the config parameters and NPI window")
        rhs = model
    else:
        rhs = SIRNPIModel(config.parameters, config.npi_window, rhs=model)

    breakpoints = rhs.breakpoints(config.t_start, config.t_end)
    logger.debug("Integrating %s over [%s, %s] with %s points (%s), restarting at %s",
                 config.parameters, config.t_start, config.t_end, len(times), solver_type, breakpoints)

    rows = [y0]
    y = y0
    try:
        for seg_times in _segments(times, breakpoints):
            out = np.asarray(solve_ode(solver_type, rhs, y, seg_times, solver_args), dtype=float)
            if out.shape != (len(seg_times), len(COMPARTMENTS)):
                raise SimulationFailedError(
                    f"solver returned {out.shape[0]} of {len(seg_times)} requested time points "
                    f"on [{seg_times[0]}, {seg_times[-1]}]")
            # keep grid points only; a breakpoint off the grid is just a restart
            on_grid = np.isin(seg_times[1:], times)
            rows.extend(out[1:][on_grid])
            y = out[-1]
    except SimulationFailedError as e:
        logger.error("Simulation failed for %s: %s", config.parameters, e)
        raise

    states = np.vstack(rows)
    if states.shape != (len(times), len(COMPARTMENTS)):
        logger.error("Solver returned shape %s for %s time points", states.shape, len(times))
        raise SimulationFailedError(
            f"solver returned {states.shape[0]} of {len(times)} requested time points")
    if not np.all(np.isfinite(states)):
        logger.error("Solver returned non-finite values for %s", config.parameters)
        raise SimulationFailedError("solver returned non-finite state values")

    return Trajectory(times=times, states=states)
