"""
===========================================================
experiments.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Scenario sweeps for the SIR-NPI model: run one simulation
    per NPI effectiveness value and collect the summary metrics
    as a tidy DataFrame, one row per epsilon.

Example Usage:
    from npisim.config import build_config
    from npisim.experiments import epsilon_sweep
    df = epsilon_sweep(build_config(), [0.0, 0.25, 0.5, 0.75])

Notes:
    - Runs are independent and share no state, so parallel=True
      fans them out over worker processes.
    - If any run fails the sweep raises SimulationFailedError;
      no partial table is returned.
-----------------------------------------------------------
License: MIT
===========================================================
"""
from __future__ import annotations
import logging
import os
import traceback
import pandas as pd
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from npisim.config import SimulationConfig
from npisim.exceptions import SimulationFailedError
from npisim.outputs import summary
from npisim.solver import SolverType, integrate

logger = logging.getLogger(__name__)


def _default_workers() -> int:
    return max(1, (os.cpu_count() or 2) - 1)


def run_parallel_tasks(func: Callable, arg_list: List[tuple], max_workers: Optional[int] = None) -> List[Any]:
    """
    Run func(*args) for every entry of arg_list in worker processes.
    Results come back in the order of arg_list. Failures are logged with
    their tracebacks. Any exception other than SimulationFailedError is
    re-raised unchanged; solver failures are reported together as one
    SimulationFailedError.
    """
    if len(arg_list) == 1:
        return [func(*arg_list[0])]

    with ProcessPoolExecutor(max_workers=max_workers or _default_workers()) as executor:
        futures = [executor.submit(func, *args) for args in arg_list]
        results = []
        failure_exceptions = []
        for future in futures:
            exception = future.exception()
            if exception:
                logger.info("Parallel task failed.")
                failure_exceptions.append(exception)
                continue
            results.append(future.result())

    for e in failure_exceptions:
        start = "\n\n===== Exception when running a parallel task =====\n"
        end = "\n================ End of error message ================\n"
        error_message = "".join(traceback.format_exception(e.__class__, e, e.__traceback__))
        logger.error(start + error_message + end)

    if failure_exceptions:
        logger.error("%s / %s parallel tasks failed", len(failure_exceptions), len(arg_list))
        for e in failure_exceptions:
            if not isinstance(e, SimulationFailedError):
                # not a solver failure: surface the first one as is, like a serial run would
                raise e
        raise SimulationFailedError(f"{len(failure_exceptions)} of {len(arg_list)} simulations failed")

    logger.info("Successfully ran %s parallel tasks", len(results))
    return results


def _summarize_one(config: SimulationConfig, solver_type: str, solver_args: Optional[dict]) -> Dict[str, Any]:
    """Run one simulation and return a dict of summary statistics"""
    traj = integrate(config, solver_type=solver_type, solver_args=solver_args)
    p = config.parameters
    rec = {
        "epsilon": float(p.epsilon),
        "beta_0": float(p.beta_0),
        "gamma": float(p.gamma),
        "R0": float(p.R0),
        "R0_npi": float(p.R0_npi),
    }
    rec.update(summary(traj, config.npi_window))
    return rec


def epsilon_sweep(config: SimulationConfig,
                  epsilons: Sequence[float],
                  parallel: bool = False,
                  max_workers: Optional[int] = None,
                  solver_type: str = SolverType.SOLVE_IVP,
                  solver_args: Optional[dict] = None) -> pd.DataFrame:
    """
    Evaluate the model across NPI effectiveness values. Every other field
    of config is held fixed. Returns a tidy pandas DataFrame with one row
    per epsilon, sorted by epsilon.
    """
    # invalid epsilons fail here, before any simulation starts
    configs = [config.with_epsilon(eps) for eps in epsilons]
    arg_list = [(c, solver_type, solver_args) for c in configs]
    logger.info("Running epsilon sweep over %s values (parallel=%s)", len(arg_list), parallel)

    if not arg_list:
        records = []
    elif parallel:
        records = run_parallel_tasks(_summarize_one, arg_list, max_workers=max_workers)
    else:
        records = []
        failures = 0
        for args in arg_list:
            try:
                records.append(_summarize_one(*args))
            except SimulationFailedError as e:
                logger.error("Simulation failed with epsilon %s: %s", args[0].parameters.epsilon, e)
                failures += 1
        if failures:
            raise SimulationFailedError(f"{failures} of {len(arg_list)} simulations failed")

    df = pd.DataFrame.from_records(records)
    if df.empty:
        return df
    return df.sort_values("epsilon").reset_index(drop=True)
