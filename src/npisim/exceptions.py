"""
===========================================================
exceptions.py
Author: Veronica Scerra
Last Updated: 2026-10-19
===========================================================

Description:
    Error types raised by the SIR-NPI simulation core.

    - InvalidParameterError: a parameter set, NPI window or
      simulation config violates one of its invariants.
    - SimulationFailedError: the ODE solver could not produce
      a trajectory over the full requested time grid.
-----------------------------------------------------------
License: MIT
===========================================================
"""


class InvalidParameterError(ValueError):
    """Raised at construction time when an input invariant is violated"""


class SimulationFailedError(RuntimeError):
    """Raised when the solver fails; no partial trajectory is returned"""

    def __init__(self, message: str, solver_message: str = ""):
        super().__init__(message)
        self.solver_message = solver_message
