"""Exceptions and warnings raised at the boundary of fit_calibration / quantify."""
from __future__ import annotations

from typing import Optional

import numpy as np


class MaterialDecompositionError(Exception):
    """Base class for errors raised by matdecomp."""


class DimensionMismatchError(MaterialDecompositionError, ValueError):
    """Inputs have incompatible shapes (row counts, parameter vector length)."""


class FitConvergenceError(MaterialDecompositionError, RuntimeError):
    """
    The nonlinear solve did not produce a usable fit.

    reason is one of:
      - "max_iterations": iteration / evaluation budget exhausted
      - "non_finite": parameters or cost became nan/inf
      - "solver": any other failure reported by the solver
    """

    def __init__(self, message: str, reason: str = "solver", nfev: int = 0,
                 cost: float = float("nan"), last_params: Optional[np.ndarray] = None):
        super().__init__(message)
        self.reason = reason
        self.nfev = int(nfev)
        self.cost = float(cost)
        self.last_params = None if last_params is None else np.array(last_params, dtype=float)


class DegenerateDenominatorWarning(UserWarning):
    """1 + p7*low + p8*high is (near) zero, so the density is nan/inf."""


class DegenerateDenominatorError(MaterialDecompositionError, ArithmeticError):
    """Raised instead of DegenerateDenominatorWarning when on_degenerate="raise"."""
