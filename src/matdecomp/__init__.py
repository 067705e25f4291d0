"""Dual-energy CT material decomposition: calibration fitting and density/mass quantification."""
import logging

from .calib_fit import (
    CalibrationFit,
    CurveFitSolver,
    LeastSquaresSolver,
    Solver,
    fit_calibration,
    fit_frame,
    fit_from_file,
    fit_model,
    get_solver,
    load_calibration,
    load_params,
    save_params,
)
from .config import N_PARAMS, FitConfig
from .errors import (
    DegenerateDenominatorError,
    DegenerateDenominatorWarning,
    DimensionMismatchError,
    FitConvergenceError,
    MaterialDecompositionError,
)
from .logging_config import setup_logging
from .model import PARAM_NAMES, as_params, evaluate
from .quantify import quantify, quantify_frame, quantify_many

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "CalibrationFit", "CurveFitSolver", "LeastSquaresSolver", "Solver",
    "fit_calibration", "fit_frame", "fit_from_file", "fit_model", "get_solver",
    "load_calibration", "load_params", "save_params",
    "N_PARAMS", "FitConfig", "PARAM_NAMES", "as_params", "evaluate",
    "DegenerateDenominatorError", "DegenerateDenominatorWarning", "DimensionMismatchError",
    "FitConvergenceError", "MaterialDecompositionError",
    "quantify", "quantify_frame", "quantify_many", "setup_logging",
]
