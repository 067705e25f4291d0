from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import curve_fit, least_squares

from . import model
from .config import N_PARAMS, FitConfig
from .errors import DimensionMismatchError, FitConvergenceError

logger = logging.getLogger(__name__)

REQUIRED_COLS = ["density", "low", "high"]

ResidualFn = Callable[[np.ndarray], np.ndarray]
JacobianFn = Callable[[np.ndarray], np.ndarray]


@dataclass
class SolveResult:
    x: np.ndarray
    cost: float
    nfev: int
    status: int          # 0 = evaluation budget exhausted, >0 converged, <0 solver error
    message: str
    success: bool


class Solver(Protocol):
    """Anything that can minimise 0.5 * sum(residuals(p)**2) starting from x0."""

    name: str

    def solve(self, residuals: ResidualFn, jacobian: JacobianFn, x0: np.ndarray,
              config: FitConfig) -> SolveResult:
        ...


def _auto_method(config: FitConfig, n_residuals: int) -> str:
    if config.method is not None:
        return config.method
    # MINPACK's LM needs at least as many residuals as parameters
    return "lm" if n_residuals >= N_PARAMS else "trf"


class LeastSquaresSolver:
    """scipy.optimize.least_squares with the analytic Jacobian (LM by default)."""

    name = "least_squares"

    def solve(self, residuals, jacobian, x0, config):
        m = residuals(x0).size
        method = _auto_method(config, m)
        tol = float(config.tolerance)
        res = least_squares(
            residuals, x0=np.asarray(x0, float), jac=jacobian, method=method,
            ftol=tol, xtol=tol, gtol=tol, max_nfev=config.max_iterations,
        )
        return SolveResult(
            x=np.asarray(res.x, float), cost=float(res.cost), nfev=int(res.nfev),
            status=int(res.status), message=str(res.message), success=bool(res.success),
        )


class CurveFitSolver:
    """
    scipy.optimize.curve_fit driven on the residual vector (ydata = 0).
    curve_fit raises instead of returning a status, so failures are mapped back:
    an exhausted evaluation budget becomes status 0, anything else status -1.
    The residual wrapper records the last evaluated parameters and the call count,
    which is what a failed solve reports as its last iterate.
    """

    name = "curve_fit"

    def solve(self, residuals, jacobian, x0, config):
        x0 = np.asarray(x0, float)
        m = residuals(x0).size
        method = _auto_method(config, m)
        tol = float(config.tolerance)
        idx = np.arange(m, dtype=float)
        seen = {"x": x0.copy(), "nfev": 0}

        def f(_x, *p):
            seen["x"] = np.array(p, dtype=float)
            seen["nfev"] += 1
            return residuals(seen["x"])

        def jac(_x, *p):
            return jacobian(np.asarray(p, float))

        kwargs: Dict[str, Any] = dict(ftol=tol, xtol=tol, gtol=tol)
        if config.max_iterations is not None:
            kwargs["maxfev" if method == "lm" else "max_nfev"] = int(config.max_iterations)
        try:
            popt, _pcov, info, mesg, ier = curve_fit(
                f, idx, np.zeros(m), p0=x0, jac=jac, method=method, full_output=True, **kwargs
            )
        except RuntimeError as e:
            msg = str(e)
            budget = "maxfev" in msg or "maximum number of function evaluations" in msg
            last = seen["x"]
            r = residuals(last)
            return SolveResult(x=last, cost=float(0.5 * np.dot(r, r)), nfev=int(seen["nfev"]),
                               status=0 if budget else -1, message=msg, success=False)
        r = residuals(popt)
        return SolveResult(
            x=np.asarray(popt, float), cost=float(0.5 * np.dot(r, r)),
            nfev=int(info.get("nfev", seen["nfev"])), status=int(ier), message=str(mesg), success=True,
        )


_SOLVERS = {LeastSquaresSolver.name: LeastSquaresSolver, CurveFitSolver.name: CurveFitSolver}


def get_solver(name: str) -> Solver:
    try:
        return _SOLVERS[name]()
    except KeyError:
        raise ValueError(f"Unknown solver {name!r}; choose from {sorted(_SOLVERS)}") from None


@dataclass
class CalibrationFit:
    params: np.ndarray
    cost: float              # 0.5 * sum of squared residuals
    rmse: float
    max_abs_residual: float
    n_samples: int
    nfev: int
    status: int
    message: str
    solver: str
    residuals: np.ndarray = field(repr=False)

    def predict(self, low, high) -> np.ndarray:
        return model.evaluate(self.params, low, high)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": [float(v) for v in self.params],
            "names": list(model.PARAM_NAMES),
            "rmse": float(self.rmse),
            "max_abs_residual": float(self.max_abs_residual),
            "n_samples": int(self.n_samples),
            "nfev": int(self.nfev),
            "solver": self.solver,
        }


def _validate_inputs(intensity_pairs, known_densities) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    X = np.asarray(intensity_pairs, dtype=float)
    y = np.asarray(known_densities, dtype=float)
    if X.ndim != 2 or X.shape[1] != 2:
        raise DimensionMismatchError(
            f"intensity_pairs must be an N x 2 array (low, high), got shape {X.shape}")
    if y.ndim != 1:
        raise DimensionMismatchError(f"known_densities must be 1-D, got shape {y.shape}")
    if X.shape[0] != y.size:
        raise DimensionMismatchError(
            f"{X.shape[0]} intensity pairs but {y.size} known densities")
    if y.size == 0:
        raise ValueError("Calibration needs at least one sample")
    if not (np.all(np.isfinite(X)) and np.all(np.isfinite(y))):
        raise ValueError("Calibration intensities and densities must be finite")
    return X[:, 0], X[:, 1], y


def fit_model(intensity_pairs, known_densities, initial_guess=None,
              config: FitConfig | Dict[str, Any] | None = None,
              solver: Optional[Solver] = None) -> CalibrationFit:
    """
    Fit p1..p8 of the rational model to (low, high) -> density by nonlinear least squares.

    Parameters
    ----------
    intensity_pairs : (N, 2) array-like
        Column 0 low-energy, column 1 high-energy ROI intensity.
    known_densities : (N,) array-like
        Known material densities, index-aligned with intensity_pairs.
    initial_guess : (8,) array-like, optional
        Starting point; overrides config.initial_guess (zeros).
    config : FitConfig, dict or None
        Solver options, see FitConfig.
    solver : Solver, optional
        Strategy instance; defaults to get_solver(config.solver).

    Raises
    ------
    DimensionMismatchError
        Shapes disagree; raised before any solver work.
    FitConvergenceError
        Budget exhausted, non-finite result or other solver failure.
    """
    cfg = FitConfig.from_any(config)
    low, high, y = _validate_inputs(intensity_pairs, known_densities)
    x0 = np.array(model.as_params(cfg.initial_guess if initial_guess is None else initial_guess))

    def residuals(p):
        return model.evaluate(p, low, high) - y

    def jac(p):
        return model.jacobian(p, low, high)

    r0 = residuals(x0)
    if not np.all(np.isfinite(r0)):
        raise FitConvergenceError("Model is not finite at the initial guess (zero denominator)",
                                  reason="non_finite", last_params=x0)

    n = y.size
    if n < N_PARAMS:
        if cfg.method == "lm":
            raise DimensionMismatchError(
                f"method=\"lm\" needs at least {N_PARAMS} calibration samples, got {n}; "
                f"use method=\"trf\" or leave method unset")
        logger.warning("Underdetermined calibration: %d samples for %d parameters", n, N_PARAMS)

    solver = solver if solver is not None else get_solver(cfg.solver)
    logger.debug("Fitting %d samples with %s (tol=%g, max_iterations=%s)",
                 n, solver.name, cfg.tolerance, cfg.max_iterations)
    res = solver.solve(residuals, jac, x0, cfg)

    if res.status == 0:
        raise FitConvergenceError(
            f"Calibration did not converge within the evaluation budget "
            f"(max_iterations={cfg.max_iterations}, nfev={res.nfev}): {res.message}",
            reason="max_iterations", nfev=res.nfev, cost=res.cost, last_params=res.x)
    if not np.all(np.isfinite(res.x)):
        raise FitConvergenceError(f"Calibration diverged: {res.message}", reason="non_finite",
                                  nfev=res.nfev, cost=res.cost, last_params=res.x)
    if not res.success:
        raise FitConvergenceError(f"Calibration solver failed: {res.message}", reason="solver",
                                  nfev=res.nfev, cost=res.cost, last_params=res.x)

    r = residuals(res.x)
    D = model.denominator(res.x, low, high)
    if not np.all(np.isfinite(r)) or np.any(np.abs(D) <= cfg.denominator_atol):
        raise FitConvergenceError("Fitted model has a (near) zero denominator at a calibration sample",
                                  reason="non_finite", nfev=res.nfev, cost=res.cost,
                                  last_params=res.x)

    rmse = float(np.sqrt(np.mean(r**2)))
    fit = CalibrationFit(
        params=model.as_params(res.x), cost=float(0.5 * np.dot(r, r)), rmse=rmse,
        max_abs_residual=float(np.max(np.abs(r))), n_samples=int(n), nfev=res.nfev,
        status=res.status, message=res.message, solver=solver.name, residuals=r,
    )
    logger.info("Calibration fit: n=%d solver=%s nfev=%d rmse=%.3g", n, solver.name, res.nfev, rmse)
    return fit


def fit_calibration(intensity_pairs, known_densities, initial_guess=None,
                    config: FitConfig | Dict[str, Any] | None = None) -> np.ndarray:
    """Fitted parameter vector (read-only, length 8). See fit_model for the full report."""
    return fit_model(intensity_pairs, known_densities, initial_guess=initial_guess, config=config).params


_READERS = {
    ".csv": lambda p: pd.read_csv(p),
    ".json": lambda p: pd.read_json(p),
    ".ndjson": lambda p: pd.read_json(p, lines=True),
}


def load_calibration(path: str | Path) -> pd.DataFrame:
    """
    Calibration rods as a (density, low, high) frame.

    Header names are matched case-insensitively. Non-numeric cells become nan and those
    rows are dropped with a WARNING naming how many; an empty result is an error.
    Extra columns (rod labels, energies, ...) are kept.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Calibration file not found: {p}")
    reader = _READERS.get(p.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported calibration file {p.name!r}; use one of {sorted(_READERS)} "
                         f"with columns {REQUIRED_COLS}")
    df = reader(p).rename(columns=lambda c: str(c).strip().lower())
    missing = [c for c in REQUIRED_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in calibration file: {missing}")
    for c in REQUIRED_COLS:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    usable = np.isfinite(df[REQUIRED_COLS].to_numpy(float)).all(axis=1)
    n_dropped = int((~usable).sum())
    if n_dropped:
        logger.warning("Dropped %d of %d calibration rows with missing or non-numeric values in %s",
                       n_dropped, len(df), p.name)
    df = df[usable].reset_index(drop=True)
    if df.empty:
        raise ValueError(f"No usable calibration rows in {p}")
    return df


def fit_frame(df: pd.DataFrame, initial_guess=None,
              config: FitConfig | Dict[str, Any] | None = None) -> CalibrationFit:
    pairs = df[["low", "high"]].to_numpy(float)
    return fit_model(pairs, df["density"].to_numpy(float), initial_guess=initial_guess, config=config)


def save_params(params: CalibrationFit | np.ndarray, path: str | Path) -> None:
    payload = params.to_dict() if isinstance(params, CalibrationFit) else {
        "params": [float(v) for v in model.as_params(params)],
        "names": list(model.PARAM_NAMES),
    }
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


def load_params(path: str | Path) -> np.ndarray:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data["params"]
    return model.as_params(data)


def fit_from_file(table_path: str | Path, out_json: str | Path = "calibration/params.json",
                  config: FitConfig | Dict[str, Any] | None = None) -> CalibrationFit:
    df = load_calibration(table_path)
    fit = fit_frame(df, config=config)
    save_params(fit, out_json)
    return fit
