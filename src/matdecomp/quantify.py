"""
Density / mass prediction from a fitted calibration.

quantify() handles a single ROI, quantify_many() / quantify_frame() evaluate
independent observations in one vectorised pass against the same parameters.
The degenerate-denominator policy comes from FitConfig (config=...), with the
on_degenerate / denominator_atol keywords taking precedence when given.
"""
from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from . import model
from .config import ON_DEGENERATE, FitConfig
from .errors import DegenerateDenominatorError, DegenerateDenominatorWarning

logger = logging.getLogger(__name__)


def _check_volume(volume) -> np.ndarray:
    v = np.asarray(volume, dtype=float)
    if not np.all(np.isfinite(v)) or np.any(v < 0):
        raise ValueError(f"volume must be finite and >= 0, got {volume!r}")
    return v


def _degenerate_policy(config, on_degenerate: Optional[str],
                       denominator_atol: Optional[float]) -> Tuple[str, float]:
    cfg = FitConfig.from_any(config)
    policy = cfg.on_degenerate if on_degenerate is None else on_degenerate
    if policy not in ON_DEGENERATE:
        raise ValueError(f"on_degenerate must be one of {ON_DEGENERATE}, got {policy!r}")
    atol = cfg.denominator_atol if denominator_atol is None else float(denominator_atol)
    if not atol >= 0:
        raise ValueError(f"denominator_atol must be >= 0, got {denominator_atol!r}")
    return policy, atol


def _report_degenerate(n_bad: int, n_total: int, policy: str, atol: float) -> None:
    msg = (f"Degenerate denominator |1 + p7*low + p8*high| <= {atol:g} for {n_bad} of {n_total} "
           f"observation(s); density set to nan")
    if policy == "raise":
        raise DegenerateDenominatorError(msg)
    logger.warning(msg)
    warnings.warn(msg, DegenerateDenominatorWarning, stacklevel=3)


def quantify_many(low, high, parameters, volume=None, on_degenerate: Optional[str] = None,
                  denominator_atol: Optional[float] = None,
                  config: FitConfig | Dict[str, Any] | None = None) -> np.ndarray:
    """
    Evaluate the calibration on many (low, high) observations.

    volume may be None, a scalar, or an array broadcastable to the observations;
    when given the result is mass = density * volume.
    Non-finite intensities raise ValueError. Observations whose denominator is within
    denominator_atol of zero come back as nan (with one DegenerateDenominatorWarning),
    or raise DegenerateDenominatorError when the policy is "raise".
    """
    p = model.as_params(parameters)
    policy, atol = _degenerate_policy(config, on_degenerate, denominator_atol)
    L, H = np.broadcast_arrays(np.asarray(low, float), np.asarray(high, float))
    if not (np.all(np.isfinite(L)) and np.all(np.isfinite(H))):
        n_bad = int(np.count_nonzero(~(np.isfinite(L) & np.isfinite(H))))
        raise ValueError(f"Intensities must be finite; {n_bad} observation(s) have nan/inf low or high")
    v = None if volume is None else _check_volume(volume)

    density = np.asarray(model.evaluate(p, L, H), dtype=float)
    D = model.denominator(p, L, H)
    bad = (np.abs(D) <= atol) | ~np.isfinite(density)
    if np.any(bad):
        _report_degenerate(int(np.count_nonzero(bad)), int(bad.size), policy, atol)
        density = np.where(bad, np.nan, density)
    return density if v is None else density * v


def quantify(low_energy_intensity: float, high_energy_intensity: float, parameters,
             volume: Optional[float] = None, on_degenerate: Optional[str] = None,
             denominator_atol: Optional[float] = None,
             config: FitConfig | Dict[str, Any] | None = None) -> float:
    """
    Density of the target material in one ROI, or its mass when volume is given.

    Units follow the calibration: densities in mg/cm^3 and volume in cm^3 give mg.
    """
    if volume is not None and np.ndim(volume) != 0:
        raise ValueError("quantify takes a scalar volume; use quantify_many for arrays")
    out = quantify_many(low_energy_intensity, high_energy_intensity, parameters, volume=volume,
                        on_degenerate=on_degenerate, denominator_atol=denominator_atol,
                        config=config)
    return float(out)


def quantify_frame(df: pd.DataFrame, parameters, volume_col: Optional[str] = None,
                   low_col: str = "low", high_col: str = "high",
                   on_degenerate: Optional[str] = None,
                   denominator_atol: Optional[float] = None,
                   config: FitConfig | Dict[str, Any] | None = None) -> pd.DataFrame:
    """Copy of df with a `density` column (and `mass` when volume_col is given)."""
    missing = [c for c in (low_col, high_col, volume_col) if c is not None and c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns for quantification: {missing}")
    out = df.copy()
    out["density"] = quantify_many(df[low_col].to_numpy(float), df[high_col].to_numpy(float),
                                   parameters, on_degenerate=on_degenerate,
                                   denominator_atol=denominator_atol, config=config)
    if volume_col is not None:
        out["mass"] = out["density"].to_numpy() * _check_volume(df[volume_col].to_numpy(float))
    return out
