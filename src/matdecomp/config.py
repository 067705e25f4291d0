from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import numpy as np

N_PARAMS = 8

SOLVERS = ("least_squares", "curve_fit")
ON_DEGENERATE = ("warn", "raise")


@dataclass
class FitConfig:
    """
    Knobs for the calibration solve and the degenerate-denominator check.
    - max_iterations: function-evaluation budget handed to the solver (None = library default)
    - tolerance: ftol/xtol/gtol convergence threshold
    - initial_guess: starting point for p1..p8 (zeros keep the denominator at 1)
    - method: least_squares method override ("lm", "trf", "dogbox"); None picks lm/trf by sample count
    - solver: strategy name, see calib_fit.get_solver
    - denominator_atol: |1 + p7*low + p8*high| at or below this is degenerate
    - on_degenerate: "warn" (nan + DegenerateDenominatorWarning) or "raise"
    """
    max_iterations: Optional[int] = None
    tolerance: float = 1e-8
    initial_guess: np.ndarray = field(default_factory=lambda: np.zeros(N_PARAMS))
    method: Optional[str] = None
    solver: str = "least_squares"
    denominator_atol: float = 1e-12
    on_degenerate: str = "warn"

    def __post_init__(self):
        self.initial_guess = np.asarray(self.initial_guess, dtype=float).ravel()
        if self.max_iterations is not None and int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not self.tolerance > 0:
            raise ValueError(f"tolerance must be > 0, got {self.tolerance}")
        if self.solver not in SOLVERS:
            raise ValueError(f"Unknown solver {self.solver!r}; choose from {SOLVERS}")
        if self.on_degenerate not in ON_DEGENERATE:
            raise ValueError(f"on_degenerate must be one of {ON_DEGENERATE}, got {self.on_degenerate!r}")
        if self.denominator_atol < 0:
            raise ValueError("denominator_atol must be >= 0")

    @classmethod
    def from_any(cls, cfg: "FitConfig | Dict[str, Any] | None") -> "FitConfig":
        if cfg is None:
            return cls()
        if isinstance(cfg, cls):
            return cfg
        if isinstance(cfg, dict):
            known = {f.name for f in fields(cls)}
            unknown = sorted(set(cfg) - known)
            if unknown:
                raise ValueError(f"Unknown FitConfig options: {unknown}")
            return cls(**cfg)  # overlay onto defaults
        raise TypeError(f"config must be FitConfig, dict or None, not {type(cfg).__name__}")
