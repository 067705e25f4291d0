"""
Rational quadratic response surface for dual-energy material decomposition.

    F(low, high; p) = (p1 + p2*L + p3*H + p4*L^2 + p5*L*H + p6*H^2) / (1 + p7*L + p8*H)

Everything here is a pure function of (params, low, high); the fitter's residuals
and the quantifier both go through `evaluate` so they cannot drift apart.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np

from .config import N_PARAMS
from .errors import DimensionMismatchError

PARAM_NAMES: Tuple[str, ...] = tuple(f"p{i}" for i in range(1, N_PARAMS + 1))


def as_params(params) -> np.ndarray:
    """Return a read-only float copy of an 8-element parameter vector."""
    p = np.array(params, dtype=float).ravel()
    if p.size != N_PARAMS:
        raise DimensionMismatchError(f"Expected {N_PARAMS} model parameters, got {p.size}")
    p.setflags(write=False)
    return p


def _terms(low: np.ndarray, high: np.ndarray) -> Tuple[np.ndarray, ...]:
    # numerator basis: 1, L, H, L^2, L*H, H^2
    return (np.ones_like(low), low, high, low * low, low * high, high * high)


def numerator(params, low, high) -> np.ndarray:
    p = np.asarray(params, float)
    L = np.asarray(low, float)
    H = np.asarray(high, float)
    return p[0] + p[1] * L + p[2] * H + p[3] * L**2 + p[4] * L * H + p[5] * H**2


def denominator(params, low, high) -> np.ndarray:
    p = np.asarray(params, float)
    return 1.0 + p[6] * np.asarray(low, float) + p[7] * np.asarray(high, float)


def evaluate(params, low, high) -> np.ndarray:
    """F(low, high; params); broadcasts over array inputs. Division by zero yields inf/nan silently."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return numerator(params, low, high) / denominator(params, low, high)


def jacobian(params, low, high) -> np.ndarray:
    """
    Analytic dF/dp, shape (N, 8).

    dF/dp1..p6 = term_k / D
    dF/dp7     = -F * L / D
    dF/dp8     = -F * H / D
    """
    L = np.atleast_1d(np.asarray(low, float))
    H = np.atleast_1d(np.asarray(high, float))
    D = denominator(params, L, H)
    with np.errstate(divide="ignore", invalid="ignore"):
        F = numerator(params, L, H) / D
        J = np.empty((L.size, N_PARAMS), dtype=float)
        for k, term in enumerate(_terms(L, H)):
            J[:, k] = term / D
        J[:, 6] = -F * L / D
        J[:, 7] = -F * H / D
    return J
