from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from matdecomp.model import as_params, evaluate


def make_calibration(params, n: int = 40, low_range: Tuple[float, float] = (0.2, 1.0),
                     high_range: Tuple[float, float] = (0.2, 1.0), noise_rel: float = 0.0,
                     seed: int | None = 0) -> pd.DataFrame:
    """
    Synthetic calibration rods: random (low, high) intensity pairs with densities from F(params).
    noise_rel adds multiplicative Gaussian noise to the densities (0 = exact model data).
    Returns DataFrame with columns density, low, high.
    """
    rng = np.random.default_rng(seed)
    p = as_params(params)
    low = rng.uniform(*low_range, size=n)
    high = rng.uniform(*high_range, size=n)
    density = evaluate(p, low, high)
    if noise_rel > 0:
        density = density * rng.normal(1.0, noise_rel, size=n)
    return pd.DataFrame({"density": density, "low": low, "high": high})


def make_sum_calibration(densities: Sequence[float],
                         splits: Sequence[float] = (0.2, 0.4, 0.6, 0.8)) -> pd.DataFrame:
    """
    Intensity pairs for F = low + high: each density d is split as low = s*d, high = (1-s)*d.
    Several splits per density keep the quadratic numerator identifiable.
    """
    rows = []
    for d in densities:
        for s in splits:
            rows.append({"density": float(d), "low": float(s * d), "high": float((1.0 - s) * d)})
    return pd.DataFrame(rows, columns=["density", "low", "high"])
