# src/sir_likelihood/scan/smoothing.py
# LOESS smoothing of noisy Monte Carlo log-likelihood profiles.
from typing import Optional, Tuple

import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

# a local line needs support on both sides of each point
MIN_NEIGHBOURS = 3


def loess(x, y, frac: float = 0.3, x_eval=None) -> np.ndarray:
    """Locally weighted linear regression of y on x (statsmodels lowess).

    Args:
        x, y: 1D arrays of equal length (at least 2 points).
        frac: fraction of points used in each local fit, in (0, 1]; raised
            so that every fit uses at least MIN_NEIGHBOURS points.
        x_eval: where to evaluate the curve (default: at x).
    Returns:
        smoothed values at x_eval, in x_eval order
    Raises:
        ValueError
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.ndim != 1 or x.shape != y.shape:
        raise ValueError("x and y must be 1D arrays of the same length")
    n = x.size
    if n < 2:
        raise ValueError("loess needs at least 2 points")
    if not 0 < frac <= 1:
        raise ValueError("frac must lie in (0, 1]")

    span = min(1.0, max(frac, MIN_NEIGHBOURS / n))
    # it=0: no robustness reweighting, the Monte Carlo noise has no outliers to discount
    if x_eval is None:
        return lowess(y, x, frac=span, it=0, return_sorted=False)
    return lowess(y, x, frac=span, it=0, xvals=np.asarray(x_eval, dtype=float))


def smoothed_argmax(x, y, frac: float = 0.3) -> Tuple[float, np.ndarray]:
    """Grid value at the maximum of the LOESS curve, and the curve itself."""
    x = np.asarray(x, dtype=float)
    smooth = loess(x, y, frac=frac)
    return float(x[int(np.nanargmax(smooth))]), smooth


def raw_argmax(x, y) -> Optional[float]:
    """Argmax of the raw values, ignoring non-finite entries."""
    y = np.asarray(y, dtype=float)
    finite = np.isfinite(y)
    if not finite.any():
        return None
    idx = np.flatnonzero(finite)[int(np.argmax(y[finite]))]
    return x[idx]
