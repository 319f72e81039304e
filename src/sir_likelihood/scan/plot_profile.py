# src/sir_likelihood/scan/plot_profile.py
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from .emulator import LikelihoodEmulator
from .parameter_scan import ScanResult


def plot_profile(
    result: ScanResult,
    out_png: str = "figs/likelihood_profile.png",
    reference_value: Optional[float] = None,
    figsize: Optional[Tuple[float, float]] = None,
    emulator: Optional[LikelihoodEmulator] = None,
) -> Path:
    """Raw log-likelihoods, the LOESS curve and the point estimate for a 1D scan.

    With a fitted `emulator`, its mean and a +/- 2 std band are drawn over the
    scanned range.
    """
    if not isinstance(result.coordinate, str):
        raise ValueError("Only single-coordinate scans can be plotted")

    x = np.asarray(result.values, dtype=float)
    ll = result.log_likelihoods
    ok = np.isfinite(ll)

    fig, ax = plt.subplots(figsize=figsize or (8, 5))
    ax.scatter(x[ok], ll[ok], s=12, color="tab:blue", alpha=0.6, label="filter log-likelihood")
    if result.smoothed is not None:
        ax.plot(x[ok], result.smoothed, color="tab:red", lw=2, label="LOESS")
    if result.best_value is not None:
        ax.axvline(float(result.best_value), color="tab:red", ls="--", lw=1,
                   label=f"estimate = {float(result.best_value):.4g}")
    if emulator is not None and x.size:
        dense = np.linspace(x.min(), x.max(), 200)
        mean, std = emulator.predict(dense)
        ax.plot(dense, mean, color="tab:green", lw=1.5, label="GP emulator")
        ax.fill_between(dense, mean - 2 * std, mean + 2 * std, color="tab:green", alpha=0.2)
    if reference_value is not None:
        ax.axvline(reference_value, color="k", ls=":", lw=1, label=f"reference = {reference_value:.4g}")
    n_failed = int((~ok).sum())
    ax.set_xlabel(result.coordinate)
    ax.set_ylabel("log-likelihood")
    ax.set_title(f"Likelihood profile ({n_failed} collapsed grid points)")
    ax.legend(loc="best")
    fig.tight_layout()

    out = Path(out_png)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, dpi=150)
    plt.close(fig)
    return out
