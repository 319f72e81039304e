# src/sir_likelihood/scan/parameter_scan.py
"""
Likelihood profile over a grid of candidate values for one coordinate
(beta, gamma, N or the initial infected count I0), or for a small tuple of
coordinates scanned jointly.

Each grid point runs the bootstrap filter; failed points (-inf) stay in the
result but are left out of the LOESS fit that picks the point estimate.
"""

import csv
import json
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy.random import SeedSequence
from scipy.special import logsumexp

from ..particle_filter.bootstrap import FilterResult, bootstrap_filter
from ..simulate.step_kernel import (
    DEFAULT_DT_REPORT,
    DEFAULT_NSUB,
    ModelState,
    ParameterVector,
)
from .smoothing import raw_argmax, smoothed_argmax

logger = logging.getLogger(__name__)

COORDINATES = ("beta", "gamma", "N", "I0")
SEED_MODES = ("fixed", "independent")
MIN_POINTS_FOR_SMOOTHING = 3

Coordinate = Union[str, Tuple[str, ...]]


@dataclass
class ScanResult:
    coordinate: Coordinate
    values: List[Any]
    log_likelihoods: np.ndarray
    results: List[List[FilterResult]]
    smoothed: Optional[np.ndarray] = None
    best_value: Optional[Any] = None

    @property
    def failed(self) -> np.ndarray:
        return ~np.isfinite(self.log_likelihoods)

    def pairs(self):
        """(value, log-likelihood) in grid order."""
        return list(zip(self.values, self.log_likelihoods.tolist()))

    def to_frame(self) -> pd.DataFrame:
        names = _as_names(self.coordinate)
        if len(names) == 1:
            df = pd.DataFrame({"value": self.values})
        else:
            df = pd.DataFrame([tuple(v) for v in self.values], columns=list(names))
        df["log_likelihood"] = self.log_likelihoods
        df["failed"] = self.failed
        smoothed = np.full(len(self.values), np.nan)
        if self.smoothed is not None:
            smoothed[~self.failed] = self.smoothed
        df["smoothed"] = smoothed
        return df


@dataclass
class ScanConfig:
    beta: float = 0.5
    gamma: float = 0.25
    N: int = 1000
    I0: int = 10
    coordinate: Coordinate = "beta"
    grid: Sequence[Any] = field(default_factory=lambda: np.round(np.arange(0.35, 0.70 + 1e-9, 0.005), 6).tolist())
    nparticles: int = 100_000
    seed: Optional[int] = 1234
    seed_mode: str = "fixed"
    repeats: int = 1
    n_jobs: int = 1
    particle_jobs: int = 1
    frac: float = 0.3
    nsub: int = DEFAULT_NSUB
    dt_report: float = DEFAULT_DT_REPORT
    out_path: Optional[str] = None


def _as_names(coordinate: Coordinate) -> Tuple[str, ...]:
    names = (coordinate,) if isinstance(coordinate, str) else tuple(coordinate)
    if not names:
        raise ValueError("coordinate must name at least one parameter")
    unknown = [n for n in names if n not in COORDINATES]
    if unknown:
        raise ValueError(f"Unknown coordinate(s) {unknown}; choose from {COORDINATES}")
    return names


def build_inputs(
    baseline: ParameterVector,
    u0: ModelState,
    coordinate: Coordinate,
    value,
) -> Tuple[ParameterVector, ModelState]:
    """Parameters and initial state for one grid point.

    Changing N keeps the initial infected count and makes everyone else
    susceptible; I0 rebuilds the initial state as (N - I0, I0, 0).
    """
    names = _as_names(coordinate)
    values = (value,) if len(names) == 1 else tuple(value)
    if len(values) != len(names):
        raise ValueError(f"Grid value {value!r} does not match coordinate {names}")

    changes = dict(zip(names, values))
    params = baseline
    for name in ("beta", "gamma"):
        if name in changes:
            params = params.replace(**{name: float(changes[name])})
    I0 = u0.I
    if "N" in changes:
        if not np.isfinite(changes["N"]) or int(changes["N"]) != changes["N"]:
            raise ValueError(f"N must be an integer, got {changes['N']}")
        params = params.replace(N=int(changes["N"]))
    if "I0" in changes:
        if not np.isfinite(changes["I0"]) or int(changes["I0"]) != changes["I0"]:
            raise ValueError(f"I0 must be an integer, got {changes['I0']}")
        I0 = int(changes["I0"])
    if "N" in changes or "I0" in changes:
        state = ModelState.from_counts(params.N, I0)
    else:
        state = u0

    params.validate()
    state.validate(params)
    return params, state


def grid_seeds(seed: Optional[int], n_points: int, repeats: int = 1, seed_mode: str = "fixed") -> np.ndarray:
    """Integer seeds, shape (n_points, repeats).

    "fixed" reuses one seed per repeat across every grid point (the first
    repeat uses `seed` itself); "independent" gives every evaluation its own
    seed spawned from `seed`.
    """
    if seed_mode not in SEED_MODES:
        raise ValueError(f"seed_mode must be one of {SEED_MODES}, got {seed_mode!r}")
    if repeats < 1:
        raise ValueError("repeats must be >= 1")

    ss = SeedSequence(seed)
    if seed_mode == "fixed":
        first = int(seed) if seed is not None else int(ss.generate_state(1)[0])
        extra = [int(c.generate_state(1)[0]) for c in ss.spawn(repeats - 1)]
        return np.tile(np.array([first] + extra, dtype=np.int64), (n_points, 1))

    children = ss.spawn(n_points * repeats)
    seeds = np.array([int(c.generate_state(1)[0]) for c in children], dtype=np.int64)
    return seeds.reshape(n_points, repeats)


def combine_repeats(log_likelihoods) -> float:
    """Log of the mean likelihood over repeats; failures count as zero likelihood."""
    lls = np.asarray(log_likelihoods, dtype=float)
    if not np.isfinite(lls).any():
        return -np.inf
    return float(logsumexp(lls) - np.log(lls.size))


def _evaluate_point(params, state, observed, nparticles, seeds, nsub, dt_report, particle_jobs):
    runs = [
        bootstrap_filter(
            params, state, observed, nparticles, seed=int(s),
            nsub=nsub, dt_report=dt_report, n_jobs=particle_jobs,
        )
        for s in seeds
    ]
    return combine_repeats([r.log_likelihood for r in runs]), runs


def scan_parameter(
    baseline: ParameterVector,
    u0: ModelState,
    coordinate: Coordinate,
    grid: Sequence[Any],
    observed,
    nparticles: int,
    seed: Optional[int] = None,
    seed_mode: str = "fixed",
    repeats: int = 1,
    n_jobs: int = 1,
    particle_jobs: int = 1,
    frac: float = 0.3,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
) -> ScanResult:
    """Run the filter at every grid point and locate the smoothed maximum.

    Every grid point is validated before any filter runs. The returned result
    always has one entry per grid point, in grid order.
    """
    names = _as_names(coordinate)
    grid = list(grid)
    if not grid:
        raise ValueError("grid must contain at least one value")
    inputs = [build_inputs(baseline, u0, coordinate, v) for v in grid]
    seeds = grid_seeds(seed, len(grid), repeats=repeats, seed_mode=seed_mode)
    observed = np.asarray(observed, dtype=np.int64)

    logger.info("Scanning %s over %d grid points (nparticles=%d, repeats=%d, n_jobs=%d)",
                "/".join(names), len(grid), nparticles, repeats, n_jobs)

    out = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_evaluate_point)(p, s, observed, nparticles, seeds[i], nsub, dt_report, particle_jobs)
        for i, (p, s) in enumerate(inputs)
    )

    log_likelihoods = np.array([ll for ll, _ in out], dtype=float)
    results = [runs for _, runs in out]
    result = ScanResult(coordinate=coordinate, values=grid, log_likelihoods=log_likelihoods, results=results)

    finite = np.isfinite(log_likelihoods)
    n_failed = int((~finite).sum())
    if n_failed:
        logger.info("%d of %d grid points collapsed", n_failed, len(grid))

    if len(names) == 1 and finite.sum() >= MIN_POINTS_FOR_SMOOTHING:
        x = np.asarray(grid, dtype=float)[finite]
        best, smooth = smoothed_argmax(x, log_likelihoods[finite], frac=frac)
        result.smoothed = smooth
        result.best_value = grid[int(np.flatnonzero(finite)[int(np.nanargmax(smooth))])]
        logger.info("Smoothed maximum at %s = %s", names[0], best)
    else:
        result.best_value = raw_argmax(grid, log_likelihoods)
        logger.info("Raw maximum at %s = %s", "/".join(names), result.best_value)

    return result


def run_scan(cfg: ScanConfig, observed) -> ScanResult:
    """Config-driven scan; writes the CSV when cfg.out_path is set."""
    baseline = ParameterVector(beta=cfg.beta, gamma=cfg.gamma, N=cfg.N)
    u0 = ModelState.from_counts(cfg.N, cfg.I0)
    result = scan_parameter(
        baseline,
        u0,
        cfg.coordinate,
        cfg.grid,
        observed,
        nparticles=cfg.nparticles,
        seed=cfg.seed,
        seed_mode=cfg.seed_mode,
        repeats=cfg.repeats,
        n_jobs=cfg.n_jobs,
        particle_jobs=cfg.particle_jobs,
        frac=cfg.frac,
        nsub=cfg.nsub,
        dt_report=cfg.dt_report,
    )
    if cfg.out_path:
        write_scan_csv(result, cfg.out_path, cfg=cfg)
    return result


def _json_default(o):
    if hasattr(o, "item"):
        return o.item()
    return str(o)


def write_scan_csv(result: ScanResult, out_path, cfg: Optional[ScanConfig] = None) -> pathlib.Path:
    """Write metadata rows (coordinate, best_value, config) then the profile table."""
    csv_path = pathlib.Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    df = result.to_frame()
    meta_cfg = {}
    if cfg is not None:
        meta_cfg = {k: v for k, v in vars(cfg).items() if k not in ("grid", "out_path")}
    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["coordinate", json.dumps(result.coordinate, default=_json_default)])
        writer.writerow(["best_value", json.dumps(result.best_value, default=_json_default)])
        writer.writerow(["config", json.dumps(meta_cfg, default=_json_default)])
        df.to_csv(fh, index=False)

    logger.info("Scan written to: %s", csv_path)
    return csv_path
