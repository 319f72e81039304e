# src/sir_likelihood/simulate/generate_observations.py
# Synthetic "ground truth" case series: run the step kernel once with known
# parameters and record C for every reporting interval.
#
# CSV layout: three metadata rows (params, initial_state, seed), then a
# header row "step,cases", then one row per reporting interval.

import csv
import itertools
import json
import logging
import tempfile
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from numpy.random import Generator, default_rng

from .step_kernel import (
    DEFAULT_DT_REPORT,
    DEFAULT_NSUB,
    ModelState,
    ParameterVector,
    step_arrays,
)

logger = logging.getLogger(__name__)

HEADER_ROWS = 3


def default_csv_path(use_tempfile=True):
    """Define the filepath of the observation csv"""
    if use_tempfile:
        tf = tempfile.NamedTemporaryFile(prefix="observed_cases_", suffix=".csv")
        p = Path(tf.name)
        tf.close()
        return p
    return Path("observed_cases.csv")


def simulate_trajectory(
    params: ParameterVector,
    u0: ModelState,
    T: int,
    seed: Optional[int] = None,
    rng: Optional[Generator] = None,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
) -> pd.DataFrame:
    """Simulate T reporting intervals from u0.

    Returns
    -------
    DataFrame with columns step (1..T), S, I, R, cases.
    """
    if T < 1:
        raise ValueError("T must be >= 1")
    params.validate()
    u0.validate(params)

    if rng is None:
        rng = default_rng(seed)

    S = np.array([u0.S], dtype=np.int64)
    I = np.array([u0.I], dtype=np.int64)
    rows = []
    for t in range(1, int(T) + 1):
        S, I, C = step_arrays(S, I, params, rng, nsub=nsub, dt_report=dt_report)
        s, i = int(S[0]), int(I[0])
        rows.append({"step": t, "S": s, "I": i, "R": int(params.N) - s - i, "cases": int(C[0])})

    return pd.DataFrame(rows, columns=["step", "S", "I", "R", "cases"])


def simulate_observations(
    params: ParameterVector,
    u0: ModelState,
    T: int,
    seed: Optional[int] = None,
    rng: Optional[Generator] = None,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
) -> np.ndarray:
    """Observed series: new cases per reporting interval, shape (T,)."""
    traj = simulate_trajectory(params, u0, T, seed=seed, rng=rng, nsub=nsub, dt_report=dt_report)
    return traj["cases"].to_numpy(dtype=np.int64)


def write_observations_csv(
    observed,
    params: ParameterVector,
    u0: ModelState,
    seed: Optional[int] = None,
    out_path=None,
    use_tempfile: bool = True,
) -> Path:
    """Write an observed series with its generating metadata"""
    if out_path is None:
        csv_path = default_csv_path(use_tempfile=use_tempfile)
    else:
        csv_path = Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    observed = np.asarray(observed, dtype=np.int64)
    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["params", json.dumps({"beta": params.beta, "gamma": params.gamma, "N": int(params.N)})])
        writer.writerow(["initial_state", json.dumps(list(u0.as_tuple()))])
        writer.writerow(["seed", "" if seed is None else int(seed)])
        writer.writerow(["step", "cases"])
        for t, c in enumerate(observed.tolist(), start=1):
            writer.writerow([t, c])

    logger.info("Observed series (T=%d) written to: %s", observed.size, csv_path)
    return csv_path


def read_metadata(path) -> dict:
    """Parse the metadata rows written by write_observations_csv.

    Keys that are absent (e.g. externally supplied data) are left out.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Observation CSV not found: {path}")

    meta = {}
    with csv_path.open(newline="") as fh:
        reader = csv.reader(fh)
        for row in itertools.islice(reader, HEADER_ROWS):
            if len(row) < 2:
                continue
            key, value = row[:2]
            if key == "params":
                p = json.loads(value)
                meta["params"] = ParameterVector(beta=p["beta"], gamma=p["gamma"], N=p["N"])
            elif key == "initial_state":
                meta["initial_state"] = ModelState(*json.loads(value))
            elif key == "seed":
                meta["seed"] = int(value) if value else None
    return meta


def load_observations_csv(path, header_rows: int = HEADER_ROWS) -> np.ndarray:
    """Load the cases column of an observation CSV as an int array."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Observation CSV not found: {path}")

    df = pd.read_csv(csv_path, header=header_rows)
    if "cases" not in df.columns:
        raise ValueError(f"No 'cases' column found in {path}")
    if "step" in df.columns:
        df = df.sort_values("step")
    return df["cases"].astype(np.int64).to_numpy()
