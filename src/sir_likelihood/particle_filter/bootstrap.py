# src/sir_likelihood/particle_filter/bootstrap.py
"""
Bootstrap particle filter with indicator weighting.

At every reporting step each particle is advanced one interval and kept only if
its new-case count equals the observed count exactly. The surviving fraction is
the step's partial likelihood; the log-likelihood of the series is the sum of
their logs. If no particle matches, the filter has collapsed and the result is
-inf (reported, not raised).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from numpy.random import Generator, SeedSequence, default_rng

from ..simulate.step_kernel import (
    DEFAULT_DT_REPORT,
    DEFAULT_NSUB,
    ModelState,
    ParameterVector,
)
from .ensemble import Ensemble

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    """Outcome of one filter run.

    step_log_likelihoods holds log(mean weight) for every completed step, so
    log_likelihood == sum(step_log_likelihoods) on success.
    """
    log_likelihood: float = 0.0
    failed: bool = False
    failed_step: Optional[int] = None
    step_log_likelihoods: List[float] = field(default_factory=list)
    n_survivors: List[int] = field(default_factory=list)
    nparticles: int = 0
    seed: Optional[int] = None
    resampled_cases: Optional[List[np.ndarray]] = None

    def record_step(self, survivors: int) -> None:
        """Accumulate one step; a step with no survivors marks the run failed."""
        self.n_survivors.append(int(survivors))
        if survivors == 0:
            self.failed = True
            self.failed_step = len(self.n_survivors)
            self.log_likelihood = -np.inf
            return
        step_ll = float(np.log(survivors / self.nparticles))
        self.step_log_likelihoods.append(step_ll)
        self.log_likelihood += step_ll


def indicator_weights(cases, observed_value) -> np.ndarray:
    """1.0 where a particle's cases equal the observation exactly, else 0.0."""
    return (np.asarray(cases) == observed_value).astype(float)


def multinomial_resample(weights, rng: Generator, size: Optional[int] = None) -> np.ndarray:
    """Draw `size` indices with replacement, probability proportional to weights."""
    w = np.asarray(weights, dtype=float)
    if w.ndim != 1:
        raise ValueError("weights must be a 1D array")
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ValueError("weights must be finite and non-negative")
    total = w.sum()
    if total <= 0:
        raise ValueError("Cannot resample: all weights are zero")
    if size is None:
        size = w.size
    return rng.choice(w.size, size=int(size), replace=True, p=w / total)


def _validate_inputs(params, u0, observed, nparticles):
    params.validate()
    u0.validate(params)
    if int(nparticles) != nparticles or nparticles < 1:
        raise ValueError(f"nparticles must be a positive integer, got {nparticles}")
    obs = np.asarray(observed)
    if obs.ndim != 1 or obs.size == 0:
        raise ValueError("observed must be a non-empty 1D sequence of counts")
    if not np.all(np.equal(np.mod(obs, 1), 0)):
        raise ValueError("observed must contain integer counts")
    return obs.astype(np.int64)


def bootstrap_filter(
    params: ParameterVector,
    u0: ModelState,
    observed,
    nparticles: int,
    seed: Optional[int] = None,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
    n_jobs: int = 1,
    chunk_size: Optional[int] = None,
    keep_resampled: bool = False,
) -> FilterResult:
    """Estimate the log-likelihood of `observed` under `params`.

    Parameters
    ----------
    params :
        Model parameters (validated before any simulation).
    u0 :
        Shared initial state of every particle.
    observed :
        Observed new cases, one per reporting interval.
    nparticles :
        Ensemble size; 10_000 or more is advisable for exact-match weighting.
    seed :
        Integer seed. Identical inputs and seed give a bit-identical result.
    n_jobs :
        1 advances particles serially; anything else splits the ensemble into
        chunks with independent streams on joblib threads (still deterministic
        for a fixed seed and chunk_size, but a different draw than n_jobs=1).
    keep_resampled :
        Store every particle's C after each resampling step in
        `resampled_cases` (memory grows with nparticles * T).

    Returns
    -------
    FilterResult, with log_likelihood = -inf and failed=True on collapse.
    """
    obs = _validate_inputs(params, u0, observed, nparticles)

    ss = SeedSequence(seed)
    ss_advance, ss_resample = ss.spawn(2)
    advance_rng = default_rng(ss_advance)
    resample_rng = default_rng(ss_resample)

    ensemble = Ensemble.from_state(u0, nparticles)
    result = FilterResult(nparticles=int(nparticles), seed=seed if seed is not None else ss.entropy)
    if keep_resampled:
        result.resampled_cases = []

    for t, y in enumerate(obs.tolist(), start=1):
        if n_jobs == 1:
            ensemble.advance_all(params, advance_rng, nsub=nsub, dt_report=dt_report)
        else:
            ensemble.advance_all_parallel(
                params, ss_advance, n_jobs=n_jobs, chunk_size=chunk_size, nsub=nsub, dt_report=dt_report
            )

        weights = indicator_weights(ensemble.cases(), y)
        survivors = int(weights.sum())
        result.record_step(survivors)

        if result.failed:
            logger.debug("Filter collapse at step %d (observed %d, beta=%g, gamma=%g)",
                         t, y, params.beta, params.gamma)
            return result

        ensemble.resample(multinomial_resample(weights, resample_rng))
        if keep_resampled:
            result.resampled_cases.append(ensemble.cases())

    logger.debug("Filter finished: loglik=%.4f over %d steps", result.log_likelihood, obs.size)
    return result
