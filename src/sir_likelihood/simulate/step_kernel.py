# src/sir_likelihood/simulate/step_kernel.py
# Discrete-time stochastic SIR kernel: one call advances one reporting interval
# using nsub Binomial substeps (exponential waiting-time discretisation).

from dataclasses import dataclass, replace as dc_replace
from typing import Tuple

import numpy as np
from numpy.random import Generator

DEFAULT_NSUB = 10
DEFAULT_DT_REPORT = 1.0


@dataclass(frozen=True)
class ParameterVector:
    """Model parameters, fixed for one filter run."""
    beta: float      # infection rate
    gamma: float     # recovery rate
    N: int           # total population size

    def validate(self):
        """Raise ValueError if the parameters cannot be simulated."""
        if not np.isfinite(self.beta) or self.beta <= 0:
            raise ValueError(f"beta must be a positive finite number, got {self.beta}")
        if not np.isfinite(self.gamma) or self.gamma <= 0:
            raise ValueError(f"gamma must be a positive finite number, got {self.gamma}")
        if not np.isfinite(self.N) or int(self.N) != self.N or self.N <= 0:
            raise ValueError(f"N must be a positive integer, got {self.N}")
        return self

    def replace(self, **changes) -> "ParameterVector":
        return dc_replace(self, **changes)


@dataclass(frozen=True)
class ModelState:
    """(S, I, C): susceptible, infectious, new cases since the last report."""
    S: int
    I: int
    C: int = 0

    @classmethod
    def from_counts(cls, N: int, I0: int) -> "ModelState":
        """Fully susceptible population apart from I0 infectious individuals."""
        if I0 < 0 or I0 > N:
            raise ValueError(f"I0 must lie in [0, N], got I0={I0}, N={N}")
        return cls(S=int(N) - int(I0), I=int(I0), C=0)

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.S, self.I, self.C)

    def validate(self, params: ParameterVector):
        if self.S < 0 or self.I < 0 or self.C < 0:
            raise ValueError(f"State counts must be non-negative, got {self.as_tuple()}")
        if self.S + self.I > params.N:
            raise ValueError(f"S + I = {self.S + self.I} exceeds population N = {params.N}")
        return self


def clamp_probability(p):
    """Clip probabilities into [0, 1] (rounding can push 1 - exp(-x) just outside)."""
    return np.clip(p, 0.0, 1.0)


def transition_probabilities(I, params: ParameterVector, delta: float):
    """Per-substep infection and recovery probabilities.

    p_inf = 1 - exp(-beta * I / N * delta), p_rec = 1 - exp(-gamma * delta).
    `I` may be a scalar or an array; p_inf has its shape.
    """
    I = np.asarray(I, dtype=float)
    p_inf = clamp_probability(-np.expm1(-params.beta * I / params.N * delta))
    p_rec = clamp_probability(-np.expm1(-params.gamma * delta))
    return p_inf, float(p_rec)


def _check_discretisation(nsub, dt_report):
    if int(nsub) != nsub or nsub < 1:
        raise ValueError(f"nsub must be a positive integer, got {nsub}")
    if not dt_report > 0:
        raise ValueError(f"dt_report must be > 0, got {dt_report}")


def step_arrays(
    S: np.ndarray,
    I: np.ndarray,
    params: ParameterVector,
    rng: Generator,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
):
    """Advance arrays of (S, I) by one reporting interval.

    Every particle gets independent draws; within a substep the infection
    draws for all particles are taken first (index ascending), then the
    recovery draws, so the output depends only on the generator state.

    Returns
    -------
    (S, I, C) : tuple of new int64 arrays; C counts new infections in the interval.
    """
    _check_discretisation(nsub, dt_report)
    S = np.array(S, dtype=np.int64, copy=True)
    I = np.array(I, dtype=np.int64, copy=True)
    C = np.zeros_like(S)

    delta = dt_report / nsub
    for _ in range(int(nsub)):
        p_inf, p_rec = transition_probabilities(I, params, delta)
        new_infections = rng.binomial(S, p_inf)
        new_recoveries = rng.binomial(I, p_rec)
        S -= new_infections
        I += new_infections - new_recoveries
        C += new_infections

    return S, I, C


def step(
    state: ModelState,
    params: ParameterVector,
    rng: Generator,
    nsub: int = DEFAULT_NSUB,
    dt_report: float = DEFAULT_DT_REPORT,
) -> ModelState:
    """Advance a single state by one reporting interval.

    The incoming C is ignored; the returned C is the number of new cases
    strictly within this interval.
    """
    params.validate()
    state.validate(params)
    S, I, C = step_arrays(
        np.array([state.S]), np.array([state.I]), params, rng, nsub=nsub, dt_report=dt_report
    )
    return ModelState(S=int(S[0]), I=int(I[0]), C=int(C[0]))
