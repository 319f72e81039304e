# src/sir_likelihood/particle_filter/ensemble.py
"""
Particle ensemble: nparticles copies of (S, I, C) held as rows of one int64 array.

Advancement is either serial from one Generator (particle index ascending) or
chunked across joblib threads, in which case every chunk owns a Generator
spawned from a SeedSequence. The parallel path is reproducible for a fixed
seed and chunk size, but does not reproduce the serial draws.
"""

import logging
from typing import Optional

import numpy as np
from joblib import Parallel, delayed
from numpy.random import Generator, SeedSequence, default_rng

from ..simulate.step_kernel import (
    DEFAULT_DT_REPORT,
    DEFAULT_NSUB,
    ModelState,
    ParameterVector,
    step_arrays,
)

logger = logging.getLogger(__name__)

S_COL, I_COL, C_COL = 0, 1, 2
DEFAULT_CHUNK_SIZE = 10_000


class Ensemble:
    """Fungible particles identified only by their row index."""

    def __init__(self, states: np.ndarray):
        states = np.asarray(states, dtype=np.int64)
        if states.ndim != 2 or states.shape[1] != 3:
            raise ValueError(f"states must have shape (nparticles, 3), got {states.shape}")
        if states.shape[0] < 1:
            raise ValueError("An ensemble needs at least one particle")
        self._states = states.copy()

    @classmethod
    def from_state(cls, state: ModelState, nparticles: int) -> "Ensemble":
        """All particles start as copies of one shared initial state."""
        if int(nparticles) != nparticles or nparticles < 1:
            raise ValueError(f"nparticles must be a positive integer, got {nparticles}")
        states = np.tile(np.array(state.as_tuple(), dtype=np.int64), (int(nparticles), 1))
        return cls(states)

    def __len__(self):
        return self._states.shape[0]

    @property
    def nparticles(self) -> int:
        return len(self)

    def states(self) -> np.ndarray:
        return self._states.copy()

    def cases(self) -> np.ndarray:
        return self._states[:, C_COL].copy()

    def advance_all(
        self,
        params: ParameterVector,
        rng: Generator,
        nsub: int = DEFAULT_NSUB,
        dt_report: float = DEFAULT_DT_REPORT,
    ) -> np.ndarray:
        """Advance every particle one reporting interval from a single Generator."""
        S, I, C = step_arrays(
            self._states[:, S_COL], self._states[:, I_COL], params, rng, nsub=nsub, dt_report=dt_report
        )
        self._states = np.column_stack((S, I, C))
        return self.states()

    def advance_all_parallel(
        self,
        params: ParameterVector,
        seed_seq: SeedSequence,
        n_jobs: int = -1,
        chunk_size: Optional[int] = None,
        nsub: int = DEFAULT_NSUB,
        dt_report: float = DEFAULT_DT_REPORT,
    ) -> np.ndarray:
        """Advance particles in chunks on joblib threads.

        Each chunk draws from its own Generator spawned from `seed_seq`, so the
        outcome does not depend on thread scheduling. Calling this repeatedly
        with the same SeedSequence spawns fresh children each time.
        """
        if chunk_size is None:
            chunk_size = DEFAULT_CHUNK_SIZE
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

        bounds = list(range(0, self.nparticles, int(chunk_size))) + [self.nparticles]
        chunks = list(zip(bounds[:-1], bounds[1:]))
        child_seqs = seed_seq.spawn(len(chunks))

        def _advance_chunk(lo, hi, child):
            return step_arrays(
                self._states[lo:hi, S_COL],
                self._states[lo:hi, I_COL],
                params,
                default_rng(child),
                nsub=nsub,
                dt_report=dt_report,
            )

        out = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_advance_chunk)(lo, hi, child) for (lo, hi), child in zip(chunks, child_seqs)
        )
        self._states = np.vstack([np.column_stack(parts) for parts in out])
        logger.debug("Advanced %d particles in %d chunks", self.nparticles, len(chunks))
        return self.states()

    def resample(self, indices) -> None:
        """Replace every particle by the state of its source index."""
        indices = np.asarray(indices, dtype=np.intp)
        if indices.shape != (self.nparticles,):
            raise ValueError(f"Expected {self.nparticles} indices, got shape {indices.shape}")
        self._states = self._states[indices]
