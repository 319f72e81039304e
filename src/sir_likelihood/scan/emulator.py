# src/sir_likelihood/scan/emulator.py
# Gaussian-process emulator of a log-likelihood profile.
# Input: parameter grid. Output: predicted mean and standard deviation.

from typing import Optional, Tuple

import numpy as np
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import ConstantKernel, RBF, WhiteKernel
from sklearn.preprocessing import StandardScaler


class LikelihoodEmulator:
    """Smooth surrogate for noisy filter log-likelihoods.

    Non-finite log-likelihoods (collapsed filter runs) are dropped before fitting.
    """

    def __init__(self, length_scale: float = 1.0, noise_level: float = 0.1, random_state: Optional[int] = 42):
        kernel = ConstantKernel(1.0) * RBF(length_scale=length_scale) + WhiteKernel(noise_level=noise_level)
        self.gp = GaussianProcessRegressor(
            kernel=kernel,
            normalize_y=True,
            n_restarts_optimizer=2,
            random_state=random_state,
        )
        self.scaler = StandardScaler()
        self.fitted = False

    @staticmethod
    def _as_2d(values) -> np.ndarray:
        X = np.asarray(values, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        return X

    def fit(self, values, log_likelihoods) -> "LikelihoodEmulator":
        X = self._as_2d(values)
        y = np.asarray(log_likelihoods, dtype=float)
        if X.shape[0] != y.shape[0]:
            raise ValueError("values and log_likelihoods must have the same length")
        keep = np.isfinite(y)
        if keep.sum() < 2:
            raise ValueError("Need at least 2 finite log-likelihoods to fit an emulator")

        X_scaled = self.scaler.fit_transform(X[keep])
        self.gp.fit(X_scaled, y[keep])
        self.fitted = True
        return self

    def predict(self, grid) -> Tuple[np.ndarray, np.ndarray]:
        """Predicted (mean, std) of the log-likelihood on `grid`."""
        if not self.fitted:
            raise RuntimeError("Emulator has not been fitted")
        X_scaled = self.scaler.transform(self._as_2d(grid))
        mean, std = self.gp.predict(X_scaled, return_std=True)
        return mean, std

    def argmax(self, grid):
        mean, _ = self.predict(grid)
        grid = list(grid)
        return grid[int(np.argmax(mean))]

    @classmethod
    def from_scan(cls, result, **kwargs) -> "LikelihoodEmulator":
        return cls(**kwargs).fit(result.values, result.log_likelihoods)
