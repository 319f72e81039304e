import numpy as np
import pytest

from sir_likelihood.scan.emulator import LikelihoodEmulator
from sir_likelihood.scan.parameter_scan import ScanResult
from sir_likelihood.scan.plot_profile import plot_profile


def _noisy_profile():
    x = np.linspace(0.35, 0.7, 36)
    rng = np.random.default_rng(4)
    y = -400.0 * (x - 0.5) ** 2 + rng.normal(0.0, 0.3, size=x.size)
    return x, y


def test_emulator_predicts_mean_and_std():
    x, y = _noisy_profile()
    em = LikelihoodEmulator().fit(x, y)

    grid = np.linspace(0.35, 0.7, 71)
    mean, std = em.predict(grid)

    assert mean.shape == grid.shape and std.shape == grid.shape
    assert np.all(std >= 0)
    assert abs(em.argmax(grid) - 0.5) <= 0.05


def test_emulator_drops_collapsed_points():
    x, y = _noisy_profile()
    y[:5] = -np.inf
    result = ScanResult(coordinate="beta", values=x.tolist(), log_likelihoods=y, results=[])

    em = LikelihoodEmulator.from_scan(result)
    mean, _ = em.predict(x)
    assert np.all(np.isfinite(mean))


def test_emulator_errors():
    em = LikelihoodEmulator()
    with pytest.raises(RuntimeError):
        em.predict([0.5])
    with pytest.raises(ValueError):
        em.fit([0.1, 0.2, 0.3], [-np.inf, -1.0, -np.inf])
    with pytest.raises(ValueError):
        em.fit([0.1, 0.2], [-1.0])


def test_profile_plot_with_emulator_band(tmp_path):
    x, y = _noisy_profile()
    result = ScanResult(coordinate="beta", values=x.tolist(), log_likelihoods=y, results=[], best_value=0.5)

    out = plot_profile(result, out_png=tmp_path / "figs" / "profile.png", reference_value=0.5,
                       emulator=LikelihoodEmulator.from_scan(result))

    assert out.exists()
    assert out.stat().st_size > 0
