import numpy as np
import pytest

from sir_likelihood.simulate.step_kernel import ModelState, ParameterVector
from sir_likelihood.simulate.generate_observations import (
    load_observations_csv,
    read_metadata,
    simulate_observations,
    simulate_trajectory,
    write_observations_csv,
)

PARAMS = ParameterVector(beta=0.5, gamma=0.25, N=1000)
U0 = ModelState(990, 10, 0)


def test_observations_shape_and_reproducibility():
    obs1 = simulate_observations(PARAMS, U0, T=40, seed=11)
    obs2 = simulate_observations(PARAMS, U0, T=40, seed=11)

    assert obs1.shape == (40,)
    assert obs1.dtype == np.int64
    assert np.all(obs1 >= 0)
    assert np.array_equal(obs1, obs2)
    # new cases can never exceed the initial susceptible pool
    assert obs1.sum() <= U0.S


def test_trajectory_columns_are_consistent():
    traj = simulate_trajectory(PARAMS, U0, T=25, seed=5)

    assert list(traj.columns) == ["step", "S", "I", "R", "cases"]
    assert traj["step"].tolist() == list(range(1, 26))
    assert np.all(traj["S"] + traj["I"] + traj["R"] == PARAMS.N)
    S_prev = np.concatenate(([U0.S], traj["S"].to_numpy()[:-1]))
    assert np.array_equal(S_prev - traj["S"].to_numpy(), traj["cases"].to_numpy())


def test_invalid_length_raises():
    with pytest.raises(ValueError):
        simulate_observations(PARAMS, U0, T=0, seed=1)


def test_csv_roundtrip_keeps_series_and_metadata(tmp_path):
    observed = simulate_observations(PARAMS, U0, T=12, seed=3)
    out_csv = tmp_path / "obs" / "observed.csv"

    path = write_observations_csv(observed, PARAMS, U0, seed=3, out_path=str(out_csv), use_tempfile=False)

    assert path == out_csv
    assert path.exists()
    assert np.array_equal(load_observations_csv(path), observed)

    meta = read_metadata(path)
    assert meta["params"] == PARAMS
    assert meta["initial_state"] == U0
    assert meta["seed"] == 3


def test_missing_csv_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_observations_csv(tmp_path / "nope.csv")
