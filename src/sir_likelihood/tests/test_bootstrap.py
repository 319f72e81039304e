import numpy as np
import pytest
from scipy.stats import chisquare

from sir_likelihood.simulate.step_kernel import ModelState, ParameterVector
from sir_likelihood.simulate.generate_observations import simulate_observations
from sir_likelihood.particle_filter.bootstrap import (
    FilterResult,
    bootstrap_filter,
    indicator_weights,
    multinomial_resample,
)

PARAMS = ParameterVector(beta=0.5, gamma=0.25, N=1000)
U0 = ModelState(990, 10, 0)


@pytest.fixture(scope="module")
def observed():
    return simulate_observations(PARAMS, U0, T=15, seed=2024)


def test_same_seed_gives_identical_result(observed):
    a = bootstrap_filter(PARAMS, U0, observed, nparticles=3000, seed=99)
    b = bootstrap_filter(PARAMS, U0, observed, nparticles=3000, seed=99)

    assert a.log_likelihood == b.log_likelihood
    assert a.n_survivors == b.n_survivors
    assert a.failed == b.failed


def test_parallel_advancement_is_reproducible(observed):
    a = bootstrap_filter(PARAMS, U0, observed, nparticles=3000, seed=5, n_jobs=2, chunk_size=700)
    b = bootstrap_filter(PARAMS, U0, observed, nparticles=3000, seed=5, n_jobs=3, chunk_size=700)

    assert a.log_likelihood == b.log_likelihood
    assert a.n_survivors == b.n_survivors


def test_log_likelihood_is_sum_of_step_terms(observed):
    res = bootstrap_filter(PARAMS, U0, observed, nparticles=5000, seed=1)
    if res.failed:
        assert res.log_likelihood == -np.inf
        assert len(res.step_log_likelihoods) == res.failed_step - 1
    else:
        assert res.log_likelihood == pytest.approx(sum(res.step_log_likelihoods))
        assert len(res.n_survivors) == len(observed)
        assert res.log_likelihood <= 0.0


def test_matches_closed_form_probability():
    """
    One susceptible, one infectious with negligible recovery: the chance of no
    infection within one interval is exp(-beta / N), whatever the substepping.
    """
    params = ParameterVector(beta=1.0, gamma=1e-12, N=2)
    res = bootstrap_filter(params, ModelState(S=1, I=1), [0], nparticles=200_000, seed=8)

    assert not res.failed
    assert res.log_likelihood == pytest.approx(-0.5, abs=0.02)


def test_certain_observations_have_zero_log_likelihood():
    """With no infectious individuals every particle reports zero cases."""
    res = bootstrap_filter(PARAMS, ModelState(1000, 0, 0), [0, 0, 0, 0], nparticles=100, seed=0)
    assert res.log_likelihood == 0.0
    assert res.n_survivors == [100, 100, 100, 100]


def test_unreachable_observation_fails_at_that_step():
    res = bootstrap_filter(PARAMS, ModelState(1000, 0, 0), [0, 0, 5, 0], nparticles=100, seed=0)

    assert res.failed
    assert res.failed_step == 3
    assert res.log_likelihood == -np.inf
    assert res.n_survivors == [100, 100, 0]


@pytest.mark.parametrize("bad", [-1, 991])
def test_impossible_first_value_fails_immediately(bad):
    """Negative counts or more cases than susceptibles can never be matched."""
    res = bootstrap_filter(PARAMS, U0, [bad, 3, 3], nparticles=500, seed=0)
    assert res.failed
    assert res.failed_step == 1


def test_more_particles_collapse_less_often():
    observed = simulate_observations(PARAMS, U0, T=20, seed=77)
    seeds = range(12)
    small = [bootstrap_filter(PARAMS, U0, observed, 50, seed=s) for s in seeds]
    large = [bootstrap_filter(PARAMS, U0, observed, 5000, seed=s) for s in seeds]

    ok_small = sum(not r.failed for r in small)
    ok_large = sum(not r.failed for r in large)
    assert ok_large > ok_small


def test_completed_steps_increase_with_particle_count():
    """Runs that collapse still get further along with a bigger ensemble."""
    observed = simulate_observations(PARAMS, U0, T=20, seed=77)
    seeds = range(8)

    def mean_steps(n):
        return np.mean([len(bootstrap_filter(PARAMS, U0, observed, n, seed=s).step_log_likelihoods)
                        for s in seeds])

    assert mean_steps(10) < mean_steps(5000)


def test_resampled_particles_all_match_the_observation(observed):
    res = bootstrap_filter(PARAMS, U0, observed, nparticles=5000, seed=11, keep_resampled=True)

    n_kept = len(res.step_log_likelihoods)
    assert len(res.resampled_cases) == n_kept
    assert n_kept > 0
    for t, cases in enumerate(res.resampled_cases):
        assert cases.shape == (5000,)
        assert np.all(cases == observed[t])


def test_resampled_particles_parallel_path(observed):
    res = bootstrap_filter(PARAMS, U0, observed[:5], nparticles=4000, seed=3, n_jobs=2,
                           chunk_size=1000, keep_resampled=True)
    for t, cases in enumerate(res.resampled_cases):
        assert np.all(cases == observed[t])


def test_resampled_cases_not_kept_by_default(observed):
    res = bootstrap_filter(PARAMS, U0, observed[:3], nparticles=500, seed=0)
    assert res.resampled_cases is None


def test_invalid_inputs_raise(observed):
    with pytest.raises(ValueError):
        bootstrap_filter(PARAMS, U0, observed, nparticles=0, seed=1)
    with pytest.raises(ValueError):
        bootstrap_filter(PARAMS.replace(beta=-0.5), U0, observed, nparticles=10, seed=1)
    with pytest.raises(ValueError):
        bootstrap_filter(PARAMS.replace(N=0), U0, observed, nparticles=10, seed=1)
    with pytest.raises(ValueError):
        bootstrap_filter(PARAMS, U0, [], nparticles=10, seed=1)
    with pytest.raises(ValueError):
        bootstrap_filter(PARAMS, U0, [1.5, 2.0], nparticles=10, seed=1)


def test_indicator_weights():
    w = indicator_weights(np.array([3, 1, 3, 0]), 3)
    assert np.array_equal(w, np.array([1.0, 0.0, 1.0, 0.0]))


def test_resampling_only_draws_positive_weights():
    weights = np.array([0.0, 1.0, 0.0, 1.0, 1.0, 0.0])
    rng = np.random.default_rng(0)
    idx = multinomial_resample(weights, rng, size=30_000)

    assert set(np.unique(idx).tolist()) <= {1, 3, 4}
    counts = np.bincount(idx, minlength=6)[[1, 3, 4]]
    _, p = chisquare(counts)
    assert p > 0.001


def test_resampling_frequencies_proportional_to_weights():
    weights = np.array([0.0, 1.0, 2.0, 3.0])
    rng = np.random.default_rng(1)
    idx = multinomial_resample(weights, rng, size=60_000)

    counts = np.bincount(idx, minlength=4)
    assert counts[0] == 0
    expected = 60_000 * weights[1:] / weights.sum()
    _, p = chisquare(counts[1:], f_exp=expected)
    assert p > 0.001


def test_resampling_rejects_bad_weights():
    rng = np.random.default_rng(0)
    with pytest.raises(ValueError):
        multinomial_resample(np.zeros(5), rng)
    with pytest.raises(ValueError):
        multinomial_resample(np.array([1.0, -1.0]), rng)


def test_filter_result_records_steps():
    res = FilterResult(nparticles=10)
    res.record_step(5)
    res.record_step(10)
    assert res.log_likelihood == pytest.approx(np.log(0.5))
    res.record_step(0)
    assert res.failed and res.failed_step == 3
    assert res.log_likelihood == -np.inf
