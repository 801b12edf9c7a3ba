import numpy as np
import pytest

from brdf.online import OnlineMean


def test_empty_mean_is_zero():
    m = OnlineMean()
    assert m.count == 0
    assert m.mean() == 0.0
    assert m.variance() == 0.0
    assert m.standard_error() == 0.0


def test_add_sample_matches_numpy(rng):
    xs = rng.exponential(size=1000)
    m = OnlineMean()
    for x in xs:
        m.add_sample(x)
    assert m.count == 1000
    assert m.mean() == pytest.approx(np.mean(xs), rel=1e-12)
    assert m.variance() == pytest.approx(np.var(xs, ddof=1), rel=1e-10)


def test_batches_equal_sequential_accumulation(rng):
    xs = rng.normal(2.0, 3.0, size=2500)
    sequential = OnlineMean()
    for x in xs:
        sequential.add_sample(x)

    batched = OnlineMean()
    for chunk in np.array_split(xs, 7):
        batched.add_samples(chunk)
    batched.add_samples([])

    assert batched.count == sequential.count
    assert batched.mean() == pytest.approx(sequential.mean(), rel=1e-12)
    assert batched.variance() == pytest.approx(sequential.variance(), rel=1e-10)


def test_merge_partial_estimators(rng):
    a_xs = rng.uniform(size=300)
    b_xs = rng.uniform(5.0, 6.0, size=50)
    a, b = OnlineMean(), OnlineMean()
    a.add_samples(a_xs)
    b.add_samples(b_xs)
    a.merge(b)
    a.merge(OnlineMean())

    both = np.concatenate([a_xs, b_xs])
    assert a.count == 350
    assert a.mean() == pytest.approx(np.mean(both), rel=1e-12)
    assert a.standard_error() == pytest.approx(np.std(both, ddof=1) / np.sqrt(350), rel=1e-10)
