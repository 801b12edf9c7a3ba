import numpy as np
import pytest

from brdf.compensation import HALF_PI, CompensationSampler
from brdf.numerics import composite_simpson
from brdf.tables import Grid2D


@pytest.fixture(scope="module")
def sampler(conductor_tables):
    return conductor_tables.sampler


@pytest.mark.parametrize("alpha", [0.3, 0.5, 0.7, 0.9])
def test_invert_undoes_cdf(sampler, alpha):
    thetas = np.linspace(0.05, 1.4, 40)
    u = sampler.cdf(thetas, alpha)
    np.testing.assert_allclose(sampler.invert(alpha, u), thetas, atol=1e-4)


@pytest.mark.parametrize("alpha", [0.05, 0.2, 0.5, 0.9])
def test_cdf_of_invert_recovers_u(sampler, alpha):
    u = np.linspace(0.0, 1.0, 101)
    thetas = sampler.invert(alpha, u)
    assert np.all(np.diff(thetas) >= 0.0)
    assert np.all((thetas >= 0.0) & (thetas <= HALF_PI))
    np.testing.assert_allclose(sampler.cdf(thetas, alpha), u, atol=1e-4)


@pytest.mark.parametrize("alpha", [0.05, 0.2, 0.6])
def test_cdf_is_a_monotone_distribution(sampler, alpha):
    assert sampler.cdf(0.0, alpha) == pytest.approx(0.0, abs=1e-12)
    assert sampler.cdf(HALF_PI, alpha) == pytest.approx(1.0, abs=1e-12)
    values = sampler.cdf(np.linspace(0.0, HALF_PI, 2000), alpha)
    assert np.all(np.diff(values) >= 0.0)
    assert values.max() <= 1.0


def test_cumulative_matches_full_simpson(sampler):
    full = composite_simpson(lambda theta: sampler.probability(0.5, theta), sampler.panels, 0.0, HALF_PI)
    cumulative = sampler.cumulative(0.5)
    assert cumulative.shape == (sampler.panels // 2 + 1,)
    assert cumulative[0] == 0.0
    assert sampler.theta_size(0.5) == pytest.approx(float(full), rel=1e-12)


def test_probability_is_non_negative(sampler):
    thetas = np.linspace(0.0, HALF_PI, 50)
    for alpha in (0.0, 0.05, 0.5, 1.0):
        assert np.all(sampler.probability(alpha, thetas) >= 0.0)
    assert sampler.theta_size(0.5) > 0.0


def test_inverse_table_is_monotone_in_u(sampler):
    inverse = sampler.inverse
    assert inverse.shape == (32, 256)
    assert np.all(np.diff(inverse.values, axis=1) >= 0.0)
    assert np.all((inverse.values >= 0.0) & (inverse.values <= HALF_PI))


def test_inverse_table_is_built_on_first_use(conductor_albedo):
    sampler = CompensationSampler(conductor_albedo, alpha_size=3, u_size=5)
    assert "inverse" not in vars(sampler)
    assert sampler.theta_size(0.5) > 0.0
    assert "inverse" not in vars(sampler)
    assert sampler.inverse.shape == (3, 5)
    assert sampler.inverse is sampler.inverse


def test_tabulate_at_one_alpha(sampler):
    row = sampler.tabulate(0.4, 17)
    assert row.shape == (17,)
    np.testing.assert_allclose(row.values, sampler.invert(0.4, np.linspace(0.0, 1.0, 17)))
    assert sampler.tabulate(0.4).shape == (sampler.u_size,)


def test_rejects_odd_panel_count(conductor_albedo):
    with pytest.raises(ValueError):
        CompensationSampler(conductor_albedo, panels=5)


def test_flat_albedo_falls_back_to_uniform_theta():
    white = CompensationSampler(Grid2D.build(4, 4, lambda alpha, cos_theta: 1.0))
    assert white.theta_size(0.5) == 0.0
    assert white.cdf(0.25 * HALF_PI, 0.5) == pytest.approx(0.25)
    assert white.invert(0.5, 0.5) == pytest.approx(0.5 * HALF_PI, abs=1e-5)


@pytest.mark.parametrize("u", [-0.1, 1.5, float("nan")])
def test_invert_rejects_u_outside_unit_interval(sampler, u):
    with pytest.raises(ValueError):
        sampler.invert(0.5, u)
    with pytest.raises(ValueError):
        sampler.invert(0.5, np.array([0.2, u]))


def test_sample_theta_follows_cdf(sampler, rng):
    alpha = 0.6
    thetas = sampler.sample_theta(alpha, rng, size=20000)
    assert np.all((thetas >= 0.0) & (thetas <= HALF_PI))
    for edge in (0.3, 0.6, 0.9, 1.2):
        assert np.mean(thetas < edge) == pytest.approx(sampler.cdf(edge, alpha), abs=0.02)
    assert np.ndim(sampler.sample_theta(alpha, rng)) == 0


def test_invert_bounds_map_to_interval_ends(sampler):
    # E can exceed one near grazing, so the top of the distribution may sit below pi / 2
    ends = sampler.invert(0.5, np.array([0.0, 1.0]))
    assert ends[0] == pytest.approx(0.0, abs=1e-5)
    assert ends[1] <= HALF_PI
    assert sampler.cdf(ends[1], 0.5) == pytest.approx(1.0, abs=1e-9)
    assert sampler.cdf(ends[1] - 1e-3, 0.5) < 1.0
