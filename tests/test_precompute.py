import math

import numpy as np
import pytest

from brdf.precompute_albedo import bake_specular_albedo, estimate_specular_albedo
from brdf.precompute_avg_albedo import bake_avg_albedo, hemispherical_average
from brdf.samplers import VCavityVisibleNormalSampler
from brdf.tables import Grid1D, Grid2D


@pytest.mark.parametrize("alpha, cos_theta", [(0.4, 0.6), (0.8, 0.3)])
def test_estimate_converges(alpha, cos_theta):
    coarse = estimate_specular_albedo(alpha, cos_theta, np.random.default_rng(1), sample_count=10000)
    fine = estimate_specular_albedo(alpha, cos_theta, np.random.default_rng(2), sample_count=300000)

    assert coarse.count == 10000
    assert fine.count == 300000
    sigma = math.hypot(coarse.standard_error(), fine.standard_error())
    assert abs(coarse.mean() - fine.mean()) <= 3.0 * sigma
    # the standard error shrinks as 1 / sqrt(N)
    assert coarse.standard_error() / fine.standard_error() == pytest.approx(math.sqrt(30.0), rel=0.2)


def test_smooth_mirror_reflects_everything():
    estimate = estimate_specular_albedo(0.01, 1.0, np.random.default_rng(3), sample_count=20000)
    assert estimate.mean() == pytest.approx(1.0, abs=0.05)


def test_samplers_agree():
    rng = np.random.default_rng(4)
    by_distribution = estimate_specular_albedo(0.5, 0.5, rng, sample_count=100000)
    by_visible_normals = estimate_specular_albedo(0.5, 0.5, rng, sample_count=100000,
                                                  sampler=VCavityVisibleNormalSampler)
    sigma = math.hypot(by_distribution.standard_error(), by_visible_normals.standard_error())
    assert abs(by_distribution.mean() - by_visible_normals.mean()) <= 4.0 * sigma


def test_fresnel_lowers_the_albedo():
    plain = estimate_specular_albedo(0.3, 0.8, np.random.default_rng(5), sample_count=20000)
    coated = estimate_specular_albedo(0.3, 0.8, np.random.default_rng(5), sample_count=20000,
                                      include_fresnel=True)
    assert 0.0 < coated.mean() < 0.2 * plain.mean()


def test_estimator_accumulates_into_given_estimate():
    rng = np.random.default_rng(6)
    first = estimate_specular_albedo(0.5, 0.5, rng, sample_count=1000, batch_size=300)
    again = estimate_specular_albedo(0.5, 0.5, rng, sample_count=500, estimator=first)
    assert again is first
    assert first.count == 1500


def test_baked_table_is_bounded(conductor_albedo):
    assert conductor_albedo.shape == (24, 24)
    assert np.all(np.isfinite(conductor_albedo.values))
    assert np.all(conductor_albedo.values >= 0.0)
    assert np.all(conductor_albedo.values <= 1.05)


def test_baked_table_trends(conductor_albedo):
    top = conductor_albedo.cos_theta_size - 1
    # rougher surfaces lose more energy at normal incidence
    assert conductor_albedo.get(2, top) > conductor_albedo.get(conductor_albedo.alpha_size - 1, top)
    assert conductor_albedo.sample(0.1, 1.0) > 0.9


def test_bake_is_reproducible_with_a_seed():
    a = bake_specular_albedo(3, 3, sample_count=500, seed=11)
    b = bake_specular_albedo(3, 3, sample_count=500, seed=11)
    c = bake_specular_albedo(3, 3, sample_count=500, seed=12)
    assert a == b
    assert a != c


def test_bake_in_a_process_pool_matches_serial():
    serial = bake_specular_albedo(3, 4, sample_count=500, seed=13)
    pooled = bake_specular_albedo(3, 4, sample_count=500, seed=13, workers=2)
    assert pooled == serial


def test_hemispherical_average_of_simple_tables():
    constant = Grid2D.build(4, 4, lambda alpha, cos_theta: 0.7)
    assert hemispherical_average(constant, 0.5) == pytest.approx(0.7, rel=1e-6)

    # E = cos(theta): 2 * int cos^2 sin = 2 / 3
    linear = Grid2D.build(3, 5, lambda alpha, cos_theta: cos_theta)
    assert hemispherical_average(linear, 0.2) == pytest.approx(2.0 / 3.0, rel=1e-6)


def test_hemispherical_average_clamps_albedo_above_one():
    bright = Grid2D.build(4, 4, lambda alpha, cos_theta: 1.2)
    assert hemispherical_average(bright, 0.5) == pytest.approx(1.0, rel=1e-6)

    # E = 1.5 cos(theta) exceeds one above cos = 2 / 3:
    # 2 * (int_0^{2/3} 1.5 mu^2 dmu + int_{2/3}^1 mu dmu) = 23 / 27
    steep = Grid2D.build(3, 301, lambda alpha, cos_theta: 1.5 * cos_theta)
    assert hemispherical_average(steep, 0.5, panels=512) == pytest.approx(23.0 / 27.0, rel=1e-4)
    assert hemispherical_average(steep, 0.5) < 2.0 * 1.5 / 3.0


def test_avg_table(conductor_albedo, conductor_avg):
    assert isinstance(conductor_avg, Grid1D)
    assert conductor_avg.alpha_size == conductor_albedo.alpha_size
    assert np.all((conductor_avg.values > 0.0) & (conductor_avg.values <= 1.05))
    assert conductor_avg.get(0) > conductor_avg.get(conductor_avg.alpha_size - 1)

    narrow = bake_avg_albedo(conductor_albedo, width=5, panels=32)
    assert narrow.alpha_size == 5
    assert narrow.get(2) == pytest.approx(hemispherical_average(conductor_albedo, 0.5), rel=5e-3)


def test_avg_rejects_odd_panels(conductor_albedo):
    with pytest.raises(ValueError):
        hemispherical_average(conductor_albedo, 0.5, panels=7)
