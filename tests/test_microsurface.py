import math

import numpy as np
import pytest

from brdf.microfacet import polar_to_cartesian
from brdf.microsurface import MicrosurfaceConductor, height_c1, height_inv_c1
from brdf.samplers import UniformHemisphereSampler

N = np.array([0.0, 0.0, 1.0])


def _walk_albedo(surface, wi, rng, n=3000, scattering_order=0):
    """int eval(wi, wo) dwo with wo uniform on the hemisphere."""
    wos = UniformHemisphereSampler.sample(rng, N, size=n)
    values = [surface.eval(wi, wo, rng, scattering_order) for wo in wos]
    return 2.0 * math.pi * float(np.mean(values))


def test_height_distribution_round_trip():
    for h in (-1.0, -0.3, 0.0, 0.8, 1.0):
        assert height_inv_c1(height_c1(h)) == pytest.approx(h)
    assert height_c1(5.0) == 1.0
    assert height_c1(-5.0) == 0.0


def test_lambda_and_masking():
    surface = MicrosurfaceConductor(0.5)
    assert surface.lambda_(N) == 0.0
    grazing = polar_to_cartesian(1.4, 0.0)
    assert surface.lambda_(grazing) > 0.0
    assert surface.G_1(grazing, 1.0) == pytest.approx(1.0)
    assert 0.0 < surface.G_1(grazing, 0.0) < 1.0
    assert surface.G_1(-grazing, 0.0) == 0.0


def test_visible_normals_face_the_viewer(rng):
    surface = MicrosurfaceConductor(0.7)
    wi = polar_to_cartesian(1.0, 0.3)
    for _ in range(200):
        wm = surface.sample_D_wi(wi, rng.uniform(), rng.uniform())
        assert np.linalg.norm(wm) == pytest.approx(1.0)
        assert wm[2] > 0.0
        assert np.dot(wi, wm) > -1e-6


def test_white_furnace_random_walk(rng):
    surface = MicrosurfaceConductor(0.5)
    albedo = _walk_albedo(surface, polar_to_cartesian(math.acos(0.7), 0.0), rng)
    assert albedo == pytest.approx(1.0, abs=0.1)


def test_higher_orders_add_energy(rng):
    surface = MicrosurfaceConductor(1.0)
    wi = polar_to_cartesian(math.acos(0.5), 0.0)
    single = _walk_albedo(surface, wi, rng, scattering_order=1)
    total = _walk_albedo(surface, wi, rng)
    assert total > single + 0.05


def test_fresnel_absorbs(rng):
    wi = polar_to_cartesian(0.3, 0.0)
    copper_blue = MicrosurfaceConductor(0.5, eta=1.2404, k=2.3929)
    assert copper_blue.fresnel(1.0) < 1.0
    assert MicrosurfaceConductor(0.5).fresnel(0.2) == 1.0
    assert _walk_albedo(copper_blue, wi, rng, n=1500) < 0.9
    assert copper_blue.eval(wi, polar_to_cartesian(0.3, math.pi) * [1.0, 1.0, -1.0], rng) == 0.0
