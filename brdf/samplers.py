"""
Direction samplers

Each sampler draws wi from a numpy Generator and reports the solid-angle
density of that draw. They hold no state, so one instance (or the class
itself) can be shared freely. `size=None` returns a single (3,) direction,
an integer size returns a (size, 3) array.

The microfacet samplers can return directions below the surface; their pdf
is zero there and callers are expected to discard such draws.
"""

import math

import numpy as np

from brdf.microfacet import (
    ArbitraryBRDFSpace,
    beckmann_ndf,
    dot,
    normalize,
    polar_to_cartesian,
    reflect,
    v_cavity_g1,
)


def _sample_beckmann_normal(random, alpha, size):
    """Microfacet normal in the local frame, distributed as D(h) cos(theta_h)."""
    u1 = random.uniform(size=size)
    u2 = random.uniform(size=size)
    tan2 = -alpha * alpha * np.log(1.0 - u1)
    cos_theta = 1.0 / np.sqrt(1.0 + tan2)
    return polar_to_cartesian(np.arccos(cos_theta), 2.0 * math.pi * u2)


def _half_vector(wi, wo):
    with np.errstate(divide="ignore", invalid="ignore"):
        return normalize(np.asarray(wi, dtype=float) + np.asarray(wo, dtype=float))


class BeckmannImportanceSampler:
    """Samples h ~ D(h) cos(theta_h) and reflects wo about it."""

    @staticmethod
    def sample(random, alpha, wo, normal, size=None):
        space = ArbitraryBRDFSpace(normal)
        h = space.local_to_global(_sample_beckmann_normal(random, alpha, size))
        return reflect(-np.asarray(wo, dtype=float), h)

    @staticmethod
    def pdf(wi, alpha, wo, normal):
        h = _half_vector(wi, wo)
        with np.errstate(divide="ignore", invalid="ignore"):
            value = beckmann_ndf(normal, h, alpha) * dot(normal, h) / (4.0 * np.abs(dot(wo, h)))
        valid = (dot(wi, normal) > 0.0) & np.isfinite(value)
        return np.where(valid, value, 0.0)


class VCavityVisibleNormalSampler:
    """
    Visible normal sampling for the v-cavity microsurface (Heitz & d'Eon 2014).

    A normal h is drawn from D(h) cos(theta_h) and swapped for its mirror
    image about the macro normal with probability proportional to the
    projected area of the mirrored facet. The result is distributed as
    G1(wo, h) <wo, h> D(h) / <wo, n>.
    """

    @staticmethod
    def sample(random, alpha, wo, normal, size=None):
        space = ArbitraryBRDFSpace(normal)
        wo_local = space.global_to_local(wo)
        h = _sample_beckmann_normal(random, alpha, size)
        h_flip = h * np.array([-1.0, -1.0, 1.0])

        w = np.maximum(dot(wo_local, h), 0.0)
        w_flip = np.maximum(dot(wo_local, h_flip), 0.0)
        u = random.uniform(size=size)
        flip = u * (w + w_flip) < w_flip
        h = np.where(flip[..., None], h_flip, h)

        return reflect(-np.asarray(wo, dtype=float), space.local_to_global(h))

    @staticmethod
    def pdf(wi, alpha, wo, normal):
        h = _half_vector(wi, wo)
        with np.errstate(divide="ignore", invalid="ignore"):
            # D_wo(h) / (4 <wo, h>) with D_wo(h) = G1(wo, h) <wo, h> D(h) / <wo, n>
            value = v_cavity_g1(wo, h, normal) * beckmann_ndf(normal, h, alpha) / (4.0 * dot(wo, normal))
        valid = (dot(wi, normal) > 0.0) & np.isfinite(value)
        return np.where(valid, value, 0.0)


class LambertianSampler:
    """Cosine-weighted hemisphere, pdf = cos(theta) / pi."""

    @staticmethod
    def sample(random, normal, size=None):
        u1 = random.uniform(size=size)
        u2 = random.uniform(size=size)
        local = polar_to_cartesian(np.arcsin(np.sqrt(u1)), 2.0 * math.pi * u2)
        return ArbitraryBRDFSpace(normal).local_to_global(local)

    @staticmethod
    def pdf(wi, normal):
        cos_theta = dot(wi, normal)
        return np.where(cos_theta < 0.0, 0.0, cos_theta / math.pi)


class UniformHemisphereSampler:
    """Uniform over the hemisphere around normal, pdf = 1 / (2 pi)."""

    @staticmethod
    def sample(random, normal, size=None):
        cos_theta = random.uniform(size=size)
        phi = random.uniform(0.0, 2.0 * math.pi, size=size)
        local = polar_to_cartesian(np.arccos(cos_theta), phi)
        return ArbitraryBRDFSpace(normal).local_to_global(local)

    @staticmethod
    def pdf(wi, normal):
        cos_theta = dot(wi, normal)
        return np.where(cos_theta < 0.0, 0.0, 1.0 / (2.0 * math.pi))


SAMPLERS = {
    "beckmann": BeckmannImportanceSampler,
    "vcavity": VCavityVisibleNormalSampler,
}
