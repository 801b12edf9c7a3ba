"""
Microfacet primitives

Beckmann distribution, Smith / v-cavity shadowing-masking and Fresnel terms,
plus the small amount of vector algebra the samplers need. Every function is
vectorised: direction arguments are numpy arrays whose last axis has length 3
and scalar results broadcast over the leading axes.
"""

import math

import numpy as np

from brdf.numerics import composite_simpson


# ---------------------------
# Geometry & math utilities
# ---------------------------

def dot(a, b):
    return np.sum(np.multiply(a, b), axis=-1)


def normalize(v):
    v = np.asarray(v, dtype=float)
    return v / np.linalg.norm(v, axis=-1, keepdims=True)


def reflect(d, n):
    """Mirror d about n. reflect(-wo, h) gives the reflected direction of wo."""
    return d - 2.0 * dot(d, n)[..., None] * n


def polar_to_cartesian(theta, phi):
    theta = np.asarray(theta, dtype=float)
    phi = np.asarray(phi, dtype=float)
    st = np.sin(theta)
    return np.stack([st * np.cos(phi), st * np.sin(phi), np.cos(theta)], axis=-1)


def build_basis_from_normal(n):
    n = n / np.linalg.norm(n)
    if abs(n[0]) < 0.9:
        a = np.array([1.0, 0.0, 0.0])
    else:
        a = np.array([0.0, 1.0, 0.0])
    t1 = np.cross(n, a); t1 /= np.linalg.norm(t1)
    t2 = np.cross(n, t1); t2 /= np.linalg.norm(t2)
    return t1, t2, n


class ArbitraryBRDFSpace:
    """Orthonormal frame whose local +Z is the given normal."""

    def __init__(self, normal):
        t1, t2, n = build_basis_from_normal(np.asarray(normal, dtype=float))
        self.xaxis = t1
        self.yaxis = t2
        self.zaxis = n
        self._m = np.stack([t1, t2, n])

    def local_to_global(self, v):
        return np.asarray(v, dtype=float) @ self._m

    def global_to_local(self, v):
        return np.asarray(v, dtype=float) @ self._m.T


# ---------------------------
# Distribution & masking
# ---------------------------

def beckmann_ndf(normal, h, alpha):
    """
    Beckmann normal distribution D(h).

    Normalised so that the integral of D(h) * cos(theta_h) over the hemisphere
    is 1. Zero for microfacet normals below the surface.
    """
    cos_theta_h = dot(normal, h)
    cos2 = cos_theta_h * cos_theta_h
    alpha2 = alpha * alpha
    with np.errstate(divide="ignore", invalid="ignore"):
        tan2 = (1.0 - cos2) / cos2
        value = np.exp(-tan2 / alpha2) / (math.pi * alpha2 * cos2 * cos2)
    return np.where(cos_theta_h > 0.0, value, 0.0)


def beckmann_lambda(w, normal, alpha):
    """Smith Lambda for Beckmann, Walter et al. rational approximation."""
    cos_theta = np.clip(dot(normal, w), -1.0, 1.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        tan_theta = np.sqrt(1.0 - cos_theta * cos_theta) / np.abs(cos_theta)
        a = 1.0 / (alpha * tan_theta)
        value = (1.0 - 1.259 * a + 0.396 * a * a) / (3.535 * a + 2.181 * a * a)
    return np.where(a < 1.6, value, 0.0)


def smith_height_correlated(wi, wo, h, normal, alpha):
    """Height-correlated Smith G2 = 1 / (1 + Lambda(wi) + Lambda(wo))."""
    visible = (dot(wi, h) > 0.0) & (dot(wo, h) > 0.0)
    g = 1.0 / (1.0 + beckmann_lambda(wi, normal, alpha) + beckmann_lambda(wo, normal, alpha))
    return np.where(visible, g, 0.0)


def v_cavity(wi, wo, h, normal, alpha=None):
    """V-cavity G2 (Cook-Torrance). alpha is accepted for a uniform signature."""
    cos_h = dot(normal, h)
    wo_h = dot(wo, h)
    wi_h = dot(wi, h)
    visible = (wi_h > 0.0) & (wo_h > 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        g = np.minimum(1.0, np.minimum(2.0 * cos_h * dot(normal, wo) / wo_h,
                                       2.0 * cos_h * dot(normal, wi) / wi_h))
    return np.where(visible, np.maximum(g, 0.0), 0.0)


def v_cavity_g1(w, h, normal):
    """Single-direction v-cavity masking, used by the visible-normal sampler."""
    w_h = dot(w, h)
    with np.errstate(divide="ignore", invalid="ignore"):
        g = np.minimum(1.0, 2.0 * dot(normal, h) * dot(normal, w) / w_h)
    return np.where(w_h > 0.0, np.maximum(g, 0.0), 0.0)


MASKING = {
    "height_correlated": smith_height_correlated,
    "v_cavity": v_cavity,
}


def masking_function(name):
    try:
        return MASKING[name]
    except KeyError:
        raise ValueError(f"Unknown masking {name!r}, expected one of {sorted(MASKING)}") from None


# ---------------------------
# Fresnel
# ---------------------------

def fresnel_dielectric(cos_theta_i, eta=1.5):
    """
    Exact Fresnel reflectance of a dielectric interface for unpolarized light.

    Args:
        cos_theta_i: Cosine of the angle of incidence
        eta: Relative IOR (eta_transmitted / eta_incident)

    Returns:
        Fresnel reflectance value (0 to 1)
    """
    cos_theta_i = np.abs(cos_theta_i)
    sin2_theta_i = 1.0 - cos_theta_i * cos_theta_i

    # Snell's law
    sin2_theta_t = sin2_theta_i / (eta * eta)
    tir = sin2_theta_t >= 1.0
    cos_theta_t = np.sqrt(np.maximum(1.0 - sin2_theta_t, 0.0))

    with np.errstate(divide="ignore", invalid="ignore"):
        F_s = ((eta * cos_theta_i - cos_theta_t) / (eta * cos_theta_i + cos_theta_t)) ** 2
        F_p = ((cos_theta_i - eta * cos_theta_t) / (cos_theta_i + eta * cos_theta_t)) ** 2

    return np.where(tir, 1.0, 0.5 * (F_s + F_p))


def fresnel_conductor(eta, k, cos_theta_i):
    """Unpolarized Fresnel reflectance of a conductor with complex IOR eta + ik."""
    cos_theta_i = np.clip(np.abs(cos_theta_i), 0.0, 1.0)
    cos2 = cos_theta_i * cos_theta_i
    sin2 = 1.0 - cos2
    eta2 = eta * eta
    k2 = k * k

    t0 = eta2 - k2 - sin2
    a2b2 = np.sqrt(t0 * t0 + 4.0 * eta2 * k2)
    a = np.sqrt(np.maximum(0.5 * (a2b2 + t0), 0.0))

    t1 = a2b2 + cos2
    t2 = 2.0 * cos_theta_i * a
    Rs = (t1 - t2) / (t1 + t2)

    t3 = cos2 * a2b2 + sin2 * sin2
    t4 = t2 * sin2
    Rp = Rs * (t3 - t4) / (t3 + t4)

    return 0.5 * (Rp + Rs)


def fresnel_avg(eta, k, panels=128):
    """Hemispherical average 2 * int_0^1 F(mu) mu dmu of the conductor Fresnel term."""
    return 2.0 * composite_simpson(lambda mu: fresnel_conductor(eta, k, mu) * mu, panels, 0.0, 1.0)
