"""
Materials

The closed set of surface models used by the renderer: Lambertian, ideal
mirror, single-scattering microfacet conductor, the energy compensated
("coupled") conductor and dielectric, and the stochastic multiple-scattering
conductor.

Every material follows the same contract:

    is_emission()            -> bool
    emission(wo)             -> RGB
    bxdf(wo, wi)             -> RGB, vectorised over wi
    sample(random, wo, size) -> wi, (3,) or (size, 3)
    pdf(wo, wi)              -> solid-angle density, vectorised over wi

wo points towards the viewer, wi towards the light, both away from the
surface. The coupled materials read their albedo tables from a CoupledTables
instance that is built once and shared.
"""

import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from brdf.compensation import CompensationSampler
from brdf.microfacet import (
    ArbitraryBRDFSpace,
    beckmann_ndf,
    dot,
    fresnel_avg,
    fresnel_conductor,
    fresnel_dielectric,
    masking_function,
    normalize,
    polar_to_cartesian,
    reflect,
)
from brdf.microsurface import MicrosurfaceConductor
from brdf.samplers import LambertianSampler, UniformHemisphereSampler, VCavityVisibleNormalSampler
from brdf.tables import Grid1D, Grid2D

CONDUCTOR_ALBEDO = "albedo_specular_conductor.npz"
CONDUCTOR_AVG = "albedo_specular_conductor_avg.npz"
DIELECTRIC_ALBEDO = "albedo_specular_dielectrics.npz"
DIELECTRIC_AVG = "albedo_specular_dielectrics_avg.npz"


@dataclass(frozen=True)
class ConductorIOR:
    """Complex index of refraction at R (650nm), G (550nm), B (450nm)."""

    eta: tuple
    k: tuple


GOLD = ConductorIOR(eta=(0.15557, 0.42415, 1.3821), k=(3.6024, 2.4721, 1.9155))
COPPER = ConductorIOR(eta=(0.23780, 1.0066, 1.2404), k=(3.6264, 2.5823, 2.3929))


# ---------------------------
# Shared tables
# ---------------------------

@dataclass(frozen=True)
class CoupledTables:
    """Albedo, average albedo and compensation sampler of one material class."""

    albedo: Grid2D
    avg: Grid1D
    sampler: CompensationSampler

    @classmethod
    def from_tables(cls, albedo, avg, **sampler_kwargs):
        if avg.alpha_size != albedo.alpha_size:
            raise ValueError(f"Average table has {avg.alpha_size} alpha samples, albedo table has {albedo.alpha_size}")
        return cls(albedo, avg, CompensationSampler(albedo, **sampler_kwargs))

    @classmethod
    def load(cls, albedo_path, avg_path, **sampler_kwargs):
        albedo = Grid2D.load(albedo_path)
        avg = Grid1D.load(avg_path, bounds=[albedo.bounds[0]])
        return cls.from_tables(albedo, avg, **sampler_kwargs)


@dataclass(frozen=True)
class BRDFContext:
    """Tables of every coupled material class, loaded once per process."""

    conductor: CoupledTables
    dielectric: CoupledTables

    @classmethod
    def load(cls, directory, **sampler_kwargs):
        directory = Path(directory)
        return cls(
            conductor=CoupledTables.load(directory / CONDUCTOR_ALBEDO, directory / CONDUCTOR_AVG, **sampler_kwargs),
            dielectric=CoupledTables.load(directory / DIELECTRIC_ALBEDO, directory / DIELECTRIC_AVG, **sampler_kwargs),
        )


# ---------------------------
# Helpers
# ---------------------------

def _as_rgb(value):
    return np.broadcast_to(np.asarray(value, dtype=float), (3,)).copy()


def _check_alpha(alpha):
    if not alpha > 0.0:
        raise ValueError(f"alpha must be > 0, got {alpha}")
    return float(alpha)


def _rgb_zero(wi):
    return np.zeros(np.shape(wi)[:-1] + (3,))


class Material:
    """Base class of the material variants."""

    def __init__(self, normal=(0.0, 0.0, 1.0)):
        self.Ng = normalize(np.asarray(normal, dtype=float))

    def is_emission(self):
        return False

    def emission(self, wo):
        return np.zeros(3)

    def bxdf(self, wo, wi):
        raise NotImplementedError

    def sample(self, random, wo, size=None):
        raise NotImplementedError

    def pdf(self, wo, wi):
        raise NotImplementedError


class Lambertian(Material):

    def __init__(self, Le=0.0, R=1.0, normal=(0.0, 0.0, 1.0)):
        super().__init__(normal)
        self.Le = _as_rgb(Le)
        self.R = _as_rgb(R)

    def is_emission(self):
        return bool(np.any(self.Le >= np.finfo(float).eps))

    def emission(self, wo):
        return self.Le

    def bxdf(self, wo, wi):
        above = (dot(self.Ng, wi) >= 0.0) & (dot(self.Ng, wo) >= 0.0)
        return np.where(above[..., None], self.R / math.pi, 0.0)

    def sample(self, random, wo, size=None):
        return LambertianSampler.sample(random, self.Ng, size)

    def pdf(self, wo, wi):
        return LambertianSampler.pdf(wi, self.Ng)


class Specular(Material):
    """
    Ideal mirror.

    The BRDF is a Dirac delta: sample() returns the mirror direction, and
    bxdf() / pdf() follow the delta convention of returning zero for any
    explicitly chosen pair of directions.
    """

    is_delta = True

    def bxdf(self, wo, wi):
        return _rgb_zero(wi)

    def sample(self, random, wo, size=None):
        wi = reflect(-np.asarray(wo, dtype=float), self.Ng)
        if size is None:
            return wi
        return np.tile(wi, (size, 1))

    def pdf(self, wo, wi):
        return np.zeros(np.shape(wi)[:-1])


class MicrofacetConductor(Material):
    """Single-scattering Beckmann conductor, no energy compensation."""

    def __init__(self, alpha=0.2, use_fresnel=True, ior=GOLD, masking="v_cavity", normal=(0.0, 0.0, 1.0)):
        super().__init__(normal)
        self.alpha = _check_alpha(alpha)
        self.use_fresnel = use_fresnel
        self.ior = ior
        self.g2 = masking_function(masking)

    def specular(self, wo, wi):
        """Single-scattering lobe per channel; zero unless both directions are above the surface."""
        wi = np.asarray(wi, dtype=float)
        wo = np.asarray(wo, dtype=float)
        cos_term_wo = dot(self.Ng, wo)
        cos_term_wi = dot(self.Ng, wi)
        above = (cos_term_wo > 0.0) & (cos_term_wi > 0.0)

        with np.errstate(divide="ignore", invalid="ignore"):
            h = normalize(wi + wo)
            d = beckmann_ndf(self.Ng, h, self.alpha)
            g = self.g2(wi, wo, h, self.Ng, self.alpha)
            brdf = np.where(above, d * g / (4.0 * cos_term_wo * cos_term_wi), 0.0)

        brdf = brdf[..., None] * np.ones(3)
        if self.use_fresnel:
            cos_theta_fresnel = dot(h, wo)[..., None]
            brdf = brdf * fresnel_conductor(np.asarray(self.ior.eta), np.asarray(self.ior.k), cos_theta_fresnel)
        return np.nan_to_num(brdf)

    def bxdf(self, wo, wi):
        return self.specular(wo, wi)

    def sample(self, random, wo, size=None):
        return VCavityVisibleNormalSampler.sample(random, self.alpha, wo, self.Ng, size)

    def pdf(self, wo, wi):
        return VCavityVisibleNormalSampler.pdf(wi, self.alpha, wo, self.Ng)


class _Coupled(MicrofacetConductor):
    """Specular lobe plus the compensation lobe driven by the albedo tables."""

    def __init__(self, tables, alpha, use_fresnel, ior, masking, normal):
        super().__init__(alpha, use_fresnel, ior, masking, normal)
        self.tables = tables
        self.avg_albedo = float(tables.avg.sample(self.alpha))
        self.theta_cumulative = tables.sampler.cumulative(self.alpha)
        self.theta_size = float(self.theta_cumulative[-1])
        self.space = ArbitraryBRDFSpace(self.Ng)

    def albedo(self, cos_theta):
        return np.clip(self.tables.albedo.sample(self.alpha, cos_theta), 0.0, 1.0)

    def k_lambda(self):
        raise NotImplementedError

    def specular_probability(self, wo):
        """Probability of sampling the specular lobe; shared by sample() and pdf()."""
        raise NotImplementedError

    def compensation(self, wo, wi):
        cos_term_wo = dot(self.Ng, wo)
        cos_term_wi = dot(self.Ng, wi)
        above = (cos_term_wo > 0.0) & (cos_term_wi > 0.0)
        value = ((1.0 - self.albedo(cos_term_wo)) * (1.0 - self.albedo(cos_term_wi))
                 / (math.pi * (1.0 - self.avg_albedo)))
        return np.where(above, value, 0.0)[..., None] * self.k_lambda()

    def bxdf(self, wo, wi):
        return self.specular(wo, wi) + self.compensation(wo, wi)

    def compensation_pdf(self, wi):
        """Solid-angle density of the compensation lobe."""
        cos_theta = np.clip(dot(self.Ng, wi), -1.0, 1.0)
        if self.theta_size <= 0.0:
            return np.zeros(np.shape(cos_theta))
        theta = np.arccos(cos_theta)
        with np.errstate(divide="ignore", invalid="ignore"):
            value = (self.tables.sampler.probability(self.alpha, theta)
                     / (self.theta_size * 2.0 * math.pi * np.sin(theta)))
        return np.where(cos_theta > 0.0, value, 0.0)

    def sample_compensation(self, random, size=None):
        # exact inverse at this alpha
        u = random.uniform(size=size)
        theta = self.tables.sampler.invert(self.alpha, u, self.theta_cumulative)
        phi = random.uniform(0.0, 2.0 * math.pi, size=size)
        return self.space.local_to_global(polar_to_cartesian(theta, phi))

    def sample(self, random, wo, size=None):
        p_spec = self.specular_probability(wo)
        choose_spec = random.uniform(size=size) < p_spec
        wi_spec = VCavityVisibleNormalSampler.sample(random, self.alpha, wo, self.Ng, size)
        wi_comp = self.sample_compensation(random, size)
        return np.where(np.asarray(choose_spec)[..., None], wi_spec, wi_comp)

    def pdf(self, wo, wi):
        p_spec = self.specular_probability(wo)
        pdf_omega = (p_spec * VCavityVisibleNormalSampler.pdf(wi, self.alpha, wo, self.Ng)
                     + (1.0 - p_spec) * self.compensation_pdf(wi))
        above = (dot(self.Ng, wo) > 0.0) & (dot(self.Ng, wi) > 0.0)
        return np.where(above, pdf_omega, 0.0)


class CoupledConductor(_Coupled):
    """
    Energy compensated Beckmann conductor.

    With use_fresnel off the two lobes integrate to exactly one for every wo
    (white furnace). With Fresnel the compensation lobe is scaled by
    E_avg F_avg^2 / (1 - F_avg (1 - E_avg)) per channel.
    """

    def __init__(self, tables, alpha=0.5, use_fresnel=True, ior=GOLD, masking="v_cavity",
                 normal=(0.0, 0.0, 1.0)):
        super().__init__(tables, alpha, use_fresnel, ior, masking, normal)
        if use_fresnel:
            F = np.array([fresnel_avg(eta, k) for eta, k in zip(ior.eta, ior.k)])
            E = self.avg_albedo
            self._k_lambda = E * F * F / (1.0 - F * (1.0 - E))
        else:
            self._k_lambda = np.ones(3)

    def k_lambda(self):
        return self._k_lambda

    def specular_probability(self, wo):
        return float(self.albedo(dot(self.Ng, wo)))


class CoupledDielectric(_Coupled):
    """
    Beckmann dielectric coating over a diffuse base of colour Cd.

    Reads the table baked with dielectric Fresnel. The specular lobe is chosen
    with probability E / (E + k_avg (1 - E)), k_avg being the mean of Cd.
    """

    def __init__(self, tables, alpha=0.2, Cd=1.0, eta=1.5, masking="v_cavity", normal=(0.0, 0.0, 1.0)):
        super().__init__(tables, alpha, False, None, masking, normal)
        self.Cd = _as_rgb(Cd)
        self.eta = eta

    def specular(self, wo, wi):
        brdf = super().specular(wo, wi)
        with np.errstate(invalid="ignore"):
            h = normalize(np.asarray(wi, dtype=float) + np.asarray(wo, dtype=float))
        f = fresnel_dielectric(dot(h, wo), self.eta)
        return np.nan_to_num(brdf * f[..., None])

    def k_lambda(self):
        return self.Cd

    def specular_probability(self, wo):
        sp_albedo = float(self.albedo(dot(self.Ng, wo)))
        k_avg = float(np.mean(self.Cd))
        denom = sp_albedo + k_avg * (1.0 - sp_albedo)
        if denom <= 0.0:
            return 1.0
        return sp_albedo / denom


class MultiScatterConductor(Material):
    """
    Beckmann conductor with every scattering order, evaluated by a random walk
    on the microsurface. bxdf() is a stochastic, unbiased estimate and uses
    the material's own generator.
    """

    single_scattering = 0.8

    def __init__(self, alpha=1.0, ior=COPPER, use_fresnel=True, seed=None, normal=(0.0, 0.0, 1.0)):
        super().__init__(normal)
        self.alpha = _check_alpha(alpha)
        self.space = ArbitraryBRDFSpace(self.Ng)
        self.random = np.random.default_rng(seed)
        if use_fresnel:
            self.microsurfaces = [MicrosurfaceConductor(self.alpha, eta, k) for eta, k in zip(ior.eta, ior.k)]
        else:
            self.microsurfaces = [MicrosurfaceConductor(self.alpha)] * 3

    def bxdf(self, wo, wi):
        wi = np.asarray(wi, dtype=float)
        out = _rgb_zero(wi)
        wo_local = self.space.global_to_local(wo)
        if wo_local[2] < 0.0:
            return out
        for index in np.ndindex(wi.shape[:-1]):
            wi_local = self.space.global_to_local(wi[index])
            if wi_local[2] < 0.0:
                continue
            # eval returns f * cos(theta_o) for the walk's outgoing direction
            out[index] = [m.eval(wi_local, wo_local, self.random) / wo_local[2] for m in self.microsurfaces]
        return out

    def sample(self, random, wo, size=None):
        choose_spec = random.uniform(size=size) < self.single_scattering
        wi_spec = VCavityVisibleNormalSampler.sample(random, self.alpha, wo, self.Ng, size)
        wi_uniform = UniformHemisphereSampler.sample(random, self.Ng, size)
        return np.where(np.asarray(choose_spec)[..., None], wi_spec, wi_uniform)

    def pdf(self, wo, wi):
        return (self.single_scattering * VCavityVisibleNormalSampler.pdf(wi, self.alpha, wo, self.Ng)
                + (1.0 - self.single_scattering) * UniformHemisphereSampler.pdf(wi, self.Ng))
