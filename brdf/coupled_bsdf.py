"""
Coupled Conductor Mitsuba 3 Plugin

Energy compensated Beckmann conductor: the single-scattering microfacet lobe
(v-cavity masking) plus a diffuse-like lobe that returns the energy lost to
multiple scattering, driven by precomputed albedo tables.

Needs a JIT variant (llvm_ad_rgb, cuda_ad_rgb) because the tables are
gathered from mi.Float arrays.
"""

import mitsuba as mi
import drjit as dr
import numpy as np
from pathlib import Path

from brdf.compensation import CompensationSampler
from brdf.materials import CONDUCTOR_ALBEDO, CONDUCTOR_AVG, GOLD, ConductorIOR
from brdf.microfacet import fresnel_avg
from brdf.tables import Grid1D, Grid2D

LUT_SIZE = 256


class CoupledConductorBSDF(mi.BSDF):
    """
    Custom BSDF implementing the coupled (energy compensated) conductor.

    Parameters:
    1. alpha: Beckmann roughness
    2. use_fresnel: Conductor Fresnel weighting (off gives a white furnace)
    3. eta, k: Complex IOR as RGB (defaults to gold)
    4. albedo_filename, avg_filename: Baked tables (.npz)
    """

    def __init__(self, props):
        """Initialize the BSDF with parameters and precomputed data."""
        mi.BSDF.__init__(self, props)

        self.m_alpha = float(props.get('alpha', 0.5))
        self.m_use_fresnel = bool(props.get('use_fresnel', True))

        eta = props.get('eta')
        k = props.get('k')
        ior = GOLD if eta is None or k is None else ConductorIOR(tuple(mi.ScalarColor3f(eta)),
                                                                 tuple(mi.ScalarColor3f(k)))
        self.m_eta = mi.Color3f(*ior.eta)
        self.m_k = mi.Color3f(*ior.k)

        # Load precomputed tables, next to the plugin unless given
        plugin_dir = Path(__file__).parent.resolve()
        albedo_path = props.get('albedo_filename', str(plugin_dir / CONDUCTOR_ALBEDO))
        avg_path = props.get('avg_filename', str(plugin_dir / CONDUCTOR_AVG))
        albedo = Grid2D.load(albedo_path)
        avg = Grid1D.load(avg_path, bounds=[albedo.bounds[0]])
        sampler = CompensationSampler(albedo)

        # Everything the tables contribute at this alpha, as 1D LUTs
        cos_thetas = np.linspace(0.0, 1.0, LUT_SIZE)
        albedo_lut = np.clip(albedo.sample(self.m_alpha, cos_thetas), 0.0, 1.0)
        theta_lut = sampler.tabulate(self.m_alpha, LUT_SIZE).values

        self.m_lut_size = LUT_SIZE
        self.m_albedo_lut = mi.Float(albedo_lut.astype(np.float32))
        self.m_theta_lut = mi.Float(theta_lut.astype(np.float32))
        self.m_avg_albedo = float(avg.sample(self.m_alpha))
        self.m_theta_size = sampler.theta_size(self.m_alpha)

        if self.m_use_fresnel:
            F = np.array([fresnel_avg(e, kk) for e, kk in zip(ior.eta, ior.k)])
            E = self.m_avg_albedo
            k_lambda = E * F * F / (1.0 - F * (1.0 - E))
        else:
            k_lambda = np.ones(3)
        self.m_k_lambda = mi.Color3f(*k_lambda.tolist())

        # Set BSDF flags
        self.m_components = [mi.BSDFFlags.GlossyReflection, mi.BSDFFlags.DiffuseReflection]
        self.m_flags = self.m_components[0] | self.m_components[1]

    def eval(self, ctx, si, wo, active):
        """
        Evaluate the BRDF times the cosine foreshortening.

        Args:
            ctx: BSDF context
            si: Surface interaction
            wo: Outgoing direction (towards the light)
            active: Mask for active lanes

        Returns:
            BRDF value as a spectrum
        """
        wi = si.wi
        cos_theta_i = mi.Frame3f.cos_theta(wi)
        cos_theta_o = mi.Frame3f.cos_theta(wo)

        # Only evaluate for valid reflection directions
        active = active & (cos_theta_i > 0) & (cos_theta_o > 0)

        f_spec = self._eval_specular(wi, wo, active)
        f_comp = self._eval_compensation(cos_theta_i, cos_theta_o, active)

        result = (f_spec + f_comp) * dr.maximum(cos_theta_o, 0.0)

        return dr.select(active, result, mi.Spectrum(0.0))

    def sample(self, ctx, si, sample1, sample2, active):
        wi = si.wi
        p_spec = self._specular_probability(mi.Frame3f.cos_theta(wi), active)
        use_spec = sample1 < p_spec

        # 1. Specular lobe: v-cavity visible normal, sample1 is reused for the flip
        m = self._sample_beckmann_normal(sample2)
        m_flip = mi.Vector3f(-m.x, -m.y, m.z)
        w_m = dr.maximum(dr.dot(wi, m), 0.0)
        w_flip = dr.maximum(dr.dot(wi, m_flip), 0.0)
        u_flip = sample1 / dr.maximum(p_spec, 1e-8)
        m = dr.select(u_flip * (w_m + w_flip) < w_flip, m_flip, m)
        wo_spec = mi.reflect(wi, m)

        # 2. Compensation lobe: inverse CDF in theta, uniform phi
        theta = self._lut(self.m_theta_lut, sample2.x, active)
        sin_theta, cos_theta = dr.sincos(theta)
        sin_phi, cos_phi = dr.sincos(dr.two_pi * sample2.y)
        wo_comp = mi.Vector3f(sin_theta * cos_phi, sin_theta * sin_phi, cos_theta)

        wo = dr.select(use_spec, wo_spec, wo_comp)

        pdf = self.pdf(ctx, si, wo, active)
        value = self.eval(ctx, si, wo, active)
        valid = active & (mi.Frame3f.cos_theta(wo) > 0) & (pdf > 0)

        bs = mi.BSDFSample3f()
        bs.wo = wo
        bs.pdf = pdf
        bs.eta = mi.Float(1.0)
        bs.sampled_type = dr.select(use_spec, mi.UInt32(+mi.BSDFFlags.GlossyReflection),
                                    mi.UInt32(+mi.BSDFFlags.DiffuseReflection))
        bs.sampled_component = dr.select(use_spec, mi.UInt32(0), mi.UInt32(1))

        # Return throughput (value / pdf)
        weight = value / dr.maximum(pdf, 1e-8)

        return (bs, dr.select(valid, weight, mi.Spectrum(0.0)))

    def pdf(self, ctx, si, wo, active):
        """Mixture of the visible-normal pdf and the compensation lobe pdf."""
        wi = si.wi
        cos_theta_i = mi.Frame3f.cos_theta(wi)
        cos_theta_o = mi.Frame3f.cos_theta(wo)
        active = active & (cos_theta_i > 0) & (cos_theta_o > 0)

        p_spec = self._specular_probability(cos_theta_i, active)

        # Visible normals: G1(wi, m) D(m) / (4 cos_theta_i)
        m = dr.normalize(wi + wo)
        pdf_spec = (self._v_cavity_g1(wi, m) * self._beckmann_ndf(m)
                    / (4.0 * dr.maximum(cos_theta_i, 1e-8)))

        # Compensation: p(theta) / (2 pi sin(theta)), p(theta) = (1 - E) cos(theta) / theta_size
        theta = dr.acos(dr.clamp(cos_theta_o, -1.0, 1.0))
        density = (1.0 - self._lut(self.m_albedo_lut, cos_theta_o, active)) * cos_theta_o
        pdf_comp = density / (self.m_theta_size * dr.two_pi * dr.maximum(dr.sin(theta), 1e-8))

        result = p_spec * pdf_spec + (1.0 - p_spec) * pdf_comp
        return dr.select(active, result, 0.0)

    # =========================================================================
    # Helper Functions: Lobes
    # =========================================================================

    def _eval_specular(self, wi, wo, active):
        """
        Single-scattering lobe.

        Formula: f_spec = (F * G * D) / (4 * |wi.n| * |wo.n|)
        """
        m = dr.normalize(wi + wo)

        D = self._beckmann_ndf(m)
        G = dr.minimum(self._v_cavity_g1(wi, m), self._v_cavity_g1(wo, m))

        cos_theta_i = mi.Frame3f.cos_theta(wi)
        cos_theta_o = mi.Frame3f.cos_theta(wo)
        denom = 4.0 * dr.abs(cos_theta_i) * dr.abs(cos_theta_o)

        f = mi.Spectrum(D * G / dr.maximum(denom, 1e-8))
        if self.m_use_fresnel:
            f = f * self._fresnel_conductor(dr.dot(wi, m))

        return dr.select(active, f, mi.Spectrum(0.0))

    def _eval_compensation(self, cos_theta_i, cos_theta_o, active):
        """
        Compensation lobe.

        Formula: f_comp = k_lambda * (1 - E(mu_i)) * (1 - E(mu_o)) / (pi * (1 - E_avg))
        """
        E_i = self._lut(self.m_albedo_lut, cos_theta_i, active)
        E_o = self._lut(self.m_albedo_lut, cos_theta_o, active)
        value = (1.0 - E_i) * (1.0 - E_o) * dr.inv_pi / (1.0 - self.m_avg_albedo)
        return self.m_k_lambda * value

    def _specular_probability(self, cos_theta_i, active):
        return self._lut(self.m_albedo_lut, cos_theta_i, active)

    # =========================================================================
    # Helper Functions: Core Formulas
    # =========================================================================

    def _lut(self, data, x, active):
        """Linear lookup of a LUT sampled uniformly over [0, 1]."""
        lut_max_index = mi.Float(self.m_lut_size - 1)
        pos = dr.clamp(x, 0.0, 1.0) * lut_max_index
        pos = dr.minimum(pos, lut_max_index - 1e-6)

        idx_f = dr.floor(pos)
        frac = pos - idx_f
        idx0 = mi.UInt32(idx_f)
        idx1 = idx0 + 1

        v0 = dr.gather(mi.Float, data, idx0, active)
        v1 = dr.gather(mi.Float, data, idx1, active)
        return dr.lerp(v0, v1, frac)

    def _sample_beckmann_normal(self, sample):
        """Microfacet normal distributed as D(m) cos(theta_m)."""
        alpha_2 = self.m_alpha * self.m_alpha
        tan_2_theta = -alpha_2 * dr.log(1.0 - sample.x)
        cos_theta = dr.rsqrt(1.0 + tan_2_theta)
        sin_theta = dr.safe_sqrt(1.0 - cos_theta * cos_theta)
        sin_phi, cos_phi = dr.sincos(dr.two_pi * sample.y)
        return mi.Vector3f(sin_theta * cos_phi, sin_theta * sin_phi, cos_theta)

    def _beckmann_ndf(self, m):
        """Beckmann Normal Distribution Function."""
        cos_theta_m = mi.Frame3f.cos_theta(m)
        cos_theta_m_2 = cos_theta_m * cos_theta_m
        cos_theta_m_4 = cos_theta_m_2 * cos_theta_m_2
        alpha_2 = self.m_alpha * self.m_alpha

        tan_2_theta = (1.0 - cos_theta_m_2) / dr.maximum(cos_theta_m_2, 1e-8)
        result = dr.exp(-tan_2_theta / alpha_2) / dr.maximum(dr.pi * alpha_2 * cos_theta_m_4, 1e-8)

        return dr.select(cos_theta_m > 0, result, 0.0)

    def _v_cavity_g1(self, v, m):
        """
        Single-direction v-cavity masking.

        Formula: G1 = min(1, 2 * (n.m) * (n.v) / (v.m))
        """
        v_m = dr.dot(v, m)
        g1 = dr.minimum(1.0, 2.0 * mi.Frame3f.cos_theta(m) * mi.Frame3f.cos_theta(v) / dr.maximum(v_m, 1e-8))
        return dr.select(v_m > 0, dr.maximum(g1, 0.0), 0.0)

    def _fresnel_conductor(self, cos_theta_i):
        """Unpolarized conductor Fresnel reflectance, per channel."""
        cos_theta_i = dr.clamp(dr.abs(cos_theta_i), 0.0, 1.0)
        cos_2 = cos_theta_i * cos_theta_i
        sin_2 = 1.0 - cos_2
        eta_2 = self.m_eta * self.m_eta
        k_2 = self.m_k * self.m_k

        t0 = eta_2 - k_2 - sin_2
        a2b2 = dr.sqrt(t0 * t0 + 4.0 * eta_2 * k_2)
        a = dr.safe_sqrt(0.5 * (a2b2 + t0))

        t1 = a2b2 + cos_2
        t2 = 2.0 * cos_theta_i * a
        Rs = (t1 - t2) / (t1 + t2)

        t3 = cos_2 * a2b2 + sin_2 * sin_2
        t4 = t2 * sin_2
        Rp = Rs * (t3 - t4) / (t3 + t4)

        return 0.5 * (Rp + Rs)

    def traverse(self, callback):
        """Expose the per-channel compensation scale."""
        callback.put_parameter('k_lambda', self.m_k_lambda, mi.ParamFlags.NonDifferentiable)

    def parameters_changed(self, keys=None):
        """
        Called when parameters are updated.

        The LUTs are resampled at construction time for a fixed alpha, so a
        changed alpha needs a new plugin instance.
        """
        mi.BSDF.parameters_changed(self, keys)

    def to_string(self):
        """Return a string representation of the BSDF."""
        return (f"CoupledConductorBSDF[\n"
                f"  alpha = {self.m_alpha},\n"
                f"  use_fresnel = {self.m_use_fresnel},\n"
                f"  eta = {self.m_eta},\n"
                f"  k = {self.m_k},\n"
                f"  avg_albedo = {self.m_avg_albedo}\n"
                f"]")


mi.register_bsdf("coupled_conductor", lambda props: CoupledConductorBSDF(props))
