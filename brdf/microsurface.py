"""
Multiple-scattering Beckmann conductor microsurface

Stochastic evaluation of a microfacet conductor including all scattering
orders, after Heitz et al. 2016, "Multiple-Scattering Microfacet BSDFs with
the Smith Model": a ray performs a random walk on a Smith microsurface with
uniformly distributed heights, and every bounce adds a next-event estimate
towards the outgoing direction.

Directions are (3,) numpy arrays in the local frame (+Z is the macro normal).
Everything here is scalar: one walk per call.
"""

import math

import numpy as np
from scipy.special import erf, erfinv

from brdf.microfacet import fresnel_conductor

INV_2_SQRT_PI = 0.5 / math.sqrt(math.pi)
SCATTERING_ORDER_MAX = 10


# ---------------------------
# Uniform height distribution on [-1, 1]
# ---------------------------

def height_c1(h):
    return min(1.0, max(0.0, 0.5 * (h + 1.0)))


def height_inv_c1(u):
    return max(-1.0, min(1.0, 2.0 * u - 1.0))


class MicrosurfaceConductor:
    """Beckmann slopes, uniform heights, per-wavelength conductor Fresnel."""

    def __init__(self, alpha, eta=None, k=None):
        self.alpha = alpha
        self.eta = eta
        self.k = k

    # --- slope distribution ---

    def lambda_(self, w):
        if w[2] > 0.9999:
            return 0.0
        if w[2] < -0.9999:
            return -1.0
        theta = math.acos(w[2])
        a = 1.0 / (math.tan(theta) * self.alpha)
        return 0.5 * (float(erf(a)) - 1.0) + INV_2_SQRT_PI / a * math.exp(-a * a)

    def projected_area(self, w):
        if w[2] > 0.9999:
            return 1.0
        if w[2] < -0.9999:
            return 0.0
        return (1.0 + self.lambda_(w)) * w[2]

    def D(self, wm):
        if wm[2] <= 0.0:
            return 0.0
        cos2 = wm[2] * wm[2]
        tan2 = (1.0 - cos2) / cos2
        a2 = self.alpha * self.alpha
        return math.exp(-tan2 / a2) / (math.pi * a2 * cos2 * cos2)

    def D_wi(self, wi, wm):
        """Distribution of normals visible from wi."""
        if wm[2] <= 0.0:
            return 0.0
        area = self.projected_area(wi)
        if area <= 0.0:
            return 0.0
        return max(0.0, float(np.dot(wi, wm))) * self.D(wm) / area

    def _sample_p22_11(self, theta_i, u1, u2):
        """Visible slope for alpha = 1, by Newton-bisection on the slope CDF."""
        if theta_i < 0.0001:
            r = math.sqrt(-math.log(max(u1, 1e-12)))
            phi = 2.0 * math.pi * u2
            return r * math.cos(phi), r * math.sin(phi)

        sin_theta_i = math.sin(theta_i)
        cos_theta_i = math.cos(theta_i)
        slope_i = cos_theta_i / sin_theta_i

        area = 0.5 * (float(erf(slope_i)) + 1.0) * cos_theta_i + INV_2_SQRT_PI * sin_theta_i * math.exp(-slope_i * slope_i)
        if area < 0.0001 or area != area:
            return 0.0, 0.0
        c = 1.0 / area

        erf_min = -0.9999
        erf_max = max(erf_min, float(erf(slope_i)))
        erf_current = 0.5 * (erf_min + erf_max)

        while erf_max - erf_min > 0.00001:
            if not (erf_min <= erf_current <= erf_max):
                erf_current = 0.5 * (erf_min + erf_max)

            slope = float(erfinv(erf_current))
            if slope >= slope_i:
                cdf = 1.0
            else:
                cdf = c * (INV_2_SQRT_PI * sin_theta_i * math.exp(-slope * slope)
                           + cos_theta_i * (0.5 + 0.5 * float(erf(slope))))
            diff = cdf - u1

            if abs(diff) < 0.00001:
                break
            if diff > 0.0:
                if erf_max == erf_current:
                    break
                erf_max = erf_current
            else:
                if erf_min == erf_current:
                    break
                erf_min = erf_current

            derivative = 0.5 * c * cos_theta_i - 0.5 * c * sin_theta_i * slope
            erf_current -= diff / derivative

        slope_x = float(erfinv(min(erf_max, max(erf_min, erf_current))))
        slope_y = float(erfinv(2.0 * u2 - 1.0))
        return slope_x, slope_y

    def sample_D_wi(self, wi, u1, u2):
        # stretch to alpha = 1
        wi_11 = np.array([self.alpha * wi[0], self.alpha * wi[1], wi[2]])
        wi_11 /= np.linalg.norm(wi_11)

        sx, sy = self._sample_p22_11(math.acos(max(-1.0, min(1.0, wi_11[2]))), u1, u2)

        # rotate to the azimuth of wi, then stretch back
        phi = math.atan2(wi_11[1], wi_11[0])
        cp, sp = math.cos(phi), math.sin(phi)
        slope_x = self.alpha * (cp * sx - sp * sy)
        slope_y = self.alpha * (sp * sx + cp * sy)

        if not (math.isfinite(slope_x) and math.isfinite(slope_y)):
            if wi[2] > 0.0:
                return np.array([0.0, 0.0, 1.0])
            wm = np.array([wi[0], wi[1], 0.0])
            return wm / np.linalg.norm(wm)

        wm = np.array([-slope_x, -slope_y, 1.0])
        return wm / np.linalg.norm(wm)

    # --- height distribution ---

    def G_1(self, w, h0):
        """Masking of w from height h0."""
        if w[2] > 0.9999:
            return 1.0
        if w[2] <= 0.0:
            return 0.0
        return height_c1(h0) ** self.lambda_(w)

    def sample_height(self, wr, hr, u):
        """Height of the next intersection along wr from hr; inf when the ray escapes."""
        if wr[2] > 0.9999:
            return math.inf
        if wr[2] < -0.9999:
            return height_inv_c1(u * height_c1(hr))
        if abs(wr[2]) < 0.0001:
            return hr

        g1 = self.G_1(wr, hr)
        if u > 1.0 - g1:
            return math.inf
        lam = self.lambda_(wr)
        if lam == 0.0:
            return math.inf
        return height_inv_c1(height_c1(hr) / (1.0 - u) ** (1.0 / lam))

    # --- phase function ---

    def fresnel(self, cos_theta):
        if self.eta is None:
            return 1.0
        return float(fresnel_conductor(self.eta, self.k, cos_theta))

    def eval_phase_function(self, wi, wo):
        wh = wi + wo
        norm = np.linalg.norm(wh)
        if norm == 0.0:
            return 0.0
        wh = wh / norm
        if wh[2] < 0.0:
            return 0.0
        wi_h = float(np.dot(wi, wh))
        if wi_h <= 0.0:
            return 0.0
        return 0.25 * self.D_wi(wi, wh) / wi_h * self.fresnel(wi_h)

    def sample_phase_function(self, wi, random):
        """Reflected direction off a visible normal, and its Fresnel weight."""
        wm = self.sample_D_wi(wi, random.uniform(), random.uniform())
        wi_m = float(np.dot(wi, wm))
        wo = -wi + 2.0 * wm * wi_m
        return wo, self.fresnel(wi_m)

    # --- BRDF ---

    def eval(self, wi, wo, random, scattering_order=0):
        """
        Stochastic estimate of f(wi, wo) * cos(theta_o).

        scattering_order = 0 sums all orders up to SCATTERING_ORDER_MAX,
        n > 0 keeps the n-th order only.
        """
        if wo[2] < 0.0:
            return 0.0

        wr = -np.asarray(wi, dtype=float)
        hr = 1.0 + height_inv_c1(0.999)
        energy = 1.0
        total = 0.0

        current_order = 0
        while current_order < SCATTERING_ORDER_MAX:
            hr = self.sample_height(wr, hr, random.uniform())
            if hr == math.inf:
                break
            current_order += 1

            # next event estimation
            phase = self.eval_phase_function(-wr, wo)
            shadowing = self.G_1(wo, hr)
            contribution = energy * phase * shadowing
            if math.isfinite(contribution) and (scattering_order == 0 or current_order == scattering_order):
                total += contribution
            if scattering_order != 0 and current_order >= scattering_order:
                break

            wr, weight = self.sample_phase_function(-wr, random)
            energy *= weight

            if hr != hr or wr[2] != wr[2]:
                return 0.0

        return total
