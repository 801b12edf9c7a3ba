"""
Compensation lobe sampler

The energy compensation lobe of the coupled BRDF is proportional to
(1 - E(alpha, cos(theta_i))) cos(theta_i). Its polar density

    p(theta) = (1 - E(alpha, cos(theta))) cos(theta) / I(pi/2, alpha),
    I(theta, alpha) = int_0^theta (1 - E(alpha, cos(phi))) cos(phi) dphi,

is sampled by inverting the normalised integral I(theta) / I(pi/2) with
bisection.

I is accumulated once per alpha on a fixed Simpson grid over [0, pi/2]: every
pair of panels contributes h/3 (f0 + 4 f1 + f2) >= 0, so the running sums are
non-decreasing and I(theta) interpolates them linearly. The (alpha, u) inverse
table used by `sample_theta` is only built on first access.
"""

import math
from functools import cached_property

import numpy as np

from brdf.numerics import BISECTION_TOLERANCE, SIMPSON_PANELS, bisect_increasing, simpson_weights
from brdf.tables import Grid1D, Grid2D

HALF_PI = 0.5 * math.pi


class CompensationSampler:

    def __init__(self, albedo, panels=SIMPSON_PANELS, tolerance=BISECTION_TOLERANCE,
                 alpha_size=64, u_size=256):
        simpson_weights(panels)
        self.albedo = albedo
        self.panels = panels
        self.tolerance = tolerance
        self.alpha_size = alpha_size
        self.u_size = u_size
        self.nodes = np.linspace(0.0, HALF_PI, panels + 1)

    def probability(self, alpha, theta):
        """Un-normalised polar density (1 - E) cos(theta); E is clamped to [0, 1]."""
        cos_theta = np.cos(theta)
        return (1.0 - np.clip(self.albedo.sample(alpha, cos_theta), 0.0, 1.0)) * cos_theta

    def cumulative(self, alpha):
        """I(theta, alpha) at the even Simpson nodes 0, 2h, ..., pi/2."""
        f = self.probability(alpha, self.nodes)
        step = HALF_PI / self.panels
        pairs = step / 3.0 * (f[:-2:2] + 4.0 * f[1::2] + f[2::2])
        return np.concatenate(([0.0], np.cumsum(pairs)))

    def integral(self, theta, alpha, cumulative=None):
        if cumulative is None:
            cumulative = self.cumulative(alpha)
        return np.interp(theta, self.nodes[::2], cumulative)

    def theta_size(self, alpha):
        """Normalisation I(pi/2, alpha) of the polar density."""
        return float(self.cumulative(alpha)[-1])

    def cdf(self, theta, alpha, cumulative=None):
        if cumulative is None:
            cumulative = self.cumulative(alpha)
        size = cumulative[-1]
        if size <= 0.0:
            # no missing energy: fall back to the uniform-in-theta CDF
            return np.clip(np.asarray(theta, dtype=float) / HALF_PI, 0.0, 1.0)
        return self.integral(theta, alpha, cumulative) / size

    def invert(self, alpha, u, cumulative=None):
        """theta in [0, pi/2] with cdf(theta, alpha) == u, to `tolerance` in theta."""
        u = np.asarray(u, dtype=float)
        if np.any(~((u >= 0.0) & (u <= 1.0))):
            raise ValueError("u must lie in [0, 1]")
        if cumulative is None:
            cumulative = self.cumulative(alpha)
        return bisect_increasing(lambda theta: self.cdf(theta, alpha, cumulative), u,
                                 0.0, HALF_PI, self.tolerance)

    def tabulate(self, alpha, u_size=None):
        """Inverse CDF at one alpha as a Grid1D over u in [0, 1]."""
        if u_size is None:
            u_size = self.u_size
        return Grid1D(self.invert(alpha, np.linspace(0.0, 1.0, u_size)))

    @cached_property
    def inverse(self):
        """(alpha, u) -> theta over the albedo table's alpha range."""
        grid = Grid2D(np.zeros((self.alpha_size, self.u_size)), [self.albedo.bounds[0], (0.0, 1.0)])
        rows = [self.tabulate(alpha).values for alpha in grid.axis(0)]
        return Grid2D(np.stack(rows), grid.bounds)

    def sample_theta(self, alpha, random, size=None):
        return self.inverse.sample(alpha, random.uniform(size=size))
