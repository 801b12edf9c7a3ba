#!/usr/bin/env python3
"""
Hemispherical average albedo precomputation

Integrates a baked E(alpha, cosTheta) table over the hemisphere,

    E_avg(alpha) = 2 * int_0^{pi/2} E(alpha, cos(theta)) cos(theta) sin(theta) dtheta,

with E clamped to [0, 1], using the composite Simpson rule, and writes the
1D table indexed by alpha.

    python -m brdf.precompute_avg_albedo albedo_specular_conductor.npz albedo_specular_conductor_avg.npz
"""

import argparse
import math

import numpy as np

from brdf.numerics import SIMPSON_PANELS, composite_simpson
from brdf.tables import Grid1D, Grid2D


def hemispherical_average(albedo, alpha, panels=SIMPSON_PANELS):
    """E is clamped to [0, 1] as in the compensation lobe it normalises."""
    def integrand(theta):
        cos_theta = np.cos(theta)
        E = np.clip(albedo.sample(alpha, cos_theta), 0.0, 1.0)
        return E * cos_theta * np.sin(theta)

    return 2.0 * float(composite_simpson(integrand, panels, 0.0, 0.5 * math.pi))


def bake_avg_albedo(albedo, width=None, panels=SIMPSON_PANELS):
    """1D table of hemispherical averages; width defaults to the albedo's alpha resolution."""
    if width is None:
        width = albedo.alpha_size
    return Grid1D.build(width, lambda alpha: hemispherical_average(albedo, alpha, panels),
                        bounds=[albedo.bounds[0]])


def main():
    ap = argparse.ArgumentParser(description="Hemispherical average of a specular albedo table")
    ap.add_argument("albedo", type=str, help="Input E(alpha, cosTheta) table (.npz)")
    ap.add_argument("output", type=str, help="Output E_avg(alpha) table (.npz)")
    ap.add_argument("--size", type=int, default=None,
                    help="Number of alpha samples (default: same as the input table)")
    ap.add_argument("--panels", type=int, default=SIMPSON_PANELS,
                    help="Simpson panels over [0, pi/2] (even)")
    ap.add_argument("--plot", type=str, default=None,
                    help="Optional plot (.png)")
    args = ap.parse_args()

    albedo = Grid2D.load(args.albedo)
    print(f"[avg] {args.albedo}: {albedo.alpha_size}x{albedo.cos_theta_size}", flush=True)

    avg = bake_avg_albedo(albedo, args.size, args.panels)
    avg.save(args.output)
    print(f"Wrote average albedo table to: {args.output}")

    print("First few entries:")
    for i in range(min(5, avg.alpha_size)):
        print(f"  alpha={avg.axis(0)[i]:.3f} -> E_avg={avg.get(i):.6f}")

    if args.plot:
        import matplotlib.pyplot as plt

        plt.plot(avg.axis(0), avg.values)
        plt.xlabel("alpha")
        plt.ylabel("E_avg")
        plt.title("Hemispherical Average Albedo")
        plt.grid(True)
        plt.savefig(args.plot)
        print(f"Average albedo plot saved to {args.plot}")


if __name__ == "__main__":
    main()
