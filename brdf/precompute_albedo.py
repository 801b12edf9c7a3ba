#!/usr/bin/env python3
"""
Specular albedo precomputation

Estimates the directional albedo E(alpha, cosTheta) of a Beckmann microfacet
BRDF by Monte Carlo integration with importance sampling, for every node of
an (alpha, cosTheta) grid, and writes the resulting table.

    python -m brdf.precompute_albedo --output albedo_specular_conductor.npz
    python -m brdf.precompute_albedo --fresnel --output albedo_specular_dielectrics.npz
"""

import argparse
import math
from functools import partial
from multiprocessing import Pool, cpu_count

import numpy as np
from tqdm import tqdm

from brdf.microfacet import beckmann_ndf, dot, fresnel_dielectric, masking_function, normalize
from brdf.online import OnlineMean
from brdf.samplers import SAMPLERS, BeckmannImportanceSampler
from brdf.tables import Grid2D

SAMPLE_COUNT = 300000
BATCH_SIZE = 50000
TABLE_SIZE = 256

# alpha = 0 and cosTheta = 0 are degenerate; those grid nodes are evaluated here instead
ALPHA_EPS = 1.0e-3
COS_THETA_EPS = 1.0e-4

NORMAL = np.array([0.0, 0.0, 1.0])


def estimate_specular_albedo(alpha, cos_theta, random,
                             sample_count=SAMPLE_COUNT,
                             include_fresnel=False,
                             sampler=BeckmannImportanceSampler,
                             masking="v_cavity",
                             eta=1.5,
                             batch_size=BATCH_SIZE,
                             estimator=None):
    """
    Monte Carlo estimate of the directional albedo for one (alpha, cosTheta).

    Args:
        alpha: Beckmann roughness (> 0)
        cos_theta: Cosine of the outgoing direction with the normal (> 0)
        random: numpy Generator owned by this estimate
        sample_count: Number of MC samples
        include_fresnel: Weight the BRDF by the dielectric Fresnel term
        sampler: Importance sampler class (sample / pdf)
        masking: Name of the G2 term, see brdf.microfacet.MASKING
        eta: Dielectric IOR used when include_fresnel is set
        batch_size: Samples drawn per vectorised batch
        estimator: OnlineMean to accumulate into (a new one by default)

    Returns:
        The OnlineMean holding the estimate
    """
    g2 = masking_function(masking)
    mean = estimator if estimator is not None else OnlineMean()
    wo = np.array([math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta)), 0.0, cos_theta])

    remaining = sample_count
    while remaining > 0:
        n = min(batch_size, remaining)
        remaining -= n

        wi = sampler.sample(random, alpha, wo, NORMAL, size=n)
        pdf_omega = sampler.pdf(wi, alpha, wo, NORMAL)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            h = normalize(wi + wo)
            d = beckmann_ndf(NORMAL, h, alpha)
            g = g2(wi, wo, h, NORMAL, alpha)

            cos_term_wo = dot(NORMAL, wo)
            cos_term_wi = dot(NORMAL, wi)

            brdf = d * g / (4.0 * cos_term_wo * cos_term_wi)
            if include_fresnel:
                # dot(h, wo) == dot(h, wi)
                brdf = brdf * fresnel_dielectric(dot(h, wo), eta)

            value = brdf * cos_term_wi / pdf_omega

        # wi below the surface, or a degenerate pdf near grazing angles
        value = np.where((cos_term_wi > 0.0) & np.isfinite(value), value, 0.0)
        mean.add_samples(value)

    return mean


def cell_seed(seed, i, j):
    """Independent, reproducible stream for grid cell (i, j)."""
    return np.random.SeedSequence(seed, spawn_key=(i, j))


def _bake_cell(cell, seed, **kwargs):
    i, j, alpha, cos_theta = cell
    random = np.random.default_rng(cell_seed(seed, i, j))
    return estimate_specular_albedo(max(alpha, ALPHA_EPS), max(cos_theta, COS_THETA_EPS),
                                    random, **kwargs).mean()


def bake_specular_albedo(width=TABLE_SIZE, height=TABLE_SIZE,
                         sample_count=SAMPLE_COUNT,
                         include_fresnel=False,
                         sampler=BeckmannImportanceSampler,
                         masking="v_cavity",
                         eta=1.5,
                         seed=None,
                         workers=1,
                         progress=False):
    """
    Bake the (alpha, cosTheta) specular albedo table.

    Every cell gets its own Generator. With seed=None each one is seeded from
    fresh OS entropy, so two bakes differ; pass an int for a reproducible table.
    workers > 1 spreads the cells over a process pool.
    """
    if seed is None:
        seed = np.random.SeedSequence().entropy

    grid = Grid2D(np.zeros((width, height)))
    alphas, cos_thetas = grid.axis(0), grid.axis(1)
    cells = [(i, j, a, c) for i, a in enumerate(alphas) for j, c in enumerate(cos_thetas)]

    task = partial(_bake_cell, seed=seed, sample_count=sample_count,
                   include_fresnel=include_fresnel, sampler=sampler,
                   masking=masking, eta=eta)

    if workers > 1:
        with Pool(workers) as pool:
            results = pool.imap(task, cells, chunksize=max(1, height // 4))
            values = list(tqdm(results, total=len(cells), disable=not progress))
    else:
        values = [task(cell) for cell in tqdm(cells, disable=not progress)]

    return Grid2D(np.array(values).reshape(width, height), grid.bounds)


def plot_table(table, out_png, title="Specular Albedo"):
    import matplotlib.pyplot as plt

    plt.figure()
    plt.imshow(table.values.T, origin="lower", extent=[0, 1, 0, 1],
               cmap=plt.get_cmap("gray"), interpolation=None)
    plt.colorbar()
    plt.title(title)
    plt.xlabel("alpha")
    plt.ylabel("cos(theta)")
    plt.savefig(out_png)
    plt.close()


def main():
    ap = argparse.ArgumentParser(description="Directional specular albedo table E(alpha, cosTheta) for a Beckmann BRDF")
    ap.add_argument("--alpha-size", type=int, default=TABLE_SIZE,
                    help="Number of alpha samples over [0, 1]")
    ap.add_argument("--cos-theta-size", type=int, default=TABLE_SIZE,
                    help="Number of cos(theta) samples over [0, 1]")
    ap.add_argument("--samples", type=int, default=SAMPLE_COUNT,
                    help="MC samples per (alpha, cosTheta) cell")
    ap.add_argument("--fresnel", action="store_true",
                    help="Weight by the dielectric Fresnel term (dielectric table)")
    ap.add_argument("--eta", type=float, default=1.5,
                    help="Dielectric IOR used with --fresnel")
    ap.add_argument("--masking", choices=["v_cavity", "height_correlated"], default="v_cavity",
                    help="Shadowing-masking term; must match the material that reads the table")
    ap.add_argument("--sampler", choices=sorted(SAMPLERS), default="beckmann",
                    help="Importance sampler for the MC estimate")
    ap.add_argument("--seed", type=int, default=None,
                    help="Base seed for per-cell streams (omit for a non-reproducible bake)")
    ap.add_argument("--workers", type=int, default=cpu_count(),
                    help="Worker processes")
    ap.add_argument("--output", type=str, default="albedo_specular_conductor.npz",
                    help="Output table (.npz)")
    ap.add_argument("--plot", type=str, default=None,
                    help="Optional preview image (.png)")
    args = ap.parse_args()

    print(f"[albedo] {args.alpha_size}x{args.cos_theta_size} cells, {args.samples} samples each, "
          f"fresnel={args.fresnel}, masking={args.masking}, sampler={args.sampler}", flush=True)

    table = bake_specular_albedo(args.alpha_size, args.cos_theta_size,
                                 sample_count=args.samples,
                                 include_fresnel=args.fresnel,
                                 sampler=SAMPLERS[args.sampler],
                                 masking=args.masking,
                                 eta=args.eta,
                                 seed=args.seed,
                                 workers=args.workers,
                                 progress=True)
    table.save(args.output)
    print(f"\nWrote specular albedo table to: {args.output}")

    print("Normal incidence entries:")
    for i in np.linspace(0, table.alpha_size - 1, 5).astype(int):
        print(f"  alpha={table.axis(0)[i]:.3f} -> E={table.get(i, table.cos_theta_size - 1):.6f}")

    if args.plot:
        plot_table(table, args.plot)
        print(f"Specular albedo plot saved to {args.plot}")


if __name__ == "__main__":
    main()
