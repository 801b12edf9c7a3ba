#!/usr/bin/env python3
"""
White furnace preview of the coupled conductor.

Renders one sphere per roughness inside a constant white environment with
Fresnel turned off. An energy conserving BRDF makes the sphere disappear, so
the mean deviation of the image from 1 is printed per frame.

    python render_furnace.py --tables brdf --alphas 0.1 0.3 0.5 0.8
"""

import argparse
import os

import numpy as np
import imageio
import mitsuba as mi
from tqdm import tqdm

from brdf.materials import CONDUCTOR_ALBEDO, CONDUCTOR_AVG


def build_furnace_scene(alpha, tables_dir, use_fresnel=False, img_res=256, spp=128, fov=30.0, D_cam=4.0):
    """Unit sphere with the coupled conductor, lit by a constant environment of radiance 1."""
    bsdf = {
        'type': 'coupled_conductor',
        'alpha': alpha,
        'use_fresnel': use_fresnel,
        'albedo_filename': os.path.join(tables_dir, CONDUCTOR_ALBEDO),
        'avg_filename': os.path.join(tables_dir, CONDUCTOR_AVG),
    }

    sensor = {
        'type': 'perspective',
        'to_world': mi.ScalarTransform4f.look_at(
            origin=(0.0, -D_cam, 0.0),
            target=(0.0, 0.0, 0.0),
            up=(0.0, 0.0, 1.0),
        ),
        'fov': fov,
        'film': {
            'type': 'hdrfilm',
            'width': img_res,
            'height': img_res,
            'pixel_format': 'rgb',
            'rfilter': {'type': 'box'}
        },
        'sampler': {'type': 'independent', 'sample_count': spp}
    }

    scene_dict = {
        'type': 'scene',
        'integrator': {'type': 'path', 'max_depth': 64},
        'sensor': sensor,
        'sphere': {
            'type': 'sphere',
            'center': (0.0, 0.0, 0.0),
            'radius': 1.0,
            'bsdf': bsdf,
        },
        'env': {
            'type': 'constant',
            'radiance': {'type': 'rgb', 'value': [1.0, 1.0, 1.0]}
        }
    }

    return mi.load_dict(scene_dict)


def furnace_error(img):
    """Mean absolute deviation from the environment radiance."""
    return float(np.mean(np.abs(np.asarray(img) - 1.0)))


def to_ldr(img):
    return (np.clip(np.asarray(img), 0.0, 1.0) ** (1.0 / 2.2) * 255.0 + 0.5).astype(np.uint8)


def main():
    ap = argparse.ArgumentParser(description="White furnace render of the coupled conductor")
    ap.add_argument("--variant", type=str, default="llvm_ad_rgb",
                    help="Mitsuba variant (needs a JIT backend)")
    ap.add_argument("--tables", type=str, default="brdf",
                    help="Directory holding the baked conductor tables")
    ap.add_argument("--alphas", type=float, nargs="+", default=[0.1, 0.3, 0.5, 0.8],
                    help="Roughness values to render")
    ap.add_argument("--fresnel", action="store_true",
                    help="Render with gold Fresnel instead of the white furnace")
    ap.add_argument("--res", type=int, default=256)
    ap.add_argument("--spp", type=int, default=128)
    ap.add_argument("--output", type=str, default="output/furnace")
    args = ap.parse_args()

    mi.set_variant(args.variant)
    import brdf.coupled_bsdf  # noqa: F401  registers coupled_conductor

    os.makedirs(args.output, exist_ok=True)

    for alpha in tqdm(args.alphas):
        scene = build_furnace_scene(alpha, args.tables, args.fresnel, args.res, args.spp)
        img = mi.render(scene)

        out_path = os.path.join(args.output, f"furnace_alpha_{alpha:.2f}.png")
        imageio.imwrite(out_path, to_ldr(img))
        mi.util.write_bitmap(out_path.replace(".png", ".exr"), img)
        print(f"[furnace] alpha={alpha:.2f} mean |L - 1| = {furnace_error(img):.4f} -> {out_path}", flush=True)


if __name__ == "__main__":
    main()
