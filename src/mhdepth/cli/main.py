from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import numpy as np

from mhdepth.api.model_io import load_depth_map, save_depth_map, save_point_cloud
from mhdepth.core.camera import camera_from_dict
from mhdepth.core.geometry import transformation_from_dict, transformation_to_dict
from mhdepth.core.image_io import load_mask, save_depth_png
from mhdepth.depth_map import MHPack, ReconstructionOptions
from mhdepth.meta import load_scale_params
from mhdepth.plane import generate_plane
from mhdepth.warp import warp_depth, warp_depth_to_new_map


def load_json(path: Path) -> dict[str, Any]:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_polygon(path: Path) -> tuple[np.ndarray, str]:
    data = load_json(path)
    verts = np.asarray(data.get("vertices", []), dtype=np.float64)
    if verts.ndim != 2 or verts.shape[1] != 3 or verts.shape[0] < 3:
        raise ValueError(f"{path} vertices must be a list of at least 3 [x,y,z]")
    return verts, str(data.get("frame", "camera"))


def summarize(depth_map) -> dict[str, Any]:
    return {
        "grid": [int(depth_map.x_max), int(depth_map.y_max), int(depth_map.h_max)],
        "valid_per_layer": [depth_map.count_valid(h) for h in range(depth_map.h_max)],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="mhdepth")
    sub = parser.add_subparsers(dest="cmd", required=True)

    plane = sub.add_parser("plane", help="Synthesize the depth map of a planar patch.")
    plane.add_argument("--camera", type=Path, required=True, help="Camera JSON (type pinhole|equidistant).")
    plane.add_argument("--scale", type=Path, required=True, help="Grid JSON (mhdepth.scale.v0).")
    plane.add_argument("--transform", type=Path, required=True, help="Camera-to-plane transform JSON.")
    plane.add_argument("--polygon", type=Path, required=True, help="Bounding polygon JSON.")
    plane.add_argument("--out", type=Path, required=True)

    warp = sub.add_parser("warp", help="Warp a depth map to another pose.")
    warp.add_argument("depth_dir", type=Path)
    warp.add_argument("--transform", type=Path, required=True, help="T12: target frame -> source frame.")
    warp.add_argument(
        "--target",
        type=Path,
        default=None,
        help="Existing target depth map: round-trip warp into the source grid.",
    )
    warp.add_argument("--scale", type=Path, default=None, help="Grid JSON of the new map (single-pass warp).")
    warp.add_argument("--camera", type=Path, default=None, help="Camera JSON of the new map (default: source camera).")
    warp.add_argument("--out", type=Path, required=True)

    cloud = sub.add_parser("export-cloud", help="Reconstruct a depth map as a point cloud (NPZ).")
    cloud.add_argument("depth_dir", type=Path)
    cloud.add_argument("--out", type=Path, required=True)
    cloud.add_argument("--all-hypotheses", action="store_true")
    cloud.add_argument("--default-values", action="store_true")
    cloud.add_argument("--minmax", action="store_true", help="Export depth -/+ 2 sigma points.")

    mask = sub.add_parser("apply-mask", help="Empty the columns masked out by an image.")
    mask.add_argument("depth_dir", type=Path)
    mask.add_argument("--mask", type=Path, required=True)
    mask.add_argument("--threshold", type=int, default=0)
    mask.add_argument("--out", type=Path, required=True)

    png = sub.add_parser("to-png", help="Export hypothesis slot 0 as a 16-bit PNG.")
    png.add_argument("depth_dir", type=Path)
    png.add_argument("--out", type=Path, required=True)
    png.add_argument("--unit", type=float, default=1e-3, help="Depth per gray level.")

    info = sub.add_parser("info", help="Print a summary of a depth map.")
    info.add_argument("depth_dir", type=Path)

    args = parser.parse_args(argv)

    if args.cmd == "plane":
        camera = camera_from_dict(load_json(args.camera))
        params = load_scale_params(args.scale)
        T = transformation_from_dict(load_json(args.transform))
        verts, frame = load_polygon(args.polygon)
        depth_map = generate_plane(camera, params, T, verts, polygon_frame=frame)
        out = save_depth_map(args.out, depth_map)
        print(f"Wrote {out}")
        return 0

    if args.cmd == "warp":
        source = load_depth_map(args.depth_dir)
        T12 = transformation_from_dict(load_json(args.transform))
        if args.target is not None:
            result = warp_depth(source, load_depth_map(args.target), T12)
        else:
            params = load_scale_params(args.scale) if args.scale is not None else source.params
            camera = camera_from_dict(load_json(args.camera)) if args.camera is not None else None
            result = warp_depth_to_new_map(source, T12, params, camera)
        out = save_depth_map(args.out, result)
        # Pose used, in matrix form, next to the warped map.
        (args.out / "transform.json").write_text(
            json.dumps(transformation_to_dict(T12), indent=2), encoding="utf-8"
        )
        print(f"Wrote {out}")
        print(json.dumps(summarize(result), sort_keys=True))
        return 0

    if args.cmd == "export-cloud":
        depth_map = load_depth_map(args.depth_dir)
        opts = ReconstructionOptions(
            all_hypotheses=args.all_hypotheses,
            default_values=args.default_values,
            minmax=args.minmax,
            sigma_value=True,
        )
        pack = depth_map.reconstruct(MHPack(), opts)
        out = save_point_cloud(args.out, pack)
        print(f"Wrote {out} ({len(pack)} entries, {pack.cloud.shape[0]} points)")
        return 0

    if args.cmd == "apply-mask":
        depth_map = load_depth_map(args.depth_dir)
        depth_map.apply_mask(load_mask(args.mask, threshold=args.threshold))
        out = save_depth_map(args.out, depth_map)
        print(f"Wrote {out}")
        return 0

    if args.cmd == "to-png":
        depth_map = load_depth_map(args.depth_dir)
        out = save_depth_png(args.out, depth_map.to_mat(), unit=args.unit)
        print(f"Wrote {out}")
        return 0

    if args.cmd == "info":
        depth_map = load_depth_map(args.depth_dir)
        print(json.dumps(summarize(depth_map), sort_keys=True))
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
