from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from mhdepth.core.camera import camera_from_dict, camera_to_dict
from mhdepth.depth_map import DepthMap, MHPack
from mhdepth.meta import ScaleValidationError, parse_scale_params, scale_params_to_dict

DEPTH_MAP_SCHEMA = "mhdepth.depth_map.v0"


def _to_float_vector(x: np.ndarray, size: int, name: str) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64).reshape(-1)
    if x.shape[0] != size:
        raise ValueError(f"{name} must have {size} values (got {x.shape[0]})")
    return x


def save_depth_map(model_dir: Path, depth_map: DepthMap) -> Path:
    """
    Save a depth map into a directory:

      model.json + arrays.npz

    The JSON holds the grid and camera configuration, the NPZ the three
    (x_max*y_max*h_max,) arrays in storage order.
    """
    model_dir = Path(model_dir)
    model_dir.mkdir(parents=True, exist_ok=True)

    arrays_path = model_dir / "arrays.npz"
    np.savez_compressed(
        arrays_path,
        depth=np.asarray(depth_map.values, dtype=np.float64),
        sigma=np.asarray(depth_map.sigmas, dtype=np.float64),
        cost=np.asarray(depth_map.costs, dtype=np.float64),
    )

    meta: dict[str, Any] = {
        "schema_version": DEPTH_MAP_SCHEMA,
        "scale": scale_params_to_dict(depth_map.params),
        "camera": camera_to_dict(depth_map.camera),
        "arrays": {
            "format": "npz",
            "path": arrays_path.name,
            "keys": {"depth": "depth", "sigma": "sigma", "cost": "cost"},
        },
    }

    json_path = model_dir / "model.json"
    json_path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return json_path


def load_depth_map(model_dir: Path) -> DepthMap:
    model_dir = Path(model_dir)
    json_path = model_dir / "model.json"
    if not json_path.exists():
        raise FileNotFoundError(f"Missing {json_path}")
    meta = json.loads(json_path.read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != DEPTH_MAP_SCHEMA:
        raise ValueError("unsupported depth map schema")

    try:
        params = parse_scale_params(meta["scale"])
        camera = camera_from_dict(meta["camera"])
        arrays = meta["arrays"]
        keys = arrays["keys"]
        arrays_path = model_dir / str(arrays["path"])
    except KeyError as e:
        raise ValueError(f"{json_path} missing key: {e}") from e
    except ScaleValidationError as e:
        raise ValueError(f"{json_path} invalid scale: {e}") from e

    if not arrays_path.exists():
        raise FileNotFoundError(f"Missing {arrays_path}")
    depth_map = DepthMap(camera, params)
    with np.load(str(arrays_path)) as w:
        depth_map.values[:] = _to_float_vector(w[str(keys["depth"])], params.size, "depth")
        depth_map.sigmas[:] = _to_float_vector(w[str(keys["sigma"])], params.size, "sigma")
        depth_map.costs[:] = _to_float_vector(w[str(keys["cost"])], params.size, "cost")
    return depth_map


def save_point_cloud(path: Path, pack: MHPack) -> Path:
    """Write the outputs of a reconstruction to a compressed NPZ."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        cloud=np.asarray(pack.cloud, dtype=np.float64),
        idx=np.asarray(pack.idx, dtype=np.int64),
        hyp_idx=np.asarray(pack.hyp_idx, dtype=np.int64),
        sigma=np.asarray(pack.sigma, dtype=np.float64),
        val=np.asarray(pack.val, dtype=np.float64),
        cost=np.asarray(pack.cost, dtype=np.float64),
        idx_map=np.asarray(pack.idx_map, dtype=np.int64),
        image_points=np.asarray(pack.image_points, dtype=np.float64),
    )
    return path
