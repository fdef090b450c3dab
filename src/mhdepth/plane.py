from __future__ import annotations

from typing import Literal

import numpy as np

from mhdepth.core.camera import CameraModel
from mhdepth.core.geometry import Transformation
from mhdepth.depth_map import OUT_OF_RANGE, DepthMap
from mhdepth.meta import ScaleParameters

PLANE_SIGMA = 1.0
_GRAZING_EPS = 1e-3


def generate_plane(
    camera: CameraModel,
    params: ScaleParameters,
    T_camera_plane: Transformation,
    polygon: np.ndarray,
    *,
    polygon_frame: Literal["camera", "plane"] = "camera",
) -> DepthMap:
    """
    Analytic depth map of a planar patch.

    The plane passes through T_camera_plane.trans() with normal
    T_camera_plane.rot_mat()[:, 2] (camera frame). `polygon` (K,3) is a closed,
    ordered list of direction vectors bounding the visible region: a ray is
    inside when ray . (p_i x p_{i+1}) >= 0 for every edge. With
    polygon_frame="plane" the vertices are plane-frame points mapped into the
    camera frame first.

    Cells whose ray fails, faces away from the plane or falls outside the
    polygon hold OUT_OF_RANGE for depth and sigma. Only slot 0 is written.
    """
    poly = np.asarray(polygon, dtype=np.float64).reshape(-1, 3)
    if polygon_frame == "plane":
        poly = T_camera_plane.transform(poly).reshape(-1, 3)
    elif polygon_frame != "camera":
        raise ValueError(f"polygon_frame must be 'camera' or 'plane' (got {polygon_frame})")

    depth = DepthMap(camera, params)
    n = params.h_step
    depth.values[:n] = OUT_OF_RANGE
    depth.sigmas[:n] = OUT_OF_RANGE

    t = T_camera_plane.trans()
    z = T_camera_plane.rot_mat()[:, 2]

    rays, mask = camera.reconstruct_point_cloud(depth.image_points())
    rays = np.asarray(rays, dtype=np.float64).reshape(-1, 3)
    mask = np.asarray(mask, dtype=bool)

    z_ray = rays @ z
    ok = mask & (z_ray >= _GRAZING_EPS)

    edge_normals = np.cross(poly, np.roll(poly, -1, axis=0))  # (K,3)
    inside = np.all(rays @ edge_normals.T >= 0.0, axis=-1)
    ok &= inside

    alpha = float(t @ z) / z_ray[ok]
    hits = rays[ok] * alpha[:, None]
    depth.values[:n][ok] = np.linalg.norm(hits, axis=-1)
    depth.sigmas[:n][ok] = PLANE_SIGMA
    return depth
