"""
Depth propagation between camera poses.

Both functions take T12 mapping points of the target frame (2) into the source
frame (1), see `Transformation`. Only hypothesis slot 0 is produced.
"""
from __future__ import annotations

import numpy as np

from mhdepth.core.camera import CameraModel
from mhdepth.core.geometry import Transformation, normalize
from mhdepth.depth_map import INDEX_MAPPING, QUERY_POINTS, SIGMA_VALUE, DepthMap, MHPack
from mhdepth.meta import ScaleParameters


def _placeholder_free(cloud: np.ndarray) -> np.ndarray:
    # Rays the camera failed to reconstruct come back as exact zero vectors.
    return np.any(cloud != 0.0, axis=-1)


def warp_depth(
    source: DepthMap,
    target: DepthMap,
    T12: Transformation,
    output: DepthMap | None = None,
) -> DepthMap:
    """
    Re-express `source` through the discretization of `target`.

    Round trip: source cloud -> target frame -> target pixels -> target cloud
    at those pixels -> back into the source frame. The new depth of a source
    column is the projection of its round-tripped point onto the original ray.

    `output` (same grid as `source`) receives a copy of `source` whose slot-0
    depth is reset to 0 before filling; columns without a successful round
    trip keep that value. Only the first layer is reset.
    """
    # Step 1: slot-0 cloud of the source, in the source frame.
    pack1 = source.reconstruct(MHPack())
    valid1 = _placeholder_free(pack1.cloud)

    # Steps 2-3: into the target frame, then onto the target image.
    cloud12 = T12.inverse_transform(pack1.cloud).reshape(-1, 3)
    points12 = target.project(cloud12)
    points12[~valid1] = np.nan

    # Step 4: one target hypothesis per query point, aligned through idx_map.
    pack2 = MHPack(image_points=points12)
    target.reconstruct(pack2, QUERY_POINTS | SIGMA_VALUE | INDEX_MAPPING)

    # Step 5: back into the source frame.
    cloud21 = T12.transform(pack2.cloud).reshape(-1, 3)

    if output is None:
        output = source.copy()
    else:
        if output.params != source.params:
            raise ValueError("output must have the same grid as source")
        output.values[:] = source.values
        output.sigmas[:] = source.sigmas
        output.costs[:] = source.costs
    output.set_to(0.0, n_layers=1)

    # Step 6: signed projection along the original rays.
    reached = _placeholder_free(pack2.cloud)
    q = pack2.idx_map[reached]
    col = pack1.idx[q]
    rays = normalize(pack1.cloud[q])
    output.values[col] = np.sum(cloud21[reached] * rays, axis=-1)
    output.sigmas[col] = pack2.sigma[reached]
    return output


def warp_depth_to_new_map(
    source: DepthMap,
    T12: Transformation,
    params: ScaleParameters,
    camera: CameraModel | None = None,
) -> DepthMap:
    """
    Single-pass warp of `source` into a fresh depth map seen from frame 2.

    Each reconstructed source point is moved into frame 2 and projected; the
    cell it lands on receives its distance, and the sigma and cost of the
    originating source column. When several points land on one cell the last
    one in ascending source index wins. The camera defaults to the source's.
    """
    out = DepthMap(source.camera if camera is None else camera, params)

    pack1 = source.reconstruct(MHPack())
    cloud12 = T12.inverse_transform(pack1.cloud).reshape(-1, 3)
    points = out.project(cloud12)
    points[~_placeholder_free(pack1.cloud)] = np.nan

    dst = out.grid_indices(points)
    src = np.flatnonzero(dst >= 0)
    dst = dst[src]
    # Keep the last occurrence of every target cell.
    _, first_rev = np.unique(dst[::-1], return_index=True)
    last = dst.shape[0] - 1 - first_rev
    dst, src = dst[last], src[last]

    src_col = pack1.idx[src]
    out.values[dst] = np.linalg.norm(cloud12[src], axis=-1)
    out.sigmas[dst] = source.sigmas[src_col]
    out.costs[dst] = source.costs[src_col]
    return out
