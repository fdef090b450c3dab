"""
Multi-hypothesis depth container for a single camera view.

Notes
-----
- (u, v) is an image point, (x, y) is a depth grid point, h is a hypothesis slot.
- Storage is three flat arrays (depth, sigma, cost) of length x_max*y_max*h_max,
  indexed by x + y*x_max + h*h_step with h_step = x_max*y_max.
- A "column" is the stack of h_max slots at one (x, y). Slot 0 of every column
  is the first layer of the flat arrays.
- The camera is borrowed: many depth maps may share one camera, which must stay
  alive as long as any of them.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np

from mhdepth.core.camera import CameraModel
from mhdepth.core.geometry import normalize
from mhdepth.meta import ScaleParameters

MIN_DEPTH = 0.1
OUT_OF_RANGE = 0.0
DEFAULT_DEPTH = 1.0
DEFAULT_SIGMA_DEPTH = 10.0


class ReconstructionFlags(enum.IntFlag):
    NONE = 0
    QUERY_INDICES = 1
    QUERY_POINTS = 2
    ALL_HYPOTHESES = 4
    DEFAULT_VALUES = 8
    MINMAX = 16
    SIGMA_VALUE = 32
    INDEX_MAPPING = 64
    IMAGE_VALUES = 128  # reserved, not implemented


QUERY_INDICES = ReconstructionFlags.QUERY_INDICES
QUERY_POINTS = ReconstructionFlags.QUERY_POINTS
ALL_HYPOTHESES = ReconstructionFlags.ALL_HYPOTHESES
DEFAULT_VALUES = ReconstructionFlags.DEFAULT_VALUES
MINMAX = ReconstructionFlags.MINMAX
SIGMA_VALUE = ReconstructionFlags.SIGMA_VALUE
INDEX_MAPPING = ReconstructionFlags.INDEX_MAPPING
IMAGE_VALUES = ReconstructionFlags.IMAGE_VALUES


@dataclass(frozen=True)
class ReconstructionOptions:
    """
    Named form of `ReconstructionFlags`.

    - query_indices: query the grid indices stored in `MHPack.idx`
    - query_points: query the image points stored in `MHPack.image_points`
    - neither: query every column whose slot-0 depth is valid
    - all_hypotheses: emit every slot of a queried column instead of slot 0 only
    - default_values: substitute DEFAULT_DEPTH/DEFAULT_SIGMA_DEPTH for empty slots
    - minmax: emit [depth - 2 sigma, depth + 2 sigma] per entry (two cloud points)
    - sigma_value: fill `MHPack.sigma`
    - index_mapping: fill `MHPack.idx_map` with the originating query position
    - image_values: reserved
    """

    query_indices: bool = False
    query_points: bool = False
    all_hypotheses: bool = False
    default_values: bool = False
    minmax: bool = False
    sigma_value: bool = False
    index_mapping: bool = False
    image_values: bool = False

    @classmethod
    def from_flags(cls, flags: int) -> "ReconstructionOptions":
        flags = ReconstructionFlags(int(flags))
        return cls(
            query_indices=bool(flags & QUERY_INDICES),
            query_points=bool(flags & QUERY_POINTS),
            all_hypotheses=bool(flags & ALL_HYPOTHESES),
            default_values=bool(flags & DEFAULT_VALUES),
            minmax=bool(flags & MINMAX),
            sigma_value=bool(flags & SIGMA_VALUE),
            index_mapping=bool(flags & INDEX_MAPPING),
            image_values=bool(flags & IMAGE_VALUES),
        )

    def to_flags(self) -> ReconstructionFlags:
        flags = ReconstructionFlags.NONE
        for name in ReconstructionFlags.__members__:
            if name != "NONE" and getattr(self, name.lower()):
                flags |= ReconstructionFlags[name]
        return flags


def _int_vec() -> np.ndarray:
    return np.zeros((0,), dtype=np.int64)


def _float_vec() -> np.ndarray:
    return np.zeros((0,), dtype=np.float64)


@dataclass
class MHPack:
    """
    Query and result carrier of `DepthMap.reconstruct`.

    After a call every output is rebuilt and index-aligned: idx, hyp_idx, cost,
    val (and sigma / idx_map when requested) have one entry per emitted
    hypothesis, cloud has one point per entry (two under MINMAX, min then max).
    Cloud points whose ray could not be reconstructed are zero vectors.
    """

    image_points: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), dtype=np.float64))
    idx: np.ndarray = field(default_factory=_int_vec)
    hyp_idx: np.ndarray = field(default_factory=_int_vec)
    cost: np.ndarray = field(default_factory=_float_vec)
    sigma: np.ndarray = field(default_factory=_float_vec)
    val: np.ndarray = field(default_factory=_float_vec)
    idx_map: np.ndarray = field(default_factory=_int_vec)
    cloud: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))

    def __len__(self) -> int:
        return int(np.asarray(self.idx).shape[0])

    def clear_outputs(self) -> None:
        self.image_points = np.zeros((0, 2), dtype=np.float64)
        self.idx = _int_vec()
        self.hyp_idx = _int_vec()
        self.cost = _float_vec()
        self.sigma = _float_vec()
        self.val = _float_vec()
        self.idx_map = _int_vec()
        self.cloud = np.zeros((0, 3), dtype=np.float64)


class DepthMap:
    def __init__(self, camera: CameraModel, params: ScaleParameters) -> None:
        self.camera = camera
        self.params = params
        self.values = np.zeros((params.size,), dtype=np.float64)
        self.sigmas = np.zeros((params.size,), dtype=np.float64)
        self.costs = np.zeros((params.size,), dtype=np.float64)

    @property
    def x_max(self) -> int:
        return self.params.x_max

    @property
    def y_max(self) -> int:
        return self.params.y_max

    @property
    def h_max(self) -> int:
        return self.params.h_max

    @property
    def h_step(self) -> int:
        return self.params.h_step

    def copy(self) -> "DepthMap":
        out = DepthMap(self.camera, self.params)
        out.values[:] = self.values
        out.sigmas[:] = self.sigmas
        out.costs[:] = self.costs
        return out

    def set_to(self, value: float, n_layers: int | None = None) -> None:
        """Set the depth of the first `n_layers` hypothesis layers (all by default)."""
        n = self.h_max if n_layers is None else int(n_layers)
        self.values[: n * self.h_step] = value

    # --- direct access -------------------------------------------------------

    def index(self, x: int, y: int, h: int = 0) -> int:
        return int(x) + int(y) * self.x_max + int(h) * self.h_step

    def _flat(self, x: int, y: int | None, h: int) -> int:
        return int(x) if y is None else self.index(x, y, h)

    def at(self, x: int, y: int | None = None, h: int = 0) -> float:
        """Depth at (x, y, h), or at flat index `x` when `y` is None."""
        return float(self.values[self._flat(x, y, h)])

    def sigma(self, x: int, y: int | None = None, h: int = 0) -> float:
        return float(self.sigmas[self._flat(x, y, h)])

    def cost(self, x: int, y: int | None = None, h: int = 0) -> float:
        return float(self.costs[self._flat(x, y, h)])

    def set_at(self, value: float, x: int, y: int | None = None, h: int = 0) -> None:
        self.values[self._flat(x, y, h)] = value

    def set_sigma(self, value: float, x: int, y: int | None = None, h: int = 0) -> None:
        self.sigmas[self._flat(x, y, h)] = value

    def set_cost(self, value: float, x: int, y: int | None = None, h: int = 0) -> None:
        self.costs[self._flat(x, y, h)] = value

    def is_valid(self, x: int, y: int, h: int = 0) -> bool:
        return bool(0 <= x < self.x_max and 0 <= y < self.y_max and 0 <= h < self.h_max)

    def count_valid(self, h: int | None = None) -> int:
        if h is None:
            return int(np.count_nonzero(self.values >= MIN_DEPTH))
        layer = self.values[h * self.h_step : (h + 1) * self.h_step]
        return int(np.count_nonzero(layer >= MIN_DEPTH))

    # --- masking / insertion ------------------------------------------------

    def apply_mask(self, mask: np.ndarray) -> None:
        """
        Empty every column whose image pixel is False in `mask` (H,W).

        All slots of such a column get depth 0; other columns are untouched.
        Pixels falling outside the mask image count as masked out.
        """
        mask = np.asarray(mask).astype(bool)
        if mask.ndim != 2:
            raise ValueError("mask must be a 2D array")
        u = np.floor(self.params.u_conv(np.arange(self.x_max)) + 0.5).astype(np.int64)
        v = np.floor(self.params.v_conv(np.arange(self.y_max)) + 0.5).astype(np.int64)
        uu, vv = np.meshgrid(u, v)  # (y_max, x_max)
        inside = (uu >= 0) & (uu < mask.shape[1]) & (vv >= 0) & (vv < mask.shape[0])
        keep = np.zeros_like(inside)
        keep[inside] = mask[vv[inside], uu[inside]]
        layers = self.values.reshape(self.h_max, self.y_max, self.x_max)
        layers[:, ~keep] = 0.0

    def push_hypothesis(self, X: np.ndarray, sigma_val: float) -> bool:
        """
        Store |X| as a new hypothesis in the column X projects to.

        X is expressed in the camera frame. The first empty slot of the column is
        used; a full column, a failed projection or an out-of-grid pixel leave the
        map unchanged and return False. Costs are not modified.
        """
        X = np.asarray(X, dtype=np.float64).reshape(3)
        pt = self.camera.project_point(X)
        if pt is None:
            return False
        x = self.params.x_conv(pt[0])
        y = self.params.y_conv(pt[1])
        if not self.is_valid(x, y):
            return False
        col = self.index(x, y)
        free = np.flatnonzero(self.values[col :: self.h_step] < MIN_DEPTH)
        if free.size == 0:
            return False
        flat = col + int(free[0]) * self.h_step
        self.values[flat] = float(np.linalg.norm(X))
        self.sigmas[flat] = float(sigma_val)
        return True

    # --- nearest neighbor lookups -------------------------------------------

    def _nearest_flat(self, u, v, h: int) -> int | None:
        if v is None:
            u, v = np.asarray(u, dtype=np.float64).reshape(2)
        x = self.params.x_conv(u)
        y = self.params.y_conv(v)
        if not self.is_valid(x, y, h):
            return None
        return self.index(x, y, h)

    def nearest(self, u, v=None, h: int = 0) -> float:
        """Depth of the cell nearest to pixel (u, v); `u` may be a 2D point when `v` is None."""
        flat = self._nearest_flat(u, v, h)
        return OUT_OF_RANGE if flat is None else float(self.values[flat])

    def nearest_sigma(self, u, v=None, h: int = 0) -> float:
        flat = self._nearest_flat(u, v, h)
        return OUT_OF_RANGE if flat is None else float(self.sigmas[flat])

    def nearest_cost(self, u, v=None, h: int = 0) -> float:
        flat = self._nearest_flat(u, v, h)
        return OUT_OF_RANGE if flat is None else float(self.costs[flat])

    # --- bulk protocol -------------------------------------------------------

    def image_points(self, idx: np.ndarray | None = None) -> np.ndarray:
        """Image point (N,2) of each grid index, or of every column in row-major order."""
        if idx is None:
            col = np.arange(self.h_step, dtype=np.int64)
        else:
            col = np.asarray(idx, dtype=np.int64).reshape(-1) % self.h_step
        x = col % self.x_max
        y = col // self.x_max
        return np.stack([self.params.u_conv(x), self.params.v_conv(y)], axis=-1).reshape(-1, 2)

    def grid_indices(self, points: np.ndarray | None = None) -> np.ndarray:
        """
        Nearest column index of each image point, -1 when outside the grid.

        Without points: every column whose slot-0 depth is valid.
        """
        if points is None:
            return np.flatnonzero(self.values[: self.h_step] >= MIN_DEPTH).astype(np.int64)
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        x = self.params.x_conv(points[:, 0])
        y = self.params.y_conv(points[:, 1])
        ok = (x >= 0) & (x < self.x_max) & (y >= 0) & (y < self.y_max)
        return np.where(ok, x + y * self.x_max, -1).astype(np.int64)

    def project(self, points: np.ndarray) -> np.ndarray:
        return self.camera.project_point_cloud(np.asarray(points, dtype=np.float64).reshape(-1, 3))

    def reconstruct(
        self,
        result: MHPack,
        flags: int | ReconstructionOptions = ReconstructionFlags.NONE,
    ) -> MHPack:
        """
        Turn a selection of grid cells into a 3D point cloud with aligned metadata.

        The query is read from `result` (see `ReconstructionOptions`), then every
        output field of `result` is rebuilt. Entries are ordered by query position,
        then by hypothesis slot. Returns `result`.
        """
        opts = flags if isinstance(flags, ReconstructionOptions) else ReconstructionOptions.from_flags(flags)
        if opts.image_values:
            raise NotImplementedError("IMAGE_VALUES reconstruction is not implemented")
        n_hyps = self.h_max if opts.all_hypotheses else 1

        if opts.query_indices:
            query = np.asarray(result.idx, dtype=np.int64).reshape(-1)
        elif opts.query_points:
            query = self.grid_indices(result.image_points)
        else:
            query = self.grid_indices()
        result.clear_outputs()

        q_pos = np.repeat(np.arange(query.shape[0], dtype=np.int64), n_hyps)
        hyp = np.tile(np.arange(n_hyps, dtype=np.int64), query.shape[0])
        col = query[q_pos]
        flat = col + hyp * self.h_step
        # idx == h_step reads column 0 one layer up.
        ok = (col >= 0) & (col <= self.h_step) & (flat < self.params.size)
        q_pos, hyp, col, flat = q_pos[ok], hyp[ok], col[ok], flat[ok]

        depth = self.values[flat].copy()
        sigma = self.sigmas[flat].copy()
        cost = self.costs[flat].copy()
        empty = ~(depth >= MIN_DEPTH)
        if opts.default_values:
            depth[empty] = DEFAULT_DEPTH
            sigma[empty] = DEFAULT_SIGMA_DEPTH
        else:
            keep = ~empty
            q_pos, hyp, col = q_pos[keep], hyp[keep], col[keep]
            depth, sigma, cost = depth[keep], sigma[keep], cost[keep]

        if opts.minmax:
            target = np.stack([np.maximum(depth - 2 * sigma, MIN_DEPTH), depth + 2 * sigma], axis=-1)
        else:
            target = depth[:, None]

        result.idx = col
        result.hyp_idx = hyp
        result.val = depth
        result.cost = cost
        if opts.sigma_value:
            result.sigma = sigma
        if opts.index_mapping:
            result.idx_map = q_pos
        result.image_points = self.image_points(col)

        if col.shape[0] == 0:
            return result
        rays, mask = self.camera.reconstruct_point_cloud(result.image_points)
        rays = normalize(np.asarray(rays, dtype=np.float64).reshape(-1, 3))
        rays[~np.asarray(mask, dtype=bool)] = 0.0
        result.cloud = (rays[:, None, :] * target[:, :, None]).reshape(-1, 3)
        return result

    def to_mat(self) -> np.ndarray:
        """Slot-0 depth layer as a (y_max, x_max) float32 image."""
        return self.values[: self.h_step].reshape(self.y_max, self.x_max).astype(np.float32)

    def from_mat(self, depth: np.ndarray, sigma: np.ndarray | None = None) -> None:
        shape = (self.y_max, self.x_max)
        depth = np.asarray(depth, dtype=np.float64)
        if depth.shape != shape:
            raise ValueError(f"depth must have shape {shape}")
        self.values[: self.h_step] = depth.reshape(-1)
        if sigma is not None:
            sigma = np.asarray(sigma, dtype=np.float64)
            if sigma.shape != shape:
                raise ValueError(f"sigma must have shape {shape}")
            self.sigmas[: self.h_step] = sigma.reshape(-1)
