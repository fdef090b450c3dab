from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

SCALE_SCHEMA = "mhdepth.scale.v0"


class ScaleValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ScaleParameters:
    """
    Depth grid resolution and its mapping to image pixels.

    Convention: grid cell (x, y) is centered on pixel (u0 + x*scale, v0 + y*scale).
    A scale > 1 gives a sub-sampled grid.
    """

    x_max: int
    y_max: int
    h_max: int = 1
    u0: float = 0.0
    v0: float = 0.0
    scale: float = 1.0

    @property
    def h_step(self) -> int:
        return self.x_max * self.y_max

    @property
    def size(self) -> int:
        return self.h_step * self.h_max

    @classmethod
    def for_image(cls, width_px: int, height_px: int, scale: int = 1, h_max: int = 1) -> "ScaleParameters":
        scale = int(scale)
        if scale < 1:
            raise ScaleValidationError("scale must be >= 1")
        # Cell centers at the middle of each scale x scale block.
        c = 0.5 * (scale - 1)
        return cls(
            x_max=int(width_px) // scale,
            y_max=int(height_px) // scale,
            h_max=int(h_max),
            u0=c,
            v0=c,
            scale=float(scale),
        )

    def u_conv(self, x):
        return np.asarray(x, dtype=np.float64) * self.scale + self.u0

    def v_conv(self, y):
        return np.asarray(y, dtype=np.float64) * self.scale + self.v0

    def x_conv(self, u):
        return _to_grid(u, self.u0, self.scale)

    def y_conv(self, v):
        return _to_grid(v, self.v0, self.scale)


def _to_grid(p, p0: float, scale: float):
    p = np.asarray(p, dtype=np.float64)
    g = np.floor((p - p0) / scale + 0.5)
    # NaN/inf come from failed projections; -1 is never a valid cell.
    g = np.where(np.isfinite(g), g, -1.0).astype(np.int64)
    if g.ndim == 0:
        return int(g)
    return g


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ScaleValidationError(msg)


def load_scale_params(path: Path) -> ScaleParameters:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_scale_params(data)


def parse_scale_params(data: dict[str, Any]) -> ScaleParameters:
    schema_version = data.get("schema_version")
    _require(schema_version == SCALE_SCHEMA, f"schema_version must be {SCALE_SCHEMA}")

    for key in ("x_max", "y_max"):
        _require(data.get(key) is not None, f"{key} is required")
    x_max = int(data["x_max"])
    y_max = int(data["y_max"])
    h_max = int(data.get("h_max", 1))
    _require(x_max >= 1 and y_max >= 1, "x_max and y_max must be >= 1")
    _require(h_max >= 1, "h_max must be >= 1")

    scale = float(data.get("scale", 1.0))
    _require(scale > 0.0, "scale must be > 0")
    u0 = float(data.get("u0", 0.0))
    v0 = float(data.get("v0", 0.0))
    _require(bool(np.isfinite(u0) and np.isfinite(v0)), "u0 and v0 must be finite")

    return ScaleParameters(x_max=x_max, y_max=y_max, h_max=h_max, u0=u0, v0=v0, scale=scale)


def scale_params_to_dict(params: ScaleParameters) -> dict[str, Any]:
    return {
        "schema_version": SCALE_SCHEMA,
        "x_max": int(params.x_max),
        "y_max": int(params.y_max),
        "h_max": int(params.h_max),
        "u0": float(params.u0),
        "v0": float(params.v0),
        "scale": float(params.scale),
    }
