from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class CameraModel(Protocol):
    """
    Projection model shared (read-only) by depth maps.

    Per-point failures never raise: single-point calls return None,
    bulk projection returns NaN rows, bulk reconstruction returns a mask.
    """

    def project_point(self, X: np.ndarray) -> np.ndarray | None: ...

    def reconstruct_point(self, uv: np.ndarray) -> np.ndarray | None: ...

    def project_point_cloud(self, X: np.ndarray) -> np.ndarray: ...

    def reconstruct_point_cloud(self, uv: np.ndarray) -> tuple[np.ndarray, np.ndarray]: ...


class _BulkCamera(ABC):
    """Single-point calls expressed through the bulk ones."""

    def project_point(self, X: np.ndarray) -> np.ndarray | None:
        uv = self.project_point_cloud(np.asarray(X, dtype=np.float64).reshape(1, 3))[0]
        if not np.all(np.isfinite(uv)):
            return None
        return uv

    def reconstruct_point(self, uv: np.ndarray) -> np.ndarray | None:
        d, mask = self.reconstruct_point_cloud(np.asarray(uv, dtype=np.float64).reshape(1, 2))
        if not mask[0]:
            return None
        return d[0]

    @abstractmethod
    def project_point_cloud(self, X: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def reconstruct_point_cloud(self, uv: np.ndarray) -> tuple[np.ndarray, np.ndarray]: ...


@dataclass(frozen=True)
class PinholeCamera(_BulkCamera):
    fx: float
    fy: float
    cx: float
    cy: float
    width_px: int
    height_px: int

    def project_point_cloud(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64).reshape(-1, 3)
        uv = np.full((X.shape[0], 2), np.nan, dtype=np.float64)
        Z = X[:, 2]
        good = np.isfinite(Z) & (Z > 1e-9)
        if not np.any(good):
            return uv
        uv[good, 0] = self.fx * X[good, 0] / Z[good] + self.cx
        uv[good, 1] = self.fy * X[good, 1] / Z[good] + self.cy
        return uv

    def reconstruct_point_cloud(self, uv: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
        x = (uv[:, 0] - self.cx) / self.fx
        y = (uv[:, 1] - self.cy) / self.fy
        d = np.stack([x, y, np.ones_like(x)], axis=-1)
        mask = np.all(np.isfinite(d), axis=-1)
        d[~mask] = 0.0
        d[mask] /= np.linalg.norm(d[mask], axis=-1, keepdims=True)
        return d, mask


@dataclass(frozen=True)
class EquidistantCamera(_BulkCamera):
    """
    Fisheye model with a linear angle/radius law: r = f * theta.

    theta is the angle between the ray and the optical axis (+Z).
    """

    f: float
    cx: float
    cy: float
    width_px: int
    height_px: int
    max_angle: float = 0.99 * math.pi / 2

    def project_point_cloud(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64).reshape(-1, 3)
        uv = np.full((X.shape[0], 2), np.nan, dtype=np.float64)
        rho = np.hypot(X[:, 0], X[:, 1])
        norm = np.linalg.norm(X, axis=-1)
        theta = np.arctan2(rho, X[:, 2])
        good = np.isfinite(theta) & (norm > 0) & (theta < self.max_angle)
        if not np.any(good):
            return uv
        r = self.f * theta[good]
        # On the optical axis rho == 0 and the direction of the offset is irrelevant.
        rho_g = np.where(rho[good] > 0, rho[good], 1.0)
        uv[good, 0] = self.cx + r * X[good, 0] / rho_g
        uv[good, 1] = self.cy + r * X[good, 1] / rho_g
        return uv

    def reconstruct_point_cloud(self, uv: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
        du = uv[:, 0] - self.cx
        dv = uv[:, 1] - self.cy
        r = np.hypot(du, dv)
        theta = r / self.f
        mask = np.isfinite(theta) & (theta < self.max_angle)
        d = np.zeros((uv.shape[0], 3), dtype=np.float64)
        s = np.sin(theta[mask])
        r_m = np.where(r[mask] > 0, r[mask], 1.0)
        d[mask, 0] = s * du[mask] / r_m
        d[mask, 1] = s * dv[mask] / r_m
        d[mask, 2] = np.cos(theta[mask])
        return d, mask


_CAMERA_TYPES: dict[str, type] = {
    "pinhole": PinholeCamera,
    "equidistant": EquidistantCamera,
}


def camera_from_dict(d: dict[str, Any]) -> CameraModel:
    kind = d.get("type")
    if kind not in _CAMERA_TYPES:
        raise ValueError(f"camera.type unsupported: {kind}")
    params = {k: v for k, v in d.items() if k != "type"}
    try:
        if kind == "pinhole":
            cam = PinholeCamera(
                fx=float(params["fx"]),
                fy=float(params["fy"]),
                cx=float(params["cx"]),
                cy=float(params["cy"]),
                width_px=int(params["width_px"]),
                height_px=int(params["height_px"]),
            )
            if cam.fx <= 0 or cam.fy <= 0:
                raise ValueError("camera fx/fy must be > 0")
            return cam
        cam = EquidistantCamera(
            f=float(params["f"]),
            cx=float(params["cx"]),
            cy=float(params["cy"]),
            width_px=int(params["width_px"]),
            height_px=int(params["height_px"]),
            max_angle=float(params.get("max_angle", 0.99 * math.pi / 2)),
        )
    except KeyError as e:
        raise ValueError(f"camera missing key: {e}") from e
    if cam.f <= 0:
        raise ValueError("camera f must be > 0")
    if not 0 < cam.max_angle <= math.pi:
        raise ValueError("camera max_angle must be in (0, pi]")
    return cam


def camera_to_dict(camera: CameraModel) -> dict[str, Any]:
    for kind, cls in _CAMERA_TYPES.items():
        if isinstance(camera, cls):
            return {"type": kind, **asdict(camera)}
    raise ValueError(f"cannot serialize camera of type {type(camera).__name__}")
