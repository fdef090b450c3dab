from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np


def _as_points(X: np.ndarray) -> tuple[np.ndarray, bool]:
    X = np.asarray(X, dtype=np.float64)
    single = X.ndim == 1
    X = X.reshape(-1, 3)
    return X, single


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vectors along the last axis; zero vectors stay zero."""
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    return np.divide(v, n, out=np.zeros_like(v), where=n > 0)


@dataclass(frozen=True)
class Transformation:
    """
    Rigid transform T12 between two frames.

    Convention:
    - `transform` maps points expressed in frame 2 into frame 1: X_1 = R X_2 + t
    - `inverse_transform` maps frame 1 back into frame 2: X_2 = R^T (X_1 - t)
    - t is the origin of frame 2 expressed in frame 1, the columns of R are its axes
    """

    R: np.ndarray  # (3,3)
    t: np.ndarray  # (3,)

    def __post_init__(self) -> None:
        R = np.asarray(self.R, dtype=np.float64).reshape(3, 3)
        t = np.asarray(self.t, dtype=np.float64).reshape(3)
        if not (np.all(np.isfinite(R)) and np.all(np.isfinite(t))):
            raise ValueError("non-finite values in transformation")
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @classmethod
    def identity(cls) -> "Transformation":
        return cls(R=np.eye(3), t=np.zeros(3))

    @classmethod
    def from_rotvec(cls, t: np.ndarray, rotvec: np.ndarray) -> "Transformation":
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        rotvec = np.asarray(rotvec, dtype=np.float64).reshape(3)
        return cls(R=Rot.from_rotvec(rotvec).as_matrix(), t=t)

    @classmethod
    def from_matrix(cls, M: np.ndarray) -> "Transformation":
        M = np.asarray(M, dtype=np.float64)
        if M.shape != (4, 4):
            raise ValueError("M must have shape (4,4)")
        return cls(R=M[:3, :3], t=M[:3, 3])

    def trans(self) -> np.ndarray:
        return self.t.copy()

    def rot_mat(self) -> np.ndarray:
        return self.R.copy()

    def rotvec(self) -> np.ndarray:
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        return Rot.from_matrix(self.R).as_rotvec()

    def as_matrix(self) -> np.ndarray:
        M = np.eye(4, dtype=np.float64)
        M[:3, :3] = self.R
        M[:3, 3] = self.t
        return M

    def transform(self, X: np.ndarray) -> np.ndarray:
        P, single = _as_points(X)
        out = P @ self.R.T + self.t[None, :]
        return out[0] if single else out

    def inverse_transform(self, X: np.ndarray) -> np.ndarray:
        P, single = _as_points(X)
        out = (P - self.t[None, :]) @ self.R
        return out[0] if single else out

    def inverse(self) -> "Transformation":
        return Transformation(R=self.R.T, t=-self.R.T @ self.t)

    def compose(self, other: "Transformation") -> "Transformation":
        """T_13 = T_12.compose(T_23)."""
        return Transformation(R=self.R @ other.R, t=self.R @ other.t + self.t)


def transformation_from_dict(d: dict[str, Any]) -> Transformation:
    if "t" not in d:
        raise ValueError("transformation requires t")
    t = np.asarray(d["t"], dtype=np.float64)
    if t.shape != (3,):
        raise ValueError("t must have 3 values")
    if "R" in d:
        R = np.asarray(d["R"], dtype=np.float64)
        if R.shape != (3, 3):
            raise ValueError("R must be 3x3")
        if not np.allclose(R.T @ R, np.eye(3), atol=1e-6):
            raise ValueError("R must be a rotation matrix")
        return Transformation(R=R, t=t)
    if "rotvec" in d:
        return Transformation.from_rotvec(t, np.asarray(d["rotvec"], dtype=np.float64))
    return Transformation(R=np.eye(3), t=t)


def transformation_to_dict(T: Transformation) -> dict[str, Any]:
    return {"R": T.R.tolist(), "t": T.t.tolist()}
