from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def load_mask(path: str | Path, threshold: int = 0) -> np.ndarray:
    """
    Load an image as a boolean mask (H,W): True where gray level > threshold.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Missing {p}")
    with Image.open(p) as im:
        arr = np.asarray(im.convert("L"), dtype=np.uint8)
    return arr > int(threshold)


def save_depth_png(path: str | Path, depth: np.ndarray, unit: float = 1e-3) -> Path:
    """
    Save a (H,W) depth image as 16-bit PNG, one gray level per `unit`.

    Values below zero, non-finite or above the 16-bit range are clipped/zeroed.
    """
    if unit <= 0:
        raise ValueError("unit must be > 0")
    p = Path(path)
    depth = np.asarray(depth, dtype=np.float64)
    if depth.ndim != 2:
        raise ValueError("depth must be a 2D array")
    q = np.where(np.isfinite(depth), depth / unit, 0.0)
    q = np.clip(np.rint(q), 0, 65535).astype(np.uint16)
    Image.fromarray(q).save(p)
    return p


def load_depth_png(path: str | Path, unit: float = 1e-3) -> np.ndarray:
    with Image.open(Path(path)) as im:
        arr = np.asarray(im, dtype=np.float64)
    return arr * float(unit)
