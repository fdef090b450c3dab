from mhdepth import meta
from mhdepth.api import load_depth_map, save_depth_map, save_point_cloud
from mhdepth.core.camera import CameraModel, EquidistantCamera, PinholeCamera
from mhdepth.core.geometry import Transformation
from mhdepth.depth_map import (
    DEFAULT_DEPTH,
    DEFAULT_SIGMA_DEPTH,
    MIN_DEPTH,
    OUT_OF_RANGE,
    DepthMap,
    MHPack,
    ReconstructionFlags,
    ReconstructionOptions,
)
from mhdepth.meta import ScaleParameters
from mhdepth.plane import generate_plane
from mhdepth.warp import warp_depth, warp_depth_to_new_map

__all__ = [
    "meta",
    "CameraModel",
    "PinholeCamera",
    "EquidistantCamera",
    "Transformation",
    "ScaleParameters",
    "DepthMap",
    "MHPack",
    "ReconstructionFlags",
    "ReconstructionOptions",
    "MIN_DEPTH",
    "OUT_OF_RANGE",
    "DEFAULT_DEPTH",
    "DEFAULT_SIGMA_DEPTH",
    "generate_plane",
    "warp_depth",
    "warp_depth_to_new_map",
    "load_depth_map",
    "save_depth_map",
    "save_point_cloud",
]
