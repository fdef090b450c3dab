from mhdepth.api.model_io import load_depth_map, save_depth_map, save_point_cloud

__all__ = [
    "load_depth_map",
    "save_depth_map",
    "save_point_cloud",
]
