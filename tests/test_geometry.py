import math

import numpy as np
import pytest

from mhdepth.core.camera import (
    _BulkCamera,
    CameraModel,
    EquidistantCamera,
    PinholeCamera,
    camera_from_dict,
    camera_to_dict,
)
from mhdepth.core.geometry import Transformation, transformation_from_dict, transformation_to_dict


def test_transform_inverse_roundtrip():
    rng = np.random.default_rng(0)
    T = Transformation.from_rotvec(np.array([0.3, -1.0, 2.0]), np.array([0.1, 0.2, -0.3]))
    X = rng.normal(size=(100, 3))
    assert np.max(np.abs(T.inverse_transform(T.transform(X)) - X)) < 1e-12
    assert np.max(np.abs(T.inverse().transform(X) - T.inverse_transform(X))) < 1e-12
    # Single points keep their shape.
    assert T.transform(X[0]).shape == (3,)


def test_rotvec_quarter_turn_about_z():
    T = Transformation.from_rotvec(np.zeros(3), np.array([0.0, 0.0, math.pi / 2]))
    assert np.max(np.abs(T.transform(np.array([1.0, 0.0, 0.0])) - np.array([0.0, 1.0, 0.0]))) < 1e-12
    assert np.max(np.abs(T.rotvec() - np.array([0.0, 0.0, math.pi / 2]))) < 1e-12


def test_compose_matches_matrix_product():
    T12 = Transformation.from_rotvec(np.array([1.0, 0.0, 0.0]), np.array([0.0, 0.5, 0.0]))
    T23 = Transformation.from_rotvec(np.array([0.0, 2.0, 1.0]), np.array([0.2, 0.0, -0.1]))
    T13 = T12.compose(T23)
    assert np.max(np.abs(T13.as_matrix() - T12.as_matrix() @ T23.as_matrix())) < 1e-12
    assert np.max(np.abs(Transformation.from_matrix(T13.as_matrix()).t - T13.t)) < 1e-12


def test_transformation_dict_forms():
    T = transformation_from_dict({"t": [1, 2, 3], "rotvec": [0.0, 0.0, 0.1]})
    T2 = transformation_from_dict(transformation_to_dict(T))
    assert np.max(np.abs(T2.as_matrix() - T.as_matrix())) < 1e-12
    assert np.array_equal(transformation_from_dict({"t": [0, 0, 1]}).R, np.eye(3))
    with pytest.raises(ValueError):
        transformation_from_dict({"R": np.eye(3).tolist()})
    with pytest.raises(ValueError):
        transformation_from_dict({"t": [0, 0, 0], "R": (2 * np.eye(3)).tolist()})


def test_pinhole_project_reconstruct_consistency():
    cam = PinholeCamera(fx=500.0, fy=480.0, cx=320.0, cy=240.0, width_px=640, height_px=480)
    assert isinstance(cam, CameraModel)
    rng = np.random.default_rng(1)
    X = np.stack([rng.uniform(-1, 1, 50), rng.uniform(-1, 1, 50), rng.uniform(2, 5, 50)], axis=-1)
    uv = cam.project_point_cloud(X)
    d, mask = cam.reconstruct_point_cloud(uv)
    assert mask.all()
    Xn = X / np.linalg.norm(X, axis=-1, keepdims=True)
    assert np.max(np.abs(d - Xn)) < 1e-12


def test_pinhole_flags_points_behind_camera():
    cam = PinholeCamera(fx=1.0, fy=1.0, cx=0.0, cy=0.0, width_px=2, height_px=2)
    uv = cam.project_point_cloud(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, 1.0]]))
    assert np.all(np.isnan(uv[0]))
    assert np.all(uv[1] == 0.0)
    assert cam.project_point(np.array([1.0, 1.0, 0.0])) is None


def test_equidistant_angle_law():
    cam = EquidistantCamera(f=100.0, cx=50.0, cy=50.0, width_px=101, height_px=101)
    d = cam.reconstruct_point(np.array([50.0 + 100.0 * 0.5, 50.0]))
    assert d is not None
    assert math.acos(d[2]) == pytest.approx(0.5)
    uv = cam.project_point(d * 7.0)
    assert np.max(np.abs(uv - np.array([100.0, 50.0]))) < 1e-9
    # Beyond the field of view.
    assert cam.reconstruct_point(np.array([50.0 + 100.0 * 1.6, 50.0])) is None
    assert cam.project_point(np.array([0.0, 0.0, -1.0])) is None


def test_camera_dict_roundtrip():
    for cam in (
        PinholeCamera(fx=2.0, fy=3.0, cx=1.0, cy=1.5, width_px=4, height_px=3),
        EquidistantCamera(f=4.0, cx=4.0, cy=4.0, width_px=9, height_px=9, max_angle=1.2),
    ):
        assert camera_from_dict(camera_to_dict(cam)) == cam
    with pytest.raises(ValueError):
        camera_from_dict({"type": "orthographic"})
    with pytest.raises(ValueError):
        camera_from_dict({"type": "pinhole", "fx": 1.0})


def test_camera_base_requires_bulk_methods():
    class ProjectOnly(_BulkCamera):
        def project_point_cloud(self, X):
            return np.zeros((len(X), 2))

    with pytest.raises(TypeError):
        ProjectOnly()
