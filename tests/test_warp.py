from __future__ import annotations

import numpy as np
import pytest

from mhdepth.core.camera import PinholeCamera
from mhdepth.core.geometry import Transformation
from mhdepth.depth_map import DepthMap
from mhdepth.meta import ScaleParameters
from mhdepth.plane import generate_plane
from mhdepth.warp import warp_depth, warp_depth_to_new_map


def _camera(f: float = 6.0) -> PinholeCamera:
    return PinholeCamera(fx=f, fy=f, cx=3.5, cy=2.5, width_px=8, height_px=6)


def _ramp_map(cam: PinholeCamera, h_max: int = 1) -> DepthMap:
    dm = DepthMap(cam, ScaleParameters(x_max=8, y_max=6, h_max=h_max))
    yy, xx = np.mgrid[0:6, 0:8]
    depth = 2.0 + 0.1 * xx + 0.05 * yy
    depth[0, 0] = 0.0
    depth[4, 6] = 0.0
    dm.from_mat(depth, np.full((6, 8), 0.3))
    dm.costs[: dm.h_step] = np.arange(dm.h_step, dtype=np.float64)
    return dm


def _frontal_plane(cam: PinholeCamera, z: float) -> DepthMap:
    big = np.array([[-10.0, -10.0, 1.0], [10.0, -10.0, 1.0], [10.0, 10.0, 1.0], [-10.0, 10.0, 1.0]])
    T = Transformation(R=np.eye(3), t=np.array([0.0, 0.0, z]))
    return generate_plane(cam, ScaleParameters(x_max=8, y_max=6), T, big)


def test_warp_identity_reproduces_depth():
    cam = _camera()
    dm = _ramp_map(cam)
    out = warp_depth(dm, dm.copy(), Transformation.identity())

    valid = dm.values >= 0.1
    assert np.count_nonzero(valid) == dm.h_step - 2
    assert np.max(np.abs(out.values[valid] - dm.values[valid])) < 1e-9
    assert np.all(out.values[~valid] == 0.0)
    assert np.max(np.abs(out.sigmas[valid] - 0.3)) < 1e-12


def test_warp_takes_sigma_from_target():
    cam = _camera()
    dm = _ramp_map(cam)
    target = dm.copy()
    target.sigmas[:] = 0.7
    out = warp_depth(dm, target, Transformation.identity())
    valid = dm.values >= 0.1
    assert np.all(out.sigmas[valid] == 0.7)
    # The source itself is not modified.
    assert np.all(dm.sigmas[: dm.h_step] == 0.3)


def test_warp_round_trip_through_translated_view():
    cam = _camera(f=20.0)
    source = _frontal_plane(cam, 5.0)
    # Second camera one unit closer to the plane.
    target = _frontal_plane(cam, 4.0)
    T12 = Transformation(R=np.eye(3), t=np.array([0.0, 0.0, 1.0]))

    out = warp_depth(source, target, T12)
    filled = out.values[: out.h_step] >= 0.1
    assert np.count_nonzero(filled) >= 4
    assert np.max(np.abs(out.values[: out.h_step][filled] - source.values[: out.h_step][filled])) < 0.05
    assert np.all(out.values[: out.h_step][~filled] == 0.0)


def test_warp_resets_only_first_layer_of_output():
    cam = _camera()
    dm = _ramp_map(cam, h_max=2)
    dm.values[dm.h_step :] = 9.0
    target = _ramp_map(cam)
    # Push every source point out of the target view.
    T12 = Transformation(R=np.eye(3), t=np.array([100.0, 0.0, 0.0]))

    output = DepthMap(cam, dm.params)
    result = warp_depth(dm, target, T12, output)
    assert result is output
    assert np.all(output.values[: dm.h_step] == 0.0)
    assert np.all(output.values[dm.h_step :] == 9.0)


def test_warp_rejects_mismatched_output():
    cam = _camera()
    dm = _ramp_map(cam)
    with pytest.raises(ValueError):
        warp_depth(dm, dm, Transformation.identity(), DepthMap(cam, ScaleParameters(x_max=4, y_max=3)))


def test_warp_to_new_map_identity_copies_columns():
    cam = _camera()
    dm = _ramp_map(cam)
    out = warp_depth_to_new_map(dm, Transformation.identity(), dm.params)

    valid = dm.values >= 0.1
    assert out.camera is cam
    assert np.max(np.abs(out.values[valid] - dm.values[valid])) < 1e-9
    assert np.array_equal(out.sigmas[valid], dm.sigmas[valid])
    assert np.array_equal(out.costs[valid], dm.costs[valid])
    assert np.all(out.values[~valid] == 0.0)


def test_warp_to_new_map_last_source_wins():
    cam = _camera()
    dm = DepthMap(cam, ScaleParameters(x_max=8, y_max=6))
    dm.from_mat(np.full((6, 8), 3.0))
    dm.sigmas[:] = np.arange(dm.h_step, dtype=np.float64)
    dm.costs[:] = 2.0 * np.arange(dm.h_step, dtype=np.float64)

    params = ScaleParameters.for_image(8, 6, scale=2)
    out = warp_depth_to_new_map(dm, Transformation.identity(), params)

    assert out.params == params
    assert out.count_valid() == params.h_step
    # Cell (0, 0) collects source columns 0, 1, 8 and 9.
    assert out.sigma(0, 0) == 9.0
    assert out.cost(0, 0) == 18.0
    assert out.at(0, 0) == pytest.approx(3.0)
    # Cell (3, 2) collects columns (6..7, 4..5).
    assert out.sigma(3, 2) == 7 + 5 * 8


def test_warp_to_new_map_drops_points_outside_target():
    cam = _camera()
    dm = _ramp_map(cam)
    # Every point ends up behind the second camera.
    T12 = Transformation(R=np.eye(3), t=np.array([0.0, 0.0, 100.0]))
    out = warp_depth_to_new_map(dm, T12, dm.params)
    assert out.count_valid() == 0
