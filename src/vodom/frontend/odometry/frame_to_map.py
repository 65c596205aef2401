"""Frame-to-map odometry: each frame is registered against a local map."""

from __future__ import annotations

from collections.abc import Mapping

import numpy as np

from ...config import K_F2M_MAX_SIZE, K_F2M_SCAN_MAX_SIZE, parse_int
from ..pose import SE3
from ..sensor_data import SensorData
from .base import Odometry, OdometryInfo, OdometryType


def _append_bounded(points: np.ndarray | None, new: np.ndarray, max_size: int) -> np.ndarray:
    """Append points, keeping only the ``max_size`` most recent (0 = unbounded)."""
    merged = new if points is None else np.vstack([points, new])
    if max_size > 0 and len(merged) > max_size:
        merged = merged[-max_size:]
    return merged


class FrameToMapOdometry(Odometry):
    """Registers frames against a bounded local map in the odometry frame.

    After each successful registration the frame's points are added to the
    map and the oldest points are dropped beyond ``OdomF2M/MaxSize``. When
    observations carry a laser scan, a local scan map is maintained the same
    way and reported in the diagnostics.
    """

    def __init__(self, parameters: Mapping[str, str] | None = None) -> None:
        super().__init__(parameters)
        self._max_size = parse_int(self._parameters, K_F2M_MAX_SIZE)
        self._scan_max_size = parse_int(self._parameters, K_F2M_SCAN_MAX_SIZE)
        self._map: np.ndarray | None = None
        self._scan_map: np.ndarray | None = None

    @property
    def type(self) -> OdometryType:
        return OdometryType.FRAME_TO_MAP

    def _reset_state(self) -> None:
        self._map = None
        self._scan_map = None

    def local_map(self) -> np.ndarray | None:
        return self._map

    def _compute_transform(
        self,
        data: SensorData,
        guess: SE3 | None,
        info: OdometryInfo,
    ) -> SE3 | None:
        points = data.points

        if self._map is None:
            if len(points) < self._registration.min_inliers:
                return None
            self._update_maps(self._pose, data)
            info.inliers = len(points)
            info.icp_inliers_ratio = 1.0
            info.local_map_size = len(self._map)
            info.local_scan_map = self._scan_map
            return SE3.identity()

        initial = self._pose @ guess if guess is not None else self._pose
        result = self._registration.register(points, self._map, initial)

        info.inliers = result.num_inliers
        info.icp_inliers_ratio = result.inlier_ratio
        info.variance = result.variance
        info.local_map_size = len(self._map)

        if not result.success:
            return None

        new_pose = result.transform
        self._update_maps(new_pose, data)
        info.local_map_size = len(self._map)
        info.local_scan_map = self._scan_map
        return self._pose.inverse() @ new_pose

    def _update_maps(self, pose: SE3, data: SensorData) -> None:
        self._map = _append_bounded(self._map, pose.transform_points(data.points), self._max_size)
        if data.has_scan:
            self._scan_map = _append_bounded(
                self._scan_map, pose.transform_points(data.scan), self._scan_max_size
            )
