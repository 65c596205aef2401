"""Frame-to-frame odometry against a reference key frame."""

from __future__ import annotations

from collections.abc import Mapping

import numpy as np

from ...config import K_ODOM_KEYFRAME_THR, parse_float
from ..pose import SE3
from ..sensor_data import SensorData
from .base import Odometry, OdometryInfo, OdometryType


class FrameToFrameOdometry(Odometry):
    """Registers frames against the last key frame.

    A frame becomes the new key frame when its inlier ratio against the
    current key frame drops below ``Odom/KeyFrameThr``.
    """

    def __init__(self, parameters: Mapping[str, str] | None = None) -> None:
        super().__init__(parameters)
        self._keyframe_thr = parse_float(self._parameters, K_ODOM_KEYFRAME_THR)
        self._ref_points: np.ndarray | None = None  # key frame, sensor frame
        self._ref_pose: SE3 | None = None  # T_odom_keyframe

    @property
    def type(self) -> OdometryType:
        return OdometryType.FRAME_TO_FRAME

    @property
    def reference_pose(self) -> SE3 | None:
        return self._ref_pose

    def _reset_state(self) -> None:
        self._ref_points = None
        self._ref_pose = None

    def local_map(self) -> np.ndarray | None:
        if self._ref_points is None or self._ref_pose is None:
            return None
        return self._ref_pose.transform_points(self._ref_points)

    def _compute_transform(
        self,
        data: SensorData,
        guess: SE3 | None,
        info: OdometryInfo,
    ) -> SE3 | None:
        points = data.points

        if self._ref_points is None:
            if len(points) < self._registration.min_inliers:
                return None
            self._ref_points = points
            self._ref_pose = self._pose
            info.inliers = len(points)
            info.icp_inliers_ratio = 1.0
            info.local_map_size = len(points)
            return SE3.identity()

        predicted = self._pose @ guess if guess is not None else self._pose
        initial = self._ref_pose.inverse() @ predicted
        result = self._registration.register(points, self._ref_points, initial)

        info.inliers = result.num_inliers
        info.icp_inliers_ratio = result.inlier_ratio
        info.variance = result.variance
        info.local_map_size = len(self._ref_points)

        if not result.success:
            return None

        new_pose = self._ref_pose @ result.transform
        if result.inlier_ratio < self._keyframe_thr:
            self._ref_points = points
            self._ref_pose = new_pose
            info.local_map_size = len(points)
        return self._pose.inverse() @ new_pose
