"""Motion estimator interface shared by the odometry strategies."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ...config import (
    K_ICP_EPSILON,
    K_ICP_ITERATIONS,
    K_ICP_MAX_CORRESPONDENCE_DISTANCE,
    K_ODOM_GUESS_MOTION,
    K_VIS_MIN_INLIERS,
    DEFAULT_PARAMETERS,
    parse_float,
    parse_int,
    to_bool,
)
from ..pose import SE3
from ..sensor_data import SensorData
from .registration import PointToPointICP

logger = logging.getLogger(__name__)


class OdometryType(Enum):
    """Odometry strategy (``Odom/Strategy``)."""

    FRAME_TO_MAP = 0
    FRAME_TO_FRAME = 1


@dataclass
class OdometryInfo:
    """Diagnostics of a single odometry update.

    Attributes:
        lost: True if no pose could be estimated
        inliers: Number of inlier correspondences
        matches: Number of correspondences tried (points in the frame)
        icp_inliers_ratio: inliers / matches
        variance: Mean squared inlier residual (m^2)
        features: Number of points in the frame
        local_map_size: Points in the estimator's local map
        time_estimation: Estimation time in seconds
        transform: Estimated motion since the previous frame
        guess_used: Motion guess given to the registration
        local_scan_map: Local scan map in the odometry frame, if maintained
    """

    lost: bool = True
    inliers: int = 0
    matches: int = 0
    icp_inliers_ratio: float = 0.0
    variance: float = 0.0
    features: int = 0
    local_map_size: int = 0
    time_estimation: float = 0.0
    transform: SE3 | None = None
    guess_used: SE3 | None = None
    local_scan_map: np.ndarray | None = None


class Odometry(ABC):
    """Stateful incremental pose estimator.

    Subclasses implement :meth:`_compute_transform`, returning the motion
    of the sensor since the previously accepted frame. The base class keeps
    the accumulated pose, the previous timestamp and the previous velocity,
    and applies a constant velocity motion model when no guess is given.

    Each strategy also exposes its internal structures through
    :meth:`local_map` and :meth:`last_frame` for visualization.
    """

    def __init__(self, parameters: Mapping[str, str] | None = None) -> None:
        """Initialize the estimator.

        Args:
            parameters: Estimator parameter map; missing keys use defaults
        """
        self._parameters = dict(DEFAULT_PARAMETERS)
        self._parameters.update(parameters or {})

        self._guess_motion = to_bool(self._parameters[K_ODOM_GUESS_MOTION])
        self._registration = PointToPointICP(
            max_iterations=parse_int(self._parameters, K_ICP_ITERATIONS),
            max_correspondence_distance=parse_float(
                self._parameters, K_ICP_MAX_CORRESPONDENCE_DISTANCE
            ),
            epsilon=parse_float(self._parameters, K_ICP_EPSILON),
            min_inliers=parse_int(self._parameters, K_VIS_MIN_INLIERS),
        )

        self._pose = SE3.identity()
        self._previous_stamp: int = 0
        self._previous_velocity: SE3 | None = None
        self._frames_processed: int = 0
        self._last_frame: np.ndarray | None = None

    @property
    @abstractmethod
    def type(self) -> OdometryType:
        """Strategy of this estimator."""

    @property
    def parameters(self) -> dict[str, str]:
        return dict(self._parameters)

    @property
    def pose(self) -> SE3:
        """Current pose T_odom_sensor."""
        return self._pose

    @property
    def previous_stamp(self) -> int:
        """Timestamp (ns) of the last accepted frame, 0 if none."""
        return self._previous_stamp

    @property
    def previous_velocity(self) -> SE3 | None:
        """Motion per second over the last successful update, if known."""
        return self._previous_velocity

    @property
    def frames_processed(self) -> int:
        return self._frames_processed

    def reset(self, initial_pose: SE3 | None = None) -> None:
        """Forget all internal state and restart at ``initial_pose``."""
        self._pose = initial_pose.copy() if initial_pose is not None else SE3.identity()
        self._previous_stamp = 0
        self._previous_velocity = None
        self._frames_processed = 0
        self._last_frame = None
        self._reset_state()
        logger.debug("Odometry reset to %s", self._pose)

    def process(
        self,
        data: SensorData,
        guess: SE3 | None = None,
    ) -> tuple[SE3 | None, OdometryInfo]:
        """Estimate the pose for a new frame.

        Args:
            data: Sensor observation; the estimator may keep references to it
            guess: Optional motion since the previous frame

        Returns:
            (pose T_odom_sensor or None if lost, diagnostics)
        """
        t_start = time.perf_counter()
        info = OdometryInfo(features=data.num_points, matches=data.num_points)

        dt = 0.0
        if self._previous_stamp > 0 and data.timestamp_ns > self._previous_stamp:
            dt = (data.timestamp_ns - self._previous_stamp) / 1e9

        if guess is None and self._guess_motion and self._previous_velocity is not None and dt > 0:
            guess = _scale_motion(self._previous_velocity, dt)
        info.guess_used = guess

        self._last_frame = data.points
        motion = self._compute_transform(data, guess, info)
        info.time_estimation = time.perf_counter() - t_start
        self._frames_processed += 1

        if motion is None or not motion.is_finite():
            info.lost = True
            self._previous_velocity = None
            return None, info

        info.lost = False
        info.transform = motion
        self._pose = self._pose @ motion
        self._previous_velocity = _scale_motion(motion, 1.0 / dt) if dt > 0 else None
        self._previous_stamp = data.timestamp_ns
        return self._pose, info

    @abstractmethod
    def _compute_transform(
        self,
        data: SensorData,
        guess: SE3 | None,
        info: OdometryInfo,
    ) -> SE3 | None:
        """Return the motion since the previous pose, or None if lost.

        Implementations fill the registration fields of ``info``. The first
        frame after a reset must return identity.
        """

    @abstractmethod
    def _reset_state(self) -> None:
        """Clear strategy-specific state."""

    @abstractmethod
    def local_map(self) -> np.ndarray | None:
        """Points of the local map / reference frame in the odometry frame."""

    def last_frame(self) -> np.ndarray | None:
        """Points of the latest frame in the sensor frame."""
        return self._last_frame


def _scale_motion(motion: SE3, factor: float) -> SE3:
    """Scale a motion's translation and Euler angles by ``factor``."""
    x, y, z, roll, pitch, yaw = motion.to_xyz_rpy()
    return SE3.from_xyz_rpy(
        x * factor,
        y * factor,
        z * factor,
        roll * factor,
        pitch * factor,
        yaw * factor,
    )
