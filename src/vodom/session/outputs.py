"""Outputs composed by the session for publication.

The session hands an :class:`OdometryOutput` to an :class:`OdometryPublisher`
after every processed observation. Expensive geometry (point clouds) is only
derived for the channels the publisher reports interest in through
:meth:`OdometryPublisher.wants`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..frontend.odometry.base import OdometryInfo
from ..frontend.pose import SE3

BAD_COVARIANCE = 9999.0


class OutputChannel(Enum):
    """Outputs a publisher may subscribe to."""

    ODOM = "odom"
    ODOM_INFO = "odom_info"
    LOCAL_MAP = "odom_local_map"
    LAST_FRAME = "odom_last_frame"
    LOCAL_SCAN_MAP = "odom_local_scan_map"
    TRANSFORM = "tf"


def _diagonal_covariance(value: float) -> np.ndarray:
    return np.diag(np.full(6, value, dtype=np.float64))


@dataclass
class OdometryMessage:
    """Odometry message: pose and twist with their covariances.

    ``pose`` is None in the lost sentinel.
    """

    timestamp_ns: int
    frame_id: str
    child_frame_id: str
    pose: SE3 | None
    pose_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    linear_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    twist_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))

    @property
    def is_lost(self) -> bool:
        return self.pose is None

    @classmethod
    def from_estimate(
        cls,
        timestamp_ns: int,
        frame_id: str,
        child_frame_id: str,
        pose: SE3,
        variance: float,
        velocity: SE3 | None,
    ) -> OdometryMessage:
        """Build the message of a successful estimate.

        Pose covariance is twice the estimation variance; twist covariance
        is the variance, or BAD_COVARIANCE when no velocity is known.
        """
        msg = cls(
            timestamp_ns=timestamp_ns,
            frame_id=frame_id,
            child_frame_id=child_frame_id,
            pose=pose,
            pose_covariance=_diagonal_covariance(variance * 2),
        )
        if velocity is not None:
            x, y, z, roll, pitch, yaw = velocity.to_xyz_rpy()
            msg.linear_velocity = np.array([x, y, z])
            msg.angular_velocity = np.array([roll, pitch, yaw])
            msg.twist_covariance = _diagonal_covariance(variance)
        else:
            msg.twist_covariance = _diagonal_covariance(BAD_COVARIANCE)
        return msg

    @classmethod
    def lost(cls, timestamp_ns: int, frame_id: str, child_frame_id: str) -> OdometryMessage:
        """Build the sentinel telling consumers that tracking is lost."""
        return cls(
            timestamp_ns=timestamp_ns,
            frame_id=frame_id,
            child_frame_id=child_frame_id,
            pose=None,
            pose_covariance=_diagonal_covariance(BAD_COVARIANCE),
            twist_covariance=_diagonal_covariance(BAD_COVARIANCE),
        )


@dataclass
class OdometryOutput:
    """Everything the session produced for one observation.

    Geometry fields are only filled when their channel is wanted; points
    are expressed in the odometry frame.
    """

    timestamp_ns: int
    frame_id: str
    odom_frame_id: str
    pose: SE3 | None
    node_id: int = 0
    odom: OdometryMessage | None = None
    transform: SE3 | None = None
    info: OdometryInfo | None = None
    velocity: SE3 | None = None
    local_map: np.ndarray | None = None
    last_frame: np.ndarray | None = None
    local_scan_map: np.ndarray | None = None
    reanchored: bool = False

    @property
    def lost(self) -> bool:
        return self.pose is None


class OdometryPublisher(ABC):
    """Consumer of session outputs."""

    @abstractmethod
    def wants(self, channel: OutputChannel) -> bool:
        """Return True if anyone consumes this channel. Must be cheap."""

    @abstractmethod
    def publish(self, output: OdometryOutput) -> None:
        """Deliver the output of one observation."""


class NullPublisher(OdometryPublisher):
    """Publisher with no consumers."""

    def wants(self, channel: OutputChannel) -> bool:
        return False

    def publish(self, output: OdometryOutput) -> None:
        pass
