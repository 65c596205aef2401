"""Mutable state of one odometry session."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..frontend.pose import SE3
from .recovery import ResetCountdown


@dataclass
class SessionState:
    """State owned by a single OdometrySession.

    Attributes:
        current_pose: Latest pose T_odom_sensor (identity until the first
            estimate, reset or bootstrap)
        paused: True while the session ignores observations
        countdown: Consecutive-failure countdown
        last_stamp: Timestamp (ns) of the last processed observation
        node_id: Identifier of the last successful pose, 0 if none
    """

    current_pose: SE3 = field(default_factory=SE3.identity)
    paused: bool = False
    countdown: ResetCountdown = field(default_factory=ResetCountdown)
    last_stamp: int = 0
    node_id: int = 0

    @property
    def reset_remaining(self) -> int:
        return self.countdown.remaining

    def snapshot(self) -> SessionState:
        """Return an independent copy."""
        return SessionState(
            current_pose=self.current_pose.copy(),
            paused=self.paused,
            countdown=self.countdown.copy(),
            last_stamp=self.last_stamp,
            node_id=self.node_id,
        )
