"""Motion guess from an independently tracked frame."""

from __future__ import annotations

import logging

from ..frontend.pose import SE3
from ..io.transforms import TransformBuffer

logger = logging.getLogger(__name__)


class GuessResolver:
    """Computes the motion of a guess frame between two timestamps.

    The guess frame is tracked by another pose source (wheel odometry, an
    IMU filter, ...) and published relative to the odometry frame. Its
    motion between the previous and the current observation is

        guess = T_odom_guess(previous).inverse() @ T_odom_guess(current)
    """

    def __init__(
        self,
        transforms: TransformBuffer,
        odom_frame_id: str,
        guess_frame_id: str,
        wait_timeout: float = 0.0,
    ) -> None:
        self._transforms = transforms
        self._odom_frame_id = odom_frame_id
        self._guess_frame_id = guess_frame_id
        self._wait_timeout = wait_timeout

    @property
    def guess_frame_id(self) -> str:
        return self._guess_frame_id

    def resolve(self, previous_stamp: int, current_stamp: int) -> SE3 | None:
        """Return the guess frame motion, or None if it cannot be resolved.

        An unset previous timestamp (0) resolves to None.
        """
        if previous_stamp <= 0:
            return None

        previous = self._lookup(previous_stamp)
        if previous is None:
            return None
        current = self._lookup(current_stamp)
        if current is None:
            return None
        return previous.inverse() @ current

    def _lookup(self, timestamp_ns: int) -> SE3 | None:
        timeout = self._wait_timeout if timestamp_ns > 0 else 0.0
        pose = self._transforms.lookup(
            self._odom_frame_id, self._guess_frame_id, timestamp_ns, timeout
        )
        if pose is None:
            logger.debug(
                "Guess frame \"%s\" not available in \"%s\" at %d",
                self._guess_frame_id,
                self._odom_frame_id,
                timestamp_ns,
            )
        return pose
