"""Motion estimators.

The strategy is selected once, from ``Odom/Strategy``, by
:func:`create_odometry`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from ...config import K_ODOM_STRATEGY, parse_int
from .base import Odometry, OdometryInfo, OdometryType
from .frame_to_frame import FrameToFrameOdometry
from .frame_to_map import FrameToMapOdometry
from .registration import PointToPointICP, RegistrationResult

logger = logging.getLogger(__name__)


def create_odometry(parameters: Mapping[str, str] | None = None) -> Odometry:
    """Create the estimator selected by ``Odom/Strategy``."""
    parameters = dict(parameters or {})
    strategy = parse_int(parameters, K_ODOM_STRATEGY)
    if strategy == OdometryType.FRAME_TO_FRAME.value:
        return FrameToFrameOdometry(parameters)
    if strategy != OdometryType.FRAME_TO_MAP.value:
        logger.warning(
            "Unknown odometry strategy %d, using Frame-to-Map (%d)",
            strategy,
            OdometryType.FRAME_TO_MAP.value,
        )
    return FrameToMapOdometry(parameters)


__all__ = [
    "Odometry",
    "OdometryInfo",
    "OdometryType",
    "FrameToMapOdometry",
    "FrameToFrameOdometry",
    "PointToPointICP",
    "RegistrationResult",
    "create_odometry",
]
