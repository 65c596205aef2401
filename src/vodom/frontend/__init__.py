"""Frontend components: pose type, sensor observations and estimators.

The motion estimators live in the ``odometry`` submodule.
"""

from .pose import SE3
from .sensor_data import SensorData

__all__ = [
    "SE3",
    "SensorData",
]
