"""Sensor observation passed to the motion estimator."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class SensorData:
    """A timestamped packet of sensor input.

    Attributes:
        timestamp_ns: Acquisition time in nanoseconds
        points: Nx3 feature points in the sensor frame
        scan: Optional Mx3 laser scan points in the sensor frame
    """

    timestamp_ns: int
    points: np.ndarray
    scan: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Ensure arrays are Nx3 float64."""
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        if self.scan is not None:
            self.scan = np.asarray(self.scan, dtype=np.float64).reshape(-1, 3)

    def copy(self) -> SensorData:
        """Return a copy that does not share arrays with this one."""
        return SensorData(
            timestamp_ns=self.timestamp_ns,
            points=self.points.copy(),
            scan=None if self.scan is None else self.scan.copy(),
        )

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def has_scan(self) -> bool:
        return self.scan is not None and len(self.scan) > 0
