"""EuRoC ground truth reader feeding a transform buffer.

Ground truth poses are published as a dynamic edge ``world -> body`` so a
session configured with a ``ground_truth_frame_id`` can bootstrap its first
pose from them.

CSV format (state_groundtruth_estimate0/data.csv):
    #timestamp, p_RS_R_x, p_RS_R_y, p_RS_R_z, q_RS_w, q_RS_x, q_RS_y, q_RS_z, ...
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from ..frontend.pose import SE3
from .transforms import TransformBuffer

logger = logging.getLogger(__name__)


class GroundTruthReader:
    """Load EuRoC ground truth body poses.

    Malformed lines are skipped.
    """

    def __init__(self, path: str | Path) -> None:
        """Load ground truth.

        Args:
            path: EuRoC mav0 directory, or the ground truth CSV itself
        """
        path = Path(path)
        if path.is_dir():
            path = path / "state_groundtruth_estimate0" / "data.csv"

        if not path.exists():
            raise FileNotFoundError(
                f"Ground truth not found: {path}\n"
                f"Expected EuRoC format with state_groundtruth_estimate0/data.csv"
            )

        self._path = path
        self._timestamps: list[int] = []  # nanoseconds
        self._poses: list[SE3] = []  # T_world_body
        self._load()

    def _load(self) -> None:
        skipped = 0
        with open(self._path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                parts = line.split(",")
                try:
                    timestamp_ns = int(parts[0])
                    px, py, pz, qw, qx, qy, qz = (float(v) for v in parts[1:8])
                except (ValueError, IndexError):
                    skipped += 1
                    continue

                self._timestamps.append(timestamp_ns)
                self._poses.append(
                    SE3.from_quaternion(qw, qx, qy, qz, translation=np.array([px, py, pz]))
                )

        if skipped:
            logger.warning("Skipped %d malformed ground truth lines in %s", skipped, self._path)

    def populate(
        self,
        buffer: TransformBuffer,
        world_frame_id: str = "world",
        body_frame_id: str = "base_link_gt",
    ) -> int:
        """Publish every ground truth pose into ``buffer``.

        Returns:
            Number of poses published
        """
        if len(self._poses) > buffer.max_samples:
            logger.warning(
                "Transform buffer keeps %d samples per frame, only the last ones of %d "
                "ground truth poses will be available",
                buffer.max_samples,
                len(self._poses),
            )
        for timestamp_ns, pose in zip(self._timestamps, self._poses):
            buffer.set_transform(world_frame_id, body_frame_id, timestamp_ns, pose)
        return len(self._poses)

    @property
    def timestamps(self) -> list[int]:
        return list(self._timestamps)

    @property
    def poses(self) -> list[SE3]:
        return list(self._poses)

    @property
    def start_timestamp(self) -> int | None:
        """First ground truth timestamp in nanoseconds."""
        return self._timestamps[0] if self._timestamps else None

    @property
    def end_timestamp(self) -> int | None:
        """Last ground truth timestamp in nanoseconds."""
        return self._timestamps[-1] if self._timestamps else None

    def __len__(self) -> int:
        """Number of ground truth poses."""
        return len(self._poses)
