"""Rerun-based publisher for odometry session outputs."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np
import rerun as rr
import rerun.blueprint as rrb

from ..session.outputs import OdometryOutput, OdometryPublisher, OutputChannel

DEFAULT_CHANNELS = frozenset(
    {
        OutputChannel.ODOM,
        OutputChannel.LOCAL_MAP,
        OutputChannel.LAST_FRAME,
    }
)


class RerunPublisher(OdometryPublisher):
    """Publishes session outputs to a Rerun recording.

    Only the channels given at construction are considered wanted, so the
    session skips deriving the point clouds of the others.

    Entity hierarchy:
        odom/
            sensor          - Current pose (transform)
            trajectory      - Estimated trajectory (yellow)
            lost            - Positions where tracking was lost (red)
            local_map       - Local map points (purple to white by height)
            last_frame      - Last frame points in the odometry frame (cyan)
            local_scan_map  - Local scan map points (grey)
        diagnostics/
            inliers, variance
    """

    def __init__(
        self,
        app_name: str = "python-vodom",
        channels: Iterable[OutputChannel] | None = None,
        spawn: bool = True,
        init: bool = True,
    ) -> None:
        """Initialize Rerun publishing.

        Args:
            app_name: Name for the Rerun application
            channels: Channels to publish, defaults to odom, local map and last frame
            spawn: If True, automatically spawn the Rerun viewer
            init: If False, log to an already initialized recording
        """
        self._channels = frozenset(channels) if channels is not None else DEFAULT_CHANNELS
        self._positions: list[np.ndarray] = []
        if init:
            rr.init(app_name, spawn=spawn)
        self._setup_layout()

    def _setup_layout(self) -> None:
        """Configure the viewer layout."""
        rr.log("odom", rr.ViewCoordinates.RIGHT_HAND_Z_UP, static=True)
        blueprint = rrb.Blueprint(
            rrb.Horizontal(
                contents=[
                    rrb.Spatial3DView(name="Odometry", origin="odom"),
                    rrb.TimeSeriesView(name="Diagnostics", origin="diagnostics"),
                ]
            )
        )
        rr.send_blueprint(blueprint)

    @property
    def channels(self) -> frozenset[OutputChannel]:
        return self._channels

    def wants(self, channel: OutputChannel) -> bool:
        return channel in self._channels

    def publish(self, output: OdometryOutput) -> None:
        rr.set_time("timestamp", duration=output.timestamp_ns / 1e9)

        if output.pose is not None:
            self._log_pose(output)
        elif output.odom is not None and self._positions:
            rr.log(
                "odom/lost",
                rr.Points3D([self._positions[-1]], colors=[[255, 0, 0]], radii=0.08),
            )

        if output.info is not None:
            rr.log("diagnostics/inliers", rr.Scalars(float(output.info.inliers)))
            rr.log("diagnostics/variance", rr.Scalars(float(output.info.variance)))

        if output.local_map is not None:
            self._log_map_points(output.local_map)

        if output.last_frame is not None:
            rr.log(
                "odom/last_frame",
                rr.Points3D(output.last_frame, colors=[[0, 255, 255]], radii=0.02),
            )

        if output.local_scan_map is not None:
            rr.log(
                "odom/local_scan_map",
                rr.Points3D(output.local_scan_map, colors=[[160, 160, 160]], radii=0.01),
            )

    def _log_pose(self, output: OdometryOutput) -> None:
        pose = output.pose
        self._positions.append(pose.position)

        if OutputChannel.ODOM in self._channels:
            rr.log(
                "odom/sensor",
                rr.Transform3D(translation=pose.translation, mat3x3=pose.rotation),
            )

        if len(self._positions) >= 2:
            rr.log(
                "odom/trajectory",
                rr.LineStrips3D(
                    [np.asarray(self._positions)],
                    colors=[[255, 255, 0]],  # Yellow
                    radii=0.01,
                ),
            )

    def _log_map_points(self, positions: np.ndarray) -> None:
        """Log local map points colored by height."""
        valid_positions = positions[np.isfinite(positions).all(axis=1)]
        if len(valid_positions) == 0:
            return

        # Color by height (z, odometry frame is Z-up)
        heights = valid_positions[:, 2]
        h_min, h_max = np.percentile(heights, [5, 95])
        h_range = max(h_max - h_min, 0.1)
        normalized = np.clip((heights - h_min) / h_range, 0, 1)

        # Purple to white gradient
        colors = np.zeros((len(valid_positions), 3), dtype=np.uint8)
        colors[:, 0] = (128 + normalized * 127).astype(np.uint8)
        colors[:, 1] = (normalized * 255).astype(np.uint8)
        colors[:, 2] = (255 - normalized * 127).astype(np.uint8)

        rr.log(
            "odom/local_map",
            rr.Points3D(valid_positions, colors=colors, radii=0.03),
        )
