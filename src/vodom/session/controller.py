"""Odometry session: per-observation control loop around a motion estimator.

For each observation the session

1. bootstraps the first pose from a ground truth frame, if configured,
2. computes a motion guess from an independently tracked frame, if
   configured,
3. runs the motion estimator,
4. on success updates the session pose and composes the outputs wanted by
   the publisher, or on failure publishes the lost sentinel and counts
   down towards an automatic re-anchoring.

Operator commands (reset, reset to pose, pause, resume) may arrive from
other threads; they share one lock with the processing path.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence

import numpy as np

from ..backend.pose_history import PoseHistory
from ..config import NodeConfig, split_reset_countdown
from ..frontend.odometry import Odometry, create_odometry
from ..frontend.odometry.base import OdometryInfo
from ..frontend.pose import SE3
from ..frontend.sensor_data import SensorData
from ..io.transforms import TransformBuffer
from .guess import GuessResolver
from .outputs import (
    NullPublisher,
    OdometryMessage,
    OdometryOutput,
    OdometryPublisher,
    OutputChannel,
)
from .recovery import ResetCountdown
from .state import SessionState

logger = logging.getLogger(__name__)


class OdometrySession:
    """Owns the session state and sequences one odometry update per observation."""

    def __init__(
        self,
        config: NodeConfig,
        odometry: Odometry,
        transforms: TransformBuffer | None = None,
        publisher: OdometryPublisher | None = None,
        reset_countdown: int = 0,
    ) -> None:
        """Initialize the session.

        Args:
            config: Session configuration
            odometry: Motion estimator, owned by the session from now on
            transforms: Transform buffer for ground truth, guess and
                re-anchoring lookups (a private empty buffer if None)
            publisher: Output consumer (no consumers if None)
            reset_countdown: Consecutive failures before re-anchoring,
                0 to never re-anchor automatically
        """
        self._config = config
        self._odometry = odometry
        self._transforms = transforms if transforms is not None else TransformBuffer()
        self._publisher = publisher if publisher is not None else NullPublisher()

        self._lock = threading.RLock()
        self._state = SessionState(countdown=ResetCountdown(reset_countdown))
        self._history = PoseHistory(max_size=config.pose_history_size)
        self._flush_callback: Callable[[], None] | None = None
        self._generation = 0

        self._guess_resolver = GuessResolver(
            self._transforms,
            odom_frame_id=config.odom_frame_id,
            guess_frame_id=config.guess_frame_id,
            wait_timeout=config.wait_timeout,
        )

        initial_pose = config.initial_pose_se3
        if not initial_pose.is_identity():
            self._reset_pose(initial_pose)

    @classmethod
    def from_config(
        cls,
        config: NodeConfig,
        transforms: TransformBuffer | None = None,
        publisher: OdometryPublisher | None = None,
        argv: Sequence[str] | None = None,
    ) -> OdometrySession:
        """Create a session and its estimator from configuration.

        The reset countdown is taken out of the estimator parameters and
        applied by the session.
        """
        parameters = config.load_parameters(argv)
        countdown, estimator_parameters = split_reset_countdown(parameters)
        odometry = create_odometry(estimator_parameters)
        logger.info(
            "Odometry session created (strategy=%s, reset countdown=%d)",
            odometry.type.name,
            countdown,
        )
        return cls(
            config,
            odometry,
            transforms=transforms,
            publisher=publisher,
            reset_countdown=countdown,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> NodeConfig:
        return self._config

    @property
    def odometry(self) -> Odometry:
        return self._odometry

    @property
    def transforms(self) -> TransformBuffer:
        return self._transforms

    @property
    def publisher(self) -> OdometryPublisher:
        return self._publisher

    @property
    def current_pose(self) -> SE3:
        with self._lock:
            return self._state.current_pose.copy()

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._state.paused

    @property
    def reset_remaining(self) -> int:
        with self._lock:
            return self._state.countdown.remaining

    @property
    def generation(self) -> int:
        """Number of operator resets so far."""
        with self._lock:
            return self._generation

    @property
    def state(self) -> SessionState:
        """Copy of the session state."""
        with self._lock:
            return self._state.snapshot()

    def set_flush_callback(self, callback: Callable[[], None] | None) -> None:
        """Register the function dropping buffered observations on reset."""
        self._flush_callback = callback

    # ------------------------------------------------------------------
    # Observation processing
    # ------------------------------------------------------------------

    def process(
        self,
        data: SensorData,
        timestamp_ns: int | None = None,
        generation: int | None = None,
    ) -> OdometryOutput | None:
        """Process one observation.

        Args:
            data: Sensor observation (not modified)
            timestamp_ns: Observation time, defaults to data.timestamp_ns
            generation: Value of :attr:`generation` when the observation was
                buffered. The observation is dropped if a reset happened since.

        Returns:
            The output handed to the publisher, or None if the session is
            paused, the observation predates the last reset, or the update
            was aborted (missing ground truth or guess)
        """
        stamp = data.timestamp_ns if timestamp_ns is None else timestamp_ns

        with self._lock:
            if self._state.paused:
                logger.debug("Odometry paused, ignoring observation at %d", stamp)
                return None
            if generation is not None and generation != self._generation:
                logger.debug("Dropping observation at %d buffered before the last reset", stamp)
                return None

            if not self._bootstrap(stamp):
                return None

            guess = None
            if self._config.guess_from_tf:
                previous_stamp = self._odometry.previous_stamp
                # Nothing to guess before the estimator has accepted a frame
                if previous_stamp > 0:
                    guess = self._guess_resolver.resolve(previous_stamp, stamp)
                    if guess is None:
                        logger.error(
                            "\"guess_from_tf\" is true, but guess cannot be computed "
                            "between frames \"%s\" -> \"%s\". Aborting odometry update...",
                            self._config.odom_frame_id,
                            self._config.guess_frame_id,
                        )
                        return None

            t_start = time.perf_counter()
            observation = data.copy()
            observation.timestamp_ns = stamp
            pose, info = self._odometry.process(observation, guess)

            output = OdometryOutput(
                timestamp_ns=stamp,
                frame_id=self._config.frame_id,
                odom_frame_id=self._config.odom_frame_id,
                pose=pose,
            )
            if pose is not None:
                self._on_success(output, pose, info)
            else:
                self._on_failure(output, stamp)

            if self._publisher.wants(OutputChannel.ODOM_INFO):
                output.info = info

            self._state.last_stamp = stamp
            self._log_update(info, pose, time.perf_counter() - t_start)
            self._publisher.publish(output)
            return output

    def process_observation(self, data: SensorData, timestamp_ns: int) -> OdometryOutput | None:
        """Alias of :meth:`process` with an explicit timestamp."""
        return self.process(data, timestamp_ns)

    def _bootstrap(self, stamp: int) -> bool:
        """Initialize the pose from ground truth before the first estimate.

        Returns:
            False if the ground truth is configured but not yet available
        """
        gt_frame = self._config.ground_truth_frame_id
        if not gt_frame or not self._state.current_pose.is_identity():
            return True
        # An identity estimate is a valid pose once the estimator has accepted a frame
        if self._odometry.previous_stamp > 0:
            return True

        initial_pose = self._get_transform(
            gt_frame, self._config.ground_truth_base_frame_id, stamp
        )
        if initial_pose is None:
            return False

        logger.info(
            "Initializing odometry pose to %s (from \"%s\" -> \"%s\")",
            initial_pose,
            gt_frame,
            self._config.ground_truth_base_frame_id,
        )
        self._reset_pose(initial_pose)
        return True

    def _on_success(self, output: OdometryOutput, pose: SE3, info: OdometryInfo) -> None:
        state = self._state
        state.countdown.on_success()
        state.current_pose = pose.copy()
        state.node_id += 1
        self._history.add(state.node_id, output.timestamp_ns, state.current_pose)

        output.node_id = state.node_id
        output.velocity = self._odometry.previous_velocity

        if self._config.publish_tf:
            self._transforms.set_transform(
                self._config.odom_frame_id,
                self._config.frame_id,
                output.timestamp_ns,
                state.current_pose,
            )
            if self._publisher.wants(OutputChannel.TRANSFORM):
                output.transform = state.current_pose

        wants = self._publisher.wants
        if wants(OutputChannel.ODOM):
            output.odom = OdometryMessage.from_estimate(
                output.timestamp_ns,
                self._config.odom_frame_id,
                self._config.frame_id,
                state.current_pose,
                info.variance,
                output.velocity,
            )

        if wants(OutputChannel.LOCAL_MAP):
            local_map = self._odometry.local_map()
            if local_map is not None and len(local_map):
                output.local_map = local_map.copy()

        if wants(OutputChannel.LAST_FRAME):
            # Frame points are in the sensor frame; express them in the odometry frame
            last_frame = self._odometry.last_frame()
            if last_frame is not None and len(last_frame):
                output.last_frame = pose.transform_points(last_frame)

        if wants(OutputChannel.LOCAL_SCAN_MAP):
            scan_map = info.local_scan_map
            if scan_map is not None and len(scan_map):
                output.local_scan_map = scan_map.copy()

    def _on_failure(self, output: OdometryOutput, stamp: int) -> None:
        if self._config.publish_null_when_lost and self._publisher.wants(
            OutputChannel.ODOM
        ):
            output.odom = OdometryMessage.lost(
                stamp, self._config.odom_frame_id, self._config.frame_id
            )

        countdown = self._state.countdown
        if not countdown.armed:
            logger.warning("Odometry lost!")
            return

        logger.warning(
            "Odometry lost! Odometry will be reset after next %d consecutive "
            "unsuccessful odometry updates...",
            countdown.remaining,
        )
        if countdown.on_failure():
            self._reanchor(stamp)
            countdown.rearm()
            output.reanchored = True

    def _reanchor(self, stamp: int) -> None:
        """Reset the estimator after sustained failure.

        The pose of the sensor in the odometry frame is taken from the
        transform buffer when available (e.g. from a fusion filter),
        otherwise the last estimated pose is kept.
        """
        tf_pose = self._get_transform(
            self._config.odom_frame_id, self._config.frame_id, stamp
        )
        if tf_pose is None:
            logger.warning("Odometry automatically reset to latest computed pose!")
            self._reset_pose(self._state.current_pose)
        else:
            logger.warning(
                "Odometry automatically reset to latest odometry pose available "
                "from TF (%s->%s)!",
                self._config.odom_frame_id,
                self._config.frame_id,
            )
            self._reset_pose(tf_pose)

    def _get_transform(self, target: str, source: str, stamp: int) -> SE3 | None:
        timeout = self._config.wait_timeout if stamp > 0 else 0.0
        pose = self._transforms.lookup(target, source, stamp, timeout)
        if pose is None:
            logger.warning(
                "odometry: Could not get transform from %s to %s (stamp=%f) after "
                "%f seconds (\"wait_for_transform_duration\"=%f)!",
                target,
                source,
                stamp / 1e9,
                timeout,
                self._config.wait_for_transform_duration,
            )
        return pose

    def _reset_pose(self, pose: SE3) -> None:
        pose = pose.copy()
        self._odometry.reset(pose)
        self._state.current_pose = pose

    def _log_update(self, info: OdometryInfo, pose: SE3 | None, elapsed: float) -> None:
        std_dev = float(np.sqrt(info.variance)) if pose is not None else 0.0
        logger.info(
            "Odom: quality=%d, ratio=%f, std dev=%fm, update time=%fs",
            info.inliers,
            info.icp_inliers_ratio,
            std_dev,
            elapsed,
        )

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Reset the session pose to identity and drop buffered observations."""
        with self._lock:
            logger.info("visual_odometry: reset odom!")
            self._reset_session(SE3.identity())

    def reset_to_pose(
        self,
        x: float | SE3,
        y: float = 0.0,
        z: float = 0.0,
        roll: float = 0.0,
        pitch: float = 0.0,
        yaw: float = 0.0,
    ) -> None:
        """Reset the session pose and drop buffered observations.

        Accepts either an SE3 or "x y z roll pitch yaw" (radians).

        Raises:
            TypeError: If an SE3 is given together with scalar components
        """
        if isinstance(x, SE3):
            if any((y, z, roll, pitch, yaw)):
                raise TypeError(
                    "reset_to_pose takes either an SE3 or x, y, z, roll, pitch, yaw, not both"
                )
            pose = x
        else:
            pose = SE3.from_xyz_rpy(x, y, z, roll, pitch, yaw)
        with self._lock:
            logger.info("visual_odometry: reset odom to pose %s!", pose)
            self._reset_session(pose)

    def _reset_session(self, pose: SE3) -> None:
        # Called with the lock held, so no buffered observation runs between
        # the pose reset and the flush
        self._reset_pose(pose)
        self._state.countdown.rearm()
        self._history.clear()
        self._generation += 1
        self._flush()

    def pause(self) -> bool:
        """Stop processing observations.

        Returns:
            False if the session was already paused
        """
        with self._lock:
            if self._state.paused:
                logger.warning("visual_odometry: Already paused!")
                return False
            self._state.paused = True
            logger.info("visual_odometry: paused!")
            return True

    def resume(self) -> bool:
        """Resume processing observations.

        Returns:
            False if the session was already running
        """
        with self._lock:
            if not self._state.paused:
                logger.warning("visual_odometry: Already running!")
                return False
            self._state.paused = False
            logger.info("visual_odometry: resumed!")
            return True

    def get_nearby_poses(
        self,
        n: int,
        x: float = 0.0,
        y: float = 0.0,
        z: float = 0.0,
        node_id: int = 0,
        radius: float = 0.0,
    ) -> tuple[list[int], list[SE3]]:
        """Return up to ``n`` recent poses near a position or a node.

        When both the position and node id are zero the latest node is used
        as target. A radius <= 0 uses the configured ``nearby_radius``.

        Returns:
            Parallel lists (ids, poses), most recent first
        """
        with self._lock:
            return self._history.nearby(
                n,
                position=np.array([x, y, z], dtype=np.float64),
                node_id=node_id,
                radius=radius,
                default_radius=self._config.nearby_radius,
            )

    def _flush(self) -> None:
        if self._flush_callback is not None:
            self._flush_callback()
