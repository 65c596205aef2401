"""Shared fixtures and test doubles."""

from __future__ import annotations

import numpy as np
import pytest

from vodom.config import NodeConfig
from vodom.frontend.odometry.base import Odometry, OdometryInfo, OdometryType
from vodom.frontend.pose import SE3
from vodom.frontend.sensor_data import SensorData
from vodom.io.transforms import TransformBuffer
from vodom.session.outputs import OdometryOutput, OdometryPublisher, OutputChannel


class ScriptedOdometry(Odometry):
    """Estimator returning scripted motions.

    Each call pops the next motion from ``motions``: an SE3 is accepted as
    the motion since the previous frame, None is an estimation failure.
    Once the script is exhausted every frame succeeds with no motion.
    """

    def __init__(self, motions=None, parameters=None) -> None:
        params = {"Odom/GuessMotion": "false"}
        params.update(parameters or {})
        super().__init__(params)
        self.motions = list(motions or [])
        self.guesses: list[SE3 | None] = []
        self.observations: list[SensorData] = []
        self.resets: list[SE3] = []
        self.map_points = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

    @property
    def type(self) -> OdometryType:
        return OdometryType.FRAME_TO_MAP

    def _compute_transform(self, data, guess, info: OdometryInfo):
        self.guesses.append(guess)
        self.observations.append(data)
        motion = self.motions.pop(0) if self.motions else SE3.identity()
        if motion is not None:
            info.inliers = data.num_points
            info.icp_inliers_ratio = 1.0
            info.variance = 0.01
            info.local_scan_map = np.array([[0.0, 0.0, 2.0]])
        return motion

    def _reset_state(self) -> None:
        self.resets.append(self._pose.copy())

    def local_map(self):
        return self.map_points


class RecordingPublisher(OdometryPublisher):
    """Publisher recording outputs and the channels it was asked about."""

    def __init__(self, channels=None) -> None:
        self.channels = set(OutputChannel) if channels is None else set(channels)
        self.outputs: list[OdometryOutput] = []
        self.queried: list[OutputChannel] = []

    def wants(self, channel: OutputChannel) -> bool:
        self.queried.append(channel)
        return channel in self.channels

    def publish(self, output: OdometryOutput) -> None:
        self.outputs.append(output)


def make_data(timestamp_ns: int, n_points: int = 30, seed: int = 0) -> SensorData:
    """Observation with random points."""
    rng = np.random.default_rng(seed)
    return SensorData(timestamp_ns=timestamp_ns, points=rng.uniform(-5, 5, (n_points, 3)))


def translation(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> SE3:
    return SE3(rotation=np.eye(3), translation=np.array([x, y, z]))


@pytest.fixture
def transforms() -> TransformBuffer:
    return TransformBuffer()


@pytest.fixture
def config() -> NodeConfig:
    """Config with no transform waiting and no transform write-back."""
    return NodeConfig(publish_tf=False, wait_for_transform=False)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()
