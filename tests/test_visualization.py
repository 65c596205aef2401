"""Tests for RerunPublisher."""

import numpy as np
import pytest
import rerun as rr

from conftest import translation
from vodom.frontend.odometry.base import OdometryInfo
from vodom.session.outputs import OdometryMessage, OdometryOutput, OutputChannel
from vodom.visualization import RerunPublisher


@pytest.fixture
def rerun_publisher() -> RerunPublisher:
    rr.init("vodom-test", spawn=False)
    rr.memory_recording()
    return RerunPublisher(channels=[OutputChannel.ODOM, OutputChannel.LOCAL_MAP], init=False)


class TestRerunPublisher:
    """Test suite for RerunPublisher."""

    def test_wants_configured_channels(self, rerun_publisher: RerunPublisher):
        assert rerun_publisher.wants(OutputChannel.ODOM)
        assert rerun_publisher.wants(OutputChannel.LOCAL_MAP)
        assert not rerun_publisher.wants(OutputChannel.LAST_FRAME)

    def test_publish_estimates_and_lost(self, rerun_publisher: RerunPublisher):
        """Test that estimates, lost sentinels and maps are logged."""
        for i in range(3):
            rerun_publisher.publish(
                OdometryOutput(
                    timestamp_ns=(i + 1) * 100_000_000,
                    frame_id="base_link",
                    odom_frame_id="odom",
                    pose=translation(float(i)),
                    info=OdometryInfo(lost=False, inliers=100, variance=0.01),
                    local_map=np.random.default_rng(i).uniform(-1, 1, (50, 3)),
                )
            )
        rerun_publisher.publish(
            OdometryOutput(
                timestamp_ns=400_000_000,
                frame_id="base_link",
                odom_frame_id="odom",
                pose=None,
                odom=OdometryMessage.lost(400_000_000, "odom", "base_link"),
            )
        )
