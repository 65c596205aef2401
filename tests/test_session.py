"""Tests for OdometrySession."""

import logging
import threading

import numpy as np
import pytest

from conftest import RecordingPublisher, ScriptedOdometry, make_data, translation
from vodom.config import NodeConfig
from vodom.frontend.odometry import FrameToFrameOdometry
from vodom.frontend.pose import SE3
from vodom.io.transforms import TransformBuffer
from vodom.session.controller import OdometrySession
from vodom.session.outputs import BAD_COVARIANCE, OutputChannel

T0 = 1_000_000_000
DT = 100_000_000  # 10 Hz


def stamp(i: int) -> int:
    return T0 + i * DT


def make_session(config, transforms, publisher=None, motions=None, reset_countdown=0):
    odometry = ScriptedOdometry(motions)
    session = OdometrySession(
        config,
        odometry,
        transforms=transforms,
        publisher=publisher,
        reset_countdown=reset_countdown,
    )
    return session, odometry


class TestProcessing:
    """Test suite for the per-observation control flow."""

    def test_first_success_sets_pose(self, config, transforms, publisher):
        """Test that a successful estimate becomes the session pose."""
        session, _ = make_session(config, transforms, publisher, [translation(1.0)])

        output = session.process(make_data(stamp(0)))

        assert output is not None
        assert not output.lost
        assert output.node_id == 1
        assert session.current_pose.almost_equal(translation(1.0))
        assert session.state.last_stamp == stamp(0)
        assert publisher.outputs == [output]

    def test_odometry_message_covariances(self, config, transforms, publisher):
        """Test covariances of the odometry message with and without velocity."""
        session, _ = make_session(config, transforms, publisher, [SE3.identity(), translation(0.1)])

        first = session.process(make_data(stamp(0)))
        second = session.process(make_data(stamp(1)))

        # No velocity on the first frame
        assert first.velocity is None
        np.testing.assert_allclose(np.diag(first.odom.pose_covariance), 0.02)
        np.testing.assert_allclose(np.diag(first.odom.twist_covariance), BAD_COVARIANCE)

        assert second.velocity is not None
        np.testing.assert_allclose(second.odom.linear_velocity, [1.0, 0, 0], atol=1e-9)
        np.testing.assert_allclose(np.diag(second.odom.twist_covariance), 0.01)

    def test_observation_not_modified(self, config, transforms):
        """Test that the estimator works on a copy of the observation."""
        session, odometry = make_session(config, transforms)
        data = make_data(stamp(0))

        session.process(data)

        assert odometry.observations[0] is not data
        assert odometry.observations[0].points is not data.points

    def test_explicit_timestamp(self, config, transforms):
        """Test that an explicit timestamp overrides the observation's."""
        session, odometry = make_session(config, transforms)

        output = session.process_observation(make_data(stamp(0)), stamp(5))

        assert output.timestamp_ns == stamp(5)
        assert odometry.previous_stamp == stamp(5)

    def test_publish_tf_writes_transform(self, transforms, publisher):
        """Test that the estimated pose is written to the transform buffer."""
        config = NodeConfig(publish_tf=True, wait_for_transform=False)
        session, _ = make_session(config, transforms, publisher, [translation(2.0)])

        output = session.process(make_data(stamp(0)))

        assert output.transform.almost_equal(translation(2.0))
        assert transforms.lookup("odom", "base_link", stamp(0)).almost_equal(translation(2.0))

    def test_estimator_exceptions_propagate(self, config, transforms):
        """Test that an estimator error is not swallowed by the session."""

        class BrokenOdometry(ScriptedOdometry):
            def _compute_transform(self, data, guess, info):
                raise RuntimeError("boom")

        session = OdometrySession(config, BrokenOdometry(), transforms=transforms)

        with pytest.raises(RuntimeError, match="boom"):
            session.process(make_data(stamp(0)))


class TestOutputGating:
    """Test suite for channel-gated output derivation."""

    def test_all_channels(self, config, transforms):
        """Test that wanted products are derived in the odometry frame."""
        publisher = RecordingPublisher()
        session, odometry = make_session(config, transforms, publisher, [translation(1.0)])
        data = make_data(stamp(0))

        output = session.process(data)

        assert output.odom is not None
        assert output.info is not None
        np.testing.assert_allclose(output.local_map, odometry.map_points)
        np.testing.assert_allclose(output.last_frame, data.points + [1.0, 0.0, 0.0])
        np.testing.assert_allclose(output.local_scan_map, [[0.0, 0.0, 2.0]])

    def test_no_channels(self, config, transforms):
        """Test that nothing is derived when nothing is wanted."""
        publisher = RecordingPublisher(channels=[])
        session, _ = make_session(config, transforms, publisher)

        output = session.process(make_data(stamp(0)))

        assert output.odom is None
        assert output.info is None
        assert output.local_map is None
        assert output.last_frame is None
        assert output.local_scan_map is None
        assert OutputChannel.LOCAL_MAP in publisher.queried

    def test_single_channel(self, config, transforms):
        """Test that only the wanted product is derived."""
        publisher = RecordingPublisher(channels=[OutputChannel.LAST_FRAME])
        session, _ = make_session(config, transforms, publisher)

        output = session.process(make_data(stamp(0)))

        assert output.last_frame is not None
        assert output.local_map is None
        assert output.odom is None

    def test_transform_unwanted(self, transforms):
        """Test that the buffer is written even when the transform is not published."""
        config = NodeConfig(publish_tf=True, wait_for_transform=False)
        publisher = RecordingPublisher(channels=[OutputChannel.ODOM])
        session, _ = make_session(config, transforms, publisher, [translation(2.0)])

        output = session.process(make_data(stamp(0)))

        assert output.transform is None
        assert OutputChannel.TRANSFORM in publisher.queried
        assert transforms.lookup("odom", "base_link", stamp(0)).almost_equal(translation(2.0))

    def test_local_map_is_a_copy(self, config, transforms, publisher):
        """Test that published geometry does not alias estimator state."""
        session, odometry = make_session(config, transforms, publisher)

        output = session.process(make_data(stamp(0)))
        output.local_map[0, 0] = 100.0

        assert odometry.map_points[0, 0] == 1.0

    def test_info_published_on_failure(self, config, transforms, publisher):
        """Test that diagnostics are available for failed estimates."""
        session, _ = make_session(config, transforms, publisher, [None])

        output = session.process(make_data(stamp(0)))

        assert output.info is not None
        assert output.info.lost


class TestBootstrap:
    """Test suite for the ground truth bootstrap."""

    @pytest.fixture
    def gt_config(self) -> NodeConfig:
        return NodeConfig(
            ground_truth_frame_id="world",
            ground_truth_base_frame_id="base_link_gt",
            publish_tf=False,
            wait_for_transform=False,
        )

    def test_bootstrap_from_ground_truth(self, gt_config, transforms):
        """Test that the first pose comes from the ground truth frame."""
        P = SE3.from_xyz_rpy(3, 4, 0, 0, 0, 0.5)
        transforms.set_transform("world", "base_link_gt", stamp(0), P)
        session, odometry = make_session(gt_config, transforms)

        output = session.process(make_data(stamp(0)))

        assert odometry.resets[0].almost_equal(P)
        assert output.pose.almost_equal(P)
        assert session.current_pose.almost_equal(P)

    def test_bootstrap_unavailable_aborts(self, gt_config, transforms, publisher):
        """Test that a missing ground truth skips the call without output."""
        session, odometry = make_session(gt_config, transforms, publisher)

        output = session.process(make_data(stamp(0)))

        assert output is None
        assert odometry.observations == []
        assert publisher.outputs == []
        assert session.current_pose.is_identity()

    def test_bootstrap_runs_once(self, gt_config, transforms):
        """Test that bootstrap is skipped once the pose is estimated."""
        P = translation(1.0, 1.0)
        transforms.set_transform("world", "base_link_gt", stamp(0), P)
        transforms.set_transform("world", "base_link_gt", stamp(1), translation(9.0))
        session, odometry = make_session(gt_config, transforms)

        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))

        assert len(odometry.resets) == 1
        assert session.current_pose.almost_equal(P)

    def test_identity_ground_truth_bootstraps_once(self, gt_config, transforms):
        """Test that an identity ground truth pose is not bootstrapped twice."""
        transforms.set_transform("world", "base_link_gt", stamp(0), SE3.identity())
        session, odometry = make_session(gt_config, transforms)

        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))

        assert len(odometry.resets) == 1
        assert session.state.node_id == 2

    def test_no_ground_truth_configured(self, config, transforms):
        """Test that bootstrap is skipped without a ground truth frame."""
        session, odometry = make_session(config, transforms, motions=[translation(1.0)])

        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))

        assert odometry.resets == []
        assert session.current_pose.almost_equal(translation(1.0))

    def test_reset_to_pose_prevents_bootstrap(self, gt_config, transforms):
        """Test that an explicit pose is not overwritten by ground truth."""
        transforms.set_transform("world", "base_link_gt", stamp(0), translation(5.0))
        session, odometry = make_session(gt_config, transforms)
        p = SE3.from_xyz_rpy(1, 2, 3, 0.1, 0.2, 0.3)

        session.reset_to_pose(p)
        session.process(make_data(stamp(0)))

        assert len(odometry.resets) == 1
        assert session.current_pose.almost_equal(p)


class TestGuess:
    """Test suite for guesses from a tracked frame."""

    @pytest.fixture
    def guess_config(self) -> NodeConfig:
        return NodeConfig(
            guess_from_tf=True,
            guess_frame_id="wheel",
            publish_tf=False,
            wait_for_transform=False,
        )

    def test_guess_from_tracked_frame(self, guess_config, transforms):
        """Test that the estimator receives A.inverse() @ B."""
        A = SE3.from_xyz_rpy(1, 0, 0, 0, 0, 0.1)
        B = SE3.from_xyz_rpy(1.2, 0.1, 0, 0, 0, 0.15)
        transforms.set_transform("odom", "wheel", stamp(0), A)
        transforms.set_transform("odom", "wheel", stamp(1), B)
        session, odometry = make_session(guess_config, transforms)

        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))

        assert odometry.guesses[0] is None
        assert odometry.guesses[1].almost_equal(A.inverse() @ B)

    def test_unresolved_guess_aborts(self, guess_config, transforms, publisher, caplog):
        """Test that a missing guess aborts the call with an error."""
        transforms.set_transform("odom", "wheel", stamp(0), SE3.identity())
        session, odometry = make_session(guess_config, transforms, publisher)
        session.process(make_data(stamp(0)))

        with caplog.at_level(logging.ERROR):
            output = session.process(make_data(stamp(1)))

        assert output is None
        assert len(odometry.observations) == 1
        assert len(publisher.outputs) == 1
        assert "guess cannot be computed" in caplog.text

    def test_guess_disabled_with_publish_tf(self):
        """Test that guessing from the published frame itself is disabled."""
        config = NodeConfig(guess_from_tf=True, publish_tf=True)

        assert not config.guess_from_tf


class TestFailureRecovery:
    """Test suite for lost frames and automatic re-anchoring."""

    def test_lost_sentinel(self, config, transforms, publisher):
        """Test that a failure publishes the lost sentinel and keeps the pose."""
        session, _ = make_session(config, transforms, publisher, [translation(1.0), None])
        session.process(make_data(stamp(0)))

        output = session.process(make_data(stamp(1)))

        assert output.lost
        assert output.odom.is_lost
        np.testing.assert_allclose(np.diag(output.odom.pose_covariance), BAD_COVARIANCE)
        assert session.current_pose.almost_equal(translation(1.0))

    def test_no_sentinel_when_disabled(self, transforms, publisher):
        """Test that failures send no odometry when the sentinel is off."""
        config = NodeConfig(publish_null_when_lost=False, publish_tf=False, wait_for_transform=False)
        session, _ = make_session(config, transforms, publisher, [None])

        output = session.process(make_data(stamp(0)))

        assert output.lost
        assert output.odom is None

    def test_no_sentinel_when_odom_unwanted(self, config, transforms):
        """Test that the sentinel follows the odometry channel gate."""
        publisher = RecordingPublisher(channels=[OutputChannel.ODOM_INFO])
        session, _ = make_session(config, transforms, publisher, [None])

        output = session.process(make_data(stamp(0)))

        assert output.lost
        assert output.odom is None
        assert output.info is not None

    def test_reanchor_after_countdown(self, config, transforms):
        """Test that the third consecutive failure re-anchors to the last pose."""
        motions = [translation(1.0), None, None, None]
        session, odometry = make_session(config, transforms, motions=motions, reset_countdown=3)

        outputs = [session.process(make_data(stamp(i))) for i in range(4)]

        assert [o.reanchored for o in outputs] == [False, False, False, True]
        assert len(odometry.resets) == 1
        assert odometry.resets[0].almost_equal(translation(1.0))
        assert session.current_pose.almost_equal(translation(1.0))
        assert session.reset_remaining == 3

    def test_reanchor_prefers_transform(self, config, transforms):
        """Test that re-anchoring uses odom -> frame from the transform buffer."""
        Q = SE3.from_xyz_rpy(7, 0, 0, 0, 0, 1.0)
        transforms.set_transform("odom", "base_link", stamp(2), Q)
        motions = [translation(1.0), None, None]
        session, odometry = make_session(config, transforms, motions=motions, reset_countdown=2)

        for i in range(3):
            session.process(make_data(stamp(i)))

        assert odometry.resets[0].almost_equal(Q)
        assert session.current_pose.almost_equal(Q)

    def test_reanchor_pose_used_by_next_estimate(self, config, transforms):
        """Test that estimation restarts from the re-anchored pose."""
        motions = [translation(1.0), None, SE3.identity()]
        session, _ = make_session(config, transforms, motions=motions, reset_countdown=1)

        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))
        output = session.process(make_data(stamp(2)))

        assert output.pose.almost_equal(translation(1.0))

    def test_success_reloads_countdown(self, config, transforms):
        """Test that a single success reloads a countdown at one."""
        motions = [translation(1.0), None, None, SE3.identity(), None, None]
        session, odometry = make_session(config, transforms, motions=motions, reset_countdown=3)

        for i in range(3):
            session.process(make_data(stamp(i)))
        assert session.reset_remaining == 1

        session.process(make_data(stamp(3)))
        assert session.reset_remaining == 3

        for i in range(4, 6):
            session.process(make_data(stamp(i)))
        assert odometry.resets == []
        assert session.reset_remaining == 1

    def test_zero_limit_never_reanchors(self, config, transforms, caplog):
        """Test that a disabled countdown never re-anchors."""
        motions = [translation(1.0)] + [None] * 20
        session, odometry = make_session(config, transforms, motions=motions, reset_countdown=0)

        with caplog.at_level(logging.WARNING):
            outputs = [session.process(make_data(stamp(i))) for i in range(21)]

        assert odometry.resets == []
        assert not any(o.reanchored for o in outputs)
        assert session.current_pose.almost_equal(translation(1.0))
        assert "Odometry lost!" in caplog.text


class TestCommands:
    """Test suite for operator commands."""

    def test_pause_freezes_state(self, config, transforms, publisher):
        """Test that observations are ignored while paused."""
        motions = [translation(1.0), None, None]
        session, odometry = make_session(config, transforms, publisher, motions, reset_countdown=3)
        session.process(make_data(stamp(0)))

        assert session.pause()
        before = session.state
        results = [session.process(make_data(stamp(i))) for i in range(1, 5)]

        assert results == [None] * 4
        after = session.state
        assert after.current_pose.almost_equal(before.current_pose)
        assert after.reset_remaining == before.reset_remaining
        assert len(odometry.observations) == 1
        assert len(publisher.outputs) == 1

    def test_resume_continues(self, config, transforms):
        """Test that processing continues normally after resume."""
        session, _ = make_session(config, transforms, motions=[translation(1.0), translation(1.0)])
        session.process(make_data(stamp(0)))
        session.pause()
        session.process(make_data(stamp(1)))

        assert session.resume()
        session.process(make_data(stamp(2)))

        assert session.current_pose.almost_equal(translation(2.0))

    def test_redundant_pause_resume(self, config, transforms, caplog):
        """Test that redundant pause and resume are reported no-ops."""
        session, _ = make_session(config, transforms)

        with caplog.at_level(logging.WARNING):
            assert not session.resume()
            assert session.pause()
            assert not session.pause()

        assert session.paused
        assert "Already running" in caplog.text
        assert "Already paused" in caplog.text

    def test_reset(self, config, transforms):
        """Test that reset returns to identity and flushes buffered input."""
        flushed = []
        session, odometry = make_session(config, transforms, motions=[translation(1.0), None])
        session.set_flush_callback(lambda: flushed.append(True))
        session.process(make_data(stamp(0)))

        session.reset()

        assert session.current_pose.is_identity()
        assert odometry.resets[-1].is_identity()
        assert flushed == [True]
        assert session.get_nearby_poses(10) == ([], [])

    def test_reset_to_pose_exact(self, config, transforms):
        """Test that reset_to_pose sets the pose exactly."""
        session, _ = make_session(config, transforms)

        session.reset_to_pose(1.0, 2.0, 3.0, 0.1, 0.2, 0.3)

        expected = SE3.from_xyz_rpy(1.0, 2.0, 3.0, 0.1, 0.2, 0.3)
        np.testing.assert_array_equal(session.current_pose.to_matrix(), expected.to_matrix())

    def test_reset_to_pose_mixed_arguments(self, config, transforms):
        """Test that an SE3 combined with scalar components is refused."""
        session, _ = make_session(config, transforms)

        with pytest.raises(TypeError, match="either an SE3"):
            session.reset_to_pose(translation(1.0), 2.0)

        assert session.current_pose.is_identity()

    def test_flush_runs_before_processing_resumes(self, config, transforms):
        """Test that buffered observations are dropped while the session is still locked."""
        session, _ = make_session(config, transforms)
        blocked = []

        def flush():
            # another thread must not get in between the reset and the flush
            reader = threading.Thread(target=lambda: session.current_pose)
            reader.start()
            reader.join(timeout=0.1)
            blocked.append(reader.is_alive())

        session.set_flush_callback(flush)
        session.reset_to_pose(translation(1.0))

        assert blocked == [True]

    def test_observation_buffered_before_reset_dropped(self, config, transforms, publisher):
        """Test that an observation tagged with an older generation is discarded."""
        session, odometry = make_session(config, transforms, publisher, [translation(1.0)])
        generation = session.generation

        session.reset_to_pose(translation(5.0))
        output = session.process(make_data(stamp(0)), generation=generation)

        assert output is None
        assert odometry.observations == []
        assert session.current_pose.almost_equal(translation(5.0))

        output = session.process(make_data(stamp(1)), generation=session.generation)

        assert output is not None
        assert session.current_pose.almost_equal(translation(6.0))

    def test_reset_rearms_countdown(self, config, transforms):
        """Test that resets reload the countdown."""
        session, _ = make_session(config, transforms, motions=[None, None], reset_countdown=3)
        session.process(make_data(stamp(0)))
        session.process(make_data(stamp(1)))

        session.reset()

        assert session.reset_remaining == 3

    def test_initial_pose(self, transforms):
        """Test that the configured initial pose is applied at construction."""
        config = NodeConfig(initial_pose="1 2 3 0 0 0", publish_tf=False)
        session, odometry = make_session(config, transforms)

        assert session.current_pose.almost_equal(translation(1.0, 2.0, 3.0))
        assert odometry.pose.almost_equal(translation(1.0, 2.0, 3.0))

    def test_nearby_poses(self, config, transforms):
        """Test the nearby poses query over processed frames."""
        motions = [translation(1.0)] * 5
        session, _ = make_session(config, transforms, motions=motions)
        for i in range(5):
            session.process(make_data(stamp(i)))

        ids, poses = session.get_nearby_poses(3, x=2.0, radius=1.5)

        assert ids == [3, 2, 1]
        np.testing.assert_allclose(poses[0].translation, [3.0, 0, 0])

    def test_commands_interleave_with_processing(self, config, transforms):
        """Test that resets from another thread never tear the session state."""
        session, _ = make_session(config, transforms, motions=[translation(0.1)] * 200)
        errors = []

        def reset_loop():
            try:
                for _ in range(50):
                    session.reset_to_pose(translation(5.0))
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=reset_loop)
        thread.start()
        for i in range(200):
            session.process(make_data(stamp(i)))
        thread.join()

        assert errors == []
        assert session.current_pose.is_finite()


class TestFromConfig:
    """Test suite for building a session from configuration."""

    def test_reset_countdown_taken_from_parameters(self, transforms):
        """Test that the session applies the countdown, not the estimator."""
        config = NodeConfig(
            publish_tf=False,
            parameters={"Odom/ResetCountdown": 2, "Odom/Strategy": 1},
        )

        session = OdometrySession.from_config(config, transforms=transforms)

        assert isinstance(session.odometry, FrameToFrameOdometry)
        assert session.reset_remaining == 2
        assert session.odometry.parameters["Odom/ResetCountdown"] == "0"

    def test_argv_overrides(self, transforms):
        """Test that command-line overrides reach the session."""
        config = NodeConfig(publish_tf=False, parameters={"Odom/ResetCountdown": 2})

        session = OdometrySession.from_config(
            config, transforms=transforms, argv=["--Odom/ResetCountdown", "5"]
        )

        assert session.reset_remaining == 5

    def test_private_transform_buffer(self):
        """Test that a session without a buffer gets an empty one."""
        session = OdometrySession(NodeConfig(), ScriptedOdometry())

        assert isinstance(session.transforms, TransformBuffer)
        assert session.transforms.frames == set()
