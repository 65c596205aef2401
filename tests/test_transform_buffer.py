"""Tests for TransformBuffer."""

import threading
import time

import numpy as np
import pytest

from conftest import translation
from vodom.frontend.pose import SE3
from vodom.io.transforms import TransformBuffer


class TestTransformBuffer:
    """Test suite for TransformBuffer lookups."""

    def test_same_frame_is_identity(self, transforms: TransformBuffer):
        """Test that a frame resolves to itself without any data."""
        assert transforms.lookup("odom", "odom").is_identity()

    def test_unknown_frame_returns_none(self, transforms: TransformBuffer):
        """Test that unresolvable lookups return None instead of raising."""
        assert transforms.lookup("odom", "base_link", 10) is None
        assert not transforms.can_transform("odom", "base_link")

    def test_direct_and_inverse_lookup(self, transforms: TransformBuffer):
        """Test lookup in both directions of an edge."""
        pose = SE3.from_xyz_rpy(1, 2, 0, 0, 0, 0.5)
        transforms.set_transform("odom", "base_link", 100, pose)

        assert transforms.lookup("odom", "base_link", 100).almost_equal(pose)
        assert transforms.lookup("base_link", "odom", 100).almost_equal(pose.inverse())

    def test_interpolation_between_samples(self, transforms: TransformBuffer):
        """Test linear interpolation of translation between samples."""
        transforms.set_transform("odom", "base_link", 100, translation(0.0))
        transforms.set_transform("odom", "base_link", 200, translation(2.0))

        result = transforms.lookup("odom", "base_link", 150)

        np.testing.assert_allclose(result.translation, [1.0, 0, 0])

    def test_out_of_range_returns_none(self, transforms: TransformBuffer):
        """Test that extrapolation is refused."""
        transforms.set_transform("odom", "base_link", 100, translation(0.0))
        transforms.set_transform("odom", "base_link", 200, translation(2.0))

        assert transforms.lookup("odom", "base_link", 50) is None
        assert transforms.lookup("odom", "base_link", 250) is None

    def test_zero_timestamp_is_latest(self, transforms: TransformBuffer):
        """Test that timestamp 0 resolves to the latest sample."""
        transforms.set_transform("odom", "base_link", 100, translation(1.0))
        transforms.set_transform("odom", "base_link", 200, translation(2.0))

        np.testing.assert_allclose(transforms.lookup("odom", "base_link").translation, [2.0, 0, 0])

    def test_chain_through_static_edge(self, transforms: TransformBuffer):
        """Test composition of dynamic and static edges."""
        transforms.set_transform("odom", "base_link", 100, translation(1.0))
        transforms.set_static_transform("base_link", "camera", translation(0.0, 0.5))

        result = transforms.lookup("odom", "camera", 100)

        np.testing.assert_allclose(result.translation, [1.0, 0.5, 0.0])

    def test_siblings_resolve_through_common_parent(self, transforms: TransformBuffer):
        """Test lookups between two children of the same frame."""
        transforms.set_transform("world", "a", 100, translation(1.0))
        transforms.set_transform("world", "b", 100, translation(3.0))

        result = transforms.lookup("a", "b", 100)

        np.testing.assert_allclose(result.translation, [2.0, 0, 0])

    def test_max_samples_bound(self):
        """Test that old samples are dropped beyond max_samples."""
        buffer = TransformBuffer(max_samples=2)
        for stamp in (100, 200, 300):
            buffer.set_transform("odom", "base_link", stamp, translation(stamp / 100))

        assert buffer.lookup("odom", "base_link", 100) is None
        assert buffer.lookup("odom", "base_link", 250) is not None

    def test_invalid_max_samples(self):
        """Test that a buffer needs room for interpolation."""
        with pytest.raises(ValueError):
            TransformBuffer(max_samples=1)

    def test_dynamic_update_of_static_edge_ignored(self, transforms: TransformBuffer):
        """Test that static edges are not overwritten by dynamic samples."""
        transforms.set_static_transform("base_link", "camera", translation(1.0))
        transforms.set_transform("base_link", "camera", 100, translation(5.0))

        np.testing.assert_allclose(transforms.lookup("base_link", "camera", 100).translation, [1.0, 0, 0])

    def test_frames(self, transforms: TransformBuffer):
        """Test listing and clearing of frames."""
        transforms.set_transform("odom", "base_link", 100, translation())

        assert transforms.frames == {"odom", "base_link"}
        transforms.clear()
        assert transforms.frames == set()

    def test_lookup_waits_for_late_transform(self, transforms: TransformBuffer):
        """Test that a bounded wait picks up a transform published meanwhile."""
        timer = threading.Timer(
            0.05, transforms.set_transform, args=("odom", "base_link", 100, translation(1.0))
        )
        timer.start()
        try:
            result = transforms.lookup("odom", "base_link", 100, timeout=2.0)
        finally:
            timer.cancel()

        assert result is not None
        np.testing.assert_allclose(result.translation, [1.0, 0, 0])

    def test_lookup_timeout_is_bounded(self, transforms: TransformBuffer):
        """Test that a missing transform returns None after the timeout."""
        start = time.monotonic()
        result = transforms.lookup("odom", "base_link", 100, timeout=0.05)

        assert result is None
        assert time.monotonic() - start < 1.0
