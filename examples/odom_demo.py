#!/usr/bin/env python3
"""Demo of an odometry session on a synthetic landmark scene.

The sensor drives a loop through random landmarks. Ground truth is
published into the transform buffer so the session bootstraps its first
pose from it, and a few frames are blanked out to show the lost sentinel
and the automatic reset countdown.

Usage:
    python examples/odom_demo.py
"""

import logging

import numpy as np

from vodom import (
    SE3,
    NodeConfig,
    OdometrySession,
    OutputChannel,
    RerunPublisher,
    SensorData,
    TransformBuffer,
)


def make_landmarks(n: int, rng: np.random.Generator) -> np.ndarray:
    """Random landmarks around a 10 m loop."""
    angles = rng.uniform(0, 2 * np.pi, n)
    radii = rng.uniform(6.0, 14.0, n)
    heights = rng.uniform(-1.0, 3.0, n)
    return np.column_stack([radii * np.cos(angles), radii * np.sin(angles), heights])


def ground_truth_pose(i: int, n_frames: int) -> SE3:
    """Sensor pose on a circle of radius 10 m, heading along the tangent."""
    theta = 2 * np.pi * i / n_frames
    return SE3.from_xyz_rpy(
        10.0 * np.cos(theta), 10.0 * np.sin(theta), 0.5, 0.0, 0.0, theta + np.pi / 2
    )


def observe(landmarks: np.ndarray, pose: SE3, max_range: float = 8.0) -> np.ndarray:
    """Landmarks within range, expressed in the sensor frame."""
    local = pose.inverse().transform_points(landmarks)
    return local[np.linalg.norm(local, axis=1) < max_range]


def main() -> None:
    """Run the odometry demo."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    # Configuration
    n_frames = 600
    n_landmarks = 3000
    blackout = range(200, 205)  # Frames with no points
    frame_period_ns = 50_000_000  # 20 Hz
    t0_ns = 1_000_000_000

    rng = np.random.default_rng(42)
    landmarks = make_landmarks(n_landmarks, rng)

    # Ground truth tree: world -> base_link_gt
    transforms = TransformBuffer(max_samples=n_frames + 1)
    gt_poses = [ground_truth_pose(i, n_frames) for i in range(n_frames)]
    for i, pose in enumerate(gt_poses):
        transforms.set_transform("world", "base_link_gt", t0_ns + i * frame_period_ns, pose)

    config = NodeConfig(
        ground_truth_frame_id="world",
        ground_truth_base_frame_id="base_link_gt",
        parameters={
            "Odom/ResetCountdown": 3,
            "Icp/MaxCorrespondenceDistance": 0.3,
            "OdomF2M/MaxSize": 4000,
        },
    )
    publisher = RerunPublisher(
        "python-vodom",
        channels=[OutputChannel.ODOM, OutputChannel.ODOM_INFO, OutputChannel.LOCAL_MAP],
    )
    session = OdometrySession.from_config(config, transforms=transforms, publisher=publisher)

    print(f"Processing {n_frames} frames ({len(landmarks)} landmarks)...")
    print()
    print(f"{'Frame':>6} {'Status':^8} {'Inlr':>5} {'Ratio':>6} {'Map':>6} | {'Error (m)':>9}")
    print("-" * 52)

    lost_count = 0
    reset_count = 0
    errors = []

    for i, gt_pose in enumerate(gt_poses):
        timestamp_ns = t0_ns + i * frame_period_ns
        points = np.empty((0, 3)) if i in blackout else observe(landmarks, gt_pose)

        output = session.process(SensorData(timestamp_ns, points))
        if output is None:
            continue

        if output.lost:
            lost_count += 1
            status = "LOST"
            error = float("nan")
        else:
            status = "OK"
            error = float(np.linalg.norm(output.pose.position - gt_pose.position))
            errors.append(error)
        if output.reanchored:
            reset_count += 1

        if i % 50 == 0 or output.lost:
            info = output.info
            print(
                f"{i:>6} {status:^8} {info.inliers:>5} {info.icp_inliers_ratio:>6.2f} "
                f"{info.local_map_size:>6} | {error:>9.3f}"
            )

    # Summary
    print()
    print("=" * 52)
    print("Summary")
    print("=" * 52)
    print(f"Frames processed: {n_frames}")
    print(f"Lost frames:      {lost_count}")
    print(f"Automatic resets: {reset_count}")
    if errors:
        print(f"Mean error:       {np.mean(errors):.3f} m")
        print(f"Final error:      {errors[-1]:.3f} m")
    x, y, z, _, _, yaw = session.current_pose.to_xyz_rpy()
    print(f"Final pose:       x={x:.2f} y={y:.2f} z={z:.2f} yaw={np.degrees(yaw):.1f} deg")

    ids, _ = session.get_nearby_poses(5)
    print(f"Nearby nodes:     {ids}")


if __name__ == "__main__":
    main()
