"""Point-to-point ICP registration."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

from ..pose import SE3

# Lower bound on the reported variance so covariances stay invertible
MIN_VARIANCE = 1e-6


@dataclass
class RegistrationResult:
    """Result of aligning a source cloud onto a target cloud.

    Attributes:
        success: True if enough inliers supported the alignment
        transform: T_target_source, None if failed
        num_inliers: Correspondences within the distance threshold
        inlier_ratio: num_inliers / number of source points
        variance: Mean squared residual of inliers (m^2)
        iterations: Number of ICP iterations run
    """

    success: bool
    transform: SE3 | None
    num_inliers: int
    inlier_ratio: float
    variance: float
    iterations: int = 0


def _best_fit_transform(source: np.ndarray, target: np.ndarray) -> SE3:
    """Least-squares rigid transform mapping source onto target (Kabsch)."""
    centroid_s = source.mean(axis=0)
    centroid_t = target.mean(axis=0)
    H = (source - centroid_s).T @ (target - centroid_t)
    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Reflection case
    if np.linalg.det(R) < 0:
        Vt[2, :] *= -1
        R = Vt.T @ U.T

    t = centroid_t - R @ centroid_s
    return SE3(rotation=R, translation=t)


class PointToPointICP:
    """Iterative Closest Point with nearest-neighbour correspondences.

    Nearest neighbours come from a KD-tree built once per target cloud.
    Each iteration re-estimates the rigid transform from the current
    inlier correspondences with an SVD fit.
    """

    def __init__(
        self,
        max_iterations: int = 30,
        max_correspondence_distance: float = 0.1,
        epsilon: float = 1e-6,
        min_inliers: int = 20,
    ) -> None:
        """Initialize the registration.

        Args:
            max_iterations: Maximum number of ICP iterations
            max_correspondence_distance: Inlier distance threshold (m)
            epsilon: Stop when the transform update is smaller than this
            min_inliers: Minimum number of inliers for a valid result
        """
        self._max_iterations = max(max_iterations, 1)
        self._max_distance = max_correspondence_distance
        self._epsilon = epsilon
        self._min_inliers = min_inliers

    @property
    def min_inliers(self) -> int:
        return self._min_inliers

    def register(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial: SE3 | None = None,
    ) -> RegistrationResult:
        """Align ``source`` points onto ``target`` points.

        Args:
            source: Nx3 points to move
            target: Mx3 fixed points
            initial: Initial estimate of T_target_source

        Returns:
            RegistrationResult with T_target_source on success
        """
        n_source = len(source)
        if n_source < self._min_inliers or len(target) < self._min_inliers:
            return RegistrationResult(
                success=False,
                transform=None,
                num_inliers=0,
                inlier_ratio=0.0,
                variance=0.0,
            )

        tree = cKDTree(target)
        transform = initial if initial is not None else SE3.identity()
        iterations = 0

        for iterations in range(1, self._max_iterations + 1):
            moved = transform.transform_points(source)
            distances, indices = tree.query(moved, distance_upper_bound=self._max_distance)
            mask = np.isfinite(distances)
            if mask.sum() < 3:
                break

            delta = _best_fit_transform(moved[mask], target[indices[mask]])
            transform = delta @ transform

            step = np.linalg.norm(delta.translation) + np.linalg.norm(
                delta.rotation - np.eye(3)
            )
            if step < self._epsilon:
                break

        moved = transform.transform_points(source)
        distances, _ = tree.query(moved, distance_upper_bound=self._max_distance)
        inliers = np.isfinite(distances)
        num_inliers = int(inliers.sum())
        variance = float(np.mean(distances[inliers] ** 2)) if num_inliers else 0.0

        return RegistrationResult(
            success=num_inliers >= self._min_inliers,
            transform=transform if num_inliers >= self._min_inliers else None,
            num_inliers=num_inliers,
            inlier_ratio=num_inliers / n_source,
            variance=max(variance, MIN_VARIANCE),
            iterations=iterations,
        )
