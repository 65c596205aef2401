"""SE(3) pose representation for rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation, Slerp


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Represents a pose T_parent_child that transforms points from the
    child frame to the parent frame:

        p_parent = R @ p_child + t

    A lost or unknown pose is represented by ``None`` rather than by a
    special SE3 value; the identity pose is a valid pose (session origin).

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_quaternion(
        cls,
        qw: float,
        qx: float,
        qy: float,
        qz: float,
        translation: np.ndarray,
    ) -> SE3:
        """Create SE3 from a Hamilton (w, x, y, z) quaternion and translation.

        The quaternion does not need to be normalized.
        """
        R = Rotation.from_quat([qx, qy, qz, qw]).as_matrix()
        return cls(rotation=R, translation=np.asarray(translation).flatten())

    @classmethod
    def from_xyz_rpy(
        cls,
        x: float,
        y: float,
        z: float,
        roll: float,
        pitch: float,
        yaw: float,
    ) -> SE3:
        """Create SE3 from a translation and roll/pitch/yaw angles.

        Angles are in radians and applied as R = Rz(yaw) @ Ry(pitch) @ Rx(roll),
        the usual convention for vehicle poses ("x y z roll pitch yaw").
        """
        R = Rotation.from_euler("ZYX", [yaw, pitch, roll]).as_matrix()
        return cls(rotation=R, translation=np.array([x, y, z], dtype=np.float64))

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_quaternion(self) -> np.ndarray:
        """Return the rotation as a (w, x, y, z) unit quaternion."""
        qx, qy, qz, qw = Rotation.from_matrix(self.rotation).as_quat()
        return np.array([qw, qx, qy, qz], dtype=np.float64)

    def to_xyz_rpy(self) -> tuple[float, float, float, float, float, float]:
        """Return (x, y, z, roll, pitch, yaw), the inverse of from_xyz_rpy."""
        yaw, pitch, roll = Rotation.from_matrix(self.rotation).as_euler("ZYX")
        x, y, z = self.translation
        return float(x), float(y), float(z), float(roll), float(pitch), float(yaw)

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_odom_prev.compose(T_prev_curr) gives T_odom_curr
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def interpolate(self, other: SE3, alpha: float) -> SE3:
        """Interpolate between self (alpha=0) and other (alpha=1).

        Translation is interpolated linearly and rotation with SLERP.
        """
        alpha = float(np.clip(alpha, 0.0, 1.0))
        slerp = Slerp([0.0, 1.0], Rotation.from_matrix([self.rotation, other.rotation]))
        R = slerp([alpha]).as_matrix()[0]
        t = (1.0 - alpha) * self.translation + alpha * other.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform Nx3 points from the child frame to the parent frame."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        # p_parent = R @ p_child + t
        return (self.rotation @ points.T).T + self.translation

    def is_identity(self, atol: float = 1e-9) -> bool:
        """Return True if this is the identity transform (within tolerance)."""
        return bool(
            np.allclose(self.rotation, np.eye(3), atol=atol)
            and np.allclose(self.translation, 0.0, atol=atol)
        )

    def is_finite(self) -> bool:
        """Return True if all components are finite."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def almost_equal(self, other: SE3, atol: float = 1e-6) -> bool:
        """Return True if both transforms match within tolerance."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    @property
    def position(self) -> np.ndarray:
        """Return the child frame origin expressed in the parent frame."""
        return self.translation.copy()

    def copy(self) -> SE3:
        """Return a deep copy."""
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def __repr__(self) -> str:
        """Return string representation."""
        x, y, z, roll, pitch, yaw = self.to_xyz_rpy()
        return (
            f"SE3(xyz=[{x:.3f}, {y:.3f}, {z:.3f}], "
            f"rpy=[{roll:.3f}, {pitch:.3f}, {yaw:.3f}])"
        )

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T1 @ T2."""
        return self.compose(other)
