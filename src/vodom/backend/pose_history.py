"""History of estimated poses and the nearby poses query."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass

import numpy as np

from ..frontend.pose import SE3


@dataclass
class PoseNode:
    """A successfully estimated pose."""

    id: int
    timestamp_ns: int
    pose: SE3


class PoseHistory:
    """Bounded, insertion-ordered store of estimated poses.

    Node ids increase with time, so the most recent nodes are the ones with
    the highest ids.
    """

    def __init__(self, max_size: int = 10000) -> None:
        """Initialize an empty history.

        Args:
            max_size: Maximum number of nodes kept (0 = unbounded)
        """
        self._max_size = max_size
        self._nodes: OrderedDict[int, PoseNode] = OrderedDict()

    def add(self, node_id: int, timestamp_ns: int, pose: SE3) -> None:
        """Append a node, dropping the oldest one when full."""
        self._nodes[node_id] = PoseNode(id=node_id, timestamp_ns=timestamp_ns, pose=pose)
        self._nodes.move_to_end(node_id)
        if self._max_size > 0 and len(self._nodes) > self._max_size:
            self._nodes.popitem(last=False)

    def get(self, node_id: int) -> PoseNode | None:
        return self._nodes.get(node_id)

    @property
    def latest(self) -> PoseNode | None:
        if not self._nodes:
            return None
        return next(reversed(self._nodes.values()))

    def clear(self) -> None:
        self._nodes.clear()

    def __len__(self) -> int:
        return len(self._nodes)

    def nearby(
        self,
        n: int,
        position: np.ndarray | None = None,
        node_id: int = 0,
        radius: float = 0.0,
        default_radius: float = 10.0,
    ) -> tuple[list[int], list[SE3]]:
        """Return the most recent poses within a radius of a target.

        The target is the pose of ``node_id`` when non-zero, else
        ``position`` when it is not the origin, else the latest node.

        Args:
            n: Maximum number of poses returned (<= 0 for all)
            position: Target position (x, y, z)
            node_id: Target node id, 0 if not used
            radius: Search radius in meters, <= 0 to use default_radius
            default_radius: Radius used when ``radius`` <= 0

        Returns:
            Parallel lists (ids, poses), most recent first
        """
        target = self._target(position, node_id)
        if target is None:
            return [], []

        if radius <= 0.0:
            radius = default_radius

        ids: list[int] = []
        poses: list[SE3] = []
        for node in reversed(self._nodes.values()):
            if np.linalg.norm(node.pose.translation - target) <= radius:
                ids.append(node.id)
                poses.append(node.pose)
                if 0 < n <= len(ids):
                    break
        return ids, poses

    def _target(self, position: np.ndarray | None, node_id: int) -> np.ndarray | None:
        if node_id != 0:
            node = self._nodes.get(node_id)
            return None if node is None else node.pose.translation

        if position is not None:
            position = np.asarray(position, dtype=np.float64).flatten()
            if np.any(position != 0.0):
                return position

        latest = self.latest
        return None if latest is None else latest.pose.translation
