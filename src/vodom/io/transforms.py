"""Coordinate frame transform buffer with bounded-wait lookups.

Frames form a tree: every child frame has exactly one parent. Each edge is
either static (valid at all times) or dynamic, in which case a bounded,
time-sorted history of samples is kept and lookups interpolate between the
two samples bracketing the query time.

Lookups follow the tf convention: ``lookup(target, source, t)`` returns
T_target_source, the pose of ``source`` expressed in ``target``.
"""

from __future__ import annotations

import bisect
import logging
import threading
import time
from dataclasses import dataclass, field

from ..frontend.pose import SE3

logger = logging.getLogger(__name__)


@dataclass
class _Edge:
    """Transform samples from a parent frame to one child frame."""

    parent: str
    static_pose: SE3 | None = None
    timestamps: list[int] = field(default_factory=list)  # nanoseconds, sorted
    poses: list[SE3] = field(default_factory=list)

    @property
    def is_static(self) -> bool:
        return self.static_pose is not None

    def insert(self, timestamp_ns: int, pose: SE3, max_samples: int) -> None:
        idx = bisect.bisect_left(self.timestamps, timestamp_ns)
        if idx < len(self.timestamps) and self.timestamps[idx] == timestamp_ns:
            self.poses[idx] = pose
            return
        self.timestamps.insert(idx, timestamp_ns)
        self.poses.insert(idx, pose)
        if len(self.timestamps) > max_samples:
            del self.timestamps[0]
            del self.poses[0]

    def pose_at(self, timestamp_ns: int) -> SE3 | None:
        """Return T_parent_child at the given time, or None if out of range."""
        if self.static_pose is not None:
            return self.static_pose
        if not self.timestamps:
            return None
        if timestamp_ns == 0:
            return self.poses[-1]
        if timestamp_ns < self.timestamps[0] or timestamp_ns > self.timestamps[-1]:
            return None

        idx = bisect.bisect_left(self.timestamps, timestamp_ns)
        if self.timestamps[idx] == timestamp_ns:
            return self.poses[idx]

        t0 = self.timestamps[idx - 1]
        t1 = self.timestamps[idx]
        alpha = (timestamp_ns - t0) / (t1 - t0)
        return self.poses[idx - 1].interpolate(self.poses[idx], alpha)

    @property
    def latest(self) -> int | None:
        if self.static_pose is not None:
            return None
        return self.timestamps[-1] if self.timestamps else None


class TransformBuffer:
    """Thread-safe store of frame transforms.

    Writers call :meth:`set_transform` / :meth:`set_static_transform`;
    readers call :meth:`lookup`, optionally waiting a bounded amount of time
    for the transform to become available. A lookup that cannot be resolved
    returns ``None``; it never raises for unavailability.
    """

    def __init__(self, max_samples: int = 1000) -> None:
        """Initialize an empty buffer.

        Args:
            max_samples: Maximum number of samples kept per dynamic edge
        """
        if max_samples < 2:
            raise ValueError(f"max_samples must be >= 2, got {max_samples}")
        self._max_samples = max_samples
        self._edges: dict[str, _Edge] = {}  # child frame -> edge from parent
        self._condition = threading.Condition()

    @property
    def max_samples(self) -> int:
        """Maximum number of samples kept per dynamic edge."""
        return self._max_samples

    def set_transform(
        self,
        parent: str,
        child: str,
        timestamp_ns: int,
        pose: SE3,
    ) -> None:
        """Add a timestamped sample of T_parent_child."""
        with self._condition:
            edge = self._edge_for(parent, child)
            if edge.is_static:
                logger.warning(
                    "Frame \"%s\" already has a static parent \"%s\", ignoring dynamic update",
                    child,
                    edge.parent,
                )
                return
            edge.insert(timestamp_ns, pose, self._max_samples)
            self._condition.notify_all()

    def set_static_transform(self, parent: str, child: str, pose: SE3) -> None:
        """Set a time-independent T_parent_child."""
        with self._condition:
            self._edges[child] = _Edge(parent=parent, static_pose=pose)
            self._condition.notify_all()

    def _edge_for(self, parent: str, child: str) -> _Edge:
        edge = self._edges.get(child)
        if edge is None or edge.parent != parent:
            if edge is not None:
                logger.warning(
                    "Frame \"%s\" re-parented from \"%s\" to \"%s\"",
                    child,
                    edge.parent,
                    parent,
                )
            edge = _Edge(parent=parent)
            self._edges[child] = edge
        return edge

    def clear(self) -> None:
        """Remove every frame and transform."""
        with self._condition:
            self._edges.clear()

    @property
    def frames(self) -> set[str]:
        """All known frame identifiers."""
        with self._condition:
            names = set(self._edges)
            names.update(edge.parent for edge in self._edges.values())
            return names

    def lookup(
        self,
        target: str,
        source: str,
        timestamp_ns: int = 0,
        timeout: float = 0.0,
    ) -> SE3 | None:
        """Resolve T_target_source at a given time.

        Args:
            target: Frame the result is expressed in
            source: Frame whose pose is requested
            timestamp_ns: Query time in nanoseconds, 0 for the latest
                common time
            timeout: Seconds to wait for the transform to become
                available, 0 to answer immediately

        Returns:
            SE3 transform, or None if it cannot be resolved in time
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._condition:
            while True:
                pose = self._resolve(target, source, timestamp_ns)
                if pose is not None:
                    return pose
                remaining = deadline - time.monotonic()
                if remaining <= 0.0:
                    return None
                self._condition.wait(remaining)

    def can_transform(self, target: str, source: str, timestamp_ns: int = 0) -> bool:
        """Return True if the transform resolves without waiting."""
        return self.lookup(target, source, timestamp_ns) is not None

    def _chain(self, frame: str) -> list[str]:
        """Frames from ``frame`` up to its root (inclusive)."""
        chain = [frame]
        visited = {frame}
        while frame in self._edges:
            frame = self._edges[frame].parent
            if frame in visited:
                logger.error("Cycle detected in transform tree at frame \"%s\"", frame)
                break
            visited.add(frame)
            chain.append(frame)
        return chain

    def _latest_common_time(self, frames: list[str]) -> int:
        stamps = [
            self._edges[f].latest for f in frames if f in self._edges
        ]
        stamps = [s for s in stamps if s is not None]
        return min(stamps) if stamps else 0

    def _resolve(self, target: str, source: str, timestamp_ns: int) -> SE3 | None:
        if target == source:
            return SE3.identity()

        target_chain = self._chain(target)
        source_chain = self._chain(source)
        common = next((f for f in source_chain if f in target_chain), None)
        if common is None:
            return None

        source_path = source_chain[: source_chain.index(common)]
        target_path = target_chain[: target_chain.index(common)]

        if timestamp_ns == 0:
            timestamp_ns = self._latest_common_time(source_path + target_path)

        T_common_source = self._compose_to_ancestor(source_path, timestamp_ns)
        T_common_target = self._compose_to_ancestor(target_path, timestamp_ns)
        if T_common_source is None or T_common_target is None:
            return None

        return T_common_target.inverse() @ T_common_source

    def _compose_to_ancestor(self, path: list[str], timestamp_ns: int) -> SE3 | None:
        """Compose edges along ``path`` (child first) into T_ancestor_child."""
        result = SE3.identity()
        for frame in path:
            pose = self._edges[frame].pose_at(timestamp_ns)
            if pose is None:
                return None
            result = pose @ result
        return result
