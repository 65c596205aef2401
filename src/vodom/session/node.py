"""Threaded host for an odometry session.

Observations submitted from any thread are buffered in a bounded queue and
fed to the session, in arrival order, by a single worker thread. Operator
commands are forwarded to the session, which serializes them against the
processing path. Resets drop the observations still waiting in the queue,
and an observation the worker dequeued just before a reset is discarded by
the session instead of being applied to the reset pose.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

from ..frontend.pose import SE3
from ..frontend.sensor_data import SensorData
from .controller import OdometrySession

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class _Shutdown:
    """Sentinel asking the worker thread to stop."""


@dataclass
class _Queued:
    """Observation waiting for the worker, tagged with the session reset generation."""

    data: SensorData
    generation: int


@dataclass
class NodeStats:
    """Counters of a running node."""

    received: int = 0
    processed: int = 0
    dropped: int = 0
    flushed: int = 0
    errors: int = 0


class OdometryNode:
    """Feeds a session from a bounded observation queue."""

    def __init__(self, session: OdometrySession, queue_size: int | None = None) -> None:
        """Initialize the node.

        Args:
            session: Session fed by the worker thread
            queue_size: Maximum number of buffered observations, defaults to
                the session's ``queue_size`` configuration
        """
        self._session = session
        size = queue_size if queue_size is not None else session.config.queue_size
        self._queue: queue.Queue[_Queued | _Shutdown] = queue.Queue(maxsize=max(size, 1))
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()
        self._stats = NodeStats()
        self._stats_lock = threading.Lock()

        session.set_flush_callback(self.flush)

    @property
    def session(self) -> OdometrySession:
        return self._session

    @property
    def stats(self) -> NodeStats:
        with self._stats_lock:
            return NodeStats(**vars(self._stats))

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread."""
        if self.is_running:
            return
        self._discard_shutdown_requests()
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run, name="odometry-node", daemon=True
        )
        self._thread.start()
        logger.info("Odometry node started")

    def stop(self, timeout: float = 2.0) -> bool:
        """Stop the worker thread once the queued observations are processed.

        Submissions are rejected from the moment the stop begins. If the
        worker does not exit within ``timeout`` seconds the node keeps
        reporting itself as running, and a later ``stop`` can wait again.

        Returns:
            True if the worker thread has exited
        """
        if not self.is_running:
            self._thread = None
            return True
        self._stopping.set()
        self._enqueue_shutdown()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Odometry node did not stop within %.1f s", timeout)
            return False
        logger.info("Odometry node stopped")
        self._thread = None
        return True

    def _discard_shutdown_requests(self) -> None:
        # left behind when a stop raced the worker's exit
        kept: list[_Queued] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
            if isinstance(item, _Queued):
                kept.append(item)
        for item in kept:
            self._queue.put_nowait(item)

    def _enqueue_shutdown(self) -> None:
        while True:
            try:
                self._queue.put_nowait(_Shutdown())
                return
            except queue.Full:
                dropped = self._drop_oldest()
                if isinstance(dropped, _Shutdown):
                    # a shutdown request is already waiting
                    return
                if dropped is not None:
                    self._count_dropped()

    def join(self, timeout: float | None = None) -> bool:
        """Block until every submitted observation has been processed.

        Returns:
            False if observations were still pending after ``timeout`` seconds
        """
        with self._queue.all_tasks_done:
            return self._queue.all_tasks_done.wait_for(
                lambda: self._queue.unfinished_tasks == 0, timeout
            )

    def submit(self, data: SensorData) -> bool:
        """Queue an observation for processing.

        When the queue is full the oldest observation is dropped.

        Returns:
            False if the observation was ignored because the session is
            paused or the node is stopping
        """
        if self._stopping.is_set():
            logger.debug("Odometry node stopping, observation at %d not queued", data.timestamp_ns)
            return False
        if self._session.paused:
            logger.debug("Odometry paused, observation at %d not queued", data.timestamp_ns)
            return False

        with self._stats_lock:
            self._stats.received += 1

        item = _Queued(data, self._session.generation)
        while not self._stopping.is_set():
            try:
                self._queue.put_nowait(item)
                return True
            except queue.Full:
                if isinstance(self._drop_oldest(), _Queued):
                    self._count_dropped()
        return False

    def _drop_oldest(self) -> _Queued | _Shutdown | None:
        """Remove the oldest queued item. A shutdown request goes back in the queue."""
        try:
            item = self._queue.get_nowait()
        except queue.Empty:
            return None
        self._queue.task_done()
        if isinstance(item, _Shutdown):
            self._queue.put(item)
        return item

    def _count_dropped(self) -> None:
        logger.warning("Observation queue full, dropping oldest observation")
        with self._stats_lock:
            self._stats.dropped += 1

    def flush(self) -> int:
        """Drop every observation waiting in the queue.

        Returns:
            Number of dropped observations
        """
        flushed = 0
        pending: list[_Shutdown] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
            if isinstance(item, _Shutdown):
                pending.append(item)
            else:
                flushed += 1
        for item in pending:
            self._queue.put(item)

        if flushed:
            logger.info("Flushed %d buffered observations", flushed)
            with self._stats_lock:
                self._stats.flushed += flushed
        return flushed

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if isinstance(item, _Shutdown):
                    break
                self._session.process(item.data, generation=item.generation)
                with self._stats_lock:
                    self._stats.processed += 1
            except Exception:
                logger.exception("Odometry update failed")
                with self._stats_lock:
                    self._stats.errors += 1
            finally:
                self._queue.task_done()

    # Operator commands

    def reset(self) -> None:
        self._session.reset()

    def reset_to_pose(
        self,
        x: float | SE3,
        y: float = 0.0,
        z: float = 0.0,
        roll: float = 0.0,
        pitch: float = 0.0,
        yaw: float = 0.0,
    ) -> None:
        self._session.reset_to_pose(x, y, z, roll, pitch, yaw)

    def pause(self) -> bool:
        return self._session.pause()

    def resume(self) -> bool:
        return self._session.resume()

    def get_nearby_poses(
        self,
        n: int,
        x: float = 0.0,
        y: float = 0.0,
        z: float = 0.0,
        node_id: int = 0,
        radius: float = 0.0,
    ) -> tuple[list[int], list[SE3]]:
        return self._session.get_nearby_poses(n, x, y, z, node_id, radius)

    def set_log_level(self, level: str) -> None:
        """Set the level of the package logger ("debug", "info", "warning", "error")."""
        key = level.lower()
        if key not in LOG_LEVELS:
            raise ValueError(f"Unknown log level \"{level}\", expected one of {sorted(LOG_LEVELS)}")
        logger.info("visual_odometry: Set log level to %s", key.capitalize())
        logging.getLogger("vodom").setLevel(LOG_LEVELS[key])
