"""Odometry session: control loop, recovery policy and outputs."""

from .controller import OdometrySession
from .guess import GuessResolver
from .node import NodeStats, OdometryNode
from .outputs import (
    BAD_COVARIANCE,
    NullPublisher,
    OdometryMessage,
    OdometryOutput,
    OdometryPublisher,
    OutputChannel,
)
from .recovery import ResetCountdown
from .state import SessionState

__all__ = [
    "OdometrySession",
    "OdometryNode",
    "NodeStats",
    "GuessResolver",
    "ResetCountdown",
    "SessionState",
    "OutputChannel",
    "OdometryPublisher",
    "NullPublisher",
    "OdometryOutput",
    "OdometryMessage",
    "BAD_COVARIANCE",
]
