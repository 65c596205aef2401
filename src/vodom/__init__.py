"""Python VOdom - odometry session control around a motion estimator."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .frontend import SE3, SensorData
from .config import NodeConfig, load_parameters, parse_initial_pose
from .io import GroundTruthReader, TransformBuffer
from .frontend.odometry import (
    FrameToFrameOdometry,
    FrameToMapOdometry,
    Odometry,
    OdometryInfo,
    OdometryType,
    create_odometry,
)
from .backend import PoseHistory
from .session import (
    GuessResolver,
    NullPublisher,
    OdometryMessage,
    OdometryNode,
    OdometryOutput,
    OdometryPublisher,
    OdometrySession,
    OutputChannel,
    ResetCountdown,
    SessionState,
)
from .visualization import RerunPublisher

__all__ = [
    "__version__",
    # Pose / data
    "SE3",
    "SensorData",
    # Configuration
    "NodeConfig",
    "load_parameters",
    "parse_initial_pose",
    # I/O
    "TransformBuffer",
    "GroundTruthReader",
    # Motion estimators
    "Odometry",
    "OdometryInfo",
    "OdometryType",
    "FrameToMapOdometry",
    "FrameToFrameOdometry",
    "create_odometry",
    # Session
    "OdometrySession",
    "OdometryNode",
    "SessionState",
    "ResetCountdown",
    "GuessResolver",
    "PoseHistory",
    # Outputs
    "OutputChannel",
    "OdometryPublisher",
    "NullPublisher",
    "OdometryOutput",
    "OdometryMessage",
    # Visualization
    "RerunPublisher",
]
