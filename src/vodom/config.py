"""Configuration for the odometry session.

Two layers of configuration exist:

- ``NodeConfig``: frame names, transform wait policy and output options of
  the session itself.
- Estimator parameters: a flat ``{"Group/Name": "value"}`` map handed to the
  motion estimator. Values are resolved with the precedence

      defaults < config file < per-key overrides < command-line overrides

  Only keys the estimator knows about are read from the config file.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from .frontend.pose import SE3

logger = logging.getLogger(__name__)

ParametersMap = dict[str, str]

# Estimator parameter keys
K_ODOM_STRATEGY = "Odom/Strategy"
K_ODOM_RESET_COUNTDOWN = "Odom/ResetCountdown"
K_ODOM_KEYFRAME_THR = "Odom/KeyFrameThr"
K_ODOM_GUESS_MOTION = "Odom/GuessMotion"
K_VIS_MIN_INLIERS = "Vis/MinInliers"
K_ICP_ITERATIONS = "Icp/Iterations"
K_ICP_MAX_CORRESPONDENCE_DISTANCE = "Icp/MaxCorrespondenceDistance"
K_ICP_EPSILON = "Icp/Epsilon"
K_F2M_MAX_SIZE = "OdomF2M/MaxSize"
K_F2M_SCAN_MAX_SIZE = "OdomF2M/ScanMaxSize"

MIN_INLIERS_FLOOR = 8

DEFAULT_PARAMETERS: ParametersMap = {
    K_ODOM_STRATEGY: "0",  # 0=Frame-to-Map, 1=Frame-to-Frame
    K_ODOM_RESET_COUNTDOWN: "0",
    K_ODOM_KEYFRAME_THR: "0.3",
    K_ODOM_GUESS_MOTION: "true",
    K_VIS_MIN_INLIERS: "20",
    K_ICP_ITERATIONS: "30",
    K_ICP_MAX_CORRESPONDENCE_DISTANCE: "0.1",
    K_ICP_EPSILON: "1e-6",
    K_F2M_MAX_SIZE: "2000",
    K_F2M_SCAN_MAX_SIZE: "2000",
}

# old name -> (can be migrated, new name or hint)
REMOVED_PARAMETERS: dict[str, tuple[bool, str]] = {
    "Odom/MinInliers": (True, K_VIS_MIN_INLIERS),
    "Odom/Type": (True, K_ODOM_STRATEGY),
    "OdomF2M/LocalMapSize": (True, K_F2M_MAX_SIZE),
    "Odom/LocalHistory": (False, K_F2M_MAX_SIZE),
    "Odom/FillInfoData": (False, ""),
}


def to_bool(value: str | bool) -> bool:
    """Parse a parameter string as a boolean."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def to_str(value: object) -> str:
    """Format a parameter value the way it is stored in a ParametersMap."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_int(parameters: Mapping[str, str], key: str) -> int:
    """Read an integer parameter, falling back to its default."""
    try:
        return int(float(parameters.get(key, DEFAULT_PARAMETERS[key])))
    except ValueError:
        logger.error("Parameter \"%s\" is not an integer: \"%s\"", key, parameters.get(key))
        return int(DEFAULT_PARAMETERS[key])


def parse_float(parameters: Mapping[str, str], key: str) -> float:
    """Read a float parameter, falling back to its default."""
    try:
        return float(parameters.get(key, DEFAULT_PARAMETERS[key]))
    except ValueError:
        logger.error("Parameter \"%s\" is not a number: \"%s\"", key, parameters.get(key))
        return float(DEFAULT_PARAMETERS[key])


def parse_arguments(argv: Sequence[str]) -> ParametersMap:
    """Extract ``--Group/Name value`` pairs from a command line.

    Arguments that do not name a parameter (no ``/`` in the key) are skipped.
    """
    parameters: ParametersMap = {}
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg.startswith("--") and "/" in arg:
            key = arg[2:]
            if "=" in key:
                key, value = key.split("=", 1)
                parameters[key] = value
            elif i + 1 < len(argv):
                parameters[key] = argv[i + 1]
                i += 1
            else:
                logger.warning("Missing value for argument \"%s\"", arg)
        i += 1
    return parameters


def read_parameters_file(path: str | Path) -> ParametersMap:
    """Read a YAML file of parameters.

    Both a flat mapping (``{"Vis/MinInliers": 15}``) and a nested one
    (``{"Vis": {"MinInliers": 15}}``) are accepted.
    """
    with open(path, "r") as f:
        content = yaml.safe_load(f) or {}

    if not isinstance(content, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(content).__name__}")

    parameters: ParametersMap = {}
    for key, value in content.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                parameters[f"{key}/{sub_key}"] = to_str(sub_value)
        else:
            parameters[str(key)] = to_str(value)
    return parameters


def load_parameters(
    config_path: str | Path | None = None,
    overrides: Mapping[str, object] | None = None,
    argv: Sequence[str] | None = None,
) -> ParametersMap:
    """Build the estimator parameter map.

    Args:
        config_path: Optional YAML file; only known estimator keys are used
        overrides: Per-key overrides, applied over the file values
        argv: Command-line style overrides (``--Key value``), applied last

    Returns:
        Complete parameter map with every default key present
    """
    parameters = dict(DEFAULT_PARAMETERS)

    if config_path:
        path = Path(config_path)
        if path.is_file():
            logger.info("Odometry: Loading parameters from %s", path)
            file_parameters = read_parameters_file(path)
            for key in parameters:
                if key in file_parameters:
                    parameters[key] = file_parameters[key]
        else:
            logger.error("Config file \"%s\" not found!", path)

    for key, value in (overrides or {}).items():
        if key in parameters:
            logger.info("Setting odometry parameter \"%s\"=\"%s\"", key, to_str(value))
            parameters[key] = to_str(value)
        elif key in REMOVED_PARAMETERS:
            _migrate_parameter(parameters, key, to_str(value))

    for key, value in parse_arguments(argv or []).items():
        if key in parameters:
            logger.info("Update odometry parameter \"%s\"=\"%s\" from arguments", key, value)
            parameters[key] = value

    if parse_int(parameters, K_VIS_MIN_INLIERS) < MIN_INLIERS_FLOOR:
        logger.warning(
            "Parameter min_inliers must be >= %d, setting to %d...",
            MIN_INLIERS_FLOOR,
            MIN_INLIERS_FLOOR,
        )
        parameters[K_VIS_MIN_INLIERS] = str(MIN_INLIERS_FLOOR)

    return parameters


def _migrate_parameter(parameters: ParametersMap, old_key: str, value: str) -> None:
    can_migrate, new_key = REMOVED_PARAMETERS[old_key]
    if can_migrate:
        parameters[new_key] = value
        logger.warning(
            "Odometry: Parameter name changed: \"%s\" -> \"%s\". Value \"%s\" "
            "is still set to the new parameter name.",
            old_key,
            new_key,
            value,
        )
    elif new_key:
        logger.error(
            "Odometry: Parameter \"%s\" doesn't exist anymore! "
            "You may look at this similar parameter: \"%s\"",
            old_key,
            new_key,
        )
    else:
        logger.error("Odometry: Parameter \"%s\" doesn't exist anymore!", old_key)


def split_reset_countdown(parameters: ParametersMap) -> tuple[int, ParametersMap]:
    """Take the reset countdown out of the estimator's parameters.

    The session applies the countdown itself, so the estimator receives a
    copy with its own countdown disabled.

    Returns:
        (reset countdown limit, estimator parameters)
    """
    countdown = max(parse_int(parameters, K_ODOM_RESET_COUNTDOWN), 0)
    estimator_parameters = dict(parameters)
    estimator_parameters[K_ODOM_RESET_COUNTDOWN] = "0"
    return countdown, estimator_parameters


def parse_initial_pose(text: str) -> SE3:
    """Parse "x y z roll pitch yaw" (radians) into a pose.

    An empty string gives identity; a malformed one logs an error and also
    gives identity.
    """
    if not text.strip():
        return SE3.identity()
    values = text.split()
    try:
        if len(values) != 6:
            raise ValueError(f"expected 6 values, got {len(values)}")
        return SE3.from_xyz_rpy(*(float(v) for v in values))
    except ValueError:
        logger.error(
            "Wrong initial_pose format: %s (should be \"x y z roll pitch yaw\" "
            "with angle in radians). Identity will be used...",
            text,
        )
        return SE3.identity()


@dataclass
class NodeConfig:
    """Session-level configuration.

    Attributes:
        frame_id: Sensor platform frame whose pose is estimated
        odom_frame_id: Odometry (session reference) frame
        ground_truth_frame_id: Optional frame used to bootstrap the first pose
        ground_truth_base_frame_id: Platform frame in the ground truth tree,
            defaults to frame_id
        guess_frame_id: Frame tracked by an independent pose source,
            defaults to frame_id
        guess_from_tf: Use the guess frame to compute a motion guess
        publish_tf: Publish odom -> frame transforms
        tf_prefix: Prefix prepended to frame ids ("prefix/frame")
        wait_for_transform: Wait for transforms to become available
        wait_for_transform_duration: Maximum wait in seconds
        publish_null_when_lost: Publish a lost sentinel when estimation fails
        initial_pose: "x y z roll pitch yaw" initial pose
        config_path: YAML file with estimator parameters
        nearby_radius: Default radius (m) of the nearby poses query
        pose_history_size: Maximum number of poses kept for queries
        queue_size: Maximum number of buffered observations in a node
        parameters: Per-key estimator parameter overrides
    """

    frame_id: str = "base_link"
    odom_frame_id: str = "odom"
    ground_truth_frame_id: str = ""
    ground_truth_base_frame_id: str = ""
    guess_frame_id: str = ""
    guess_from_tf: bool = False
    publish_tf: bool = True
    tf_prefix: str = ""
    wait_for_transform: bool = True
    wait_for_transform_duration: float = 0.1
    publish_null_when_lost: bool = True
    initial_pose: str = ""
    config_path: str = ""
    nearby_radius: float = 10.0
    pose_history_size: int = 10000
    queue_size: int = 10
    parameters: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.tf_prefix:
            prefix = self.tf_prefix.rstrip("/")
            if self.frame_id:
                self.frame_id = f"{prefix}/{self.frame_id}"
            if self.odom_frame_id:
                self.odom_frame_id = f"{prefix}/{self.odom_frame_id}"
            if self.ground_truth_frame_id:
                self.ground_truth_frame_id = f"{prefix}/{self.ground_truth_frame_id}"
            self.tf_prefix = ""

        if not self.guess_frame_id:
            self.guess_frame_id = self.frame_id

        if not self.ground_truth_base_frame_id:
            self.ground_truth_base_frame_id = self.frame_id

        if (
            self.publish_tf
            and self.guess_from_tf
            and self.guess_frame_id == self.frame_id
        ):
            logger.warning(
                "\"publish_tf\" and \"guess_from_tf\" cannot be used at the same "
                "time if \"guess_frame_id\" and \"frame_id\" are the same frame "
                "(value=\"%s\"). \"guess_from_tf\" is disabled.",
                self.frame_id,
            )
            self.guess_from_tf = False

        if (
            self.publish_tf
            and self.ground_truth_frame_id
            and self.ground_truth_base_frame_id == self.frame_id
        ):
            logger.warning(
                "\"publish_tf\" re-parents \"%s\" under \"%s\", so the ground truth "
                "\"%s\" -> \"%s\" may not be resolvable. Set "
                "\"ground_truth_base_frame_id\" to the platform frame of the "
                "ground truth tree.",
                self.frame_id,
                self.odom_frame_id,
                self.ground_truth_frame_id,
                self.ground_truth_base_frame_id,
            )

        if self.config_path:
            path = Path(self.config_path).expanduser()
            if not path.is_absolute():
                path = Path.cwd() / path
            self.config_path = str(path)

    @property
    def wait_timeout(self) -> float:
        """Seconds a transform lookup may block."""
        if not self.wait_for_transform:
            return 0.0
        return max(self.wait_for_transform_duration, 0.0)

    @property
    def initial_pose_se3(self) -> SE3:
        return parse_initial_pose(self.initial_pose)

    @classmethod
    def from_dict(cls, mapping: Mapping[str, object]) -> NodeConfig:
        """Create a config from a mapping.

        Keys that are not config fields but look like estimator parameters
        ("Group/Name") are collected as per-key parameter overrides.
        """
        names = {f.name for f in fields(cls)}
        kwargs: dict[str, object] = {}
        parameters: dict[str, object] = dict(mapping.get("parameters") or {})
        for key, value in mapping.items():
            if key == "parameters":
                continue
            if key in names:
                kwargs[key] = value
            elif "/" in key:
                parameters[key] = value
            else:
                logger.warning("Ignoring unknown configuration key \"%s\"", key)
        return cls(parameters=parameters, **kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> NodeConfig:
        """Create a config from a YAML file."""
        with open(path, "r") as f:
            content = yaml.safe_load(f) or {}
        if not isinstance(content, dict):
            raise ValueError(f"Expected a mapping in {path}, got {type(content).__name__}")
        return cls.from_dict(content)

    def load_parameters(self, argv: Sequence[str] | None = None) -> ParametersMap:
        """Resolve the estimator parameter map for this configuration."""
        return load_parameters(self.config_path or None, self.parameters, argv)
