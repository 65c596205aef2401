"""Backend components: history of estimated poses."""

from .pose_history import PoseHistory, PoseNode

__all__ = [
    "PoseHistory",
    "PoseNode",
]
