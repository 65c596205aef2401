"""I/O: transform buffer and ground truth sources."""

from .ground_truth import GroundTruthReader
from .transforms import TransformBuffer

__all__ = ["GroundTruthReader", "TransformBuffer"]
