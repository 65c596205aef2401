"""Visualization of odometry outputs."""

from .rerun_visualizer import RerunPublisher

__all__ = ["RerunPublisher"]
