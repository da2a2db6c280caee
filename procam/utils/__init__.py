"""Utility modules for the projector/camera calibration system."""

from procam.utils.logging_utils import setup_logging

__all__ = [
    "setup_logging",
]
