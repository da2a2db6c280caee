"""Projection models for projector/camera calibration results.

This module provides the pinhole camera model, the homography-to-modelview
re-layout, and the persisted CameraParam artifact.
"""

from procam.projection.camera_param import CameraParam
from procam.projection.homography import apply_transform, homography_to_modelview
from procam.projection.pinhole_model import (
    CameraExtrinsics,
    CameraIntrinsics,
)

__all__ = [
    "CameraExtrinsics",
    "CameraIntrinsics",
    "CameraParam",
    "apply_transform",
    "homography_to_modelview",
]
