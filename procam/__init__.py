"""Projector/Camera Calibration

Estimates a planar homography or a full camera pose from projected 2D points
and their known 3D object points.
"""

__version__ = "0.1.0"

# Configuration
from procam.config import ConfigManager

# Errors
from procam.errors import (
    CalibrationError,
    CalibrationFileNotFoundError,
    DegenerateGeometryError,
    InsufficientPointsError,
    PersistenceError,
)

# Calibration
from procam.calibration import (
    CalibrationSolver,
    Correspondence,
    CorrespondenceSet,
    MarkerManager,
    solve_homography,
    solve_pose,
)

# Projection
from procam.projection import CameraExtrinsics, CameraIntrinsics, CameraParam

__all__ = [
    "CalibrationError",
    "CalibrationFileNotFoundError",
    "CalibrationSolver",
    "CameraExtrinsics",
    "CameraIntrinsics",
    "CameraParam",
    "ConfigManager",
    "Correspondence",
    "CorrespondenceSet",
    "DegenerateGeometryError",
    "InsufficientPointsError",
    "MarkerManager",
    "PersistenceError",
    "solve_homography",
    "solve_pose",
]
