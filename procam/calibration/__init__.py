"""Correspondence-based calibration.

This module provides the correspondence set, the marker manager that feeds it,
and the solver that turns correspondences into a planar homography or a full
camera pose.
"""

from procam.calibration.correspondence import (
    Correspondence,
    CorrespondenceSet,
    SolveMode,
    load_correspondence_file,
    save_correspondence_file,
)
from procam.calibration.marker_manager import Marker, MarkerManager, MarkerState
from procam.calibration.solver import (
    CalibrationSolver,
    HomographyResult,
    PoseResult,
    SolveNotification,
    calibration_flags,
    solve_homography,
    solve_pose,
)

__all__ = [
    "CalibrationSolver",
    "Correspondence",
    "CorrespondenceSet",
    "HomographyResult",
    "Marker",
    "MarkerManager",
    "MarkerState",
    "PoseResult",
    "SolveMode",
    "SolveNotification",
    "calibration_flags",
    "load_correspondence_file",
    "save_correspondence_file",
    "solve_homography",
    "solve_pose",
]
