"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import cv2
import numpy as np
import pytest

from procam.calibration import CorrespondenceSet
from procam.projection import CameraExtrinsics, CameraIntrinsics

IMAGE_WIDTH = 1280
IMAGE_HEIGHT = 720

# 同一平面にない物体点（カメラ前方 z=10 付近）
OBJECT_POINTS = np.array(
    [
        [-3.0, -3.0, 0.0],
        [3.0, -3.0, 0.5],
        [3.0, 3.0, -0.5],
        [-3.0, 3.0, 1.0],
        [0.0, 1.0, -1.0],
        [1.5, -2.0, 0.8],
        [-2.0, 1.0, -0.7],
        [2.0, 1.5, 0.3],
        [-1.0, -1.5, -0.2],
        [0.5, 2.5, 0.6],
    ],
    dtype=np.float64,
)


def project(object_points: np.ndarray, intrinsics: CameraIntrinsics, extrinsics: CameraExtrinsics) -> np.ndarray:
    """物体点をピンホールモデルで画像に投影する"""
    projected, _ = cv2.projectPoints(
        object_points.reshape(-1, 1, 3),
        extrinsics.rvec.reshape(3, 1),
        extrinsics.tvec.reshape(3, 1),
        intrinsics.K,
        intrinsics.dist_coeffs,
    )
    return projected.reshape(-1, 2)


def build_set(object_points: np.ndarray, image_points: np.ndarray) -> CorrespondenceSet:
    points = CorrespondenceSet()
    for i, (obj, img) in enumerate(zip(object_points, image_points)):
        points.add(tuple(img), tuple(obj), label=f"m{i}")
    return points


@pytest.fixture
def seed_intrinsics() -> CameraIntrinsics:
    """既定画角 60 度の初期内部パラメータ"""
    return CameraIntrinsics.from_fov(IMAGE_WIDTH, IMAGE_HEIGHT, 60.0)


@pytest.fixture
def true_extrinsics() -> CameraExtrinsics:
    """テスト用の真の外部パラメータ"""
    return CameraExtrinsics(rvec=np.array([0.1, -0.2, 0.05]), tvec=np.array([0.0, 0.0, 10.0]))


@pytest.fixture
def make_pose_points(true_extrinsics):
    """指定した内部パラメータで投影した対応点集合を作るファクトリ"""

    def _make(intrinsics: CameraIntrinsics, count: int | None = None) -> CorrespondenceSet:
        object_points = OBJECT_POINTS[:count]
        return build_set(object_points, project(object_points, intrinsics, true_extrinsics))

    return _make


@pytest.fixture
def pose_points(make_pose_points, seed_intrinsics) -> CorrespondenceSet:
    """真のカメラで投影した 10 点の対応点集合"""
    return make_pose_points(seed_intrinsics)


@pytest.fixture
def unit_square_points() -> CorrespondenceSet:
    """単位正方形 → 100px 正方形の対応点集合"""
    points = CorrespondenceSet()
    points.add((0.0, 0.0), (0.0, 0.0, 0.0), "a")
    points.add((100.0, 0.0), (1.0, 0.0, 0.0), "b")
    points.add((100.0, 100.0), (1.0, 1.0, 0.0), "c")
    points.add((0.0, 100.0), (0.0, 1.0, 0.0), "d")
    return points


@pytest.fixture
def restore_root_logger():
    """テスト後にルートロガーのハンドラとレベルを戻す"""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)
