"""ホモグラフィおよび姿勢推定結果の再投影誤差評価モジュール。"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from procam.projection.homography import apply_homography
from procam.projection.pinhole_model import CameraExtrinsics, CameraIntrinsics

logger = logging.getLogger(__name__)


def _summarize(errors: np.ndarray) -> dict[str, float | list[float]]:
    if errors.size == 0:
        return {
            "rms_error": 0.0,
            "mean_error": 0.0,
            "max_error": 0.0,
            "min_error": 0.0,
            "std_error": 0.0,
            "errors": [],
        }
    return {
        "rms_error": float(np.sqrt(np.mean(errors**2))),
        "mean_error": float(np.mean(errors)),
        "max_error": float(np.max(errors)),
        "min_error": float(np.min(errors)),
        "std_error": float(np.std(errors)),
        "errors": [float(e) for e in errors],
    }


def evaluate_homography(
    object_points: np.ndarray,
    image_points: np.ndarray,
    homography_matrix: np.ndarray,
) -> dict[str, float | list[float]]:
    """ホモグラフィの再投影誤差を評価

    Args:
        object_points: 物体平面上の点 (N, 2)
        image_points: 観測された画像点 (N, 2)
        homography_matrix: 物体平面 → 画像のホモグラフィ（3x3）

    Returns:
        評価結果の辞書:
            - rms_error: RMS 再投影誤差（ピクセル）
            - mean_error / max_error / min_error / std_error
            - errors: 各点の誤差リスト
    """
    src = np.asarray(object_points, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
    if len(src) != len(dst):
        raise ValueError(f"点の数が一致しません: {len(src)} vs {len(dst)}")

    projected = apply_homography(homography_matrix, src) if len(src) else np.zeros((0, 2))
    valid = np.all(np.isfinite(projected), axis=1)
    if not np.all(valid):
        logger.warning(f"変換後のw成分が0に近い点を除外しました: {int(np.sum(~valid))}点")

    errors = np.linalg.norm(projected[valid] - dst[valid], axis=1)
    return _summarize(errors)


def evaluate_pose(
    object_points: np.ndarray,
    image_points: np.ndarray,
    intrinsics: CameraIntrinsics,
    extrinsics: CameraExtrinsics,
) -> dict[str, float | list[float]]:
    """姿勢推定結果の再投影誤差を評価

    Args:
        object_points: 3D物体点 (N, 3)
        image_points: 観測された画像点 (N, 2)
        intrinsics: カメラ内部パラメータ
        extrinsics: カメラ外部パラメータ

    Returns:
        evaluate_homography と同じ形式の辞書
    """
    obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    img = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
    if len(obj) != len(img):
        raise ValueError(f"点の数が一致しません: {len(obj)} vs {len(img)}")
    if len(obj) == 0:
        return _summarize(np.zeros(0))

    projected, _ = cv2.projectPoints(
        obj.reshape(-1, 1, 3),
        extrinsics.rvec.reshape(3, 1),
        extrinsics.tvec.reshape(3, 1),
        intrinsics.K,
        intrinsics.dist_coeffs,
    )
    errors = np.linalg.norm(projected.reshape(-1, 2) - img, axis=1)
    return _summarize(errors)
