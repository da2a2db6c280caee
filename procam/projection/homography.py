"""ホモグラフィ行列の 4x4 変換行列へのレイアウト変換。

平面ホモグラフィをカメラ変換と同じように描画側で扱えるよう、
3x3 行列を 4x4 の modelview 形式に並べ替えます。

行列の規約:
    本パッケージの 4x4 行列は全て行ベクトル規約 (p' = p @ M) です。
    並進成分は第4行に入り、行優先で書き出した値は OpenGL の列優先メモリ配置と一致します。
"""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)


def validate_homography(matrix: np.ndarray) -> np.ndarray:
    """ホモグラフィ行列を検証。

    Args:
        matrix: 入力行列

    Returns:
        検証済みの3x3行列

    Raises:
        ValueError: 行列が不正な形式の場合
    """
    H = np.array(matrix, dtype=np.float64)

    if H.shape != (3, 3):
        raise ValueError(f"ホモグラフィ行列は3x3である必要があります: {H.shape}")

    if not np.all(np.isfinite(H)):
        raise ValueError("ホモグラフィ行列に有限でない値が含まれています")

    det = np.linalg.det(H)
    if abs(det) < 1e-10:
        raise ValueError(f"ホモグラフィ行列が特異行列です（行列式={det}）")

    cond = np.linalg.cond(H)
    if cond > 1e12:
        logger.warning(f"ホモグラフィ行列の条件数が大きい: {cond}")

    return H


def homography_to_modelview(homography: np.ndarray) -> np.ndarray:
    """3x3 ホモグラフィを 4x4 modelview 行列に並べ替える。

    z 軸はスケール 1・並進 0 のまま、ホモグラフィの第3行/第3列を
    射影成分と並進成分のスロットに配置する（計算は行わない）。

    Args:
        homography: 3x3 ホモグラフィ行列（物体平面 → 画像）

    Returns:
        4x4 行列（行ベクトル規約）
    """
    H = np.asarray(homography, dtype=np.float64)
    if H.shape != (3, 3):
        raise ValueError(f"homography must be 3x3, got {H.shape}")

    M = np.zeros((4, 4), dtype=np.float64)

    M[0, 0] = H[0, 0]
    M[0, 1] = H[1, 0]
    M[0, 2] = 0.0
    M[0, 3] = H[2, 0]

    M[1, 0] = H[0, 1]
    M[1, 1] = H[1, 1]
    M[1, 2] = 0.0
    M[1, 3] = H[2, 1]

    M[2] = (0.0, 0.0, 1.0, 0.0)

    M[3, 0] = H[0, 2]
    M[3, 1] = H[1, 2]
    M[3, 2] = 0.0
    M[3, 3] = 1.0

    return M


def apply_homography(homography: np.ndarray, points: np.ndarray) -> np.ndarray:
    """ホモグラフィを点群 (N, 2) に適用。

    Returns:
        変換後の点 (N, 2)。w が 0 に近い点は NaN。
    """
    H = np.asarray(homography, dtype=np.float64)
    pts = np.atleast_2d(np.asarray(points, dtype=np.float64))
    ones = np.ones((len(pts), 1))
    transformed = (H @ np.hstack([pts, ones]).T).T
    w = transformed[:, 2:3]
    result = np.full((len(pts), 2), np.nan, dtype=np.float64)
    good = np.abs(w[:, 0]) > 1e-12
    result[good] = transformed[good, :2] / w[good]
    return result


def apply_transform(matrix: np.ndarray, point: tuple[float, ...]) -> tuple[float, float, float]:
    """4x4 行列（行ベクトル規約）で1点を変換し、透視除算した座標を返す。

    Args:
        matrix: 4x4 変換行列
        point: (x, y) または (x, y, z)

    Returns:
        変換後の (x, y, z)

    Raises:
        ValueError: 同次座標の w が 0 に近い場合
    """
    M = np.asarray(matrix, dtype=np.float64)
    if M.shape != (4, 4):
        raise ValueError(f"matrix must be 4x4, got {M.shape}")
    coords = [float(v) for v in point]
    if len(coords) == 2:
        coords.append(0.0)
    if len(coords) != 3:
        raise ValueError(f"point must have 2 or 3 components, got {len(coords)}")

    p = np.array([*coords, 1.0], dtype=np.float64) @ M
    if abs(p[3]) < 1e-12:
        raise ValueError("Transformed point is at infinity (w ~ 0)")
    return (float(p[0] / p[3]), float(p[1] / p[3]), float(p[2] / p[3]))
