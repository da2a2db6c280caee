"""カメラパラメータ（projection / modelview 行列）の生成と永続化。

CameraParam は姿勢推定結果から導出されるキャッシュであり、
同じ内部/外部パラメータからいつでも再計算できます。

ファイル形式::

    #projection
    a, b, c, d
    ... (4行)
    #modelview
    ... (4行)

行列は行ベクトル規約 (p' = p @ M) で、行優先に書き出します。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re

import numpy as np

from procam.errors import CalibrationFileNotFoundError, PersistenceError
from procam.projection.pinhole_model import CameraExtrinsics, CameraIntrinsics

logger = logging.getLogger(__name__)

PROJECTION_TAG = "#projection"
MODELVIEW_TAG = "#modelview"

# OpenCV カメラ座標系 (Y下, Z前方) から OpenGL 視点座標系 (Y上, Z後方) への変換
_CV_TO_GL = np.diag([1.0, -1.0, -1.0, 1.0])


def build_projection_matrix(
    intrinsics: CameraIntrinsics,
    width: int,
    height: int,
    near: float,
    far: float,
) -> np.ndarray:
    """内部パラメータから OpenGL 投影行列を作成。

    Args:
        intrinsics: カメラ内部パラメータ
        width: ビューポート幅 [pixel]
        height: ビューポート高さ [pixel]
        near: ニアクリップ距離
        far: ファークリップ距離

    Returns:
        4x4 投影行列（行ベクトル規約）

    Raises:
        ValueError: クリップ面またはサイズが不正な場合
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"width/height must be positive, got {width}x{height}")
    if near <= 0 or far <= near:
        raise ValueError(f"Clip planes must satisfy 0 < near < far, got near={near}, far={far}")

    fx, fy = intrinsics.fx, intrinsics.fy
    cx, cy = intrinsics.cx, intrinsics.cy

    P = np.zeros((4, 4), dtype=np.float64)
    P[0, 0] = 2.0 * fx / width
    P[0, 2] = 1.0 - 2.0 * cx / width
    P[1, 1] = 2.0 * fy / height
    P[1, 2] = 2.0 * cy / height - 1.0
    P[2, 2] = -(far + near) / (far - near)
    P[2, 3] = -2.0 * far * near / (far - near)
    P[3, 2] = -1.0

    return P.T.copy()


def build_modelview_matrix(extrinsics: CameraExtrinsics) -> np.ndarray:
    """外部パラメータから OpenGL modelview 行列を作成。

    Returns:
        4x4 modelview 行列（行ベクトル規約）
    """
    V = _CV_TO_GL @ extrinsics.to_matrix()
    return V.T.copy()


@dataclass(frozen=True, eq=False)
class CameraParam:
    """保存用のカメラパラメータ。

    Attributes:
        projection: 4x4 投影行列
        modelview: 4x4 modelview 行列
        width: 画像幅（ファイルからの読み込み時は None）
        height: 画像高さ
        near: ニアクリップ距離
        far: ファークリップ距離
    """

    projection: np.ndarray
    modelview: np.ndarray
    width: int | None = None
    height: int | None = None
    near: float | None = None
    far: float | None = None

    def __post_init__(self) -> None:
        for name in ("projection", "modelview"):
            matrix = np.array(getattr(self, name), dtype=np.float64)
            if matrix.shape != (4, 4):
                raise ValueError(f"{name} must be 4x4, got {matrix.shape}")
            matrix.setflags(write=False)
            object.__setattr__(self, name, matrix)

    @classmethod
    def from_calibration(
        cls,
        width: int,
        height: int,
        intrinsics: CameraIntrinsics,
        extrinsics: CameraExtrinsics,
        near: float,
        far: float,
    ) -> CameraParam:
        """姿勢推定結果から CameraParam を作成。"""
        return cls(
            projection=build_projection_matrix(intrinsics, width, height, near, far),
            modelview=build_modelview_matrix(extrinsics),
            width=int(width),
            height=int(height),
            near=float(near),
            far=float(far),
        )

    def project(self, object_point: tuple[float, float, float]) -> tuple[float, float]:
        """物体点を画像座標 [pixel] に投影（width/height が必要）。"""
        if self.width is None or self.height is None:
            raise ValueError("width/height are required to map to pixel coordinates")
        p = np.array([*[float(v) for v in object_point], 1.0]) @ self.modelview @ self.projection
        if abs(p[3]) < 1e-12:
            raise ValueError("Point projects to infinity")
        x_ndc = p[0] / p[3]
        y_ndc = p[1] / p[3]
        u = (x_ndc + 1.0) * self.width / 2.0
        v = (1.0 - y_ndc) * self.height / 2.0
        return (float(u), float(v))

    def save(self, path: str | Path) -> None:
        """テキスト形式で保存。"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(PROJECTION_TAG + "\n")
            f.write(_format_matrix(self.projection))
            f.write("\n")
            f.write(MODELVIEW_TAG + "\n")
            f.write(_format_matrix(self.modelview))
            f.write("\n")

        logger.info(f"Saved camera param to {path}")

    @classmethod
    def load(cls, path: str | Path) -> CameraParam:
        """テキスト形式から読み込む。

        Raises:
            CalibrationFileNotFoundError: ファイルが存在しない場合
            PersistenceError: 形式が不正な場合
        """
        path = Path(path)
        if not path.exists():
            raise CalibrationFileNotFoundError(f"Camera param file not found: {path}")

        lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
        lines = [line for line in lines if line]

        sections: dict[str, list[str]] = {}
        order: list[str] = []
        current: str | None = None
        for line in lines:
            if line.startswith("#"):
                current = line
                order.append(line)
                sections[current] = []
            elif current is None:
                raise PersistenceError(f"{path}: matrix data before '{PROJECTION_TAG}' tag")
            else:
                sections[current].append(line)

        if order != [PROJECTION_TAG, MODELVIEW_TAG]:
            raise PersistenceError(f"{path}: expected tags {PROJECTION_TAG}, {MODELVIEW_TAG} in order, got {order}")

        projection = _parse_matrix(sections[PROJECTION_TAG], path, PROJECTION_TAG)
        modelview = _parse_matrix(sections[MODELVIEW_TAG], path, MODELVIEW_TAG)

        logger.info(f"Loaded camera param from {path}")
        return cls(projection=projection, modelview=modelview)


def _format_matrix(matrix: np.ndarray) -> str:
    return "\n".join(", ".join(repr(float(v)) for v in row) for row in np.asarray(matrix))


def _parse_matrix(rows: list[str], path: Path, tag: str) -> np.ndarray:
    values: list[float] = []
    for row in rows:
        for token in re.split(r"[,\s]+", row):
            if not token:
                continue
            try:
                values.append(float(token))
            except ValueError as e:
                raise PersistenceError(f"{path}: non-numeric value '{token}' in {tag}") from e

    if len(values) != 16:
        raise PersistenceError(f"{path}: {tag} must contain 16 values, got {len(values)}")
    return np.array(values, dtype=np.float64).reshape(4, 4)
