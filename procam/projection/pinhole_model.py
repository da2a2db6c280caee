"""ピンホールカメラモデルの定義。

このモジュールはカメラの内部パラメータ（焦点距離、主点）と
外部パラメータ（回転ベクトル、並進ベクトル）を定義します。
レンズ歪みはモデル化しません（歪み係数は常にゼロ）。

座標系の定義:
    - Image (Pixel): (u, v) ∈ ℝ², 左上原点、右下正
    - Camera (3D): (x, y, z) ∈ ℝ³, カメラ中心原点、X右/Y下/Z前方（OpenCV 規約）
    - Object (3D): (X, Y, Z) ∈ ℝ³, マーカーの物体座標系
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation

# 歪み係数の要素数（k1, k2, p1, p2, k3, k4, k5, k6）
NUM_DIST_COEFFS = 8

DEFAULT_FOV_DEG = 60.0


def zero_distortion() -> np.ndarray:
    """ゼロ歪み係数 (8, 1) を返す。"""
    return np.zeros((NUM_DIST_COEFFS, 1), dtype=np.float64)


def focal_length_from_fov(image_height: float, fov_deg: float) -> float:
    """画角から焦点距離の初期値を計算。

    f = (image_height / 2) * tan(fov / 2)
    """
    return float((image_height / 2.0) * np.tan(np.radians(fov_deg / 2.0)))


@dataclass(frozen=True)
class CameraIntrinsics:
    """カメラ内部パラメータ。

    Attributes:
        fx: 焦点距離 X [pixel]
        fy: 焦点距離 Y [pixel]
        cx: 主点 X [pixel]
        cy: 主点 Y [pixel]
        image_width: 画像幅 [pixel]
        image_height: 画像高さ [pixel]
    """

    fx: float
    fy: float
    cx: float
    cy: float
    image_width: int = 1280
    image_height: int = 720

    @property
    def K(self) -> np.ndarray:
        """3x3 カメラ行列を返す。

        Returns:
            カメラ行列 K = [[fx, 0, cx], [0, fy, cy], [0, 0, 1]]
        """
        return np.array(
            [[self.fx, 0, self.cx], [0, self.fy, self.cy], [0, 0, 1]],
            dtype=np.float64,
        )

    @property
    def dist_coeffs(self) -> np.ndarray:
        return zero_distortion()

    @property
    def principal_point(self) -> tuple[float, float]:
        return (self.cx, self.cy)

    @property
    def aspect_ratio(self) -> float:
        return self.fx / self.fy if self.fy else float("nan")

    @property
    def fov_y_deg(self) -> float:
        """焦点距離から逆算した画角 [degrees]（focal_length_from_fov の逆変換）。"""
        return float(np.degrees(2.0 * np.arctan(self.fy / (self.image_height / 2.0))))

    @classmethod
    def from_matrix(cls, camera_matrix: np.ndarray, image_width: int, image_height: int) -> CameraIntrinsics:
        """3x3 カメラ行列から作成。

        Raises:
            ValueError: 行列が 3x3 でない場合
        """
        K = np.asarray(camera_matrix, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"camera_matrix must be 3x3, got {K.shape}")
        return cls(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
            image_width=int(image_width),
            image_height=int(image_height),
        )

    @classmethod
    def from_fov(
        cls,
        image_width: int,
        image_height: int,
        fov_deg: float = DEFAULT_FOV_DEG,
        lens_offset: tuple[float, float] = (0.0, 0.0),
    ) -> CameraIntrinsics:
        """画角とレンズオフセットから初期推定値を作成。

        主点は画像中心にレンズオフセットを加えた位置。アスペクト比は 1 に固定。

        Args:
            image_width: 画像幅 [pixel]
            image_height: 画像高さ [pixel]
            fov_deg: 画角 [degrees]
            lens_offset: 主点オフセット (dx, dy) [pixel]

        Returns:
            CameraIntrinsics インスタンス
        """
        f = focal_length_from_fov(image_height, fov_deg)
        return cls(
            fx=f,
            fy=f,
            cx=image_width / 2.0 + float(lens_offset[0]),
            cy=image_height / 2.0 + float(lens_offset[1]),
            image_width=int(image_width),
            image_height=int(image_height),
        )

    def to_dict(self) -> dict:
        return {
            "fx": self.fx,
            "fy": self.fy,
            "cx": self.cx,
            "cy": self.cy,
            "image_width": self.image_width,
            "image_height": self.image_height,
        }


@dataclass(frozen=True, eq=False)
class CameraExtrinsics:
    """カメラ外部パラメータ。

    Object座標系からCamera座標系への変換を定義。
    P_camera = R(rvec) @ P_object + tvec

    Attributes:
        rvec: 回転ベクトル (Rodrigues 形式, 3,)
        tvec: 並進ベクトル (3,)
    """

    rvec: np.ndarray
    tvec: np.ndarray

    def __post_init__(self) -> None:
        """配列を numpy 配列に変換し、形状を検証"""
        rvec = np.asarray(self.rvec, dtype=np.float64).flatten()
        tvec = np.asarray(self.tvec, dtype=np.float64).flatten()
        if rvec.shape != (3,):
            raise ValueError(f"rvec must be (3,), got {rvec.shape}")
        if tvec.shape != (3,):
            raise ValueError(f"tvec must be (3,), got {tvec.shape}")
        object.__setattr__(self, "rvec", rvec)
        object.__setattr__(self, "tvec", tvec)

    @property
    def R(self) -> np.ndarray:
        """回転行列 (3x3, Object → Camera) を返す。"""
        return Rotation.from_rotvec(self.rvec).as_matrix()

    @property
    def camera_position_world(self) -> np.ndarray:
        """Object座標系でのカメラ位置 C = -R^T t を返す。"""
        return -self.R.T @ self.tvec

    @classmethod
    def from_rotation_matrix(cls, R: np.ndarray, tvec: np.ndarray) -> CameraExtrinsics:
        """回転行列と並進ベクトルから作成。"""
        rvec = Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_rotvec()
        return cls(rvec=rvec, tvec=tvec)

    def to_matrix(self) -> np.ndarray:
        """4x4 同次変換行列（列ベクトル規約, Object → Camera）を返す。"""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.R
        T[:3, 3] = self.tvec
        return T

    def to_dict(self) -> dict:
        return {"rvec": self.rvec.tolist(), "tvec": self.tvec.tolist()}
