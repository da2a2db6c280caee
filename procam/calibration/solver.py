"""キャリブレーションソルバーモジュール。

対応点集合から平面ホモグラフィ、またはカメラ姿勢（内部 + 外部パラメータ）を推定します。

- ホモグラフィ: 最小二乗法（RANSAC なし）で物体平面 → 画像の 3x3 行列を推定し、
  4x4 modelview 形式に並べ替えて返す。
- 姿勢推定: 画角指定なしの場合は単一ビューの calibrateCamera で焦点距離と外部パラメータを同時推定、
  画角指定ありの場合は内部パラメータを固定して solvePnP で外部パラメータのみ推定する。

ソルバーは対応点やマーカーを変更しません。解決した対応点は結果の
SolveNotification で呼び出し側に通知します。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

from procam.calibration.correspondence import (
    UNSET_EPSILON,
    CorrespondenceSet,
    SolveMode,
    is_object_point_set,
)
from procam.calibration.reprojection_error import evaluate_homography, evaluate_pose
from procam.errors import DegenerateGeometryError, InsufficientPointsError
from procam.projection.camera_param import CameraParam
from procam.projection.homography import homography_to_modelview, validate_homography
from procam.projection.pinhole_model import (
    DEFAULT_FOV_DEG,
    CameraExtrinsics,
    CameraIntrinsics,
    zero_distortion,
)

if TYPE_CHECKING:
    from procam.calibration.correspondence import Correspondence
    from procam.config import ConfigManager

logger = logging.getLogger(__name__)

FLT_EPSILON = float(np.finfo(np.float32).eps)

# 画角固定モードで返す残差（成功を示すだけで誤差指標ではない）
FIXED_FOV_RESIDUAL = 1.0

FREE_FOCAL = "free_focal"
FIXED_FOV = "fixed_fov"


def calibration_flags(lens_offset: tuple[float, float] = (0.0, 0.0)) -> int:
    """単一ビュー calibrateCamera 用のフラグを返す。

    初期推定値を使用し、アスペクト比を 1 に固定、歪みは全てゼロに固定する。
    レンズオフセットが指定された場合は主点も固定する（単一ビューでは主点の自由推定が不安定なため）。

    Args:
        lens_offset: 主点オフセット (dx, dy) [pixel]

    Returns:
        cv2.CALIB_* フラグのビット和
    """
    flags = cv2.CALIB_USE_INTRINSIC_GUESS
    flags |= cv2.CALIB_FIX_ASPECT_RATIO
    flags |= cv2.CALIB_ZERO_TANGENT_DIST
    flags |= (
        cv2.CALIB_FIX_K1
        | cv2.CALIB_FIX_K2
        | cv2.CALIB_FIX_K3
        | cv2.CALIB_FIX_K4
        | cv2.CALIB_FIX_K5
        | cv2.CALIB_FIX_K6
        | cv2.CALIB_RATIONAL_MODEL
    )

    dx, dy = float(lens_offset[0]), float(lens_offset[1])
    if dx * dx + dy * dy > FLT_EPSILON:
        flags |= cv2.CALIB_FIX_PRINCIPAL_POINT

    return int(flags)


@dataclass(frozen=True)
class SolveNotification:
    """解決通知。

    Attributes:
        used_keys: 推定に使用した対応点のキー
        excluded_keys: 未設定のため除外した対応点のキー
    """

    used_keys: tuple[Any, ...] = ()
    excluded_keys: tuple[Any, ...] = ()


@dataclass(frozen=True, eq=False)
class HomographyResult:
    """ホモグラフィ推定結果。

    Attributes:
        homography: 3x3 ホモグラフィ（物体平面 → 画像）
        modelview: 4x4 modelview 行列（行ベクトル規約）
        reprojection_error: RMS 再投影誤差 [pixels]
        num_points: 使用した対応点数
        notification: 解決通知
    """

    homography: np.ndarray
    modelview: np.ndarray
    reprojection_error: float
    num_points: int
    notification: SolveNotification


@dataclass(frozen=True, eq=False)
class PoseResult:
    """姿勢推定結果。

    Attributes:
        intrinsics: 推定（または固定）された内部パラメータ
        extrinsics: 推定された外部パラメータ
        residual: 自由焦点モードでは calibrateCamera の RMS、画角固定モードでは定数 1.0
        reprojection_error: 両モード共通の RMS 再投影誤差 [pixels]
        mode: "free_focal" または "fixed_fov"
        flags: calibrateCamera に渡したフラグ（画角固定モードでは 0）
        num_points: 使用した対応点数
        notification: 解決通知
    """

    intrinsics: CameraIntrinsics
    extrinsics: CameraExtrinsics
    residual: float
    reprojection_error: float
    mode: str
    flags: int
    num_points: int
    notification: SolveNotification

    @property
    def rotation(self) -> np.ndarray:
        return self.extrinsics.rvec

    @property
    def translation(self) -> np.ndarray:
        return self.extrinsics.tvec

    @property
    def succeeded(self) -> bool:
        return bool(np.isfinite(self.residual) and self.residual > 0)

    def astuple(self) -> tuple[CameraIntrinsics, np.ndarray, np.ndarray, float]:
        """(intrinsics, rotation, translation, residual) を返す。"""
        return (self.intrinsics, self.rotation, self.translation, self.residual)


class CalibrationSolver:
    """対応点からのキャリブレーションソルバー。

    Attributes:
        default_fov: 画角未指定時の初期画角 [degrees]
        exclude_unset: 未設定の物体点を自動で除外するか
        unset_epsilon: 未設定判定の閾値（二乗長）
    """

    def __init__(
        self,
        default_fov: float = DEFAULT_FOV_DEG,
        exclude_unset: bool = True,
        unset_epsilon: float = UNSET_EPSILON,
    ):
        """初期化。

        Args:
            default_fov: 画角未指定時の初期画角 [degrees]
            exclude_unset: 未設定の物体点を自動で除外するか
            unset_epsilon: 未設定判定の閾値

        Raises:
            ValueError: パラメータが不正な場合
        """
        if not 0.0 < default_fov < 180.0:
            raise ValueError(f"default_fov must be in (0, 180), got {default_fov}")
        if unset_epsilon <= 0:
            raise ValueError(f"unset_epsilon must be positive, got {unset_epsilon}")

        self.default_fov = float(default_fov)
        self.exclude_unset = bool(exclude_unset)
        self.unset_epsilon = float(unset_epsilon)

    @classmethod
    def from_config(cls, config: ConfigManager) -> CalibrationSolver:
        """設定の solver セクションから作成。"""
        return cls(
            default_fov=float(config.get("solver.default_fov_deg", DEFAULT_FOV_DEG)),
            exclude_unset=bool(config.get("solver.exclude_unset", True)),
            unset_epsilon=float(config.get("solver.unset_epsilon", UNSET_EPSILON)),
        )

    def solve_homography(self, points: CorrespondenceSet) -> HomographyResult:
        """物体平面 → 画像のホモグラフィを推定。

        Args:
            points: 対応点集合（4点以上）

        Returns:
            HomographyResult インスタンス

        Raises:
            InsufficientPointsError: 使用可能な対応点が4点未満の場合
            DegenerateGeometryError: 点配置が退化している場合
        """
        used, notification = self._select(points, SolveMode.HOMOGRAPHY)

        src = used.object_points()[:, :2]
        dst = used.image_points()

        self._check_spread(src, 2, "object points")
        self._check_spread(dst, 2, "image points")

        try:
            H, _ = cv2.findHomography(src, dst, 0)
        except cv2.error as e:
            raise DegenerateGeometryError(f"findHomography failed: {e}") from e

        if H is None:
            raise DegenerateGeometryError("findHomography returned no solution")
        try:
            H = validate_homography(H)
        except ValueError as e:
            raise DegenerateGeometryError(str(e)) from e
        if abs(H[2, 2]) > 1e-12:
            H = H / H[2, 2]

        stats = evaluate_homography(src, dst, H)
        rms = float(stats["rms_error"])

        logger.info(f"Homography solved from {len(used)} points: RMSE={rms:.4f}px")
        logger.debug(f"Homography matrix:\n{H}")

        return HomographyResult(
            homography=H,
            modelview=homography_to_modelview(H),
            reprojection_error=rms,
            num_points=len(used),
            notification=notification,
        )

    def solve_pose(
        self,
        points: CorrespondenceSet,
        image_width: int,
        image_height: int,
        forced_fov: float = 0.0,
        lens_offset_x: float = 0.0,
        lens_offset_y: float = 0.0,
    ) -> PoseResult:
        """カメラ姿勢（内部 + 外部パラメータ）を推定。

        Args:
            points: 対応点集合（7点以上）
            image_width: 画像幅 [pixel]
            image_height: 画像高さ [pixel]
            forced_fov: 固定画角 [degrees]、0 なら焦点距離も推定
            lens_offset_x: 主点オフセット X [pixel]
            lens_offset_y: 主点オフセット Y [pixel]

        Returns:
            PoseResult インスタンス

        Raises:
            InsufficientPointsError: 使用可能な対応点が6点以下の場合
            DegenerateGeometryError: 点配置が退化している、または推定が失敗した場合
            ValueError: 画像サイズや画角が不正な場合
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Image size must be positive, got {image_width}x{image_height}")
        if forced_fov < 0 or forced_fov >= 180:
            raise ValueError(f"forced_fov must be in [0, 180), got {forced_fov}")

        used, notification = self._select(points, SolveMode.POSE)

        object_points = used.object_points()
        image_points = used.image_points()

        self._check_spread(object_points, 2, "object points")
        self._check_spread(image_points, 2, "image points")

        fov = forced_fov if forced_fov != 0 else self.default_fov
        lens_offset = (float(lens_offset_x), float(lens_offset_y))
        seed = CameraIntrinsics.from_fov(image_width, image_height, fov, lens_offset)

        if forced_fov == 0:
            intrinsics, extrinsics, residual, flags = self._calibrate_free_focal(
                object_points, image_points, seed, lens_offset
            )
            mode = FREE_FOCAL
        else:
            intrinsics = seed
            extrinsics = self._solve_fixed_intrinsics(object_points, image_points, seed)
            residual = FIXED_FOV_RESIDUAL
            flags = 0
            mode = FIXED_FOV

        stats = evaluate_pose(object_points, image_points, intrinsics, extrinsics)
        rms = float(stats["rms_error"])
        if not np.isfinite(rms):
            raise DegenerateGeometryError("Reprojection error is not finite")

        logger.info(
            f"Pose solved ({mode}) from {len(used)} points: residual={residual:.4f}, "
            f"RMSE={rms:.4f}px, f={intrinsics.fx:.2f}, c=({intrinsics.cx:.1f}, {intrinsics.cy:.1f})"
        )
        logger.debug(f"rvec={extrinsics.rvec}, tvec={extrinsics.tvec}")

        return PoseResult(
            intrinsics=intrinsics,
            extrinsics=extrinsics,
            residual=float(residual),
            reprojection_error=rms,
            mode=mode,
            flags=flags,
            num_points=len(used),
            notification=notification,
        )

    def solve_camera_param(
        self,
        points: CorrespondenceSet,
        width: int,
        height: int,
        near: float,
        far: float,
        forced_fov: float = 0.0,
        lens_offset_x: float = 0.0,
        lens_offset_y: float = 0.0,
    ) -> tuple[CameraParam, PoseResult]:
        """姿勢推定を行い、成功した場合のみ CameraParam を作成。

        Returns:
            (CameraParam, PoseResult)

        Raises:
            ValueError: クリップ面が不正な場合
            CalibrationError: 推定に失敗した場合（CameraParam は作成されない）
        """
        if near <= 0 or far <= near:
            raise ValueError(f"Clip planes must satisfy 0 < near < far, got near={near}, far={far}")

        result = self.solve_pose(points, width, height, forced_fov, lens_offset_x, lens_offset_y)
        if not result.succeeded:
            raise DegenerateGeometryError(f"Pose solve did not succeed (residual={result.residual})")

        param = CameraParam.from_calibration(width, height, result.intrinsics, result.extrinsics, near, far)
        return param, result

    def _select(
        self, points: CorrespondenceSet, mode: SolveMode
    ) -> tuple[CorrespondenceSet, SolveNotification]:
        """推定に使う対応点を選び、最小数を検証。

        未設定判定は姿勢推定のみ。ホモグラフィでは原点も平面上の通常の点として扱う。
        """
        used: list[Correspondence] = []
        excluded: list[Correspondence] = []
        check_unset = mode is SolveMode.POSE
        for c in points:
            if not check_unset or is_object_point_set(c.object_point, self.unset_epsilon):
                used.append(c)
            elif self.exclude_unset:
                excluded.append(c)
            else:
                used.append(c)

        if excluded:
            logger.warning(
                f"Excluded {len(excluded)} correspondences without object point: "
                f"{[c.key if c.key is not None else c.label for c in excluded]}"
            )
        elif check_unset and not self.exclude_unset and not points.is_complete(self.unset_epsilon):
            logger.warning("Unset object points are included in the solve")

        required = CorrespondenceSet.minimum_size(mode)
        if len(used) < required:
            raise InsufficientPointsError(required, len(used), mode.value)

        notification = SolveNotification(
            used_keys=tuple(c.key for c in used),
            excluded_keys=tuple(c.key for c in excluded),
        )
        return CorrespondenceSet(used), notification

    @staticmethod
    def _check_spread(points: np.ndarray, min_rank: int, name: str) -> None:
        """重心まわりの点群のランクを検証（全点一致や共線を検出）。"""
        if not np.all(np.isfinite(points)):
            raise DegenerateGeometryError(f"{name} contain non-finite values")
        centered = points - points.mean(axis=0)
        rank = int(np.linalg.matrix_rank(centered)) if np.any(centered) else 0
        if rank < min_rank:
            raise DegenerateGeometryError(f"{name} are degenerate (rank {rank} < {min_rank})")

    def _calibrate_free_focal(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        seed: CameraIntrinsics,
        lens_offset: tuple[float, float],
    ) -> tuple[CameraIntrinsics, CameraExtrinsics, float, int]:
        """単一ビューの calibrateCamera で焦点距離と外部パラメータを推定。"""
        flags = calibration_flags(lens_offset)
        image_size = (seed.image_width, seed.image_height)

        try:
            rms, camera_matrix, _, rvecs, tvecs = cv2.calibrateCamera(
                [object_points.astype(np.float32).reshape(-1, 1, 3)],
                [image_points.astype(np.float32).reshape(-1, 1, 2)],
                image_size,
                seed.K.copy(),
                zero_distortion(),
                flags=flags,
            )
        except cv2.error as e:
            raise DegenerateGeometryError(f"calibrateCamera failed: {e}") from e

        if not np.isfinite(rms) or not np.all(np.isfinite(camera_matrix)):
            raise DegenerateGeometryError("calibrateCamera returned a non-finite solution")
        if not rvecs or not tvecs:
            raise DegenerateGeometryError("calibrateCamera returned no pose")

        intrinsics = CameraIntrinsics.from_matrix(camera_matrix, seed.image_width, seed.image_height)
        extrinsics = CameraExtrinsics(rvec=rvecs[0], tvec=tvecs[0])
        if not (np.all(np.isfinite(extrinsics.rvec)) and np.all(np.isfinite(extrinsics.tvec))):
            raise DegenerateGeometryError("calibrateCamera returned a non-finite pose")

        return intrinsics, extrinsics, float(rms), flags

    def _solve_fixed_intrinsics(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        intrinsics: CameraIntrinsics,
    ) -> CameraExtrinsics:
        """内部パラメータ固定で solvePnP により外部パラメータを推定。"""
        try:
            success, rvec, tvec = cv2.solvePnP(
                object_points.reshape(-1, 1, 3),
                image_points.reshape(-1, 1, 2),
                intrinsics.K,
                intrinsics.dist_coeffs,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            raise DegenerateGeometryError(f"solvePnP failed: {e}") from e

        if not success or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            raise DegenerateGeometryError("solvePnP did not converge")

        return CameraExtrinsics(rvec=rvec, tvec=tvec)


_default_solver = CalibrationSolver()


def solve_homography(points: CorrespondenceSet) -> HomographyResult:
    """既定設定のソルバーでホモグラフィを推定。"""
    return _default_solver.solve_homography(points)


def solve_pose(
    points: CorrespondenceSet,
    image_width: int,
    image_height: int,
    forced_fov: float = 0.0,
    lens_offset_x: float = 0.0,
    lens_offset_y: float = 0.0,
) -> PoseResult:
    """既定設定のソルバーでカメラ姿勢を推定。"""
    return _default_solver.solve_pose(points, image_width, image_height, forced_fov, lens_offset_x, lens_offset_y)
