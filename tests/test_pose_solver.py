"""Unit tests for camera pose solving."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from procam.calibration import CalibrationSolver, CorrespondenceSet, calibration_flags, solve_pose
from procam.calibration.solver import FIXED_FOV, FIXED_FOV_RESIDUAL, FLT_EPSILON, FREE_FOCAL
from procam.config import ConfigManager
from procam.errors import CalibrationError, DegenerateGeometryError, InsufficientPointsError
from procam.projection import CameraIntrinsics

IMAGE_WIDTH = 1280
IMAGE_HEIGHT = 720

BASE_FLAGS = (
    cv2.CALIB_USE_INTRINSIC_GUESS
    | cv2.CALIB_FIX_ASPECT_RATIO
    | cv2.CALIB_ZERO_TANGENT_DIST
    | cv2.CALIB_FIX_K1
    | cv2.CALIB_FIX_K2
    | cv2.CALIB_FIX_K3
    | cv2.CALIB_FIX_K4
    | cv2.CALIB_FIX_K5
    | cv2.CALIB_FIX_K6
    | cv2.CALIB_RATIONAL_MODEL
)


class TestCalibrationFlags:
    """calibrateCamera フラグ選択のテスト"""

    def test_no_lens_offset(self):
        """オフセットなしでは主点を固定しない"""
        flags = calibration_flags()
        assert flags == BASE_FLAGS
        assert not flags & cv2.CALIB_FIX_PRINCIPAL_POINT

    def test_tiny_lens_offset(self):
        """FLT_EPSILON 以下のオフセットは無視される"""
        assert (1e-4) ** 2 < FLT_EPSILON
        assert not calibration_flags((1e-4, 0.0)) & cv2.CALIB_FIX_PRINCIPAL_POINT

    def test_lens_offset_fixes_principal_point(self):
        """オフセット指定時は主点を固定する"""
        flags = calibration_flags((0.0, 3.0))
        assert flags & cv2.CALIB_FIX_PRINCIPAL_POINT
        assert flags == BASE_FLAGS | cv2.CALIB_FIX_PRINCIPAL_POINT


class TestSeedIntrinsics:
    """初期内部パラメータのテスト"""

    def test_focal_from_fov(self):
        """f = (h / 2) * tan(fov / 2)"""
        seed = CameraIntrinsics.from_fov(1280, 720, 60.0)
        expected = 360.0 * np.tan(np.radians(30.0))
        assert seed.fx == pytest.approx(expected)
        assert seed.fy == seed.fx

    def test_principal_point_with_offset(self):
        """主点 = 画像中心 + レンズオフセット（真の除算）"""
        seed = CameraIntrinsics.from_fov(1281, 721, 45.0, lens_offset=(10.0, -5.0))
        assert seed.cx == pytest.approx(650.5)
        assert seed.cy == pytest.approx(355.5)

    def test_zero_distortion(self):
        seed = CameraIntrinsics.from_fov(640, 480)
        assert seed.dist_coeffs.shape == (8, 1)
        assert not np.any(seed.dist_coeffs)


class TestFreeFocal:
    """画角未指定（焦点距離推定）モードのテスト"""

    def test_recovers_pose(self, pose_points, seed_intrinsics, true_extrinsics):
        """ノイズのない対応点から姿勢と焦点距離を復元する"""
        result = solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT)

        assert result.mode == FREE_FOCAL
        assert result.flags == BASE_FLAGS
        assert result.succeeded
        assert result.num_points == 10
        assert result.reprojection_error < 1e-2
        assert result.intrinsics.fx == pytest.approx(seed_intrinsics.fx, rel=1e-3)
        assert result.intrinsics.fx == pytest.approx(result.intrinsics.fy)
        np.testing.assert_allclose(result.translation, true_extrinsics.tvec, atol=1e-2)
        np.testing.assert_allclose(result.rotation, true_extrinsics.rvec, atol=1e-3)

    def test_reprojects_within_residual(self, pose_points):
        """推定結果で再投影した点は観測点と一致する"""
        result = solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT)

        reprojected, _ = cv2.projectPoints(
            pose_points.object_points(),
            result.rotation,
            result.translation,
            result.intrinsics.K,
            result.intrinsics.dist_coeffs,
        )
        reprojected = reprojected.reshape(-1, 2)
        errors = np.linalg.norm(reprojected - pose_points.image_points(), axis=1)
        assert np.sqrt(np.mean(errors**2)) == pytest.approx(result.reprojection_error, abs=1e-6)
        assert np.max(errors) < 1e-2

    def test_lens_offset_fixes_principal_point(self, make_pose_points):
        """レンズオフセット指定時は主点が初期値のまま"""
        offset = (12.0, -8.0)
        seed = CameraIntrinsics.from_fov(IMAGE_WIDTH, IMAGE_HEIGHT, 60.0, lens_offset=offset)
        points = make_pose_points(seed)

        result = solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT, lens_offset_x=offset[0], lens_offset_y=offset[1])

        assert result.flags & cv2.CALIB_FIX_PRINCIPAL_POINT
        assert result.intrinsics.cx == pytest.approx(652.0, abs=1e-6)
        assert result.intrinsics.cy == pytest.approx(352.0, abs=1e-6)

    def test_astuple(self, pose_points):
        intrinsics, rotation, translation, residual = solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT).astuple()
        assert isinstance(intrinsics, CameraIntrinsics)
        assert rotation.shape == (3,)
        assert translation.shape == (3,)
        assert residual >= 0


class TestFixedFov:
    """画角固定モードのテスト"""

    def test_constant_residual(self, pose_points, seed_intrinsics, true_extrinsics):
        """残差は定数 1.0、実際の誤差は reprojection_error に入る"""
        result = solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0)

        assert result.mode == FIXED_FOV
        assert result.residual == FIXED_FOV_RESIDUAL == 1.0
        assert result.flags == 0
        assert result.reprojection_error < 1e-4
        assert result.intrinsics.fx == pytest.approx(seed_intrinsics.fx)
        np.testing.assert_allclose(result.translation, true_extrinsics.tvec, atol=1e-4)

    def test_principal_point_from_offset(self, pose_points):
        """主点 = 画像中心 + オフセット"""
        result = solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0, lens_offset_x=10, lens_offset_y=-4)
        assert result.intrinsics.cx == 650.0
        assert result.intrinsics.cy == 356.0

    def test_forced_fov_overrides_default(self, pose_points):
        """指定画角が既定画角より優先される"""
        result = CalibrationSolver(default_fov=30.0).solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=90.0)
        assert result.intrinsics.fx == pytest.approx(360.0 * np.tan(np.radians(45.0)))

    def test_invalid_fov(self, pose_points):
        with pytest.raises(ValueError):
            solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=180.0)
        with pytest.raises(ValueError):
            solve_pose(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=-1.0)


class TestUnsetMarkers:
    """未設定マーカーの扱い"""

    def _with_unset(self, pose_points: CorrespondenceSet) -> CorrespondenceSet:
        points = CorrespondenceSet(pose_points)
        # 原点は tvec=(0, 0, 10) により画像中心に写る
        points.add((IMAGE_WIDTH / 2, IMAGE_HEIGHT / 2), (0.0, 0.0, 0.0), "unset")
        return points

    def test_excluded_and_reported(self, pose_points):
        """未設定マーカーは除外され、通知に含まれる"""
        points = self._with_unset(pose_points)

        result = solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0)

        assert result.num_points == 10
        assert result.notification.excluded_keys == (10,)
        assert result.notification.used_keys == tuple(range(10))

    def test_included_when_disabled(self, pose_points):
        """除外を無効にすると全点を使用する"""
        points = self._with_unset(pose_points)
        solver = CalibrationSolver(exclude_unset=False)

        result = solver.solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0)

        assert result.num_points == 11
        assert result.notification.excluded_keys == ()

    def test_exclusion_counts_toward_minimum(self, pose_points):
        """除外後に7点未満なら推定しない"""
        points = CorrespondenceSet(list(pose_points)[:6])
        points.add((10.0, 10.0), (0.0, 0.0, 0.0), "unset")

        with pytest.raises(InsufficientPointsError) as exc_info:
            solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT)

        assert exc_info.value.required == 7
        assert exc_info.value.actual == 6
        assert exc_info.value.mode == "pose"


class TestMinimumPoints:
    """姿勢推定に必要な最小点数（7点）のテスト"""

    @pytest.fixture
    def seven_points(self, make_pose_points, seed_intrinsics) -> CorrespondenceSet:
        return make_pose_points(seed_intrinsics, count=7)

    def test_free_focal_with_seven_points(self, seven_points):
        """7点で焦点距離推定が成功する"""
        result = solve_pose(seven_points, IMAGE_WIDTH, IMAGE_HEIGHT)

        assert result.mode == FREE_FOCAL
        assert result.num_points == 7
        assert np.isfinite(result.residual)
        assert result.residual >= 0

    def test_fixed_fov_with_seven_points(self, seven_points, true_extrinsics):
        """7点で画角固定の推定が成功する"""
        result = solve_pose(seven_points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0)

        assert result.mode == FIXED_FOV
        assert result.num_points == 7
        assert result.residual == FIXED_FOV_RESIDUAL
        assert result.reprojection_error < 1e-4
        np.testing.assert_allclose(result.translation, true_extrinsics.tvec, atol=1e-4)


class TestDegenerateInput:
    """退化した入力のテスト"""

    def test_identical_object_points(self):
        """全て同じ物体点"""
        points = CorrespondenceSet()
        for i in range(8):
            points.add((100.0 + i * 10, 200.0 + i * 5), (1.0, 1.0, 1.0))

        with pytest.raises(DegenerateGeometryError):
            solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT)

    def test_collinear_object_points(self):
        """共線な物体点"""
        points = CorrespondenceSet()
        for i in range(8):
            points.add((100.0 + i * 10, 200.0 + i * 7), (float(i + 1), 2.0 * (i + 1), 0.0))

        with pytest.raises(DegenerateGeometryError):
            solve_pose(points, IMAGE_WIDTH, IMAGE_HEIGHT, forced_fov=60.0)

    def test_errors_are_calibration_errors(self):
        """失敗は全て CalibrationError として捕捉できる"""
        with pytest.raises(CalibrationError):
            solve_pose(CorrespondenceSet(), IMAGE_WIDTH, IMAGE_HEIGHT)

    def test_invalid_image_size(self, pose_points):
        with pytest.raises(ValueError):
            solve_pose(pose_points, 0, IMAGE_HEIGHT)


class TestCalibrationSolver:
    """CalibrationSolver クラスのテスト"""

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            CalibrationSolver(default_fov=0.0)
        with pytest.raises(ValueError):
            CalibrationSolver(unset_epsilon=0.0)

    def test_from_config(self, tmp_path):
        """solver セクションから作成する"""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("solver:\n  default_fov_deg: 45.0\n  exclude_unset: false\n", encoding="utf-8")

        solver = CalibrationSolver.from_config(ConfigManager(str(config_path)))

        assert solver.default_fov == 45.0
        assert solver.exclude_unset is False
        assert solver.unset_epsilon == 1e-6

    def test_solve_camera_param(self, pose_points):
        """成功した推定からのみ CameraParam を作成する"""
        param, result = CalibrationSolver().solve_camera_param(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, 0.1, 1000.0)

        assert result.succeeded
        assert param.width == IMAGE_WIDTH
        assert param.projection.shape == (4, 4)
        assert param.modelview.shape == (4, 4)

    def test_solve_camera_param_invalid_clip(self, pose_points):
        with pytest.raises(ValueError):
            CalibrationSolver().solve_camera_param(pose_points, IMAGE_WIDTH, IMAGE_HEIGHT, 10.0, 1.0)

    def test_solve_camera_param_failure(self):
        """推定に失敗した場合 CameraParam は作成されない"""
        with pytest.raises(InsufficientPointsError):
            CalibrationSolver().solve_camera_param(CorrespondenceSet(), IMAGE_WIDTH, IMAGE_HEIGHT, 0.1, 100.0)
