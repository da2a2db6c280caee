"""Integration tests for the main entry point."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
import yaml

from main import main
from procam.calibration import CorrespondenceSet, save_correspondence_file
from procam.projection import CameraParam

pytestmark = pytest.mark.usefixtures("restore_root_logger")


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    """カレントディレクトリを一時ディレクトリに移す"""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write_config(directory: Path, **camera) -> Path:
    config = {
        "camera": {"image_width": 1280, "image_height": 720, "near_clip": 0.1, "far_clip": 1000.0, **camera},
        "markers": {"path": str(directory / "markers.yaml")},
        "output": {"directory": str(directory / "output")},
    }
    path = directory / "config.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def test_pose_mode_writes_camera_param(workspace: Path, pose_points: CorrespondenceSet):
    """姿勢推定モードで CameraParam ファイルが書き出される"""
    save_correspondence_file(pose_points, workspace / "markers.yaml")
    config_path = _write_config(workspace)

    assert main(["--config", str(config_path)]) == 0

    output_path = workspace / "output" / "camera_param.txt"
    param = CameraParam.load(output_path)
    assert param.projection.shape == (4, 4)
    assert (workspace / "output" / "system.log").exists()


def test_cli_overrides(workspace: Path, pose_points: CorrespondenceSet):
    """コマンドライン引数が設定ファイルより優先される"""
    markers_path = workspace / "other_markers.json"
    save_correspondence_file(pose_points, markers_path)
    config_path = _write_config(workspace)
    output_path = workspace / "custom" / "param.txt"

    exit_code = main(
        ["--config", str(config_path), "--markers", str(markers_path), "--fov", "60", "--output", str(output_path)]
    )

    assert exit_code == 0
    assert output_path.exists()


def test_homography_mode_writes_json(workspace: Path, unit_square_points: CorrespondenceSet):
    """ホモグラフィモードで JSON が書き出される"""
    save_correspondence_file(unit_square_points, workspace / "markers.yaml")
    config_path = _write_config(workspace)

    assert main(["--config", str(config_path), "--mode", "homography"]) == 0

    data = json.loads((workspace / "output" / "homography.json").read_text(encoding="utf-8"))
    assert np.array(data["homography"]).shape == (3, 3)
    assert np.array(data["modelview"]).shape == (4, 4)
    assert data["num_points"] == 4
    assert data["reprojection_error"] < 1e-6


def test_missing_marker_file(workspace: Path):
    """マーカーファイルがない場合は終了コード 1"""
    config_path = _write_config(workspace)
    assert main(["--config", str(config_path)]) == 1


def test_insufficient_points(workspace: Path, unit_square_points: CorrespondenceSet):
    """姿勢推定に対応点が足りない場合は終了コード 1"""
    save_correspondence_file(unit_square_points, workspace / "markers.yaml")
    config_path = _write_config(workspace)

    assert main(["--config", str(config_path)]) == 1
    assert not (workspace / "output" / "camera_param.txt").exists()


def test_invalid_config(workspace: Path):
    """設定値が不正な場合は終了コード 1"""
    config_path = _write_config(workspace, near_clip=10.0, far_clip=1.0)
    assert main(["--config", str(config_path)]) == 1
