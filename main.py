#!/usr/bin/env python
"""
プロジェクタ/カメラ キャリブレーション - メインエントリーポイント

マーカーファイルの画像点と物体点の対応から、平面ホモグラフィ、
またはカメラの内部/外部パラメータを推定し、描画用の行列として書き出します。
"""

import json
import logging
import sys
from pathlib import Path

from procam.calibration import CalibrationSolver, load_correspondence_file
from procam.cli import parse_arguments
from procam.config import ConfigManager
from procam.errors import CalibrationError
from procam.utils import setup_logging


def _apply_overrides(config: ConfigManager, args) -> None:
    """コマンドライン引数で設定値を上書きする"""
    overrides = {
        "markers.path": args.markers,
        "camera.image_width": args.width,
        "camera.image_height": args.height,
        "camera.forced_fov_deg": args.fov,
        "camera.lens_offset_x": args.lens_offset_x,
        "camera.lens_offset_y": args.lens_offset_y,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)

    if args.debug:
        config.set("output.debug_mode", True)


def _output_path(config: ConfigManager, args, file_key: str) -> Path:
    if args.output:
        return Path(args.output)
    return Path(config.get("output.directory", "output")) / config.get(file_key)


def run_pose(config: ConfigManager, solver: CalibrationSolver, points, output_path: Path, logger) -> None:
    """カメラ姿勢を推定し、CameraParam ファイルを書き出す"""
    camera = config.get_section("camera")
    param, result = solver.solve_camera_param(
        points,
        camera["image_width"],
        camera["image_height"],
        camera["near_clip"],
        camera["far_clip"],
        forced_fov=camera.get("forced_fov_deg", 0.0),
        lens_offset_x=camera.get("lens_offset_x", 0.0),
        lens_offset_y=camera.get("lens_offset_y", 0.0),
    )
    param.save(output_path)

    intrinsics = result.intrinsics
    logger.info(f"推定モード: {result.mode}")
    logger.info(f"焦点距離: fx={intrinsics.fx:.3f}, fy={intrinsics.fy:.3f}")
    logger.info(f"主点: ({intrinsics.cx:.3f}, {intrinsics.cy:.3f})")
    logger.info(f"再投影誤差 (RMS): {result.reprojection_error:.4f}px")


def run_homography(solver: CalibrationSolver, points, output_path: Path, logger) -> None:
    """ホモグラフィを推定し、JSON ファイルに書き出す"""
    result = solver.solve_homography(points)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "homography": result.homography.tolist(),
        "modelview": result.modelview.tolist(),
        "reprojection_error": result.reprojection_error,
        "num_points": result.num_points,
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.info(f"ホモグラフィを保存しました: {output_path}")
    logger.info(f"再投影誤差 (RMS): {result.reprojection_error:.4f}px")


def main(argv=None):
    """メイン処理"""
    args = parse_arguments(argv)

    # 初期ロギング設定（設定ファイル読み込み前）
    setup_logging(args.debug)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("プロジェクタ/カメラ キャリブレーション 起動")
    logger.info("=" * 80)

    try:
        logger.info(f"設定ファイルを読み込んでいます: {args.config}")
        config = ConfigManager(args.config)
        _apply_overrides(config, args)
        config.validate()

        # ロギングを再設定（出力ディレクトリを反映）
        output_dir = config.get("output.directory", "output")
        setup_logging(config.get("output.debug_mode", False), output_dir)
        logger = logging.getLogger(__name__)

        markers_path = config.get("markers.path")
        logger.info(f"マーカーファイルを読み込んでいます: {markers_path}")
        points = load_correspondence_file(markers_path)

        solver = CalibrationSolver.from_config(config)

        if args.mode == "homography":
            output_path = _output_path(config, args, "output.homography_file")
            run_homography(solver, points, output_path, logger)
        else:
            output_path = _output_path(config, args, "output.camera_param_file")
            run_pose(config, solver, points, output_path, logger)

        logger.info("=" * 80)
        logger.info("処理が正常に完了しました")
        logger.info(f"出力ファイル: {output_path.absolute()}")
        logger.info("=" * 80)

        return 0

    except FileNotFoundError as e:
        logger.error(f"ファイルが見つかりません: {e}")
        return 1
    except CalibrationError as e:
        logger.error(f"キャリブレーションエラー: {e}")
        return 1
    except ValueError as e:
        logger.error(f"設定エラー: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("処理が中断されました")
        return 130
    except Exception as e:
        logger.error(f"予期しないエラーが発生しました: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
