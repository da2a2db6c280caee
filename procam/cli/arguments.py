"""Command-line argument parsing."""

import argparse


def parse_arguments(argv=None) -> argparse.Namespace:
    """コマンドライン引数をパースする

    Args:
        argv: 引数リスト（None の場合は sys.argv を使用）

    Returns:
        パース済み引数
    """
    parser = argparse.ArgumentParser(description="プロジェクタ/カメラ キャリブレーション - 対応点からホモグラフィまたはカメラ姿勢を推定")

    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="設定ファイルのパス（デフォルト: config.yaml）",
    )

    parser.add_argument("--markers", type=str, help="マーカーファイルのパス（指定しない場合は markers.path）")

    parser.add_argument(
        "--mode",
        choices=["pose", "homography"],
        default="pose",
        help="推定モード（pose: カメラ姿勢、homography: 平面ホモグラフィ）",
    )

    parser.add_argument("--width", type=int, help="画像幅 [pixel]（指定しない場合は camera.image_width）")

    parser.add_argument("--height", type=int, help="画像高さ [pixel]（指定しない場合は camera.image_height）")

    parser.add_argument("--fov", type=float, help="固定画角 [degrees]、0 の場合は焦点距離も推定")

    parser.add_argument("--lens-offset-x", type=float, help="主点オフセット X [pixel]")

    parser.add_argument("--lens-offset-y", type=float, help="主点オフセット Y [pixel]")

    parser.add_argument("--output", type=str, help="出力ファイルのパス（指定しない場合は output 設定から決定）")

    parser.add_argument("--debug", action="store_true", help="デバッグモードで実行（詳細ログ）")

    return parser.parse_args(argv)
