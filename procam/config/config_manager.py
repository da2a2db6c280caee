"""Configuration management module for the projector/camera calibration system."""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from procam.config.loader import SUPPORTED_SUFFIXES, load_config_file

logger = logging.getLogger(__name__)


class ConfigManager:
    """キャリブレーション設定の管理クラス

    solver / camera / markers / output の4セクションを YAML/JSON から読み込み、
    欠けた項目をデフォルト値で補ったうえで検証する。

    Attributes:
        config_path: 設定ファイルのパス
        config: 読み込まれた設定データ
    """

    # 必須項目の定義
    REQUIRED_KEYS = {
        "solver": ["default_fov_deg", "exclude_unset"],
        "camera": ["image_width", "image_height", "near_clip", "far_clip"],
        "markers": ["path"],
        "output": ["directory"],
    }

    # デフォルト設定値
    DEFAULT_CONFIG = {
        "solver": {
            "default_fov_deg": 60.0,
            "exclude_unset": True,
            "unset_epsilon": 1e-6,
        },
        "camera": {
            "image_width": 1280,
            "image_height": 720,
            "forced_fov_deg": 0.0,
            "lens_offset_x": 0.0,
            "lens_offset_y": 0.0,
            "near_clip": 0.1,
            "far_clip": 10000.0,
        },
        "markers": {
            "path": "data/markers.yaml",
        },
        "output": {
            "directory": "output",
            "camera_param_file": "camera_param.txt",
            "homography_file": "homography.json",
            "debug_mode": False,
        },
    }

    def __init__(self, config_path: str = "config.yaml"):
        """
        Args:
            config_path: 設定ファイルのパス。存在しない場合はデフォルト設定で動作する
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """設定ファイルを読み込む

        Returns:
            読み込まれた設定データ

        Raises:
            ValueError: 設定ファイルの形式が不正な場合
        """
        if not os.path.exists(self.config_path):
            logger.warning(f"設定ファイル '{self.config_path}' が見つかりません。デフォルト設定を使用します。")
            return copy.deepcopy(self.DEFAULT_CONFIG)

        config = load_config_file(self.config_path)

        if config is None:
            logger.warning("設定ファイルが空です。デフォルト設定を使用します。")
            return copy.deepcopy(self.DEFAULT_CONFIG)

        logger.info(f"設定ファイル '{self.config_path}' を読み込みました。")
        return self._merge_defaults(config)

    def _merge_defaults(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """ファイルに無い項目をデフォルト値で補う"""
        merged = copy.deepcopy(self.DEFAULT_CONFIG)
        for section, values in config.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def validate(self) -> bool:
        """設定値の妥当性を検証する

        必須項目の存在チェック、型チェック、値の範囲チェックを実行する。

        Returns:
            検証が成功した場合True

        Raises:
            ValueError: 設定値が不正な場合
        """
        for section, required_keys in self.REQUIRED_KEYS.items():
            if section not in self.config:
                raise ValueError(f"必須セクション '{section}' が設定ファイルに存在しません。")

            section_config = self.config.get(section, {})
            if not isinstance(section_config, dict):
                raise ValueError(f"セクション '{section}' は辞書型である必要があります。")
            for key in required_keys:
                if key not in section_config:
                    raise ValueError(f"必須項目 '{section}.{key}' が設定ファイルに存在しません。")

        self._validate_solver_config()
        self._validate_camera_config()
        self._validate_markers_config()
        self._validate_output_config()

        logger.info("設定ファイルの検証が完了しました。")
        return True

    def _validate_solver_config(self):
        """solver セクションの検証"""
        solver_config = self.config.get("solver", {})

        fov = solver_config.get("default_fov_deg")
        if not _is_number(fov) or not (0.0 < fov < 180.0):
            raise ValueError("solver.default_fov_deg は 0 より大きく 180 未満である必要があります。")

        if not isinstance(solver_config.get("exclude_unset"), bool):
            raise ValueError("solver.exclude_unset はブール値である必要があります。")

        if "unset_epsilon" in solver_config:
            epsilon = solver_config["unset_epsilon"]
            if not _is_number(epsilon) or epsilon <= 0:
                raise ValueError("solver.unset_epsilon は正の数値である必要があります。")

    def _validate_camera_config(self):
        """camera セクションの検証"""
        camera_config = self.config.get("camera", {})

        for key in ("image_width", "image_height"):
            value = camera_config.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"camera.{key} は正の整数である必要があります。")

        if "forced_fov_deg" in camera_config:
            fov = camera_config["forced_fov_deg"]
            if not _is_number(fov) or not (0.0 <= fov < 180.0):
                raise ValueError("camera.forced_fov_deg は 0 以上 180 未満である必要があります。")

        for key in ("lens_offset_x", "lens_offset_y"):
            if key in camera_config and not _is_number(camera_config[key]):
                raise ValueError(f"camera.{key} は数値である必要があります。")

        near = camera_config.get("near_clip")
        far = camera_config.get("far_clip")
        if not _is_number(near) or near <= 0:
            raise ValueError("camera.near_clip は正の数値である必要があります。")
        if not _is_number(far) or far <= near:
            raise ValueError("camera.far_clip は near_clip より大きい数値である必要があります。")

    def _validate_markers_config(self):
        """markers セクションの検証"""
        markers_config = self.config.get("markers", {})

        if not isinstance(markers_config.get("path"), str):
            raise ValueError("markers.path は文字列である必要があります。")

    def _validate_output_config(self):
        """output セクションの検証"""
        output_config = self.config.get("output", {})

        if not isinstance(output_config.get("directory"), str):
            raise ValueError("output.directory は文字列である必要があります。")

        for field in ("camera_param_file", "homography_file"):
            if field in output_config and not isinstance(output_config[field], str):
                raise ValueError(f"output.{field} は文字列である必要があります。")

        if "debug_mode" in output_config and not isinstance(output_config["debug_mode"], bool):
            raise ValueError("output.debug_mode はブール値である必要があります。")

    def get(self, key: str, default: Any = None) -> Any:
        """ドット区切りのキーで設定値を取得する

        Args:
            key: 'camera.near_clip' のような階層キー
            default: 途中のキーが見つからない場合に返す値

        Returns:
            設定値、または default
        """
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_section(self, section: str) -> Dict[str, Any]:
        """'solver' や 'camera' などのセクションを辞書で返す（無ければ空辞書）"""
        return self.config.get(section, {})

    def set(self, key: str, value: Any):
        """ドット区切りのキーで設定値を上書きする

        コマンドライン引数による上書きに使う。途中のセクションが無ければ作成する。
        """
        *parents, leaf = key.split(".")
        node = self.config
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
        logger.debug(f"設定値を上書きしました: {key} = {value}")

    def save(self, output_path: Optional[str] = None):
        """現在の設定を YAML/JSON で書き出す

        Args:
            output_path: 書き出し先（省略時は読み込んだ設定ファイル）

        Raises:
            ValueError: 拡張子が YAML/JSON でない場合
        """
        path = Path(output_path or self.config_path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ValueError(f"サポートされていないファイル形式: {suffix}")

        try:
            with path.open("w", encoding="utf-8") as f:
                if suffix == ".json":
                    json.dump(self.config, f, indent=2, ensure_ascii=False)
                else:
                    yaml.safe_dump(self.config, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        except OSError as e:
            logger.error(f"設定ファイルの書き出しに失敗しました: {e}")
            raise

        logger.info(f"設定ファイルを書き出しました: {path}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
