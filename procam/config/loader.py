"""設定ファイルの読み込み専用モジュール。"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

SUPPORTED_SUFFIXES = {".yaml", ".yml", ".json"}


def load_config_file(path: str | Path) -> dict[str, Any] | None:
    """YAML/JSON設定を辞書として読み込む。

    Args:
        path: 設定ファイルのパス

    Returns:
        設定辞書。ファイルが空の場合は None

    Raises:
        FileNotFoundError: ファイルが存在しない場合
        ValueError: 形式が不正、または辞書でない場合
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"設定ファイルが見つかりません: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"サポートされていないファイル形式: {suffix}")

    try:
        with config_path.open(encoding="utf-8") as f:
            data = json.load(f) if suffix == ".json" else yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"YAML解析エラー: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"JSON解析エラー: {e}") from e

    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError("設定ファイルは辞書形式である必要があります。")
    return data
