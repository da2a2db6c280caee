"""対応点データ管理モジュール。

画像上の点（プロジェクタ/カメラ座標）と物体上の既知3D点の対応を管理し、
マーカーファイルの読み書きを提供します。
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from procam.errors import CalibrationFileNotFoundError, PersistenceError

logger = logging.getLogger(__name__)

# 物体点の二乗長がこれ以下なら「未設定」マーカーとみなす
UNSET_EPSILON = 1e-6


class SolveMode(Enum):
    """ソルバーモード。"""

    HOMOGRAPHY = "homography"
    POSE = "pose"


MINIMUM_SIZES = {
    SolveMode.HOMOGRAPHY: 4,
    SolveMode.POSE: 7,
}


@dataclass(frozen=True)
class Correspondence:
    """画像点と物体点の対応。

    Attributes:
        image_point: 画像上の点 (x, y) [pixels]
        object_point: 物体上の点 (x, y, z)
        label: 任意のラベル
        key: 元マーカーの識別子（解決通知の宛先）
    """

    image_point: tuple[float, float]
    object_point: tuple[float, float, float]
    label: str = ""
    key: int | str | None = None

    def __post_init__(self) -> None:
        image = tuple(float(v) for v in self.image_point)
        obj = tuple(float(v) for v in self.object_point)
        if len(image) != 2:
            raise ValueError(f"image_point must be (x, y), got {self.image_point}")
        if len(obj) != 3:
            raise ValueError(f"object_point must be (x, y, z), got {self.object_point}")
        object.__setattr__(self, "image_point", image)
        object.__setattr__(self, "object_point", obj)

    @property
    def is_set(self) -> bool:
        """物体点が設定済みか（原点のままなら未設定）。"""
        return is_object_point_set(self.object_point)

    def to_dict(self) -> dict:
        """辞書形式に変換。"""
        x, y = self.image_point
        ox, oy, oz = self.object_point
        return {
            "image": {"x": x, "y": y},
            "object": {"x": ox, "y": oy, "z": oz},
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict, key: int | str | None = None) -> Correspondence:
        """辞書から作成。欠損した数値は 0、ラベルは空文字になる。"""
        image = data.get("image") or {}
        obj = data.get("object") or {}
        if not isinstance(image, dict) or not isinstance(obj, dict):
            raise PersistenceError(f"Marker '{key}': 'image' and 'object' must be mappings")
        return cls(
            image_point=(float(image.get("x", 0)), float(image.get("y", 0))),
            object_point=(float(obj.get("x", 0)), float(obj.get("y", 0)), float(obj.get("z", 0))),
            label=str(data.get("label", "") or ""),
            key=key,
        )


def is_object_point_set(point: Iterable[float], epsilon: float = UNSET_EPSILON) -> bool:
    """物体点の二乗長が epsilon を超えるか。"""
    return float(sum(float(v) * float(v) for v in point)) > epsilon


class CorrespondenceSet:
    """順序付きの対応点集合。

    順序は計算結果に影響しないが、残差や解決通知の並びはこの順序に従う。
    """

    def __init__(self, correspondences: Iterable[Correspondence] | None = None):
        self._items: list[Correspondence] = list(correspondences or [])

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Correspondence]:
        return iter(self._items)

    def __getitem__(self, index: int) -> Correspondence:
        return self._items[index]

    def __repr__(self) -> str:
        return f"CorrespondenceSet({len(self._items)} correspondences)"

    def append(self, correspondence: Correspondence) -> None:
        self._items.append(correspondence)

    def add(
        self,
        image_point: tuple[float, float],
        object_point: tuple[float, float, float],
        label: str = "",
    ) -> Correspondence:
        """対応点を作成して追加し、作成したインスタンスを返す。"""
        correspondence = Correspondence(
            image_point=image_point,
            object_point=object_point,
            label=label,
            key=len(self._items),
        )
        self._items.append(correspondence)
        return correspondence

    def remove(self, correspondence: Correspondence) -> None:
        """同一インスタンスを削除する（値が等しい別インスタンスは残す）。"""
        self._items = [c for c in self._items if c is not correspondence]

    def clear(self) -> None:
        self._items.clear()

    @staticmethod
    def minimum_size(mode: SolveMode) -> int:
        """モードごとの最小対応点数を返す。"""
        return MINIMUM_SIZES[SolveMode(mode)]

    def has_minimum(self, mode: SolveMode) -> bool:
        return len(self._items) >= self.minimum_size(mode)

    def is_complete(self, epsilon: float = UNSET_EPSILON) -> bool:
        """全ての物体点が設定済みか。"""
        return all(is_object_point_set(c.object_point, epsilon) for c in self._items)

    def complete(self, epsilon: float = UNSET_EPSILON) -> CorrespondenceSet:
        """設定済みの対応点のみを含む新しい集合を返す。"""
        return CorrespondenceSet(c for c in self._items if is_object_point_set(c.object_point, epsilon))

    def incomplete(self, epsilon: float = UNSET_EPSILON) -> list[Correspondence]:
        """未設定の対応点のリストを返す。"""
        return [c for c in self._items if not is_object_point_set(c.object_point, epsilon)]

    def image_points(self) -> np.ndarray:
        """画像点 (N, 2) を返す。"""
        if not self._items:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array([c.image_point for c in self._items], dtype=np.float64)

    def object_points(self) -> np.ndarray:
        """物体点 (N, 3) を返す。"""
        if not self._items:
            return np.zeros((0, 3), dtype=np.float64)
        return np.array([c.object_point for c in self._items], dtype=np.float64)

    def keys(self) -> list[int | str | None]:
        return [c.key for c in self._items]

    def to_dict(self) -> dict:
        """マーカー番号をキーとする階層辞書に変換。"""
        return {"markers": {str(i): c.to_dict() for i, c in enumerate(self._items)}}

    @classmethod
    def from_dict(cls, data: dict) -> CorrespondenceSet:
        """辞書から作成。マーカー番号の数値順に並べる。"""
        markers = data.get("markers", {}) if isinstance(data, dict) else None
        if markers is None:
            markers = {}
        if isinstance(markers, list):
            markers = {str(i): m for i, m in enumerate(markers)}
        if not isinstance(markers, dict):
            raise PersistenceError("'markers' must be a mapping keyed by marker index")

        def _order(key: Any) -> tuple[int, int, str]:
            try:
                return (0, int(key), "")
            except (TypeError, ValueError):
                return (1, 0, str(key))

        items = []
        for index, key in enumerate(sorted(markers.keys(), key=_order)):
            entry = markers[key]
            if not isinstance(entry, dict):
                raise PersistenceError(f"Marker entry '{key}' must be a mapping")
            items.append(Correspondence.from_dict(entry, key=index))
        return cls(items)


def load_correspondence_file(file_path: str | Path) -> CorrespondenceSet:
    """マーカーファイル（YAML/JSON）を読み込む。

    Args:
        file_path: ファイルパス

    Returns:
        CorrespondenceSet インスタンス

    Raises:
        CalibrationFileNotFoundError: ファイルが存在しない場合
        PersistenceError: 解析に失敗した場合
    """
    path = Path(file_path)
    if not path.exists():
        raise CalibrationFileNotFoundError(f"Marker file not found: {path}")

    suffix = path.suffix.lower()
    try:
        with open(path, encoding="utf-8") as f:
            if suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PersistenceError(f"Failed to parse marker file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PersistenceError(f"Marker file {path} must contain a mapping")

    try:
        result = CorrespondenceSet.from_dict(data)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Invalid marker entry in {path}: {e}") from e

    incomplete = result.incomplete()
    logger.info(f"Loaded {len(result)} markers from {path} ({len(incomplete)} without object point)")
    return result


def save_correspondence_file(points: CorrespondenceSet, file_path: str | Path) -> None:
    """対応点データをファイルに保存。拡張子が .json 以外なら YAML で書き出す。"""
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            json.dump(points.to_dict(), f, indent=2, ensure_ascii=False)
        else:
            yaml.safe_dump(points.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    logger.info(f"Saved {len(points)} markers to {path}")
