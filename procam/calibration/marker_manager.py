"""マーカー管理モジュール。

画面上の対応点マーカーを保持し、ソルバーに渡す対応点スナップショットの作成と
解決通知による「再キャリブレーション要求」フラグの更新を行います。
描画と入力処理は扱いません。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import itertools
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from procam.calibration.correspondence import (
    UNSET_EPSILON,
    Correspondence,
    CorrespondenceSet,
    is_object_point_set,
    load_correspondence_file,
    save_correspondence_file,
)

if TYPE_CHECKING:
    from procam.calibration.solver import SolveNotification

logger = logging.getLogger(__name__)

_marker_ids = itertools.count()


class MarkerState(Enum):
    """マーカーの表示状態。"""

    IDLE = "idle"
    HOVER = "hover"
    DRAGGED = "dragged"
    UNSET = "unset"


@dataclass(eq=False)
class Marker:
    """対応点マーカー。

    Attributes:
        image_x: 画像座標 X [pixel]
        image_y: 画像座標 Y [pixel]
        object_point: 物体座標 (x, y, z)
        label: ラベル
        needs_update: 前回の推定以降に画像位置が変わったか
        hover: ポインタが重なっているか
        dragged: ドラッグ中か
        marker_id: プロセス内で一意な識別子（解決通知の宛先）
    """

    image_x: float = 0.0
    image_y: float = 0.0
    object_point: tuple[float, float, float] = (0.0, 0.0, 0.0)
    label: str = ""
    needs_update: bool = False
    hover: bool = False
    dragged: bool = False
    marker_id: int = field(default_factory=lambda: next(_marker_ids))

    @property
    def image_point(self) -> tuple[float, float]:
        return (self.image_x, self.image_y)

    @property
    def is_set(self) -> bool:
        return is_object_point_set(self.object_point, UNSET_EPSILON)

    @property
    def state(self) -> MarkerState:
        """表示状態を返す。ドラッグ > 未設定 > ホバー の優先順。"""
        if self.dragged:
            return MarkerState.DRAGGED
        if not self.is_set:
            return MarkerState.UNSET
        if self.hover:
            return MarkerState.HOVER
        return MarkerState.IDLE

    @property
    def text(self) -> str:
        """ラベル、画像座標、物体座標（整数）の表示テキスト。"""
        lines = []
        if self.label:
            lines.append(self.label)
        lines.append(f"{self.image_x:g}:{self.image_y:g}")
        ox, oy, oz = self.object_point
        lines.append(f"{int(ox)}:{int(oy)}:{int(oz)}")
        return "\n".join(lines)

    def set_image_position(self, x: float, y: float) -> None:
        """画像位置を設定。位置が変わった場合のみ needs_update を立てる。"""
        x, y = float(x), float(y)
        if (x, y) != (self.image_x, self.image_y):
            self.image_x, self.image_y = x, y
            self.needs_update = True

    def move(self, dx: float, dy: float) -> None:
        """相対移動（矢印キーによる 1px 調整など）。"""
        self.set_image_position(self.image_x + dx, self.image_y + dy)

    def set_object_point(self, x: float, y: float, z: float = 0.0) -> None:
        self.object_point = (float(x), float(y), float(z))


# 矢印キーによる移動量 [pixel]
NUDGE_STEPS = {
    "left": (-1, 0),
    "right": (1, 0),
    "up": (0, -1),
    "down": (0, 1),
}


class MarkerManager:
    """マーカー集合の管理クラス。"""

    def __init__(self):
        self._markers: list[Marker] = []
        self._selected: Marker | None = None

    def __len__(self) -> int:
        return len(self._markers)

    def __getitem__(self, index: int) -> Marker:
        return self._markers[index]

    @property
    def markers(self) -> list[Marker]:
        return list(self._markers)

    @property
    def selected(self) -> Marker | None:
        return self._selected

    def setup(self, num_markers: int) -> None:
        """既存マーカーを破棄し、指定数の空マーカーを作成。"""
        self.clear()
        self._markers = [Marker() for _ in range(num_markers)]

    def add_marker(self, label: str = "") -> Marker:
        marker = Marker(label=label)
        self._markers.append(marker)
        return marker

    def remove_marker(self, marker: Marker) -> None:
        """同一インスタンスのマーカーを削除。"""
        self._markers = [m for m in self._markers if m is not marker]
        if self._selected is marker:
            self._selected = None

    def clear(self) -> None:
        self._markers = []
        self._selected = None

    def select(self, marker: Marker | None) -> None:
        if marker is not None and not any(m is marker for m in self._markers):
            raise ValueError("Marker is not managed by this manager")
        self._selected = marker

    def set_selected_object_point(self, x: float, y: float) -> None:
        """選択中マーカーの物体点を (x, y, 0) に設定。"""
        if self._selected is not None:
            self._selected.set_object_point(x, y, 0.0)

    def nudge_selected(self, direction: str) -> None:
        """選択中マーカーを矢印方向に 1px 移動。"""
        if direction not in NUDGE_STEPS:
            raise ValueError(f"Unknown direction: {direction}")
        if self._selected is not None:
            self._selected.move(*NUDGE_STEPS[direction])

    @property
    def needs_calibration(self) -> bool:
        """いずれかのマーカーが前回の推定以降に移動したか。"""
        return any(m.needs_update for m in self._markers)

    def unset_markers(self) -> list[Marker]:
        return [m for m in self._markers if not m.is_set]

    def snapshot(self) -> CorrespondenceSet:
        """marker_id をキーとする対応点スナップショットを作成。"""
        return CorrespondenceSet(
            Correspondence(
                image_point=m.image_point,
                object_point=m.object_point,
                label=m.label,
                key=m.marker_id,
            )
            for m in self._markers
        )

    def mark_solved(self, notification: SolveNotification) -> None:
        """解決通知を受けて、使用されたマーカーの needs_update を解除。

        キーは marker_id で照合するため、スナップショット後に削除された
        マーカーのキーは無視される。除外されたマーカーはフラグを維持する。
        """
        by_id = {m.marker_id: m for m in self._markers}
        for key in notification.used_keys:
            marker = by_id.get(key)
            if marker is not None:
                marker.needs_update = False
        if notification.excluded_keys:
            logger.debug(f"Markers left pending (unset object point): {list(notification.excluded_keys)}")

    def load(self, path: str | Path) -> None:
        """マーカーファイルを読み込み、既存マーカーを置き換える。

        読み込みに失敗した場合、既存のマーカーは変更されない。

        Raises:
            CalibrationFileNotFoundError: ファイルが存在しない場合
            PersistenceError: 解析に失敗した場合
        """
        points = load_correspondence_file(path)

        self.clear()
        for c in points:
            marker = self.add_marker(c.label)
            marker.image_x, marker.image_y = c.image_point
            marker.object_point = c.object_point
            marker.needs_update = False

    def save(self, path: str | Path) -> None:
        save_correspondence_file(self.snapshot(), path)
