"""キャリブレーション関連の例外定義モジュール。"""

from __future__ import annotations


class CalibrationError(Exception):
    """キャリブレーション関連エラーの基底クラス。"""


class InsufficientPointsError(CalibrationError, ValueError):
    """対応点がソルバーの最小数に満たない。

    Attributes:
        required: 必要な対応点数
        actual: 実際に使用可能な対応点数
        mode: ソルバーモード名
    """

    def __init__(self, required: int, actual: int, mode: str = ""):
        self.required = required
        self.actual = actual
        self.mode = mode
        super().__init__(f"At least {required} correspondences required for {mode or 'solve'}, got {actual}")


class DegenerateGeometryError(CalibrationError, ValueError):
    """対応点の配置が退化しており、解が一意に定まらない。"""


class PersistenceError(CalibrationError):
    """キャリブレーション/マーカーファイルの読み込みに失敗した。"""


class CalibrationFileNotFoundError(PersistenceError, FileNotFoundError):
    """読み込み対象のファイルが存在しない。"""
