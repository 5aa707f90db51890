"""変換処理で発生する例外の定義。"""

from __future__ import annotations


class ConversionError(Exception):
    """1回の変換呼び出しを終了させる失敗の基底クラス。"""


class DecodeError(ConversionError, ValueError):
    """入力がPNG/JPEGの静止画として読み込めない。"""


class NoSupportedCodecError(ConversionError):
    """受理可能なコーデックが1つも見つからない。"""


class EncodeError(ConversionError):
    """エンコード・確定処理の失敗。原因は __cause__ に保持される。"""


class EmptyEncodeError(EncodeError):
    """録画が0バイトで終わった。"""


class QuantizeError(EncodeError):
    """減色（パレット生成）の失敗。"""
