"""出力サイズの計算: 最大枠へのアスペクト維持縮小と最小サイズの補正。"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math

_logger = logging.getLogger(__name__)

MIN_SIZE = 4
GIF_MAX_SIZE = 2048
VIDEO_MAX_WIDTH = 1920
VIDEO_MAX_HEIGHT_LANDSCAPE = 1200
VIDEO_MAX_HEIGHT_PORTRAIT = 1900


@dataclass(frozen=True)
class ScaleConstraints:
    """最大・最小サイズの制約。min <= max は呼び出し側の責任。"""

    max_width: int
    max_height: int
    min_width: int = 1
    min_height: int = 1


@dataclass(frozen=True)
class ScaleResult:
    width: int
    height: int
    scale: float  # 最大枠への縮小率のみ（最小補正は反映しない）
    was_scaled: bool


def _round_half_away(value: float) -> int:
    """0.5を0から遠い方へ丸める（組み込みroundの偶数丸めは使わない）。"""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def scale_dimensions(width: int, height: int, constraints: ScaleConstraints) -> ScaleResult:
    """縦横比を保ったまま最大枠に収め、その後に軸ごとの最小値で補正する。"""
    new_w = int(width)
    new_h = int(height)
    scale = 1.0
    was_scaled = False

    if new_w > constraints.max_width or new_h > constraints.max_height:
        # 0の軸は制約にならない
        scale_w = constraints.max_width / new_w if new_w else math.inf
        scale_h = constraints.max_height / new_h if new_h else math.inf
        scale = min(scale_w, scale_h)
        new_w = _round_half_away(new_w * scale)
        new_h = _round_half_away(new_h * scale)
        was_scaled = True

    # 軸ごとに独立して補正するため、片側だけ補正されると縦横比は崩れる
    if new_w < constraints.min_width:
        new_w = constraints.min_width
        was_scaled = True
    if new_h < constraints.min_height:
        new_h = constraints.min_height
        was_scaled = True

    if was_scaled:
        _logger.debug("scaled %dx%d -> %dx%d (scale=%.4f)", width, height, new_w, new_h, scale)
    return ScaleResult(width=new_w, height=new_h, scale=scale, was_scaled=was_scaled)


GIF_PROFILE = ScaleConstraints(
    max_width=GIF_MAX_SIZE,
    max_height=GIF_MAX_SIZE,
    min_width=MIN_SIZE,
    min_height=MIN_SIZE,
)


def video_profile(width: int, height: int) -> ScaleConstraints:
    """動画用の制約。横長なら高さ上限1200、それ以外（縦長・正方形）は1900。"""
    max_height = VIDEO_MAX_HEIGHT_LANDSCAPE if width > height else VIDEO_MAX_HEIGHT_PORTRAIT
    return ScaleConstraints(
        max_width=VIDEO_MAX_WIDTH,
        max_height=max_height,
        min_width=MIN_SIZE,
        min_height=MIN_SIZE,
    )


def even_size(width: int, height: int, minimum: int = MIN_SIZE) -> tuple[int, int]:
    """4:2:0の動画用に幅・高さを偶数へ切り下げる。最大枠は超えず、minimumは下回らない。"""
    return max(minimum, width - width % 2), max(minimum, height - height % 2)
