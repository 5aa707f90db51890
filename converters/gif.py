"""パレットGIFの生成: 減色 → 番号化 → 同一内容2フレームのループGIF。"""

from __future__ import annotations

from dataclasses import dataclass
import io
import logging

import numpy as np
from PIL import GifImagePlugin, Image

from .errors import EncodeError, QuantizeError
from .io_utils import EncodedContainer, RasterSurface
from .quantize import MAX_COLORS, Palette, map_to_palette, quantize_wu

_logger = logging.getLogger(__name__)

GIF_MEDIA_TYPE = "image/gif"
GIF_SUFFIX = ".gif"
DISPOSE_RESTORE_BACKGROUND = 2
LOOP_FOREVER = 0
GIF_TRAILER = b";"


@dataclass(frozen=True)
class GifOptions:
    max_colors: int = MAX_COLORS
    delay_ms: int = 100
    disposal: int = DISPOSE_RESTORE_BACKGROUND
    loop: int = LOOP_FOREVER

    def __post_init__(self) -> None:
        if not 1 <= self.max_colors <= MAX_COLORS:
            raise ValueError(f"max_colors は1〜{MAX_COLORS}で指定してください。")
        if self.delay_ms < 0:
            raise ValueError("delay_ms は0以上にしてください。")


def build_indexed_plane(surface: RasterSurface, max_colors: int = MAX_COLORS) -> tuple[Palette, np.ndarray]:
    """パレットと (h, w) の番号プレーンを作る。アルファはGIFに持ち込まない。"""
    rgb = surface.pixels[:, :, :3]
    try:
        palette = quantize_wu(rgb, max_colors)
        indices = map_to_palette(rgb, palette)
    except (ValueError, MemoryError) as exc:
        raise QuantizeError(f"減色に失敗しました ({surface.width}x{surface.height}): {exc}") from exc
    return palette, indices


def _write_frames(palette: Palette, indices: np.ndarray, options: GifOptions) -> bytes:
    height, width = indices.shape
    frame = Image.frombytes("P", (width, height), np.ascontiguousarray(indices, dtype=np.uint8).tobytes())
    frame.putpalette(palette.tobytes())

    # 1枚目: グローバルカラーテーブル + NETSCAPE2.0 ループ指定
    header, _ = GifImagePlugin.getheader(frame, None, {"loop": options.loop, "duration": options.delay_ms})
    frame_params = {"duration": options.delay_ms, "disposal": options.disposal}

    out = io.BytesIO()
    for chunk in header:
        out.write(chunk)
    # 2枚目も同じ画素・遅延・破棄方法。ローカルカラーテーブルは付けない
    for _ in range(2):
        for chunk in GifImagePlugin.getdata(frame, **frame_params):
            out.write(chunk)
    out.write(GIF_TRAILER)
    return out.getvalue()


def encode_gif(surface: RasterSurface, options: GifOptions | None = None) -> EncodedContainer:
    """1枚の静止画を、同一内容2フレームで無限ループするGIFにする。

    1フレームだけのGIFはアップロード先で静止画扱いになるため、
    最小のアニメーションとして同じフレームを2回書く。
    """
    options = options or GifOptions()
    palette, indices = build_indexed_plane(surface, options.max_colors)
    _logger.debug("palette: %d colors for %dx%d", len(palette), surface.width, surface.height)
    try:
        data = _write_frames(palette, indices, options)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"GIFの書き出しに失敗しました: {exc}") from exc
    return EncodedContainer(data=data, media_type=GIF_MEDIA_TYPE, suffix=GIF_SUFFIX)
