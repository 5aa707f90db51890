"""変換パイプライン（読み込み → サイズ決定 → 一度だけ描画 → GIF/MP4）。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import asyncio
import logging

from .gif import GifOptions, encode_gif
from .io_utils import EncodedContainer, RasterSurface, decode, render, replace_image_suffix
from .scaling import GIF_PROFILE, ScaleConstraints, even_size, scale_dimensions, video_profile
from .video import DirectMuxStrategy, VideoStrategy

_logger = logging.getLogger(__name__)


class ConversionFormat(str, Enum):
    GIF = "gif"
    VIDEO = "video"


@dataclass(frozen=True)
class ConversionResult:
    """変換結果のバイト列・ファイル名・メディアタイプ。"""

    data: bytes
    name: str
    media_type: str


def profile_for(fmt: ConversionFormat, width: int, height: int) -> ScaleConstraints:
    """出力形式ごとのサイズ制約を返す。動画は元画像の向きで高さ上限が変わる。"""
    if ConversionFormat(fmt) is ConversionFormat.GIF:
        return GIF_PROFILE
    return video_profile(width, height)


def prepare_surface(source: RasterSurface, fmt: ConversionFormat) -> RasterSurface:
    """制約に合わせたサイズで一度だけ描画する。各フレームはこの結果を使い回す。

    動画はyuv420pで符号化するため、さらに偶数サイズへ切り下げる（最大1ピクセル）。
    """
    constraints = profile_for(fmt, source.width, source.height)
    scaled = scale_dimensions(source.width, source.height, constraints)
    width, height = scaled.width, scaled.height
    if ConversionFormat(fmt) is ConversionFormat.VIDEO:
        width, height = even_size(width, height)
    return render(source, width, height)


class Converter:
    """形式に応じてGIF/動画パイプラインを呼び分ける。

    失敗時に別形式へ切り替えることはしない。両方試したい場合は呼び出し側で2回呼ぶ。
    """

    def __init__(
        self,
        video_strategy: VideoStrategy | None = None,
        gif_options: GifOptions | None = None,
    ) -> None:
        self.video_strategy = video_strategy or DirectMuxStrategy()
        self.gif_options = gif_options or GifOptions()

    async def convert(self, data: bytes, name: str, fmt: ConversionFormat | str) -> ConversionResult:
        fmt = ConversionFormat(fmt)
        source = await asyncio.to_thread(decode, data)
        surface = await asyncio.to_thread(prepare_surface, source, fmt)
        _logger.debug("%s: %dx%d -> %dx%d (%s)", name, source.width, source.height, surface.width, surface.height, fmt.value)

        container: EncodedContainer
        if fmt is ConversionFormat.GIF:
            container = await asyncio.to_thread(encode_gif, surface, self.gif_options)
        else:
            container = await self.video_strategy.encode_video(surface)

        return ConversionResult(
            data=container.data,
            name=replace_image_suffix(name, container.suffix),
            media_type=container.media_type,
        )

    def convert_sync(self, data: bytes, name: str, fmt: ConversionFormat | str) -> ConversionResult:
        """同期呼び出し用。実行中のイベントループがない場所で使う。"""
        return asyncio.run(self.convert(data, name, fmt))


async def convert(
    data: bytes,
    name: str,
    fmt: ConversionFormat | str,
    video_strategy: VideoStrategy | None = None,
    gif_options: GifOptions | None = None,
) -> ConversionResult:
    """入力画像を指定形式へ変換し、(バイト列, ファイル名, メディアタイプ) を返す。"""
    return await Converter(video_strategy, gif_options).convert(data, name, fmt)


async def convert_to_gif(data: bytes, name: str) -> ConversionResult:
    return await convert(data, name, ConversionFormat.GIF)


async def convert_to_video(data: bytes, name: str) -> ConversionResult:
    return await convert(data, name, ConversionFormat.VIDEO)
