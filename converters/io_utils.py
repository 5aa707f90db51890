"""I/O系ユーティリティ: 画像バイト列の読み込みと描画サイズへの変換を集約。"""

from __future__ import annotations

from dataclasses import dataclass
import re

import numpy as np

from .errors import DecodeError

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"
IMAGE_SUFFIX_RE = re.compile(r"\.(png|jpe?g)$", re.IGNORECASE)
IMAGE_MEDIA_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg"})


def _require_cv2():
    try:
        import cv2  # type: ignore
    except Exception as exc:
        raise RuntimeError("OpenCV (cv2) が必要です。pip install opencv-python") from exc
    return cv2


@dataclass(frozen=True)
class RasterSurface:
    """RGBA画素 (h, w, 4) を保持する不変のラスタ。"""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("幅・高さは1以上にしてください。")
        if self.pixels.dtype != np.uint8 or self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"画素配列の形状が不正です: {self.pixels.shape} (期待値 {(self.height, self.width, 4)})"
            )
        self.pixels.setflags(write=False)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def tobytes(self) -> bytes:
        return np.ascontiguousarray(self.pixels).tobytes()


def is_png_or_jpg(name: str, media_type: str | None = None) -> bool:
    """ファイル名かメディアタイプからPNG/JPEGかを判定する。"""
    if IMAGE_SUFFIX_RE.search(name or ""):
        return True
    return (media_type or "").lower() in IMAGE_MEDIA_TYPES


def _sniff_format(data: bytes) -> str | None:
    if data.startswith(PNG_SIGNATURE):
        return "png"
    if data.startswith(JPEG_SIGNATURE):
        return "jpeg"
    return None


def _to_rgba(image: np.ndarray) -> np.ndarray:
    """imdecodeの結果（BGR/BGRA/グレー、8bit/16bit）をRGBA 8bitへ揃える。"""
    cv2 = _require_cv2()
    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2RGBA)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    return cv2.cvtColor(image[:, :, :4], cv2.COLOR_BGRA2RGBA)


def decode(data: bytes) -> RasterSurface:
    """PNG/JPEGのバイト列をRGBAのRasterSurfaceへ変換する。"""
    fmt = _sniff_format(bytes(data[:8]))
    if fmt is None:
        raise DecodeError("PNG/JPEG以外のデータは読み込めません。")
    cv2 = _require_cv2()
    try:
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    except cv2.error as exc:
        raise DecodeError(f"{fmt} のデコードに失敗しました: {exc}") from exc
    if image is None or image.size == 0:
        raise DecodeError(f"{fmt} データが壊れているか読み込めませんでした。")
    rgba = np.ascontiguousarray(_to_rgba(image))
    height, width = rgba.shape[:2]
    return RasterSurface(width=width, height=height, pixels=rgba)


def render(surface: RasterSurface, width: int, height: int) -> RasterSurface:
    """サーフェスを指定サイズで一度だけ描画し直す。サイズが同じならそのまま返す。"""
    if (width, height) == surface.size:
        return surface
    cv2 = _require_cv2()
    shrinking = width * height < surface.width * surface.height
    interp = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    resized = cv2.resize(surface.pixels, (width, height), interpolation=interp)
    return RasterSurface(width=width, height=height, pixels=np.ascontiguousarray(resized))


def replace_image_suffix(name: str, suffix: str) -> str:
    """末尾の .png/.jpg/.jpeg を置き換える。認識できない場合は末尾に付け足す。"""
    replaced, count = IMAGE_SUFFIX_RE.subn(suffix, name)
    if count:
        return replaced
    return f"{name}{suffix}"


@dataclass(frozen=True)
class EncodedContainer:
    """エンコード済みバイト列と、そのメディアタイプ・拡張子。"""

    data: bytes
    media_type: str
    suffix: str
