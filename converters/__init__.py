"""Still image to looping GIF / MP4 conversion pipeline."""

from __future__ import annotations

from .codecs import (
    CODEC_CANDIDATES,
    PROCESS_SUPPORT_CACHE,
    CachedCapabilityProbe,
    CodecCandidate,
    CodecSupportCache,
    FfmpegCapabilityProbe,
    is_direct_encode_supported,
    negotiate_codec,
)
from .errors import (
    ConversionError,
    DecodeError,
    EmptyEncodeError,
    EncodeError,
    NoSupportedCodecError,
    QuantizeError,
)
from .gif import GifOptions, encode_gif
from .io_utils import EncodedContainer, RasterSurface, decode, is_png_or_jpg
from .pipeline import (
    ConversionFormat,
    ConversionResult,
    Converter,
    convert,
    convert_to_gif,
    convert_to_video,
)
from .scaling import ScaleConstraints, ScaleResult, scale_dimensions
from .video import (
    CaptureRecordStrategy,
    DirectMuxStrategy,
    VideoOptions,
    VideoStrategyName,
    make_video_strategy,
)

__all__ = [
    "CODEC_CANDIDATES",
    "PROCESS_SUPPORT_CACHE",
    "CachedCapabilityProbe",
    "CaptureRecordStrategy",
    "CodecCandidate",
    "CodecSupportCache",
    "ConversionError",
    "ConversionFormat",
    "ConversionResult",
    "Converter",
    "DecodeError",
    "DirectMuxStrategy",
    "EmptyEncodeError",
    "EncodeError",
    "EncodedContainer",
    "FfmpegCapabilityProbe",
    "GifOptions",
    "NoSupportedCodecError",
    "QuantizeError",
    "RasterSurface",
    "ScaleConstraints",
    "ScaleResult",
    "VideoOptions",
    "VideoStrategyName",
    "convert",
    "convert_to_gif",
    "convert_to_video",
    "decode",
    "encode_gif",
    "is_direct_encode_supported",
    "is_png_or_jpg",
    "make_video_strategy",
    "negotiate_codec",
    "scale_dimensions",
]
