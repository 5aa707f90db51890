"""Codec candidates, capability probing and negotiation for MP4 output."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence
import asyncio
import logging

import imageio_ffmpeg

from .errors import NoSupportedCodecError

_logger = logging.getLogger(__name__)

PROBE_WIDTH = 1920
PROBE_HEIGHT = 1080
PROBE_TIMEOUT_S = 20.0
SUPPORT_CACHE_LIMIT = 64


@dataclass(frozen=True)
class CodecCandidate:
    """One accepted codec variant and the ffmpeg settings that produce it."""

    identifier: str  # RFC 6381 codec string
    family: str  # "avc" | "hevc"
    encoder: str  # ffmpeg encoder name
    profile: Optional[str] = None

    # 4:2:0 only; the sizes must be even (see scaling.even_size)
    pix_fmt = "yuv420p"

    def encoder_params(self) -> list[str]:
        params: list[str] = []
        if self.profile:
            params += ["-profile:v", self.profile]
        if self.family == "hevc":
            # QuickTime only plays HEVC in MP4 with the hvc1 tag
            params += ["-tag:v", "hvc1"]
        return params

    def output_params(self) -> list[str]:
        return ["-c:v", self.encoder, "-pix_fmt", self.pix_fmt, *self.encoder_params()]


H264_BASELINE = CodecCandidate("avc1.42001E", "avc", "libx264", "baseline")
H264_MAIN = CodecCandidate("avc1.4D401E", "avc", "libx264", "main")
H265_MAIN = CodecCandidate("hvc1.1.6.L93.B0", "hevc", "libx265", "main")

# most compatible first
CODEC_CANDIDATES: tuple[CodecCandidate, ...] = (H264_BASELINE, H264_MAIN, H265_MAIN)


class CapabilityProbe(Protocol):
    async def is_supported(self, candidate: CodecCandidate, width: int, height: int) -> bool:
        ...


class FfmpegCapabilityProbe:
    """Encode one synthetic frame with the candidate; exit status 0 means supported."""

    def __init__(self, ffmpeg_exe: str | None = None, timeout_s: float = PROBE_TIMEOUT_S) -> None:
        self._ffmpeg_exe = ffmpeg_exe
        self._timeout_s = timeout_s

    @property
    def ffmpeg_exe(self) -> str:
        if self._ffmpeg_exe is None:
            self._ffmpeg_exe = imageio_ffmpeg.get_ffmpeg_exe()
        return self._ffmpeg_exe

    def build_command(self, candidate: CodecCandidate, width: int, height: int) -> list[str]:
        return [
            self.ffmpeg_exe,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "lavfi",
            "-i",
            f"color=c=black:s={width}x{height}:r=1",
            "-frames:v",
            "1",
            *candidate.output_params(),
            "-f",
            "null",
            "-",
        ]

    async def is_supported(self, candidate: CodecCandidate, width: int, height: int) -> bool:
        if width % 2 or height % 2:
            # yuv420p cannot represent odd sizes; no encoder run needed
            _logger.debug("odd size %dx%d rejected for %s", width, height, candidate.identifier)
            return False
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(candidate, width, height),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self._timeout_s)
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        return returncode == 0


class CodecSupportCache:
    """Process-scoped probe results, least recently used entries evicted first.

    Call invalidate() when the environment changes.
    """

    def __init__(self, limit: int = SUPPORT_CACHE_LIMIT) -> None:
        self._results: OrderedDict[tuple[str, str, int, int], bool] = OrderedDict()
        self._limit = max(1, limit)

    def get(self, candidate: CodecCandidate, width: int, height: int) -> Optional[bool]:
        key = (candidate.identifier, candidate.encoder, width, height)
        supported = self._results.get(key)
        if supported is not None:
            self._results.move_to_end(key)
        return supported

    def put(self, candidate: CodecCandidate, width: int, height: int, supported: bool) -> None:
        key = (candidate.identifier, candidate.encoder, width, height)
        self._results[key] = supported
        self._results.move_to_end(key)
        while len(self._results) > self._limit:
            self._results.popitem(last=False)

    def invalidate(self) -> None:
        self._results.clear()

    def __len__(self) -> int:
        return len(self._results)


class CachedCapabilityProbe:
    def __init__(self, probe: CapabilityProbe, cache: CodecSupportCache) -> None:
        self._probe = probe
        self.cache = cache

    async def is_supported(self, candidate: CodecCandidate, width: int, height: int) -> bool:
        cached = self.cache.get(candidate, width, height)
        if cached is not None:
            return cached
        supported = await self._probe.is_supported(candidate, width, height)
        self.cache.put(candidate, width, height, supported)
        return supported


PROCESS_SUPPORT_CACHE = CodecSupportCache()


def default_probe() -> CachedCapabilityProbe:
    """ffmpeg probe backed by the process-wide cache."""
    return CachedCapabilityProbe(FfmpegCapabilityProbe(), PROCESS_SUPPORT_CACHE)


async def negotiate_codec(
    candidates: Sequence[CodecCandidate],
    probe: CapabilityProbe,
    width: int = PROBE_WIDTH,
    height: int = PROBE_HEIGHT,
    fallback: Optional[CodecCandidate] = None,
) -> CodecCandidate:
    """Return the first candidate the probe accepts.

    A probe that raises is treated as "unsupported" and the walk continues.
    When nothing is accepted, ``fallback`` is returned if given (with a
    warning), otherwise NoSupportedCodecError is raised.
    """
    for candidate in candidates:
        try:
            supported = await probe.is_supported(candidate, width, height)
        except Exception as exc:
            _logger.debug("probe failed for %s: %s", candidate.identifier, exc)
            continue
        if supported:
            _logger.debug("negotiated codec %s (%s)", candidate.identifier, candidate.encoder)
            return candidate

    tried = ", ".join(c.identifier for c in candidates)
    if fallback is not None:
        _logger.warning("no codec reported support (%s); falling back to %s", tried, fallback.identifier)
        return fallback
    raise NoSupportedCodecError(f"no supported codec among: {tried}")


async def is_direct_encode_supported(
    probe: CapabilityProbe, candidates: Sequence[CodecCandidate] = CODEC_CANDIDATES
) -> bool:
    """True when at least one accepted codec can be encoded at 1920x1080."""
    try:
        await negotiate_codec(candidates, probe)
    except NoSupportedCodecError:
        return False
    return True
