"""静止画から約1秒のMP4を作る2つの方式。

- CaptureRecordStrategy: 描画済みフレームを一定fpsで流し続け、
  レコーダー（ffmpegプロセス）で実時間録画してタイマーで止める。
- DirectMuxStrategy: タイムスタンプを計算しながら同じフレームを
  トラックライターへ直接追加し、最後に確定する。

どちらも encode_video(surface) -> EncodedContainer の同じ契約を持つ。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union
import asyncio
import contextlib
import logging
import tempfile

import imageio_ffmpeg

from .codecs import (
    CODEC_CANDIDATES,
    H264_BASELINE,
    CapabilityProbe,
    CodecCandidate,
    default_probe,
    negotiate_codec,
)
from .errors import ConversionError, EmptyEncodeError, EncodeError
from .io_utils import EncodedContainer, RasterSurface

_logger = logging.getLogger(__name__)

MP4_MEDIA_TYPE = "video/mp4"
MP4_SUFFIX = ".mp4"
READ_CHUNK_SIZE = 64 * 1024
FRAGMENTED_MP4_FLAGS = "frag_keyframe+empty_moov+default_base_moof"


@dataclass(frozen=True)
class VideoOptions:
    fps: int = 30
    # アップロード先の最短0.5秒に余裕を持たせた長さ
    duration_s: float = 1.0
    bitrate: int = 2_500_000
    fallback_to_baseline: bool = True  # DirectMuxStrategyのみ
    candidates: Sequence[CodecCandidate] = field(default=CODEC_CANDIDATES)

    def __post_init__(self) -> None:
        if self.fps <= 0:
            raise ValueError("fps は正の値にしてください。")
        if self.duration_s <= 0:
            raise ValueError("duration_s は正の値にしてください。")


# --- タイマー ---
class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class StopTimer(Protocol):
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class LoopStopTimer:
    """イベントループの call_later を使う既定のタイマー。"""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


# --- 方式A: キャプチャ + 録画 ---
class CaptureStream:
    """同じフレームを一定fpsで送り続けるストリーム。

    ループ時計で遅れた分はまとめて送るので、送ったフレーム数は経過時間×fpsに揃う。
    """

    def __init__(self, surface: RasterSurface, fps: int) -> None:
        self._frame = surface.tobytes()
        self.fps = fps
        self.frames_emitted = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, sink: Callable[[bytes], Awaitable[None]]) -> None:
        self._task = asyncio.create_task(self._pump(sink))

    async def _pump(self, sink: Callable[[bytes], Awaitable[None]]) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        interval = 1.0 / self.fps
        while True:
            due = int((loop.time() - started) * self.fps) + 1
            while self.frames_emitted < due:
                await sink(self._frame)
                self.frames_emitted += 1
            await asyncio.sleep(max(0.0, started + self.frames_emitted * interval - loop.time()))

    async def stop_tracks(self) -> None:
        """送出タスクを止める。停止済みなら何もしない。"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


class MediaRecorder:
    """生RGBAフレームを受け取り、断片化MP4のチャンクを出力するffmpegプロセス。"""

    def __init__(
        self,
        candidate: CodecCandidate,
        width: int,
        height: int,
        fps: int,
        bitrate: int,
        ffmpeg_exe: str | None = None,
    ) -> None:
        self.candidate = candidate
        self.width = width
        self.height = height
        self.fps = fps
        self.bitrate = bitrate
        self._ffmpeg_exe = ffmpeg_exe
        self.state = "inactive"
        self.chunks: list[bytes] = []
        self._stopped = asyncio.Event()
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._stderr: Optional[asyncio.Task[bytes]] = None

    def build_command(self) -> list[str]:
        exe = self._ffmpeg_exe or imageio_ffmpeg.get_ffmpeg_exe()
        return [
            exe,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgba",
            "-s",
            f"{self.width}x{self.height}",
            "-framerate",
            str(self.fps),
            "-i",
            "pipe:0",
            *self.candidate.output_params(),
            "-b:v",
            str(self.bitrate),
            "-movflags",
            FRAGMENTED_MP4_FLAGS,
            "-f",
            "mp4",
            "pipe:1",
        ]

    async def start(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            *self.build_command(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self.state = "recording"
        self._reader = asyncio.create_task(self._read_chunks())
        self._stderr = asyncio.create_task(self._proc.stderr.read())

    async def _read_chunks(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        while True:
            chunk = await self._proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.chunks.append(chunk)
        # プロセスが自分で終了した場合もここで停止扱いにする
        self.stop()

    async def write_frame(self, frame: bytes) -> None:
        if self.state != "recording" or self._proc is None or self._proc.stdin is None:
            return
        try:
            self._proc.stdin.write(frame)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            _logger.debug("recorder input closed: %s", exc)
            self.stop()

    def stop(self) -> None:
        """停止要求。すでに停止していれば何もしない。"""
        if self.state == "inactive":
            return
        self.state = "inactive"
        self._stopped.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def finalize(self) -> bytes:
        """入力を閉じてプロセスの終了を待ち、チャンクを連結して返す。"""
        self.stop()
        proc = self._proc
        if proc is None:
            return b""
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        if self._reader is not None:
            await self._reader
        stderr = await self._stderr if self._stderr is not None else b""
        returncode = await proc.wait()
        data = b"".join(self.chunks)
        if returncode != 0:
            message = stderr.decode(errors="replace").strip()
            _logger.warning("recorder exited with %s: %s", returncode, message)
            if data:
                # 途中までの出力は返さない
                raise EncodeError(f"recorder exited with {returncode}: {message}")
        return data

    async def abort(self) -> None:
        """エラー経路用: プロセスを強制終了し、読み取りタスクを片付ける。"""
        self.stop()
        proc = self._proc
        if proc is not None and proc.returncode is None:
            proc.kill()
            await proc.wait()
        for task in (self._reader, self._stderr):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task


class CaptureRecordStrategy:
    """実時間で録画する方式。レコーダーを作れるコーデックが無ければ失敗する。"""

    name = "capture"

    def __init__(
        self,
        probe: CapabilityProbe | None = None,
        options: VideoOptions | None = None,
        timer: StopTimer | None = None,
        recorder_factory: Callable[..., MediaRecorder] = MediaRecorder,
    ) -> None:
        self.probe = probe or default_probe()
        self.options = options or VideoOptions()
        self.timer = timer or LoopStopTimer()
        self._recorder_factory = recorder_factory

    async def encode_video(self, surface: RasterSurface) -> EncodedContainer:
        opts = self.options
        # フォールバック無し: 見つからなければ NoSupportedCodecError
        candidate = await negotiate_codec(opts.candidates, self.probe, surface.width, surface.height)

        recorder = self._recorder_factory(candidate, surface.width, surface.height, opts.fps, opts.bitrate)
        stream = CaptureStream(surface, opts.fps)
        handle: Optional[TimerHandle] = None
        try:
            await recorder.start()
            stream.start(recorder.write_frame)
            handle = self.timer.schedule(opts.duration_s, recorder.stop)
            await recorder.wait_stopped()
            await stream.stop_tracks()
            data = await recorder.finalize()
        except BaseException as exc:
            await recorder.abort()
            if isinstance(exc, Exception) and not isinstance(exc, ConversionError):
                raise EncodeError(f"録画に失敗しました: {exc}") from exc
            raise
        finally:
            if handle is not None:
                handle.cancel()
            await stream.stop_tracks()

        _logger.debug("captured %d frames, %d bytes", stream.frames_emitted, len(data))
        if not data:
            raise EmptyEncodeError(
                f"録画結果が空です。サイズ: {surface.width}x{surface.height} "
                "（エンコーダーが対応しないサイズかコーデックの可能性があります）"
            )
        return EncodedContainer(data=data, media_type=MP4_MEDIA_TYPE, suffix=MP4_SUFFIX)


# --- 方式B: フレームバッファの直接多重化 ---
class BufferTarget:
    """メモリ上の出力先。ffmpegは専用の一時ファイルへ書き、確定時に読み戻す。"""

    def __init__(self, suffix: str = MP4_SUFFIX) -> None:
        self._tmpdir = tempfile.TemporaryDirectory(prefix="still2loop-")
        self.path = Path(self._tmpdir.name) / f"output{suffix}"
        self.buffer: Optional[bytes] = None

    def collect(self) -> bytes:
        self.buffer = self.path.read_bytes() if self.path.exists() else b""
        return self.buffer

    def cleanup(self) -> None:
        self._tmpdir.cleanup()


class VideoTrackWriter:
    """固定フレームレートの映像トラック。キーフレームはGOP境界に固定される。"""

    def __init__(
        self,
        target: BufferTarget,
        candidate: CodecCandidate,
        size: tuple[int, int],
        fps: int,
        bitrate: int,
        gop_size: int,
    ) -> None:
        self.target = target
        self.candidate = candidate
        self.size = size
        self.fps = fps
        self.bitrate = bitrate
        self.gop_size = max(1, gop_size)
        self.frames_written = 0
        self.key_frames: list[float] = []
        self._gen = None

    def start(self) -> None:
        width, height = self.size
        if width % 2 or height % 2:
            raise ValueError(f"{width}x{height}: {self.candidate.pix_fmt} には偶数のサイズが必要です。")
        self._gen = imageio_ffmpeg.write_frames(
            str(self.target.path),
            self.size,
            pix_fmt_in="rgba",
            pix_fmt_out=self.candidate.pix_fmt,
            fps=self.fps,
            quality=None,
            codec=self.candidate.encoder,
            macro_block_size=1,
            ffmpeg_log_level="error",
            output_params=[
                *self.candidate.encoder_params(),
                "-b:v",
                str(self.bitrate),
                "-g",
                str(self.gop_size),
                "-movflags",
                "+faststart",
            ],
        )
        self._gen.send(None)

    def add(self, frame: bytes, timestamp: float, duration: float, key_frame: bool = False) -> None:
        if self._gen is None:
            raise RuntimeError("start() を先に呼んでください。")
        index = self.frames_written
        if abs(timestamp - index / self.fps) > 1e-6 or abs(duration - 1.0 / self.fps) > 1e-6:
            raise ValueError(f"frame {index}: timestamp {timestamp:.4f}s does not match {self.fps}fps track")
        if key_frame != (index % self.gop_size == 0):
            raise ValueError(f"frame {index}: key frames are fixed at GOP boundaries ({self.gop_size})")
        self._gen.send(frame)
        if key_frame:
            self.key_frames.append(timestamp)
        self.frames_written += 1

    def finalize(self) -> bytes:
        self.close()
        return self.target.collect()

    def close(self) -> None:
        """ffmpegの入力を閉じて終了を待つ。二度目以降は何もしない。"""
        gen, self._gen = self._gen, None
        if gen is not None:
            gen.close()


class DirectMuxStrategy:
    """フレームを直接トラックへ追加する方式。対応コーデック不明時は既定でH.264 Baselineを使う。"""

    name = "direct"

    def __init__(
        self,
        probe: CapabilityProbe | None = None,
        options: VideoOptions | None = None,
        writer_factory: Callable[..., VideoTrackWriter] = VideoTrackWriter,
    ) -> None:
        self.probe = probe or default_probe()
        self.options = options or VideoOptions()
        self._writer_factory = writer_factory

    async def encode_video(self, surface: RasterSurface) -> EncodedContainer:
        opts = self.options
        fallback = H264_BASELINE if opts.fallback_to_baseline else None
        candidate = await negotiate_codec(
            opts.candidates, self.probe, surface.width, surface.height, fallback=fallback
        )

        total_frames = max(1, int(opts.fps * opts.duration_s))
        frame_duration = 1.0 / opts.fps
        frame = surface.tobytes()
        target = BufferTarget()
        writer = self._writer_factory(target, candidate, surface.size, opts.fps, opts.bitrate, gop_size=total_frames)
        try:
            await asyncio.to_thread(writer.start)
            for index in range(total_frames):
                timestamp = index * frame_duration
                await asyncio.to_thread(writer.add, frame, timestamp, frame_duration, index == 0)
            data = await asyncio.to_thread(writer.finalize)
        except Exception as exc:
            raise EncodeError(
                f"動画のエンコードに失敗しました。サイズ: {surface.width}x{surface.height}: {exc}"
            ) from exc
        finally:
            await asyncio.to_thread(writer.close)
            target.cleanup()

        if not data:
            raise EmptyEncodeError(f"出力バッファを取得できませんでした。サイズ: {surface.width}x{surface.height}")
        return EncodedContainer(data=data, media_type=MP4_MEDIA_TYPE, suffix=MP4_SUFFIX)


# --- 方式の選択 ---
class VideoStrategyName(str, Enum):
    CAPTURE = "capture"
    DIRECT = "direct"


VideoStrategy = Union[CaptureRecordStrategy, DirectMuxStrategy]


def make_video_strategy(
    name: VideoStrategyName | str = VideoStrategyName.DIRECT,
    probe: CapabilityProbe | None = None,
    options: VideoOptions | None = None,
    timer: StopTimer | None = None,
) -> VideoStrategy:
    """名前から方式を組み立てる。どちらも継承ではなく同じ encode_video 契約を持つ。"""
    name = VideoStrategyName(name)
    if name is VideoStrategyName.CAPTURE:
        return CaptureRecordStrategy(probe=probe, options=options, timer=timer)
    return DirectMuxStrategy(probe=probe, options=options)
