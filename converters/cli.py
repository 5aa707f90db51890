"""コマンドライン: PNG/JPEGをGIFまたはMP4へ変換して書き出す。"""

from __future__ import annotations

from pathlib import Path
import argparse
import asyncio
import logging
import sys

from . import (
    CODEC_CANDIDATES,
    ConversionError,
    ConversionFormat,
    Converter,
    FfmpegCapabilityProbe,
    GifOptions,
    VideoOptions,
    VideoStrategyName,
    is_png_or_jpg,
    make_video_strategy,
)
from .settings import DEFAULT_SETTINGS_PATH, Settings, load_settings, save_settings


def _setup_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="still2loop",
        description="Convert a PNG/JPEG into a looping GIF or a short MP4 clip.",
    )
    p.add_argument("inputs", nargs="*", type=Path, help="PNG/JPEG files to convert.")
    p.add_argument(
        "--format",
        choices=[f.value for f in ConversionFormat],
        default=None,
        help="Output format. Default: the saved preference.",
    )
    p.add_argument(
        "--strategy",
        choices=[s.value for s in VideoStrategyName],
        default=VideoStrategyName.DIRECT.value,
        help="Video encoding strategy.",
    )
    p.add_argument("--out-dir", type=Path, default=None, help="Output directory (default: next to input).")
    p.add_argument("--settings", type=Path, default=DEFAULT_SETTINGS_PATH, help="Settings JSON file.")
    p.add_argument("--save-format", action="store_true", help="Store --format as the new preference.")
    p.add_argument("--no-fallback", action="store_true", help="Fail instead of assuming H.264 Baseline.")
    p.add_argument("--gif-delay-ms", type=int, default=GifOptions().delay_ms)
    p.add_argument("--probe", action="store_true", help="List which codecs the local ffmpeg can encode.")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


async def _print_probe() -> None:
    probe = FfmpegCapabilityProbe()
    for candidate in CODEC_CANDIDATES:
        try:
            supported = await probe.is_supported(candidate, 1920, 1080)
        except Exception as exc:  # pragma: no cover - 環境依存
            supported = False
            logging.getLogger(__name__).debug("probe error: %s", exc)
        print(f"{candidate.identifier:18} {candidate.encoder:10} {'yes' if supported else 'no'}")


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    _setup_logging(args.verbose)

    if args.probe:
        asyncio.run(_print_probe())
        return 0

    settings = load_settings(args.settings)
    fmt = ConversionFormat(args.format) if args.format else settings.default_format
    if args.save_format and args.format:
        save_settings(Settings(default_format=fmt), args.settings)

    strategy = make_video_strategy(
        args.strategy,
        options=VideoOptions(fallback_to_baseline=not args.no_fallback),
    )
    converter = Converter(video_strategy=strategy, gif_options=GifOptions(delay_ms=args.gif_delay_ms))

    status = 0
    for path in args.inputs:
        if not is_png_or_jpg(path.name):
            print(f"skip (not PNG/JPEG): {path}", file=sys.stderr)
            continue
        try:
            result = converter.convert_sync(path.read_bytes(), path.name, fmt)
        except (ConversionError, OSError) as exc:
            print(f"{path}: {exc}", file=sys.stderr)
            status = 2
            continue
        out_dir = args.out_dir or path.parent
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / result.name
        out_path.write_bytes(result.data)
        print(f"WROTE {out_path} ({len(result.data)} bytes, {result.media_type})")
    return status


if __name__ == "__main__":
    raise SystemExit(main())
