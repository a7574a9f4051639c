"""
Clip Extractor
Cuts a time window out of a source video: stream copy first, re-encode on failure.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..utils.exceptions import (
    EngineNotReadyError,
    ExtractionFailedError,
    FFmpegError,
    InvalidRangeError,
)
from ..utils.logger import get_logger
from .engine import FFmpegEngine

logger = get_logger()

ProgressCallback = Callable[[float, str], None]

OUTPUT_NAME = "output.mp4"


@dataclass
class RenderConfig:
    """Encoder settings for the re-encode path"""
    codec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100
    audio_channels: int = 2


def input_name_for(source_name: Optional[str]) -> str:
    """Fixed working-storage name for the source, keeping its extension"""
    ext = Path(source_name or "").suffix.lstrip(".").lower()
    if not ext.isalnum():
        ext = "mp4"
    return f"input.{ext}"


class ClipExtractor:
    """Produces MP4 bytes for [start, start + duration) of a source video"""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()

    def build_copy_command(self, input_name: str, start: float, duration: float) -> List[str]:
        """Trim without re-encoding"""
        return [
            "-ss", str(start),
            "-i", input_name,
            "-t", str(duration),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            OUTPUT_NAME
        ]

    def build_reencode_command(self, input_name: str, start: float, duration: float) -> List[str]:
        """Trim with H.264/AAC re-encode"""
        return [
            "-ss", str(start),
            "-i", input_name,
            "-t", str(duration),
            "-c:v", self.config.codec,
            "-preset", self.config.preset,
            "-crf", str(self.config.crf),
            "-c:a", self.config.audio_codec,
            "-b:a", self.config.audio_bitrate,
            "-ar", str(self.config.audio_sample_rate),
            "-ac", str(self.config.audio_channels),
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            OUTPUT_NAME
        ]

    async def extract(
        self,
        engine: FFmpegEngine,
        source_bytes: bytes,
        start_seconds: float,
        duration_seconds: float,
        progress_callback: Optional[ProgressCallback] = None,
        source_name: str = "input.mp4",
        checkpoint: Optional[Callable[[], None]] = None
    ) -> bytes:
        """
        Cut a clip from source bytes

        Args:
            engine: A ready engine from TranscoderHandle.acquire
            source_bytes: Complete source video
            start_seconds: Window start
            duration_seconds: Window length
            progress_callback: Optional (percent, message) callback
            source_name: Original file name; only its extension is used
            checkpoint: Called once the engine lock is held; raising aborts the
                extraction before any ffmpeg pass runs

        Returns:
            The encoded MP4 bytes
        """
        if start_seconds < 0 or duration_seconds <= 0:
            raise InvalidRangeError(start_seconds, duration_seconds)
        if engine is None or not engine.ready:
            raise EngineNotReadyError("uninitialized" if engine is None else "torn down")

        def report(percent: float, message: str):
            if progress_callback:
                progress_callback(percent, message)

        def engine_progress(ratio: float):
            percent = round(ratio * 100)
            report(percent, f"Processing: {percent}%")

        input_name = input_name_for(source_name)

        report(0, "Waiting for engine...")
        async with engine.lock:
            if checkpoint:
                checkpoint()
            logger.info(
                f"Creating clip: {start_seconds}s to {start_seconds + duration_seconds}s "
                f"({duration_seconds}s) with engine '{engine.name}'"
            )
            try:
                report(0, "Reading video file...")
                await engine.write_file(input_name, source_bytes)

                report(0, "Cutting video with audio...")
                try:
                    await self._run(engine, self.build_copy_command(input_name, start_seconds, duration_seconds),
                                    duration_seconds, engine_progress)
                    strategy = "stream copy"
                except FFmpegError as fast_error:
                    logger.warning(f"Stream copy failed, re-encoding: {fast_error.message}")
                    report(0, "Trying alternative encoding...")
                    await engine.delete_file(OUTPUT_NAME)
                    try:
                        await self._run(engine, self.build_reencode_command(input_name, start_seconds, duration_seconds),
                                        duration_seconds, engine_progress)
                    except FFmpegError as fallback_error:
                        raise ExtractionFailedError(
                            "both stream copy and re-encode failed",
                            fast_path_error=fast_error.details.get("stderr") or fast_error.message,
                            fallback_error=fallback_error.details.get("stderr") or fallback_error.message,
                        ) from fallback_error
                    strategy = "re-encode"

                report(100, "Reading output...")
                data = await engine.read_file(OUTPUT_NAME)
            finally:
                for name in (input_name, OUTPUT_NAME):
                    try:
                        await engine.delete_file(name)
                    except OSError as exc:
                        logger.warning(f"Cleanup of working file {name} failed: {exc}")

        logger.info(f"Clip created ({strategy}): {len(data) / 1024 / 1024:.2f} MB")
        report(100, "Done!")
        return data

    async def _run(
        self,
        engine: FFmpegEngine,
        args: List[str],
        duration: float,
        progress: Callable[[float], None]
    ):
        await engine.exec(args, duration=duration, progress_callback=progress)

        # A missing or zero-byte output counts as a failed pass
        if not engine.file_size(OUTPUT_NAME):
            raise FFmpegError("FFmpeg produced no output", command=" ".join(args))
