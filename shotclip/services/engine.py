"""
Transcoding Engine
FFmpeg engine instances and the shared handle that loads them exactly once.
"""

import asyncio
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from ..utils.exceptions import EngineLoadError, EngineNotReadyError, FFmpegError
from ..utils.logger import get_logger
from .events import EventBus

logger = get_logger()

RatioCallback = Callable[[float], None]
MessageCallback = Callable[[str], None]


@dataclass(frozen=True)
class EngineVariant:
    """One way of bringing up the engine"""
    name: str
    binary: str
    threads: int = 0  # 0 lets ffmpeg pick


class FFmpegEngine:
    """A loaded ffmpeg variant plus its private working storage.

    The engine is not safe for concurrent use; callers hold ``lock`` for the
    whole write/exec/read/cleanup sequence.
    """

    def __init__(self, variant: EngineVariant, workdir: Path):
        self.variant = variant
        self.workdir = Path(workdir)
        self.lock = asyncio.Lock()
        self._ready = True

    @property
    def name(self) -> str:
        return self.variant.name

    @property
    def ready(self) -> bool:
        return self._ready

    @classmethod
    async def load(cls, variant: EngineVariant, work_root: str = "temp") -> "FFmpegEngine":
        """Verify the variant's binary and create its working storage"""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, cls._check_binary, variant)

        root = Path(work_root)
        root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"engine_{variant.name}_", dir=str(root)))
        logger.info(f"Engine '{variant.name}' loaded ({variant.binary}, threads={variant.threads})")
        return cls(variant, workdir)

    @staticmethod
    def _check_binary(variant: EngineVariant):
        if variant.threads != 1 and (os.cpu_count() or 1) < 2:
            raise FFmpegError(f"Variant '{variant.name}' needs more than one CPU")

        try:
            result = subprocess.run(
                [variant.binary, "-hide_banner", "-version"],
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            raise FFmpegError(f"ffmpeg binary not found: {variant.binary}", command=variant.binary)

        if result.returncode != 0:
            raise FFmpegError(
                f"ffmpeg binary is not usable: {variant.binary}",
                command=variant.binary,
                stderr=result.stderr
            )

    # ------------------------------------------------------------------
    # Working storage
    # ------------------------------------------------------------------

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise ValueError(f"Invalid working file name: {name!r}")
        return self.workdir / name

    async def write_file(self, name: str, data: bytes):
        path = self._path(name)
        await asyncio.get_running_loop().run_in_executor(None, path.write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        path = self._path(name)
        return await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)

    async def delete_file(self, name: str, missing_ok: bool = True):
        path = self._path(name)
        await asyncio.get_running_loop().run_in_executor(
            None, lambda: path.unlink(missing_ok=missing_ok)
        )

    def file_size(self, name: str) -> int:
        path = self._path(name)
        return path.stat().st_size if path.exists() else 0

    def list_files(self) -> List[str]:
        if not self.workdir.exists():
            return []
        return sorted(entry.name for entry in self.workdir.iterdir())

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def exec(
        self,
        args: List[str],
        duration: Optional[float] = None,
        progress_callback: Optional[RatioCallback] = None
    ):
        """Run ffmpeg in the working storage; the last arg is the output name"""
        if not self._ready:
            raise EngineNotReadyError("torn down")

        cmd = [
            self.variant.binary, "-hide_banner", "-y",
            *args[:-1],
            "-threads", str(self.variant.threads),
            args[-1]
        ]

        loop = asyncio.get_running_loop()
        report: Optional[RatioCallback] = None
        if progress_callback:
            def report(ratio: float):
                loop.call_soon_threadsafe(progress_callback, ratio)

        await loop.run_in_executor(None, self._run_ffmpeg, cmd, duration, report)

    def _run_ffmpeg(
        self,
        cmd: List[str],
        duration: Optional[float],
        progress_callback: Optional[RatioCallback]
    ):
        """Execute FFmpeg command with progress tracking"""
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(self.workdir),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
        except FileNotFoundError:
            raise FFmpegError(f"ffmpeg binary not found: {cmd[0]}", command=" ".join(cmd))

        # FFmpeg reports progress on stderr
        stderr_output = []
        for line in process.stderr:
            stderr_output.append(line)

            if "time=" in line and progress_callback and duration:
                try:
                    time_str = line.split("time=")[1].split()[0]
                    parts = time_str.split(":")
                    current_time = float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])
                    progress_callback(min(1.0, max(0.0, current_time / duration)))
                except (IndexError, ValueError):
                    pass

        process.wait()

        if process.returncode != 0:
            error_msg = "".join(stderr_output[-10:])
            logger.debug(f"FFmpeg exited with {process.returncode}: {error_msg}")
            raise FFmpegError(
                f"FFmpeg exited with code {process.returncode}",
                command=" ".join(cmd),
                stderr=error_msg
            )

    def teardown(self):
        """Drop the working storage; the engine is unusable afterwards"""
        self._ready = False
        shutil.rmtree(self.workdir, ignore_errors=True)


class TranscoderState(str, Enum):
    """Lifecycle of the shared engine"""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


EngineLoader = Callable[[EngineVariant], Awaitable[FFmpegEngine]]


class TranscoderHandle:
    """Owns the single shared engine instance.

    Concurrent ``acquire`` calls during a load all wait on the same load
    task, so the variant sequence runs at most once per attempt. A failed
    load is retried by later ``acquire`` calls until ``max_attempts`` loads
    have run; after that the failure is permanent until ``reset``.
    """

    def __init__(
        self,
        variants: List[EngineVariant],
        loader: Optional[EngineLoader] = None,
        work_root: str = "temp",
        max_attempts: int = 1,
        events: Optional[EventBus] = None
    ):
        if not variants:
            raise ValueError("At least one engine variant is required")

        self._variants = list(variants)
        self._work_root = work_root
        self._loader: EngineLoader = loader or (lambda variant: FFmpegEngine.load(variant, self._work_root))
        self._max_attempts = max(1, max_attempts)
        self._events = events

        self._state = TranscoderState.UNINITIALIZED
        self._engine: Optional[FFmpegEngine] = None
        self._error: Optional[EngineLoadError] = None
        self._attempts = 0
        self._load_task: Optional[asyncio.Task] = None
        self._listeners: List[MessageCallback] = []

    @classmethod
    def from_settings(cls, settings, events: Optional[EventBus] = None) -> "TranscoderHandle":
        variants = [
            EngineVariant("multi-thread", settings.ffmpeg_binary, settings.ffmpeg_threads),
            EngineVariant("single-thread", settings.ffmpeg_fallback_binary or settings.ffmpeg_binary, 1),
        ]
        return cls(
            variants,
            work_root=settings.temp_dir,
            max_attempts=settings.engine_max_load_attempts,
            events=events,
        )

    @property
    def state(self) -> TranscoderState:
        return self._state

    @property
    def engine(self) -> Optional[FFmpegEngine]:
        return self._engine

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_error(self) -> Optional[EngineLoadError]:
        return self._error

    def describe(self) -> Dict[str, object]:
        return {
            "state": self._state.value,
            "variant": self._engine.name if self._engine else None,
            "attempts": self._attempts,
            "max_attempts": self._max_attempts,
            "error": self._error.message if self._error else None,
        }

    async def acquire(self, progress_callback: Optional[MessageCallback] = None) -> FFmpegEngine:
        """Return the ready engine, loading it first if needed"""
        if self._state == TranscoderState.READY and self._engine is not None:
            return self._engine

        if self._load_task is None:
            if self._state == TranscoderState.FAILED and self._attempts >= self._max_attempts:
                raise self._error
            self._listeners = []
            self._load_task = asyncio.ensure_future(self._load())
            self._load_task.add_done_callback(self._load_finished)

        if progress_callback:
            self._listeners.append(progress_callback)

        # A cancelled waiter must not cancel the shared load
        return await asyncio.shield(self._load_task)

    def _load_finished(self, task: asyncio.Task):
        self._load_task = None
        self._listeners = []
        if not task.cancelled():
            task.exception()

    def _notify(self, message: str):
        logger.info(message)
        for callback in list(self._listeners):
            try:
                callback(message)
            except Exception as exc:
                logger.warning(f"Engine progress callback failed: {exc}")
        if self._events:
            self._events.log(message)

    async def _load(self) -> FFmpegEngine:
        self._state = TranscoderState.LOADING
        self._attempts += 1
        self._notify("Loading engine (this may take a moment)...")

        errors: Dict[str, str] = {}
        try:
            for variant in self._variants:
                try:
                    engine = await self._loader(variant)
                except Exception as exc:
                    errors[variant.name] = str(exc)
                    logger.warning(f"Engine variant '{variant.name}' failed to load: {exc}")
                    continue

                self._engine = engine
                self._error = None
                self._state = TranscoderState.READY
                self._notify("Engine ready!")
                return engine
        except asyncio.CancelledError:
            self._state = TranscoderState.UNINITIALIZED
            raise

        self._error = EngineLoadError(
            "all engine variants failed to load",
            attempts=self._attempts,
            variants=errors,
        )
        self._state = TranscoderState.FAILED
        remaining = self._max_attempts - self._attempts
        self._notify(
            f"Engine failed to load ({remaining} retries left)"
            if remaining > 0 else "Engine failed to load"
        )
        raise self._error

    def reset(self):
        """Re-arm a failed handle so the next acquire loads again"""
        if self._state != TranscoderState.FAILED:
            return
        self._state = TranscoderState.UNINITIALIZED
        self._attempts = 0
        self._error = None
        logger.info("Engine handle reset")

    async def start(self) -> FFmpegEngine:
        """Explicit initialization"""
        return await self.acquire()

    async def teardown(self):
        """Release the engine and its working storage"""
        task = self._load_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._engine is not None:
            engine = self._engine
            async with engine.lock:
                await asyncio.get_running_loop().run_in_executor(None, engine.teardown)
            logger.info(f"Engine '{engine.name}' torn down")

        self._engine = None
        self._error = None
        self._attempts = 0
        self._state = TranscoderState.UNINITIALIZED
