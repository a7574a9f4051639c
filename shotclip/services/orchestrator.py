"""
Clip Orchestrator
Turns (shot, source) requests into published clips: engine -> extract -> publish.
"""

import asyncio
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from ..config import Settings
from ..models.clip import Clip
from ..models.job import ClipJob, ClipJobState, TERMINAL_STATES
from ..models.shot import Shot, SourceVideo
from ..utils.exceptions import (
    ClipNotFoundError,
    InvalidRangeError,
    JobCancelledError,
    JobNotFoundError,
    JobTimeoutError,
    QueueFullError,
    ShotClipError,
    SourceNotFoundError,
)
from ..utils.logger import get_logger
from ..utils.timecode import parse_duration, parse_timestamp
from .catalog import ClipCatalog
from .clip_extractor import ClipExtractor
from .engine import TranscoderHandle
from .events import EventBus
from .publisher import ArtifactPublisher, NamingContext
from .storage import create_storage

logger = get_logger()

# Share of overall job progress given to each stage
_ENGINE_SHARE = 5
_EXTRACT_SHARE = 80


def compute_fingerprint(shot_id: str, source_ref: str) -> str:
    """Stable dedup key for a shot of a given source"""
    return hashlib.sha256(f"{shot_id}\0{source_ref}".encode("utf-8")).hexdigest()[:32]


class ClipOrchestrator:
    """Facade over TranscoderHandle, ClipExtractor and ArtifactPublisher.

    At most one non-terminal job exists per fingerprint; repeated requests
    attach to it. Failures are recorded on the job and never retried here.
    """

    def __init__(
        self,
        transcoder: TranscoderHandle,
        extractor: ClipExtractor,
        publisher: ArtifactPublisher,
        catalog: ClipCatalog,
        events: Optional[EventBus] = None,
        max_pending: int = 50
    ):
        self.transcoder = transcoder
        self.extractor = extractor
        self.publisher = publisher
        self.catalog = catalog
        self.events = events or EventBus()
        self.max_pending = max(1, max_pending)

        self._jobs: Dict[str, ClipJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running: Set[asyncio.Task] = set()
        # Output of a cancelled attempt, kept for the job that replaced it
        self._handoff: Dict[str, bytes] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, preload_engine: bool = False):
        self.events.bind_loop(asyncio.get_running_loop())
        await self.catalog.initialize()
        if preload_engine:
            try:
                await self.transcoder.start()
            except ShotClipError as exc:
                logger.error(f"Engine preload failed: {exc.message}")

    async def stop(self, grace_seconds: float = 30.0):
        tasks = list(self._running)
        if tasks:
            logger.info(f"Waiting for {len(tasks)} clip jobs to finish...")
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._handoff.clear()
        await self.transcoder.teardown()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if not job.is_terminal)

    async def request_clip(self, shot: Shot, source: SourceVideo) -> ClipJob:
        """
        Start (or attach to) the clip job for a shot

        Returns immediately; the job completes in the background.

        Raises:
            InvalidTimestampError: shot.timestamp is not MM:SS / H:MM:SS
            InvalidRangeError: the parsed duration is not positive
            QueueFullError: too many jobs in flight
        """
        start_seconds = parse_timestamp(shot.timestamp)
        duration_seconds = parse_duration(shot.duration)
        if duration_seconds <= 0:
            raise InvalidRangeError(start_seconds, duration_seconds)

        fingerprint = compute_fingerprint(shot.id, source.ref)
        existing = self._jobs.get(fingerprint)
        if existing is not None and not existing.is_terminal:
            logger.info(f"Attaching to in-flight clip job {fingerprint}")
            return existing

        if self.active_count >= self.max_pending:
            raise QueueFullError(self.max_pending)

        # A cancelled or timed-out attempt may still be running; the new job queues behind it
        previous = self._tasks.get(fingerprint)
        if previous is not None and previous.done():
            previous = None

        job = ClipJob(fingerprint=fingerprint, shot_id=shot.id, source_ref=source.ref)
        self._jobs[fingerprint] = job
        task = asyncio.create_task(
            self._run(job, shot, source, start_seconds, duration_seconds, previous)
        )
        self._tasks[fingerprint] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        logger.info(f"Clip job {fingerprint} queued: shot {shot.id} at {shot.timestamp} for {duration_seconds}s")
        self._emit(job)
        return job

    def get_job(self, fingerprint: str) -> ClipJob:
        job = self._jobs.get(fingerprint)
        if job is None:
            raise JobNotFoundError(fingerprint)
        return job

    def get_clip(self, fingerprint: str) -> Union[Clip, ClipJob]:
        """The published Clip once done; otherwise the pending or failed job"""
        job = self.get_job(fingerprint)
        if job.state == ClipJobState.DONE and job.result is not None:
            return job.result
        return job

    def list_jobs(self) -> List[ClipJob]:
        return sorted(self._jobs.values(), key=lambda item: item.created_at, reverse=True)

    def list_clips(self) -> List[Clip]:
        return self.catalog.list_clips()

    def get_catalog_clip(self, clip_id: str) -> Clip:
        clip = self.catalog.get(clip_id)
        if clip is None:
            raise ClipNotFoundError(clip_id)
        return clip

    def cancel(self, fingerprint: str) -> ClipJob:
        """Mark a job cancelled; it fails once its current stage completes"""
        job = self.get_job(fingerprint)
        if job.is_terminal or job.cancel_requested:
            return job
        job.cancel_requested = True
        self._update(job, message="Cancelling after current stage...")
        logger.info(f"Cancellation requested for clip job {fingerprint}")
        return job

    async def wait(self, fingerprint: str, timeout: Optional[float] = None) -> ClipJob:
        """Wait for a job; on timeout the job fails with JOB_TIMEOUT"""
        job = self.get_job(fingerprint)
        task = self._tasks.get(fingerprint)
        if task is None or job.is_terminal:
            return job

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            job.cancel_requested = True
            self._fail(job, JobTimeoutError(fingerprint, timeout))
        return job

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self,
        job: ClipJob,
        shot: Shot,
        source: SourceVideo,
        start_seconds: int,
        duration_seconds: int,
        previous: Optional[asyncio.Task] = None
    ):
        fingerprint = job.fingerprint
        try:
            data = None
            if previous is not None:
                self._update(job, message="Waiting for previous attempt to stop...")
                await asyncio.wait({previous})
                data = self._handoff.pop(fingerprint, None)
                self._checkpoint(job)

            if data is not None:
                logger.info(f"Clip job {fingerprint} reusing output of a cancelled attempt")
                self._transition(job, ClipJobState.EXTRACTING, "Reusing extracted clip...", progress=_ENGINE_SHARE + _EXTRACT_SHARE)
            else:
                data = await self._extract(job, source, start_seconds, duration_seconds)
            self._checkpoint(job)

            self._transition(job, ClipJobState.PUBLISHING, "Uploading clip...", progress=_ENGINE_SHARE + _EXTRACT_SHARE)
            context = NamingContext(
                shot_id=shot.id,
                timestamp=shot.timestamp,
                start_seconds=start_seconds,
                duration_seconds=duration_seconds,
                description=shot.description,
                score=shot.score,
                tags=list(shot.tags),
                source_ref=source.ref,
                project_id=source.project_id,
            )
            artifact = await self.publisher.publish(data, context)
            self._checkpoint(job)

            clip = Clip(
                original_shot_id=shot.id,
                timestamp=shot.timestamp,
                duration=f"{duration_seconds}s",
                storage_url=artifact.url,
                metadata=artifact.metadata,
                created_at=context.created_at,
            )
            await self.catalog.append(clip)
            job.result = clip
            self._transition(job, ClipJobState.DONE, "Clip ready", progress=100)

            self.events.publish({"type": "clip_ready", "data": clip.model_dump(mode="json", by_alias=True)})
            self.events.log(f"Clip ready: {shot.timestamp} ({duration_seconds}s) -> {artifact.url}")
            logger.info(f"Clip job {fingerprint} done: {clip.id}")

        except ShotClipError as exc:
            self._fail(job, exc)
        except asyncio.CancelledError:
            self._fail(job, JobCancelledError(fingerprint))
            raise
        except Exception as exc:
            logger.exception(f"Clip job {fingerprint} failed unexpectedly: {exc}")
            self._fail(job, ShotClipError(
                f"Unexpected error: {exc}",
                code="INTERNAL_ERROR",
                recoverable=True,
                recovery_hint="Check the server logs for details.",
            ))
        finally:
            if self._tasks.get(fingerprint) is asyncio.current_task():
                self._tasks.pop(fingerprint, None)

    async def _extract(self, job: ClipJob, source: SourceVideo, start_seconds: int, duration_seconds: int) -> bytes:
        self._update(job, message="Loading engine...")
        engine = await self.transcoder.acquire(lambda message: self._update(job, message=message))
        self._checkpoint(job)

        self._transition(job, ClipJobState.EXTRACTING, "Reading source video...", progress=_ENGINE_SHARE)
        source_bytes = await self._read_source(source)

        def extract_progress(percent: float, message: str):
            self._update(job, progress=_ENGINE_SHARE + percent * _EXTRACT_SHARE / 100, message=message)

        data = await self.extractor.extract(
            engine,
            source_bytes,
            start_seconds,
            duration_seconds,
            progress_callback=extract_progress,
            source_name=source.title,
            checkpoint=lambda: self._checkpoint(job),
        )

        successor = self._jobs.get(job.fingerprint)
        if (job.cancel_requested or job.is_terminal) and successor is not job and not successor.is_terminal:
            self._handoff[job.fingerprint] = data
        return data

    async def _read_source(self, source: SourceVideo) -> bytes:
        path = Path(source.ref)
        if not path.is_file():
            raise SourceNotFoundError(source.ref)
        return await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)

    def _checkpoint(self, job: ClipJob):
        """Stop between stages when the job was cancelled or already failed"""
        if job.cancel_requested or job.is_terminal:
            raise JobCancelledError(job.fingerprint)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _emit(self, job: ClipJob):
        state = job.state.value if isinstance(job.state, ClipJobState) else job.state
        self.events.progress(job.fingerprint, state, job.progress, job.progress_message)

    def _update(self, job: ClipJob, progress: Optional[float] = None, message: Optional[str] = None):
        if job.is_terminal:
            return
        if progress is not None:
            job.progress = max(job.progress, min(100.0, max(0.0, progress)))
        if message is not None:
            job.progress_message = message
        job.updated_at = datetime.now(timezone.utc)
        self._emit(job)

    def _transition(self, job: ClipJob, state: ClipJobState, message: str, progress: Optional[float] = None) -> bool:
        if not job.can_transition(state):
            logger.debug(f"Ignoring transition {job.state} -> {state.value} for {job.fingerprint}")
            return False

        job.state = state
        job.progress_message = message
        if progress is not None:
            job.progress = max(job.progress, progress)
        job.updated_at = datetime.now(timezone.utc)
        if state in TERMINAL_STATES:
            job.completed_at = job.updated_at
        self._emit(job)
        return True

    def _fail(self, job: ClipJob, exc: ShotClipError):
        if job.is_terminal:
            return
        job.error = exc.to_dict()
        self._transition(job, ClipJobState.FAILED, exc.message)
        logger.error(f"Clip job {job.fingerprint} failed [{exc.code}]: {exc.message}")
        self.events.log(f"[ERROR] Clip failed: {exc.message}", level="ERROR")


def build_orchestrator(settings: Settings, events: Optional[EventBus] = None) -> ClipOrchestrator:
    """Wire the default components from settings"""
    events = events or EventBus(settings.event_queue_size)
    storage = create_storage(settings)
    return ClipOrchestrator(
        transcoder=TranscoderHandle.from_settings(settings, events),
        extractor=ClipExtractor(),
        publisher=ArtifactPublisher.from_settings(storage, settings),
        catalog=ClipCatalog(str(Path(settings.data_dir) / "clips.db")),
        events=events,
        max_pending=settings.max_pending_jobs,
    )
