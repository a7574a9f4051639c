"""
Shared fixtures: an in-memory engine and helpers to wire an orchestrator.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from shotclip.models.shot import Shot, SourceVideo
from shotclip.services.catalog import ClipCatalog
from shotclip.services.clip_extractor import ClipExtractor
from shotclip.services.engine import EngineVariant, TranscoderHandle
from shotclip.services.events import EventBus
from shotclip.services.orchestrator import ClipOrchestrator
from shotclip.services.publisher import ArtifactPublisher, NamingContext
from shotclip.services.storage import LocalObjectStorage
from shotclip.utils.exceptions import FFmpegError

SOURCE_BYTES = b"\x00\x00\x00\x18ftypmp42fake-source-video"
CLIP_BYTES = b"\x00\x00\x00\x18ftypisomfake-clip"


class FakeEngine:
    """In-memory stand-in for FFmpegEngine that records every exec call."""

    def __init__(
        self,
        name="multi-thread",
        fail_copy=False,
        fail_reencode=False,
        empty_copy_output=False,
        exec_delay=0.0,
        output=CLIP_BYTES
    ):
        self.variant = EngineVariant(name, "ffmpeg", 0)
        self.fail_copy = fail_copy
        self.fail_reencode = fail_reencode
        self.empty_copy_output = empty_copy_output
        self.exec_delay = exec_delay
        self.output = output
        self.files = {}
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.torn_down = False
        self._lock = None

    @property
    def name(self):
        return self.variant.name

    @property
    def ready(self):
        return not self.torn_down

    @property
    def lock(self):
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def write_file(self, name, data):
        self.files[name] = bytes(data)

    async def read_file(self, name):
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    async def delete_file(self, name, missing_ok=True):
        if name not in self.files and not missing_ok:
            raise FileNotFoundError(name)
        self.files.pop(name, None)

    def file_size(self, name):
        return len(self.files.get(name, b""))

    def list_files(self):
        return sorted(self.files)

    async def exec(self, args, duration=None, progress_callback=None):
        self.calls.append(list(args))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.exec_delay:
                await asyncio.sleep(self.exec_delay)
            copy_mode = "copy" in args
            if copy_mode and self.fail_copy:
                raise FFmpegError("stream copy failed", command=" ".join(args), stderr="copy stderr")
            if not copy_mode and self.fail_reencode:
                raise FFmpegError("re-encode failed", command=" ".join(args), stderr="reencode stderr")
            if progress_callback:
                progress_callback(0.5)
                progress_callback(1.0)
            self.files[args[-1]] = b"" if copy_mode and self.empty_copy_output else self.output
        finally:
            self.active -= 1

    def teardown(self):
        self.torn_down = True
        self.files.clear()


class FakeLoader:
    """Engine loader that counts loads and fails for the named variants."""

    def __init__(self, engine=None, failing=(), delay=0.0):
        self.engine = engine
        self.failing = set(failing)
        self.delay = delay
        self.calls = []

    async def __call__(self, variant):
        self.calls.append(variant.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if variant.name in self.failing:
            raise FFmpegError(f"{variant.name} cannot start")
        if self.engine is None:
            return FakeEngine(name=variant.name)
        self.engine.variant = EngineVariant(variant.name, variant.binary, variant.threads)
        return self.engine


VARIANTS = [
    EngineVariant("multi-thread", "ffmpeg", 0),
    EngineVariant("single-thread", "ffmpeg", 1),
]


def make_handle(loader, max_attempts=1, events=None):
    return TranscoderHandle(list(VARIANTS), loader=loader, max_attempts=max_attempts, events=events)


def make_orchestrator(tmp_path, engine=None, loader=None, storage=None, max_pending=50, events=None):
    """Orchestrator over a fake engine, local storage and a SQLite catalog under tmp_path"""
    loader = loader or FakeLoader(engine or FakeEngine())
    storage = storage or LocalObjectStorage(str(tmp_path / "store"))
    return ClipOrchestrator(
        transcoder=make_handle(loader),
        extractor=ClipExtractor(),
        publisher=ArtifactPublisher(storage),
        catalog=ClipCatalog(str(tmp_path / "data" / "clips.db")),
        events=events or EventBus(),
        max_pending=max_pending,
    )


def make_source(tmp_path, name="source.mp4", data=SOURCE_BYTES):
    path = tmp_path / name
    path.write_bytes(data)
    return SourceVideo(ref=str(path), title=name, project_id="proj_1")


def make_shot(shot_id="shot_1", timestamp="00:15", duration="12s"):
    return Shot(
        id=shot_id,
        timestamp=timestamp,
        duration=duration,
        description="Key moment",
        score=90,
        tags=["#viral", "#shorts"],
    )


def make_context(**overrides):
    values = dict(
        shot_id="shot_1",
        timestamp="01:05",
        start_seconds=65,
        duration_seconds=12,
        description="Key moment",
        score=90,
        tags=["#viral", "#shorts"],
        source_ref="/videos/source.mp4",
        project_id="proj_1",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return NamingContext(**values)


@pytest.fixture
def fake_engine():
    return FakeEngine()
