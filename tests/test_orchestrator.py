"""
Tests for ClipOrchestrator: dedup, pipeline states, failures, cancellation and timeouts.
"""
import asyncio

import pytest

from shotclip.models import Clip, ClipJob, ClipJobState
from shotclip.services.catalog import ClipCatalog
from shotclip.services.events import EventBus
from shotclip.services.orchestrator import compute_fingerprint
from shotclip.services.storage import LocalObjectStorage
from shotclip.utils.exceptions import (
    InvalidRangeError,
    InvalidTimestampError,
    JobNotFoundError,
    QueueFullError,
    UploadFailedError,
)

from conftest import CLIP_BYTES, FakeEngine, FakeLoader, make_orchestrator, make_shot, make_source


def _stored_files(tmp_path):
    root = tmp_path / "store" / "clips"
    return sorted(path.name for path in root.iterdir()) if root.exists() else []


class FailingStorage(LocalObjectStorage):
    async def upload(self, path, data, content_type="application/octet-stream", cache_control=None, upsert=False):
        raise UploadFailedError("bucket unreachable", path=path, backend="local")


class TestFingerprint:

    def test_stable_and_distinct(self):
        assert compute_fingerprint("shot_1", "/a.mp4") == compute_fingerprint("shot_1", "/a.mp4")
        assert compute_fingerprint("shot_1", "/a.mp4") != compute_fingerprint("shot_1", "/b.mp4")
        assert compute_fingerprint("shot_1", "/a.mp4") != compute_fingerprint("shot_2", "/a.mp4")
        assert len(compute_fingerprint("shot_1", "/a.mp4")) == 32


class TestRequestClip:

    def test_done_flow(self, tmp_path):
        engine = FakeEngine()

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            assert job.state == ClipJobState.PENDING
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return orchestrator, job

        orchestrator, job = asyncio.run(scenario())
        assert job.state == ClipJobState.DONE
        assert job.progress == 100
        assert job.error is None
        assert job.completed_at is not None

        clip = orchestrator.get_clip(job.fingerprint)
        assert isinstance(clip, Clip)
        assert clip.original_shot_id == "shot_1"
        assert clip.duration == "12s"
        assert clip.metadata.start_time_seconds == 15
        assert clip.metadata.project_id == "proj_1"
        assert clip.storage_url.startswith("/output/clips/clip_00-15_12s_")

        files = _stored_files(tmp_path)
        assert len(files) == 1
        assert (tmp_path / "store" / "clips" / files[0]).read_bytes() == CLIP_BYTES
        assert orchestrator.list_clips() == [clip]
        assert orchestrator.get_catalog_clip(clip.id) == clip

    def test_duplicate_requests_share_one_job(self, tmp_path):
        engine = FakeEngine(exec_delay=0.02)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            source = make_source(tmp_path)
            jobs = await asyncio.gather(*(orchestrator.request_clip(make_shot(), source) for _ in range(5)))
            await orchestrator.wait(jobs[0].fingerprint, timeout=5)
            await orchestrator.stop()
            return orchestrator, jobs

        orchestrator, jobs = asyncio.run(scenario())
        assert all(job is jobs[0] for job in jobs)
        assert len(engine.calls) == 1
        assert len(_stored_files(tmp_path)) == 1
        assert len(orchestrator.list_clips()) == 1
        assert len(orchestrator.list_jobs()) == 1

    def test_distinct_shots_never_overlap_on_engine(self, tmp_path):
        engine = FakeEngine(exec_delay=0.02)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            source = make_source(tmp_path)
            shots = [make_shot(f"shot_{index}", f"00:{index * 10:02d}") for index in range(4)]
            jobs = [await orchestrator.request_clip(shot, source) for shot in shots]
            for job in jobs:
                await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return jobs

        jobs = asyncio.run(scenario())
        assert all(job.state == ClipJobState.DONE for job in jobs)
        assert engine.max_active == 1
        assert len(_stored_files(tmp_path)) == 4

    def test_invalid_timestamp_is_rejected_immediately(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path)
            await orchestrator.request_clip(make_shot(timestamp="fifteen"), make_source(tmp_path))

        with pytest.raises(InvalidTimestampError):
            asyncio.run(scenario())

    def test_zero_duration_is_rejected(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path)
            await orchestrator.request_clip(make_shot(duration="0s"), make_source(tmp_path))

        with pytest.raises(InvalidRangeError):
            asyncio.run(scenario())

    def test_queue_full(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=FakeEngine(exec_delay=0.05), max_pending=1)
            await orchestrator.start()
            source = make_source(tmp_path)
            first = await orchestrator.request_clip(make_shot("shot_1"), source)
            with pytest.raises(QueueFullError):
                await orchestrator.request_clip(make_shot("shot_2", "00:30"), source)
            again = await orchestrator.request_clip(make_shot("shot_1"), source)
            await orchestrator.stop()
            return first, again

        first, again = asyncio.run(scenario())
        assert first is again

    def test_unknown_fingerprint(self, tmp_path):
        orchestrator = make_orchestrator(tmp_path)
        with pytest.raises(JobNotFoundError):
            orchestrator.get_clip("missing")

    def test_pending_job_returned_before_done(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=FakeEngine(exec_delay=0.05))
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            pending = orchestrator.get_clip(job.fingerprint)
            await orchestrator.stop()
            return job, pending

        job, pending = asyncio.run(scenario())
        assert pending is job
        assert isinstance(pending, ClipJob)


class TestFailures:
    """Failures land on the job with their original error kind."""

    def _run_failing(self, tmp_path, **kwargs):
        source = kwargs.pop("source", None)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, **kwargs)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), source or make_source(tmp_path))
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return orchestrator, job

        return asyncio.run(scenario())

    def test_engine_load_failure(self, tmp_path):
        loader = FakeLoader(failing={"multi-thread", "single-thread"})
        orchestrator, job = self._run_failing(tmp_path, loader=loader)

        assert job.state == ClipJobState.FAILED
        assert job.error["error"] == "LOAD_ERROR"
        assert "engine unavailable" in job.error["message"].lower()
        assert orchestrator.get_clip(job.fingerprint) is job

    def test_extraction_failure(self, tmp_path):
        _, job = self._run_failing(tmp_path, engine=FakeEngine(fail_copy=True, fail_reencode=True))
        assert job.error["error"] == "EXTRACTION_FAILED"
        assert job.error["details"]["fallback_error"] == "reencode stderr"
        assert _stored_files(tmp_path) == []

    def test_upload_failure(self, tmp_path):
        orchestrator, job = self._run_failing(tmp_path, storage=FailingStorage(str(tmp_path / "store")))
        assert job.error["error"] == "UPLOAD_FAILED"
        assert orchestrator.list_clips() == []

    def test_missing_source_file(self, tmp_path):
        source = make_source(tmp_path)
        (tmp_path / "source.mp4").unlink()
        _, job = self._run_failing(tmp_path, source=source)
        assert job.error["error"] == "SOURCE_NOT_FOUND"

    def test_failed_job_can_be_requested_again(self, tmp_path):
        loader = FakeLoader(failing={"multi-thread", "single-thread"})

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, loader=loader)
            await orchestrator.start()
            source = make_source(tmp_path)
            first = await orchestrator.request_clip(make_shot(), source)
            await orchestrator.wait(first.fingerprint, timeout=5)
            second = await orchestrator.request_clip(make_shot(), source)
            await orchestrator.wait(second.fingerprint, timeout=5)
            await orchestrator.stop()
            return first, second

        first, second = asyncio.run(scenario())
        assert first is not second
        assert first.fingerprint == second.fingerprint
        assert second.state == ClipJobState.FAILED
        # the engine failure is sticky, so no second load ran
        assert loader.calls == ["multi-thread", "single-thread"]


class TestCancellation:

    def test_cancel_before_extraction(self, tmp_path):
        engine = FakeEngine()

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            orchestrator.cancel(job.fingerprint)
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return job

        job = asyncio.run(scenario())
        assert job.state == ClipJobState.FAILED
        assert job.error["error"] == "JOB_CANCELLED"
        assert engine.calls == []
        assert _stored_files(tmp_path) == []

    def test_cancel_during_extraction_discards_result(self, tmp_path):
        engine = FakeEngine(exec_delay=0.1)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            while not engine.calls:
                await asyncio.sleep(0.005)
            orchestrator.cancel(job.fingerprint)
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return orchestrator, job

        orchestrator, job = asyncio.run(scenario())
        assert job.error["error"] == "JOB_CANCELLED"
        assert job.result is None
        assert len(engine.calls) == 1
        assert _stored_files(tmp_path) == []
        assert orchestrator.list_clips() == []

    def test_cancel_terminal_job_is_noop(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            await orchestrator.wait(job.fingerprint, timeout=5)
            orchestrator.cancel(job.fingerprint)
            await orchestrator.stop()
            return job

        job = asyncio.run(scenario())
        assert job.state == ClipJobState.DONE
        assert not job.cancel_requested

    def test_wait_timeout_fails_job(self, tmp_path):
        engine = FakeEngine(exec_delay=0.3)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            await orchestrator.wait(job.fingerprint, timeout=0.05)
            state_after_timeout = job.state
            await orchestrator.stop()
            return orchestrator, job, state_after_timeout

        orchestrator, job, state_after_timeout = asyncio.run(scenario())
        assert state_after_timeout == ClipJobState.FAILED
        assert job.state == ClipJobState.FAILED
        assert job.error["error"] == "JOB_TIMEOUT"
        assert _stored_files(tmp_path) == []
        assert orchestrator.list_clips() == []

    def test_cancel_while_queued_for_engine_skips_ffmpeg(self, tmp_path):
        engine = FakeEngine(exec_delay=0.2)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            source = make_source(tmp_path)
            running = await orchestrator.request_clip(make_shot("shot_1"), source)
            while not engine.calls:
                await asyncio.sleep(0.005)
            queued = await orchestrator.request_clip(make_shot("shot_2", timestamp="00:40"), source)
            while queued.state != ClipJobState.EXTRACTING:
                await asyncio.sleep(0.005)
            orchestrator.cancel(queued.fingerprint)
            await orchestrator.wait(running.fingerprint, timeout=5)
            await orchestrator.wait(queued.fingerprint, timeout=5)
            await orchestrator.stop()
            return running, queued

        running, queued = asyncio.run(scenario())
        assert running.state == ClipJobState.DONE
        assert queued.error["error"] == "JOB_CANCELLED"
        assert len(engine.calls) == 1

    def test_request_after_timeout_reuses_running_extraction(self, tmp_path):
        engine = FakeEngine(exec_delay=0.2)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            shot, source = make_shot(), make_source(tmp_path)
            first = await orchestrator.request_clip(shot, source)
            while not engine.calls:
                await asyncio.sleep(0.005)
            await orchestrator.wait(first.fingerprint, timeout=0.05)

            second = await orchestrator.request_clip(shot, source)
            state_on_request = second.state
            # stop() has to see both the timed-out attempt and its replacement
            await orchestrator.stop()
            return orchestrator, first, second, state_on_request

        orchestrator, first, second, state_on_request = asyncio.run(scenario())
        assert second is not first
        assert second.fingerprint == first.fingerprint
        assert state_on_request == ClipJobState.PENDING
        assert first.error["error"] == "JOB_TIMEOUT"
        assert second.state == ClipJobState.DONE
        assert len(engine.calls) == 1
        assert engine.max_active == 1
        assert [clip.id for clip in orchestrator.list_clips()] == [second.result.id]
        assert len(_stored_files(tmp_path)) == 1

    def test_request_after_cancel_starts_fresh_job(self, tmp_path):
        engine = FakeEngine(exec_delay=0.1)

        async def scenario():
            orchestrator = make_orchestrator(tmp_path, engine=engine)
            await orchestrator.start()
            shot, source = make_shot(), make_source(tmp_path)
            first = await orchestrator.request_clip(shot, source)
            orchestrator.cancel(first.fingerprint)
            await orchestrator.wait(first.fingerprint, timeout=5)
            second = await orchestrator.request_clip(shot, source)
            await orchestrator.wait(second.fingerprint, timeout=5)
            await orchestrator.stop()
            return first, second

        first, second = asyncio.run(scenario())
        assert first.error["error"] == "JOB_CANCELLED"
        assert second.state == ClipJobState.DONE
        assert len(engine.calls) == 1


class TestEvents:

    def test_progress_and_clip_ready_events(self, tmp_path):
        async def scenario():
            events = EventBus()
            orchestrator = make_orchestrator(tmp_path, events=events)
            await orchestrator.start()
            queue = events.subscribe()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()
            return [queue.get_nowait() for _ in range(queue.qsize())]

        events = asyncio.run(scenario())
        progress = [event["data"] for event in events if event["type"] == "progress"]
        states = [item["state"] for item in progress]

        assert states[0] == "pending"
        assert states[-1] == "done"
        order = ["pending", "extracting", "publishing", "done"]
        assert [order.index(state) for state in states] == sorted(order.index(state) for state in states)
        assert [item["progress"] for item in progress] == sorted(item["progress"] for item in progress)

        ready = [event for event in events if event["type"] == "clip_ready"]
        assert len(ready) == 1
        assert ready[0]["data"]["metadata"]["shotId"] == "shot_1"


class TestPersistence:

    def test_catalog_survives_restart(self, tmp_path):
        async def scenario():
            orchestrator = make_orchestrator(tmp_path)
            await orchestrator.start()
            job = await orchestrator.request_clip(make_shot(), make_source(tmp_path))
            await orchestrator.wait(job.fingerprint, timeout=5)
            await orchestrator.stop()

            catalog = ClipCatalog(str(tmp_path / "data" / "clips.db"))
            await catalog.initialize()
            return job, catalog.list_clips()

        job, clips = asyncio.run(scenario())
        assert clips == [job.result]
