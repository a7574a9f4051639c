"""
Sources Router
Handles source video upload, shot detection and shot export.
"""

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import PlainTextResponse

from ..config import get_settings
from ..models.shot import Shot, SourceVideo
from ..services.orchestrator import ClipOrchestrator
from ..services.shot_detector import ShotDetector
from ..utils.logger import get_logger
from .deps import get_detector, get_orchestrator, get_sources, lookup_source

router = APIRouter(prefix="/api/sources", tags=["sources"])
logger = get_logger()


def _safe_filename(filename: Optional[str]) -> str:
    if not filename:
        return "uploaded_video.mp4"
    return Path(filename).name.replace("..", "_").replace("\\", "_").replace("/", "_")


def _remove_file(path: Optional[str]):
    if not path:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as exc:
        logger.warning(f"Failed to remove file {path}: {exc}")


def render_shot_details(shot: Shot, project_title: str) -> str:
    """Plain-text report for a single shot"""
    return "\n".join([
        "SHOTCLIP - Clip Details",
        "=======================",
        f"Timestamp: {shot.timestamp}",
        f"Duration: {shot.duration}",
        f"Score: {shot.score}/100",
        f"Description: {shot.description}",
        f"Hashtags: {', '.join(shot.tags)}",
        "",
        f"Project: {project_title}",
        f"Export Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
    ])


@router.post("/", response_model=SourceVideo, status_code=status.HTTP_201_CREATED)
async def upload_source(
    file: UploadFile = File(...),
    project_id: Optional[str] = Form(None),
    publish: bool = Form(False),
    sources: Dict[str, SourceVideo] = Depends(get_sources),
    orchestrator: ClipOrchestrator = Depends(get_orchestrator),
):
    """Store an uploaded source video."""
    if file.content_type and not file.content_type.startswith("video/"):
        raise HTTPException(400, "Uploaded file must be a video")

    settings = get_settings()
    temp_dir = Path(settings.temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)

    source = SourceVideo(
        ref="",
        title=_safe_filename(file.filename),
        mime_type=file.content_type or "video/mp4",
    )
    if project_id:
        source.project_id = project_id

    max_upload_bytes = settings.max_upload_size_mb * 1024 * 1024
    file_path = (temp_dir / f"{source.id}_{source.title}").resolve()
    bytes_written = 0
    chunk_size = 1024 * 1024

    try:
        with open(file_path, "wb") as output_file:
            while True:
                chunk = await file.read(chunk_size)
                if not chunk:
                    break
                bytes_written += len(chunk)
                if bytes_written > max_upload_bytes:
                    output_file.close()
                    _remove_file(str(file_path))
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File exceeds max upload size ({settings.max_upload_size_mb}MB)",
                    )
                output_file.write(chunk)
    finally:
        await file.close()

    source.ref = str(file_path)

    if publish:
        try:
            data = await asyncio.get_running_loop().run_in_executor(None, file_path.read_bytes)
            source.public_url = await orchestrator.publisher.publish_source(data, source.title, source.mime_type)
        except Exception:
            # The source is not registered, so nothing else will clean it up
            _remove_file(str(file_path))
            raise

    sources[source.id] = source
    orchestrator.events.log(f"Source uploaded: {source.title}")
    logger.info(f"Source stored: {source.id} ({bytes_written / 1024 / 1024:.1f} MB)")
    return source


@router.get("/", response_model=List[SourceVideo])
async def list_sources(sources: Dict[str, SourceVideo] = Depends(get_sources)):
    """List uploaded sources."""
    return sorted(sources.values(), key=lambda item: item.created_at, reverse=True)


@router.get("/{source_id}", response_model=SourceVideo)
async def get_source(source_id: str, sources: Dict[str, SourceVideo] = Depends(get_sources)):
    """Get a specific source."""
    return lookup_source(sources, source_id)


@router.post("/{source_id}/analyze", response_model=List[Shot])
async def analyze_source(
    source_id: str,
    sources: Dict[str, SourceVideo] = Depends(get_sources),
    detector: ShotDetector = Depends(get_detector),
    orchestrator: ClipOrchestrator = Depends(get_orchestrator),
):
    """Detect candidate shots in a source."""
    source = lookup_source(sources, source_id)
    path = Path(source.ref)
    if not path.is_file():
        raise HTTPException(404, "Source file no longer exists")

    orchestrator.events.log(f"Analyzing {source.title} for shots...")
    data = await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)
    source.shots = await detector.analyze(data, source.mime_type)
    orchestrator.events.log(f"Found {len(source.shots)} shots in {source.title}")
    return source.shots


@router.get("/{source_id}/shots", response_model=List[Shot])
async def list_shots(source_id: str, sources: Dict[str, SourceVideo] = Depends(get_sources)):
    """Shots detected for a source."""
    return lookup_source(sources, source_id).shots


@router.get("/{source_id}/shots/{shot_id}/export", response_class=PlainTextResponse)
async def export_shot(source_id: str, shot_id: str, sources: Dict[str, SourceVideo] = Depends(get_sources)):
    """Download a plain-text report for one shot."""
    source = lookup_source(sources, source_id)
    shot = next((item for item in source.shots if item.id == shot_id), None)
    if shot is None:
        raise HTTPException(404, "Shot not found")

    filename = f"shot-{shot.timestamp.replace(':', '-')}.txt"
    return PlainTextResponse(
        render_shot_details(shot, source.title),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
