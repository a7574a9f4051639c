"""
Clips Router
Clip job requests, job status and the published clip catalog.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from ..models.clip import Clip, ClipMetadata
from ..models.job import ClipJob, ClipJobCreate
from ..models.shot import Shot, SourceVideo
from ..services.orchestrator import ClipOrchestrator
from .deps import get_orchestrator, get_sources, lookup_source

router = APIRouter(prefix="/api/clips", tags=["clips"])


@router.post("/", response_model=ClipJob, status_code=status.HTTP_202_ACCEPTED)
async def request_clip(
    request: ClipJobCreate,
    sources: Dict[str, SourceVideo] = Depends(get_sources),
    orchestrator: ClipOrchestrator = Depends(get_orchestrator),
):
    """Start a clip job for a shot, or attach to the one already running."""
    source = lookup_source(sources, request.source_id)
    shot = Shot.from_foreign(request.shot)
    return await orchestrator.request_clip(shot, source)


@router.get("/", response_model=List[Clip])
async def list_clips(orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Published clips in catalog order."""
    return orchestrator.list_clips()


@router.get("/jobs", response_model=List[ClipJob])
async def list_jobs(orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """All clip jobs, newest first."""
    return orchestrator.list_jobs()


@router.get("/jobs/{fingerprint}", response_model=ClipJob)
async def get_job(fingerprint: str, orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Status of a clip job."""
    return orchestrator.get_job(fingerprint)


@router.delete("/jobs/{fingerprint}", response_model=ClipJob)
async def cancel_job(fingerprint: str, orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Cancel a clip job after its current stage."""
    return orchestrator.cancel(fingerprint)


@router.get("/storage")
async def list_stored_clips(
    limit: int = Query(100, ge=1, le=1000),
    orchestrator: ClipOrchestrator = Depends(get_orchestrator),
):
    """Clip files present in object storage, newest first."""
    publisher = orchestrator.publisher
    entries = await publisher.storage.list(publisher.clip_prefix, limit=limit, sort_by="created_at")
    return [{"name": entry.name, "url": entry.url, "size": entry.size} for entry in entries]


@router.get("/{clip_id}", response_model=Clip)
async def get_clip(clip_id: str, orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Get a published clip."""
    return orchestrator.get_catalog_clip(clip_id)


@router.get("/{clip_id}/metadata", response_model=ClipMetadata)
async def get_clip_metadata(clip_id: str, orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Metadata record of a published clip."""
    clip = orchestrator.get_catalog_clip(clip_id)
    return JSONResponse(clip.metadata.model_dump(mode="json", by_alias=True))
