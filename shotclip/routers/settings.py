"""
Settings Router
Configuration status, version info and host resources
"""

import os
import shutil
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..config import get_settings
from ..services.orchestrator import ClipOrchestrator
from .deps import get_orchestrator

router = APIRouter(prefix="/api/settings", tags=["settings"])


class ServiceStatus(BaseModel):
    """Status of an external service"""
    name: str
    configured: bool
    status: str


class SettingsResponse(BaseModel):
    """Current settings response"""
    storage_backend: str
    clip_prefix: str
    ffmpeg_binary: str
    ffmpeg_threads: int
    max_pending_jobs: int
    services: List[ServiceStatus]


@router.get("/", response_model=SettingsResponse)
async def get_current_settings():
    """Get current application settings and service status"""
    settings = get_settings()
    s3_ready = bool(settings.aws_access_key_id and settings.s3_bucket_name)

    services = [
        ServiceStatus(
            name="Gemini AI",
            configured=bool(settings.gemini_api_key),
            status="Ready" if settings.gemini_api_key else "Sample shots only"
        ),
        ServiceStatus(
            name="AWS S3",
            configured=s3_ready,
            status=(
                "Ready" if s3_ready
                else "Credentials required" if settings.storage_backend == "s3"
                else "Not in use"
            )
        ),
        ServiceStatus(
            name="API Security",
            configured=bool(settings.api_key),
            status="API key protected" if settings.api_key else "API key disabled"
        )
    ]

    return SettingsResponse(
        storage_backend=settings.storage_backend,
        clip_prefix=settings.storage_clip_prefix,
        ffmpeg_binary=settings.ffmpeg_binary,
        ffmpeg_threads=settings.ffmpeg_threads,
        max_pending_jobs=settings.max_pending_jobs,
        services=services
    )


def get_git_revision() -> str:
    """Short commit hash from the deploy environment, "dev" otherwise"""
    commit_sha = os.getenv("GIT_COMMIT_SHA")
    return commit_sha[:7] if commit_sha else "dev"


@router.get("/version")
async def get_version_info():
    """Get application version info"""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "git_commit": get_git_revision(),
    }


@router.get("/system-status")
async def get_system_status(orchestrator: ClipOrchestrator = Depends(get_orchestrator)):
    """Get detailed system status"""
    import psutil

    settings = get_settings()
    ffmpeg_available = shutil.which(settings.ffmpeg_binary) is not None

    disk = psutil.disk_usage(os.path.abspath(settings.temp_dir) if os.path.isdir(settings.temp_dir) else "/")
    memory = psutil.virtual_memory()

    return {
        "ffmpeg": {
            "available": ffmpeg_available,
            "status": "Ready" if ffmpeg_available else "Not installed"
        },
        "engine": orchestrator.transcoder.describe(),
        "cpu_count": psutil.cpu_count() or 1,
        "disk": {
            "total_gb": round(disk.total / (1024**3), 1),
            "free_gb": round(disk.free / (1024**3), 1),
            "used_percent": disk.percent
        },
        "memory": {
            "total_gb": round(memory.total / (1024**3), 1),
            "available_gb": round(memory.available / (1024**3), 1),
            "used_percent": memory.percent
        },
        "jobs": {
            "active": orchestrator.active_count,
            "max_pending": orchestrator.max_pending,
            "clips": len(orchestrator.catalog)
        }
    }
