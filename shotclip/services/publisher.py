"""
Artifact Publisher
Stores clip bytes under a deterministic name and builds the metadata record.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from ..models.clip import ClipMetadata
from ..utils.logger import get_logger
from ..utils.timecode import safe_timestamp
from .storage import ObjectStorage

logger = get_logger()

CLIP_CONTENT_TYPE = "video/mp4"

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class NamingContext:
    """Everything needed to name and describe one clip"""
    shot_id: str
    timestamp: str
    start_seconds: int
    duration_seconds: int
    description: str
    score: int
    tags: List[str]
    source_ref: str
    project_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PublishedArtifact:
    url: str
    path: str
    metadata: ClipMetadata


def _epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class ArtifactPublisher:
    """Uploads produced clips to object storage without overwriting"""

    def __init__(
        self,
        storage: ObjectStorage,
        clip_prefix: str = "clips",
        upload_prefix: str = "uploads",
        cache_control: str = "max-age=3600"
    ):
        self.storage = storage
        self.clip_prefix = clip_prefix.strip("/")
        self.upload_prefix = upload_prefix.strip("/")
        self.cache_control = cache_control

    @classmethod
    def from_settings(cls, storage: ObjectStorage, settings) -> "ArtifactPublisher":
        return cls(
            storage,
            clip_prefix=settings.storage_clip_prefix,
            upload_prefix=settings.storage_upload_prefix,
            cache_control=settings.storage_cache_control,
        )

    def build_clip_path(self, context: NamingContext) -> str:
        """clips/clip_<timestamp>_<duration>s_<created ms>.mp4"""
        filename = (
            f"clip_{safe_timestamp(context.timestamp)}_{context.duration_seconds}s"
            f"_{_epoch_ms(context.created_at)}.mp4"
        )
        return f"{self.clip_prefix}/{filename}"

    def build_metadata(self, context: NamingContext) -> ClipMetadata:
        return ClipMetadata(
            shot_id=context.shot_id,
            timestamp=context.timestamp,
            start_time_seconds=context.start_seconds,
            duration_seconds=context.duration_seconds,
            description=context.description,
            score=context.score,
            tags=list(context.tags),
            original_video_ref=context.source_ref,
            created_at=context.created_at,
            project_id=context.project_id,
        )

    async def publish(self, data: bytes, context: NamingContext) -> PublishedArtifact:
        """
        Upload a clip and resolve its public URL

        Raises:
            DuplicateArtifactError: the computed path is already taken
            UploadFailedError: any other storage failure
        """
        path = self.build_clip_path(context)
        await self.storage.upload(
            path,
            data,
            content_type=CLIP_CONTENT_TYPE,
            cache_control=self.cache_control,
            upsert=False,
        )
        url = self.storage.get_public_url(path)
        logger.info(f"Published clip {path}: {url}")
        return PublishedArtifact(url=url, path=path, metadata=self.build_metadata(context))

    async def publish_source(self, data: bytes, filename: str, content_type: str = CLIP_CONTENT_TYPE) -> str:
        """Store an uploaded source video; returns its public URL"""
        clean_name = _UNSAFE_FILENAME.sub("_", filename or "video.mp4")
        path = f"{self.upload_prefix}/{_epoch_ms(datetime.now(timezone.utc))}_{clean_name}"
        await self.storage.upload(
            path,
            data,
            content_type=content_type or CLIP_CONTENT_TYPE,
            cache_control=self.cache_control,
            upsert=False,
        )
        url = self.storage.get_public_url(path)
        logger.info(f"Published source {path}")
        return url
