"""
Shot Data Models
Detected candidate segments and the source videos they belong to
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import hashlib
import uuid

from ..utils.timecode import format_timestamp


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _coerce_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def _coerce_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.replace(",", " ").split()
    return [str(tag).strip() for tag in value if str(tag).strip()]


class Shot(BaseModel):
    """A detected candidate segment of a source video"""
    id: str
    timestamp: str = Field(description="Start as MM:SS or H:MM:SS")
    duration: str = Field(description="Leading integer + unit, e.g. 12s")
    description: str = ""
    score: int = Field(default=0, ge=0, le=100)
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def from_foreign(cls, data: Dict[str, Any], default_id: Optional[str] = None) -> "Shot":
        """
        Normalize a loosely shaped shot dict (model output, older clients)
        into the canonical Shot.

        Accepts viralScore/viral_score for score, hashtags for tags and
        start/start_time for timestamp. Numeric timestamps are treated as
        seconds and numeric durations get an "s" unit. A shot without an id
        gets one derived from its timestamp, duration and description, so the
        same shot always maps to the same id.
        """
        timestamp = _first(data, "timestamp", "start", "start_time")
        if isinstance(timestamp, (int, float)):
            timestamp = format_timestamp(timestamp)

        duration = _first(data, "duration", "length")
        if isinstance(duration, (int, float)):
            duration = f"{int(duration)}s"

        timestamp = str(timestamp or "00:00")
        duration = str(duration or "")
        description = str(_first(data, "description", "title") or "")

        shot_id = _first(data, "id", "shot_id", "shotId") or default_id
        if not shot_id:
            digest = hashlib.sha1(f"{timestamp}\0{duration}\0{description}".encode("utf-8")).hexdigest()
            shot_id = f"shot_{digest[:8]}"

        return cls(
            id=str(shot_id),
            timestamp=timestamp,
            duration=duration,
            description=description,
            score=_coerce_score(_first(data, "score", "viralScore", "viral_score")),
            tags=_coerce_tags(_first(data, "tags", "hashtags", "suggestedHashtags")),
        )


class SourceVideo(BaseModel):
    """An uploaded source video that shots are cut from"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    ref: str = Field(description="Source identity; the stored file path")
    title: str = "Uploaded Video"
    mime_type: str = "video/mp4"
    project_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:9])
    public_url: Optional[str] = None
    shots: List[Shot] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
