"""
Clip Data Models
Represents a published clip artifact
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List
from datetime import datetime, timezone
import uuid


class ClipMetadata(BaseModel):
    """Metadata record that travels with a published clip (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    shot_id: str
    timestamp: str
    start_time_seconds: int
    duration_seconds: int
    description: str
    score: int
    tags: List[str] = Field(default_factory=list)
    original_video_ref: str
    created_at: datetime
    project_id: str


class Clip(BaseModel):
    """Published clip; never mutated after creation"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"clip_{uuid.uuid4().hex[:12]}")
    original_shot_id: str
    timestamp: str
    duration: str
    storage_url: str
    metadata: ClipMetadata
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
