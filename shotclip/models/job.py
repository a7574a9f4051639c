"""
Clip Job Data Models
Represents a single extraction request
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime, timezone

from .clip import Clip


class ClipJobState(str, Enum):
    """Clip job processing state"""
    PENDING = "pending"
    EXTRACTING = "extracting"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = (ClipJobState.DONE, ClipJobState.FAILED)

# Allowed forward transitions; terminal states have none
_TRANSITIONS = {
    ClipJobState.PENDING: (ClipJobState.EXTRACTING, ClipJobState.FAILED),
    ClipJobState.EXTRACTING: (ClipJobState.PUBLISHING, ClipJobState.FAILED),
    ClipJobState.PUBLISHING: (ClipJobState.DONE, ClipJobState.FAILED),
}


class ClipJobCreate(BaseModel):
    """Request model for creating a clip job"""
    source_id: str
    shot: Dict[str, Any] = Field(description="Shot fields; foreign aliases are normalized")


class ClipJob(BaseModel):
    """An in-flight or completed clip extraction"""
    model_config = ConfigDict(use_enum_values=True)

    fingerprint: str
    shot_id: str
    source_ref: str
    state: ClipJobState = ClipJobState.PENDING
    progress: float = Field(default=0.0, ge=0, le=100)
    progress_message: str = "Queued"
    result: Optional[Clip] = None
    error: Optional[Dict[str, Any]] = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, state: ClipJobState) -> bool:
        return state in _TRANSITIONS.get(ClipJobState(self.state), ())
