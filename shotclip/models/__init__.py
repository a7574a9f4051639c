"""Models package initialization"""
from .shot import Shot, SourceVideo
from .clip import Clip, ClipMetadata
from .job import ClipJob, ClipJobState, ClipJobCreate, TERMINAL_STATES

__all__ = [
    "Shot",
    "SourceVideo",
    "Clip",
    "ClipMetadata",
    "ClipJob",
    "ClipJobState",
    "ClipJobCreate",
    "TERMINAL_STATES"
]
