"""Utils package initialization"""
from .logger import setup_logger, get_logger
from .exceptions import (
    ShotClipError,
    EngineLoadError,
    EngineNotReadyError,
    FFmpegError,
    InvalidTimestampError,
    InvalidRangeError,
    SourceNotFoundError,
    ExtractionFailedError,
    UploadFailedError,
    DuplicateArtifactError,
    JobNotFoundError,
    ClipNotFoundError,
    JobCancelledError,
    JobTimeoutError,
    QueueFullError
)

__all__ = [
    "setup_logger",
    "get_logger",
    "ShotClipError",
    "EngineLoadError",
    "EngineNotReadyError",
    "FFmpegError",
    "InvalidTimestampError",
    "InvalidRangeError",
    "SourceNotFoundError",
    "ExtractionFailedError",
    "UploadFailedError",
    "DuplicateArtifactError",
    "JobNotFoundError",
    "ClipNotFoundError",
    "JobCancelledError",
    "JobTimeoutError",
    "QueueFullError"
]
