"""
Custom Exceptions for ShotClip
Structured error handling with recovery hints
"""

from typing import Optional, Dict, Any


class ShotClipError(Exception):
    """Base exception for all ShotClip errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        recoverable: bool = False,
        recovery_hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_hint": self.recovery_hint,
            "details": self.details
        }


# ============================================================================
# Engine Errors
# ============================================================================

class EngineLoadError(ShotClipError):
    """Transcoding engine could not be initialized"""

    def __init__(self, reason: str, attempts: int = 1, variants: Optional[Dict[str, str]] = None):
        super().__init__(
            message=f"Transcoding engine unavailable: {reason}",
            code="LOAD_ERROR",
            recoverable=False,
            recovery_hint="Check that ffmpeg is installed and on PATH, then reset the engine.",
            details={"attempts": attempts, "variants": variants or {}}
        )


class EngineNotReadyError(ShotClipError):
    """Engine used before a completed load"""

    def __init__(self, state: str):
        super().__init__(
            message=f"Transcoding engine is not ready (state: {state})",
            code="ENGINE_NOT_READY",
            recoverable=True,
            recovery_hint="Acquire the engine and wait for it to become ready before extracting.",
            details={"state": state}
        )


class FFmpegError(ShotClipError):
    """FFmpeg execution error"""

    def __init__(self, message: str, command: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(
            message=message,
            code="FFMPEG_ERROR",
            recoverable=True,
            recovery_hint="Ensure FFmpeg is installed and in PATH. Check the video file isn't corrupted.",
            details={"command": command, "stderr": stderr[-500:] if stderr else None}
        )


# ============================================================================
# Input Errors
# ============================================================================

class InvalidTimestampError(ShotClipError):
    """Timestamp is not MM:SS or H:MM:SS"""

    def __init__(self, timestamp: str):
        super().__init__(
            message=f"Invalid timestamp '{timestamp}': expected MM:SS or H:MM:SS",
            code="INVALID_TIMESTAMP",
            recoverable=True,
            recovery_hint="Use a timestamp such as 01:05 or 1:02:05.",
            details={"timestamp": timestamp}
        )


class InvalidRangeError(ShotClipError):
    """Requested clip window is empty or negative"""

    def __init__(self, start_seconds: float, duration_seconds: float):
        super().__init__(
            message=f"Invalid clip range: start={start_seconds}s duration={duration_seconds}s",
            code="INVALID_RANGE",
            recoverable=True,
            recovery_hint="Start must be >= 0 and duration must be > 0.",
            details={"start_seconds": start_seconds, "duration_seconds": duration_seconds}
        )


class SourceNotFoundError(ShotClipError):
    """Source video not found"""

    def __init__(self, source: str):
        super().__init__(
            message=f"Source video not found: {source}",
            code="SOURCE_NOT_FOUND",
            recoverable=False,
            recovery_hint="Upload the source video again.",
            details={"source": source}
        )


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionFailedError(ShotClipError):
    """Both stream-copy and re-encode failed"""

    def __init__(self, message: str, fast_path_error: Optional[str] = None, fallback_error: Optional[str] = None):
        super().__init__(
            message=f"Source format unsupported: {message}",
            code="EXTRACTION_FAILED",
            recoverable=False,
            recovery_hint="Convert the source to a common format (MP4/H.264) and request the clip again.",
            details={
                "fast_path_error": fast_path_error[-500:] if fast_path_error else None,
                "fallback_error": fallback_error[-500:] if fallback_error else None,
            }
        )


# ============================================================================
# Storage Errors
# ============================================================================

class UploadFailedError(ShotClipError):
    """Error uploading to object storage"""

    def __init__(self, message: str, path: Optional[str] = None, backend: Optional[str] = None):
        super().__init__(
            message=f"Storage upload failed: {message}",
            code="UPLOAD_FAILED",
            recoverable=True,
            recovery_hint="Check storage credentials and bucket permissions, then request the clip again.",
            details={"path": path, "backend": backend}
        )


class DuplicateArtifactError(ShotClipError):
    """An artifact already exists at the computed path"""

    def __init__(self, path: str):
        super().__init__(
            message=f"Artifact already exists: {path}",
            code="DUPLICATE_ARTIFACT",
            recoverable=False,
            recovery_hint="The clip was already published; list the catalog instead of publishing again.",
            details={"path": path}
        )


# ============================================================================
# Job Processing Errors
# ============================================================================

class JobNotFoundError(ShotClipError):
    """Job not found"""

    def __init__(self, fingerprint: str):
        super().__init__(
            message=f"Clip job not found: {fingerprint}",
            code="JOB_NOT_FOUND",
            recoverable=False,
            details={"fingerprint": fingerprint}
        )


class ClipNotFoundError(ShotClipError):
    """Clip not found in catalog"""

    def __init__(self, clip_id: str):
        super().__init__(
            message=f"Clip not found: {clip_id}",
            code="CLIP_NOT_FOUND",
            recoverable=False,
            details={"clip_id": clip_id}
        )


class JobCancelledError(ShotClipError):
    """Job was cancelled"""

    def __init__(self, fingerprint: str):
        super().__init__(
            message=f"Clip job was cancelled: {fingerprint}",
            code="JOB_CANCELLED",
            recoverable=False,
            details={"fingerprint": fingerprint}
        )


class JobTimeoutError(ShotClipError):
    """Job processing timeout"""

    def __init__(self, fingerprint: str, timeout_seconds: float):
        super().__init__(
            message=f"Clip job timed out after {timeout_seconds}s",
            code="JOB_TIMEOUT",
            recoverable=True,
            recovery_hint="Request the clip again or allow a longer deadline.",
            details={"fingerprint": fingerprint, "timeout_seconds": timeout_seconds}
        )


class QueueFullError(ShotClipError):
    """Too many clip jobs in flight"""

    def __init__(self, max_pending: int):
        super().__init__(
            message=f"Clip queue is full ({max_pending} jobs in flight)",
            code="QUEUE_FULL",
            recoverable=True,
            recovery_hint="Wait for running clips to finish and try again.",
            details={"max_pending": max_pending}
        )
