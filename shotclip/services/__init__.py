"""Services package initialization"""
from .events import EventBus
from .engine import EngineVariant, FFmpegEngine, TranscoderHandle, TranscoderState
from .clip_extractor import ClipExtractor, RenderConfig
from .storage import ObjectStorage, S3ObjectStorage, LocalObjectStorage, StoredObject, create_storage
from .publisher import ArtifactPublisher, NamingContext, PublishedArtifact
from .catalog import ClipCatalog
from .orchestrator import ClipOrchestrator, build_orchestrator, compute_fingerprint
from .shot_detector import ShotDetector

__all__ = [
    "EventBus",
    "EngineVariant",
    "FFmpegEngine",
    "TranscoderHandle",
    "TranscoderState",
    "ClipExtractor",
    "RenderConfig",
    "ObjectStorage",
    "S3ObjectStorage",
    "LocalObjectStorage",
    "StoredObject",
    "create_storage",
    "ArtifactPublisher",
    "NamingContext",
    "PublishedArtifact",
    "ClipCatalog",
    "ClipOrchestrator",
    "build_orchestrator",
    "compute_fingerprint",
    "ShotDetector"
]
