"""
ShotClip Configuration
Centralized settings management using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "ShotClip"
    debug: bool = False
    app_version: str = "0.3.0"

    # ==========================================================================
    # Google Gemini (shot detection)
    # ==========================================================================
    gemini_api_key: str = Field(default="", description="Google Gemini API Key")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model for shot detection")

    # ==========================================================================
    # Object Storage
    # ==========================================================================
    storage_backend: str = Field(default="local", description="local or s3")
    aws_access_key_id: str = Field(default="", description="AWS Access Key ID")
    aws_secret_access_key: str = Field(default="", description="AWS Secret Key")
    aws_region: str = Field(default="us-east-1", description="AWS Region")
    s3_bucket_name: str = Field(default="", description="S3 Bucket Name")
    s3_public_base_url: str = Field(default="", description="Public base URL override (CDN)")
    storage_clip_prefix: str = Field(default="clips", description="Key prefix for published clips")
    storage_upload_prefix: str = Field(default="uploads", description="Key prefix for published sources")
    storage_cache_control: str = Field(default="max-age=3600", description="Cache-Control for uploads")

    # ==========================================================================
    # Transcoding Engine
    # ==========================================================================
    ffmpeg_binary: str = Field(default="ffmpeg", description="Primary (multi-threaded) ffmpeg binary")
    ffmpeg_fallback_binary: str = Field(default="", description="Single-threaded fallback binary")
    ffmpeg_threads: int = Field(default=0, ge=0, le=64, description="Threads for the primary variant (0 = auto)")
    engine_max_load_attempts: int = Field(default=1, ge=1, le=5, description="Load attempts before failure is permanent")
    engine_preload: bool = Field(default=False, description="Load the engine at startup")

    # ==========================================================================
    # Processing Settings
    # ==========================================================================
    max_upload_size_mb: int = Field(default=1024, ge=1, le=10240, description="Max upload file size in MB")
    max_pending_jobs: int = Field(default=50, ge=1, le=500, description="Max in-flight clip jobs")
    event_queue_size: int = Field(default=500, ge=10, le=10000, description="Per-subscriber event buffer")

    # ==========================================================================
    # Security
    # ==========================================================================
    api_key: str = Field(default="", description="Optional API key for /api and /ws routes")
    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:8000",
            "http://127.0.0.1:8000"
        ],
        description="Allowed CORS origins"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================
    output_dir: str = Field(default="output", description="Root directory of the local storage backend")
    temp_dir: str = Field(default="temp", description="Uploaded sources and engine working storage")
    data_dir: str = Field(default="data", description="Persistent application data directory")

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("storage_backend")
    @classmethod
    def check_storage_backend(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in ("local", "s3"):
            raise ValueError("storage_backend must be 'local' or 's3'")
        return value

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
