"""Configuration models for the media indexer."""

from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator

from mediavault.common import LoggingConfig, expand_path_variables
from .models import ThumbnailFilter


class ScannerConfig(BaseModel):
    """Scanner and worker pool configuration."""

    model_config = ConfigDict(extra='forbid')

    database_path: str = Field(
        default="${USER_DATA}/mediavault.db",
        validate_default=True,
        description="Path to the SQLite catalog"
    )
    cache_path: str = Field(
        default="${USER_CACHE}/media",
        validate_default=True,
        description="Directory for thumbnails, high-res previews and web videos"
    )
    concurrent_workers: int = Field(
        default=3,
        ge=1,
        description="Initial number of scan jobs allowed to run in parallel"
    )
    periodic_scan_interval: int = Field(
        default=0,
        ge=0,
        description="Seconds between automatic full scans (0 disables)"
    )
    fingerprint_mode: Literal["stat", "content"] = Field(
        default="stat",
        description="Change detection: 'stat' (size + mtime) or 'content' (head/tail SHA-256)"
    )
    use_ffprobe: bool = Field(
        default=True,
        description="Use ffprobe for video metadata extraction"
    )
    use_ffmpeg: bool = Field(
        default=True,
        description="Use ffmpeg for video keyframes and web transcoding"
    )
    use_exiftool: bool = Field(
        default=False,
        description="Use exiftool for RAW format EXIF extraction (DNG, CR2, NEF, ARW)"
    )
    progress_interval: int = Field(
        default=10,
        ge=1,
        description="Publish a progress notification every N processed files"
    )

    @field_validator('database_path', 'cache_path', mode='before')
    @classmethod
    def expand_paths(cls, v: str) -> str:
        """Expand ${VAR} placeholders."""
        return expand_path_variables(v)


class ThumbnailConfig(BaseModel):
    """Derived image configuration."""

    model_config = ConfigDict(extra='forbid')

    filter: ThumbnailFilter = Field(
        default=ThumbnailFilter.LANCZOS,
        description="Initial downsampling filter (persisted in site info afterwards)"
    )
    thumbnail_size: int = Field(default=1024, ge=16, description="Bounding box edge of thumbnails")
    jpeg_quality: int = Field(default=70, ge=1, le=100)
    blurhash_x_components: int = Field(default=4, ge=1, le=9)
    blurhash_y_components: int = Field(default=3, ge=1, le=9)


class FacesConfig(BaseModel):
    """Face detection and clustering configuration."""

    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(default=True, description="Run face detection on photos")
    similarity_threshold: float = Field(
        default=0.6,
        gt=0.0,
        le=1.0,
        description="Minimum cosine similarity to join an existing face group"
    )
    min_face_size: int = Field(default=20, ge=1, description="Minimum face edge in pixels")
    confidence_threshold: float = Field(default=0.9, ge=0.0, le=1.0)


class ApiConfig(BaseModel):
    """Admin HTTP API configuration."""

    model_config = ConfigDict(extra='forbid')

    host: str = "127.0.0.1"
    port: int = Field(default=4001, ge=1, le=65535)
    enable_cors: bool = False
    cors_origins: list[str] = Field(default_factory=list)


class MediaVaultConfig(BaseModel):
    """Root configuration for the indexer service."""

    model_config = ConfigDict(extra='forbid')

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    thumbnails: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    faces: FacesConfig = Field(default_factory=FacesConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
