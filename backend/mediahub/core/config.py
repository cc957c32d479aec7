"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "MediaHub API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED (Celery broker and result backend)
    REDIS_URL: str

    # CORS
    CORS_ORIGINS: list[str] = []

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Object storage (Cloudflare R2 / S3-compatible)
    # Credentials and endpoint are shared by every bucket namespace.
    R2_ENDPOINT: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""

    # Default "media" bucket
    R2_BUCKET_NAME: str = ""
    R2_PUBLIC_DOMAIN: Optional[str] = None
    R2_KEY_PREFIX: Optional[str] = None  # Defaults to the bucket name

    # Secondary "archive" bucket
    R2_ARCHIVE_BUCKET_NAME: str = ""
    R2_ARCHIVE_PUBLIC_DOMAIN: Optional[str] = None
    R2_ARCHIVE_KEY_PREFIX: Optional[str] = None

    SIGNED_URL_TTL_SECONDS: int = 3600
    SIGNED_UPLOAD_TTL_SECONDS: int = 900

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    THUMBNAIL_MAX_WIDTH: int = 1280

    # Transcode pipeline
    TRANSCODE_TMP_DIR: Optional[str] = None  # System temp dir when unset
    TRANSCODE_POLL_INTERVAL_MS: int = 15000  # Cooldown after a failed job
    TRANSCODE_IDLE_DELAY_MS: Optional[int] = None  # Defaults to the poll interval
    TRANSCODE_PROGRESS_STEP: int = 5
    TRANSCODE_INLINE_ENABLED: bool = False
    TRANSCODE_WORKER_STREAM_SOURCE: bool = True
    TRANSCODE_DOWNLOAD_TIMEOUT_SECONDS: float = 60.0
    TRANSCODE_QUEUE: str = "transcode"
    TRANSCODE_WORKER_METRICS_PORT: Optional[int] = None  # Polling worker metrics endpoint

    @property
    def transcode_idle_delay_ms(self) -> int:
        """Idle delay between polls when no job is pending."""
        if self.TRANSCODE_IDLE_DELAY_MS is None:
            return self.TRANSCODE_POLL_INTERVAL_MS
        return self.TRANSCODE_IDLE_DELAY_MS

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
