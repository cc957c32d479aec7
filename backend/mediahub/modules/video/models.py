"""Video model for the media library.

A video record tracks where the playable file lives in object storage and
where it is in the transcode pipeline.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mediahub.core.database import Base
from mediahub.core.storage import StorageBucket


class VideoStatus(str, Enum):
    """Pipeline status of a video."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Video(Base):
    """Video record.

    ``transcode_progress`` is null when no transcode was ever requested,
    otherwise an integer percentage in [0, 100].
    """

    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_status_updated_at", "status", "updated_at"),
        CheckConstraint(
            "transcode_progress IS NULL OR (transcode_progress >= 0 AND transcode_progress <= 100)",
            name="ck_videos_transcode_progress_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Storage
    video_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    storage_bucket: Mapped[str] = mapped_column(
        String(20), default=StorageBucket.MEDIA.value, nullable=False
    )
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # in seconds

    # Transcode pipeline
    status: Mapped[str] = mapped_column(
        String(20), default=VideoStatus.READY.value, nullable=False
    )
    transcode_progress: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_transcode_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def is_ready(self) -> bool:
        """Check if the video is playable."""
        return self.status == VideoStatus.READY.value

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, status={self.status}, progress={self.transcode_progress})>"
