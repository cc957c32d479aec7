"""Repository for video records.

Pipeline writes go through single UPDATE statements and are committed
immediately, so progress is visible to pollers while a job is running.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediahub.core.storage import StorageBucket
from mediahub.modules.video.media_types import (
    MP4_EXTENSION,
    MP4_MIME_TYPE,
    TRANSPORT_STREAM_EXTENSION,
    TRANSPORT_STREAM_MIME_TYPE,
)
from mediahub.modules.video.models import Video, VideoStatus

MAX_ERROR_LENGTH = 2000


def _url_has_extension(extension: str):
    url = func.lower(Video.video_url)
    return or_(
        url.like(f"%{extension}"),
        url.like(f"%{extension}?%"),
        url.like(f"%{extension}#%"),
    )


def transport_stream_condition():
    """SQL counterpart of ``is_transport_stream``."""
    return or_(
        func.lower(Video.mime_type) == TRANSPORT_STREAM_MIME_TYPE,
        _url_has_extension(TRANSPORT_STREAM_EXTENSION),
    )


def mp4_condition():
    """SQL counterpart of ``is_mp4``."""
    return or_(
        func.lower(Video.mime_type) == MP4_MIME_TYPE,
        _url_has_extension(MP4_EXTENSION),
    )


def thumbnail_missing_condition():
    """A record without a thumbnail: null or an empty string."""
    return or_(Video.thumbnail_url.is_(None), Video.thumbnail_url == "")


class VideoRepository:
    """Repository for Video operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        title: str,
        video_url: str,
        mime_type: Optional[str] = None,
        storage_bucket: StorageBucket = StorageBucket.MEDIA,
        thumbnail_url: Optional[str] = None,
        description: Optional[str] = None,
        file_size: Optional[int] = None,
        duration: Optional[int] = None,
        status: VideoStatus = VideoStatus.READY,
        transcode_progress: Optional[int] = None,
    ) -> Video:
        """Insert a new video record.

        Args:
            title: Display title
            video_url: Public URL of the uploaded file
            mime_type: MIME type reported at upload time
            storage_bucket: Bucket namespace holding the file
            thumbnail_url: Optional thumbnail supplied by the uploader
            description: Optional description
            file_size: File size in bytes
            duration: Duration in seconds
            status: Initial pipeline status
            transcode_progress: Initial progress (null when no transcode applies)

        Returns:
            Created Video
        """
        video = Video(
            title=title,
            description=description,
            video_url=video_url,
            mime_type=mime_type,
            storage_bucket=storage_bucket.value,
            thumbnail_url=thumbnail_url,
            file_size=file_size,
            duration=duration,
            status=status.value,
            transcode_progress=transcode_progress,
        )
        self.session.add(video)
        await self.session.commit()
        await self.session.refresh(video)
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        """Get a video by ID."""
        result = await self.session.execute(
            select(Video).where(Video.id == video_id)
        )
        return result.scalar_one_or_none()

    async def needs_thumbnail(self, video_id: uuid.UUID) -> bool:
        """Check that the video exists and has no thumbnail yet.

        Reads the column directly so a thumbnail written by another process
        since the record was loaded is seen.
        """
        result = await self.session.execute(
            select(Video.id).where(Video.id == video_id, thumbnail_missing_condition())
        )
        return result.first() is not None

    async def _update(self, video_id: uuid.UUID, *conditions, **values) -> int:
        result = await self.session.execute(
            update(Video)
            .where(Video.id == video_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def mark_processing(self, video_id: uuid.UUID) -> None:
        await self._update(
            video_id,
            status=VideoStatus.PROCESSING.value,
            transcode_progress=0,
            last_transcode_error=None,
        )

    async def update_progress(self, video_id: uuid.UUID, progress: int) -> None:
        await self._update(video_id, transcode_progress=progress)

    async def mark_ready(self, video_id: uuid.UUID, video_url: str) -> None:
        """Point the record at the transcoded MP4 and mark it playable."""
        await self._update(
            video_id,
            video_url=video_url,
            mime_type=MP4_MIME_TYPE,
            status=VideoStatus.READY.value,
            transcode_progress=100,
            last_transcode_error=None,
        )

    async def mark_failed(self, video_id: uuid.UUID, error: Optional[str] = None) -> None:
        await self._update(
            video_id,
            status=VideoStatus.FAILED.value,
            last_transcode_error=error[:MAX_ERROR_LENGTH] if error else None,
        )

    async def set_thumbnail_if_missing(self, video_id: uuid.UUID, thumbnail_url: str) -> bool:
        """Set the thumbnail only if the record still has none.

        Returns:
            True if the thumbnail was written
        """
        updated = await self._update(
            video_id,
            thumbnail_missing_condition(),
            thumbnail_url=thumbnail_url,
        )
        return updated > 0

    async def rollback(self) -> None:
        """Discard a failed transaction so the session can be reused."""
        await self.session.rollback()

    async def find_transcode_candidates(
        self,
        ids: Optional[list[uuid.UUID]] = None,
        since: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[Video]:
        """Find transport-stream videos, most recently updated first.

        Args:
            ids: Restrict to these video IDs
            since: Only videos updated after this moment
            limit: Maximum number of videos

        Returns:
            Matching videos
        """
        query = select(Video).where(transport_stream_condition())
        if ids:
            query = query.where(Video.id.in_(ids))
        if since is not None:
            query = query.where(Video.updated_at > since)

        result = await self.session.execute(
            query.order_by(Video.updated_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def fetch_next_transcode_job(self) -> Optional[Video]:
        """Get the oldest pending transcode job.

        A job is pending while the record is processing, has not reached
        100 percent, and still points at a transport stream.
        """
        result = await self.session.execute(
            select(Video)
            .where(
                Video.status == VideoStatus.PROCESSING.value,
                or_(Video.transcode_progress.is_(None), Video.transcode_progress < 100),
                transport_stream_condition(),
            )
            .order_by(Video.updated_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_mp4_videos_ready(self, ids: Optional[list[uuid.UUID]] = None) -> int:
        """Mark processing videos that already are MP4 files as ready.

        Returns:
            Number of videos updated
        """
        query = update(Video).where(
            Video.status == VideoStatus.PROCESSING.value,
            mp4_condition(),
        )
        if ids:
            query = query.where(Video.id.in_(ids))

        result = await self.session.execute(
            query.values(
                status=VideoStatus.READY.value,
                transcode_progress=100,
            ).execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount
