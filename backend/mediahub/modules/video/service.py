"""Video service for ingestion and direct-to-storage uploads."""

import logging
import os
from typing import Optional

from kombu.exceptions import OperationalError

from mediahub.core.storage import ObjectStore, StorageBucket, get_object_store
from mediahub.modules.transcoding.tasks import enqueue_video_thumbnail, enqueue_video_transcode
from mediahub.modules.video.media_types import is_mp4, should_transcode_to_mp4
from mediahub.modules.video.models import Video, VideoStatus
from mediahub.modules.video.repository import VideoRepository
from mediahub.modules.video.schemas import (
    ALLOWED_VIDEO_EXTENSIONS,
    CompletedPart,
    MultipartCompleteResponse,
    MultipartInitResponse,
    UploadUrlRequest,
    UploadUrlResponse,
    VideoCreateRequest,
)

logger = logging.getLogger(__name__)


class VideoServiceError(Exception):
    """Base exception for video service errors."""

    pass


class VideoNotFoundError(VideoServiceError):
    """Raised when video is not found."""

    pass


class InvalidFileError(VideoServiceError):
    """Raised when file validation fails."""

    pass


def validate_video_filename(filename: str) -> str:
    """Validate an upload filename and return its lowercase extension.

    Raises:
        InvalidFileError: If the extension is not an accepted video type
    """
    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_VIDEO_EXTENSIONS:
        raise InvalidFileError(
            f"Invalid file extension '{ext}'. Allowed: {', '.join(sorted(ALLOWED_VIDEO_EXTENSIONS))}"
        )
    return ext


def initial_transcode_state(
    video_url: str, mime_type: Optional[str]
) -> tuple[VideoStatus, Optional[int]]:
    """Status and progress a new record starts with.

    Transport streams start processing at 0, MP4 files are ready at 100,
    anything else is ready with no transcode progress.
    """
    if should_transcode_to_mp4(video_url, mime_type):
        return VideoStatus.PROCESSING, 0
    if is_mp4(video_url, mime_type):
        return VideoStatus.READY, 100
    return VideoStatus.READY, None


class VideoService:
    """Service for video records and uploads."""

    def __init__(self, repository: VideoRepository, store: Optional[ObjectStore] = None):
        self.repository = repository
        self.store = store or get_object_store()

    async def get_video(self, video_id) -> Video:
        """Get a video by ID.

        Raises:
            VideoNotFoundError: If the video does not exist
        """
        video = await self.repository.get_by_id(video_id)
        if not video:
            raise VideoNotFoundError(f"Video {video_id} not found")
        return video

    async def create_video(self, request: VideoCreateRequest) -> Video:
        """Register an uploaded video and schedule its background work.

        A transport stream gets a transcode job; any other video without a
        thumbnail gets a thumbnail job. A scheduling failure leaves a
        processing record behind for the polling worker.
        """
        status, progress = initial_transcode_state(request.video_url, request.mime_type)
        video = await self.repository.create(
            title=request.title,
            description=request.description,
            video_url=request.video_url,
            mime_type=request.mime_type,
            storage_bucket=request.storage_bucket,
            thumbnail_url=request.thumbnail_url,
            file_size=request.file_size,
            duration=request.duration,
            status=status,
            transcode_progress=progress,
        )

        try:
            queued = enqueue_video_transcode(
                video.id, video.video_url, video.mime_type, request.storage_bucket
            )
            if not queued and not request.thumbnail_url:
                enqueue_video_thumbnail(video.id, video.video_url, request.storage_bucket)
        except OperationalError as e:
            logger.error(
                "Failed to schedule background work for video",
                extra={"video_id": str(video.id), "error": str(e)},
            )

        return video

    def create_upload_url(self, request: UploadUrlRequest) -> UploadUrlResponse:
        """Issue a signed PUT URL for a new video file."""
        validate_video_filename(request.filename)
        key = self.store.generate_upload_key(request.storage_bucket, request.filename, "video")
        return UploadUrlResponse(
            key=key,
            upload_url=self.store.signed_upload_url(key, request.content_type, request.storage_bucket),
            public_url=self.store.public_url(key, request.storage_bucket),
        )

    async def start_multipart_upload(self, request: UploadUrlRequest) -> MultipartInitResponse:
        """Start a multipart upload for a large video file."""
        validate_video_filename(request.filename)
        key = self.store.generate_upload_key(request.storage_bucket, request.filename, "video")
        upload_id = await self.store.create_multipart_upload(
            key, request.content_type, request.storage_bucket
        )
        return MultipartInitResponse(
            key=key,
            upload_id=upload_id,
            public_url=self.store.public_url(key, request.storage_bucket),
        )

    def create_part_upload_url(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> str:
        return self.store.signed_upload_part_url(key, upload_id, part_number, bucket)

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: list[CompletedPart],
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> MultipartCompleteResponse:
        public_url = await self.store.complete_multipart_upload(
            key,
            upload_id,
            [{"PartNumber": part.part_number, "ETag": part.etag} for part in parts],
            bucket,
        )
        return MultipartCompleteResponse(key=key, public_url=public_url)

    async def abort_multipart_upload(
        self,
        key: str,
        upload_id: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> None:
        await self.store.abort_multipart_upload(key, upload_id, bucket)
