"""Best-effort thumbnail generation for videos without one."""

import logging
import os
import random
import uuid
from typing import Awaitable, Callable, Optional

from mediahub.core.metrics import THUMBNAILS_TOTAL
from mediahub.core.storage import ObjectStore, StorageBucket
from mediahub.modules.transcoding.download import download_to_file
from mediahub.modules.transcoding.errors import KeyResolutionError
from mediahub.modules.transcoding.ffmpeg import FFmpegRunner
from mediahub.modules.transcoding.tempfiles import remove_quietly, resolve_tmp_dir, scratch_path
from mediahub.modules.video.media_types import strip_url_query
from mediahub.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

THUMBNAIL_CONTENT_TYPE = "image/jpeg"
SHORT_VIDEO_SECONDS = 5.0


def pick_thumbnail_timestamp(
    duration: Optional[float],
    rng: Optional[random.Random] = None,
) -> float:
    """Pick the seek position for a thumbnail frame.

    Unknown duration seeks to 0, short videos use their midpoint, and
    longer ones a uniform random point between 10% and 90% of the
    duration, kept at least 0.1s before the end.
    """
    if not duration or duration <= 0:
        return 0.0
    if duration <= SHORT_VIDEO_SECONDS:
        return duration / 2

    rng = rng or random
    target = rng.uniform(duration * 0.1, duration * 0.9)
    return max(0.0, min(target, duration - 0.1))


class ThumbnailGenerator:
    """Extracts a JPEG frame from a video and attaches it to the record.

    Thumbnails never fail the caller: every error is logged and turns into
    a None result.
    """

    def __init__(
        self,
        repository: VideoRepository,
        store: ObjectStore,
        runner: Optional[FFmpegRunner] = None,
        tmp_dir: Optional[str] = None,
        downloader: Callable[[str, str], Awaitable[int]] = download_to_file,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.store = store
        self.runner = runner or FFmpegRunner()
        self.tmp_dir = tmp_dir
        self.downloader = downloader
        self.rng = rng

    async def maybe_generate_thumbnail(
        self,
        video_id: uuid.UUID,
        source: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> Optional[str]:
        """Generate a thumbnail unless the video already has one.

        Args:
            video_id: Video to attach the thumbnail to
            source: Local file path, or the stored URL of the video
            bucket: Bucket namespace for the upload

        Returns:
            Thumbnail URL if one was written, otherwise None
        """
        try:
            if not await self.repository.needs_thumbnail(video_id):
                THUMBNAILS_TOTAL.labels(status="skipped").inc()
                return None

            if os.path.isfile(source):
                url = await self._generate_from_file(video_id, source, bucket)
            else:
                url = await self._generate_from_url(video_id, source, bucket)
        except Exception as e:
            THUMBNAILS_TOTAL.labels(status="failed").inc()
            logger.warning(
                "Thumbnail generation failed",
                extra={"video_id": str(video_id), "error": str(e)},
                exc_info=True,
            )
            return None

        THUMBNAILS_TOTAL.labels(status="success" if url else "skipped").inc()
        return url

    async def _generate_from_url(
        self,
        video_id: uuid.UUID,
        stored_url: str,
        bucket: StorageBucket,
    ) -> Optional[str]:
        key = self.store.extract_key(stored_url, bucket)
        if not key:
            raise KeyResolutionError(f"Cannot resolve storage key from {stored_url}")

        tmp_dir = resolve_tmp_dir(self.tmp_dir)
        extension = os.path.splitext(strip_url_query(key))[1].lstrip(".") or "bin"
        local_path = scratch_path(tmp_dir, "thumbnail", video_id, extension, suffix="-source")
        try:
            await self.downloader(self.store.signed_download_url(key, bucket), local_path)
            return await self._generate_from_file(video_id, local_path, bucket)
        finally:
            remove_quietly(local_path)

    async def _generate_from_file(
        self,
        video_id: uuid.UUID,
        input_path: str,
        bucket: StorageBucket,
    ) -> Optional[str]:
        output_path = scratch_path(resolve_tmp_dir(self.tmp_dir), "thumbnail", video_id, "jpg")
        try:
            duration = await self.runner.probe_duration(input_path)
            seek = pick_thumbnail_timestamp(duration, self.rng)
            await self.runner.extract_frame(input_path, output_path, seek)

            key = self.store.generate_upload_key(bucket, f"{video_id}.jpg", "thumbnail")
            url = await self.store.upload_local_file(
                output_path, key, THUMBNAIL_CONTENT_TYPE, bucket
            )
        finally:
            remove_quietly(output_path)

        if not await self.repository.set_thumbnail_if_missing(video_id, url):
            logger.info(
                "Thumbnail already set by another writer",
                extra={"video_id": str(video_id)},
            )
            return None

        logger.info("Thumbnail generated", extra={"video_id": str(video_id), "url": url})
        return url
