"""Transcode job execution.

Turns one stored transport stream into an H.264/AAC MP4: resolve and sign
the source, encode with ffmpeg while persisting throttled progress, upload
the result and point the record at it.
"""

import logging
import os
import posixpath
import uuid
from typing import Awaitable, Callable, Optional

from mediahub.core.config import settings
from mediahub.core.storage import ObjectStore, StorageBucket, get_object_store
from mediahub.modules.transcoding.download import download_to_file
from mediahub.modules.transcoding.errors import KeyResolutionError
from mediahub.modules.transcoding.ffmpeg import FFmpegRunner
from mediahub.modules.transcoding.tempfiles import remove_quietly, resolve_tmp_dir, scratch_path
from mediahub.modules.transcoding.thumbnail import ThumbnailGenerator
from mediahub.modules.video.media_types import MP4_EXTENSION, MP4_MIME_TYPE, strip_url_query
from mediahub.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_EXTENSION = "ts"


def compute_destination_key(
    store: ObjectStore,
    source_key: str,
    video_id: uuid.UUID,
    bucket: StorageBucket = StorageBucket.MEDIA,
) -> str:
    """Derive the object key of the MP4 output.

    The source extension is swapped for ``.mp4``. A source that is already
    ``.mp4`` or has no extension gets a freshly generated key, so the
    output never overwrites its input.
    """
    root, extension = posixpath.splitext(source_key)
    if extension and extension.lower() != MP4_EXTENSION:
        return f"{root}{MP4_EXTENSION}"
    return store.generate_upload_key(bucket, f"{video_id}{MP4_EXTENSION}", "video")


class ProgressThrottle:
    """Limits how often encoder progress is written to the record.

    A value is persisted only if it exceeds the last persisted one by at
    least ``step`` points, except 100 which is always persisted. Write
    failures are logged and never interrupt the encode. ``on_error`` runs
    after a failed write; the executor uses it to roll back the session so
    later writes on it still go through.
    """

    def __init__(
        self,
        persist: Callable[[int], Awaitable[None]],
        step: int = 5,
        video_id: Optional[uuid.UUID] = None,
        on_error: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._persist = persist
        self._on_error = on_error
        self.step = step
        self.video_id = video_id
        self.last_persisted = -1

    def should_persist(self, progress: int) -> bool:
        if progress <= self.last_persisted:
            return False
        if progress < 100 and progress - self.last_persisted < self.step:
            return False
        return True

    async def __call__(self, progress: int) -> None:
        if not self.should_persist(progress):
            return
        self.last_persisted = progress
        try:
            await self._persist(progress)
        except Exception as e:
            logger.warning(
                "Failed to persist transcode progress",
                extra={"video_id": str(self.video_id), "progress": progress, "error": str(e)},
            )
            await self._recover()

    async def _recover(self) -> None:
        if self._on_error is None:
            return
        try:
            await self._on_error()
        except Exception as e:
            logger.warning(
                "Failed to recover after a progress write error",
                extra={"video_id": str(self.video_id), "error": str(e)},
            )


class TranscodeJobExecutor:
    """Runs a single transcode job end to end.

    The executor raises on any failure and never marks the record failed
    itself; outcome bookkeeping belongs to the caller. Scratch files are
    removed on every exit path.
    """

    def __init__(
        self,
        repository: VideoRepository,
        store: Optional[ObjectStore] = None,
        runner: Optional[FFmpegRunner] = None,
        thumbnails: Optional[ThumbnailGenerator] = None,
        tmp_dir: Optional[str] = None,
        stream_source: bool = False,
        progress_step: Optional[int] = None,
        downloader: Callable[[str, str], Awaitable[int]] = download_to_file,
    ):
        """Initialize the executor.

        Args:
            repository: Record store
            store: Object store adapter
            runner: ffmpeg invoker
            thumbnails: Optional generator fed the local MP4 after success
            tmp_dir: Scratch directory (settings or system temp dir if unset)
            stream_source: Let ffmpeg read the signed URL directly instead
                of downloading the source first
            progress_step: Minimum progress delta between persisted writes
            downloader: Coroutine fetching a URL to a local path
        """
        self.repository = repository
        self.store = store or get_object_store()
        self.runner = runner or FFmpegRunner()
        self.thumbnails = thumbnails
        self.tmp_dir = tmp_dir
        self.stream_source = stream_source
        self.progress_step = progress_step or settings.TRANSCODE_PROGRESS_STEP
        self.downloader = downloader

    async def execute_job(
        self,
        video_id: uuid.UUID,
        source_url: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> str:
        """Transcode a stored video to MP4.

        Args:
            video_id: Video record to update
            source_url: Stored URL of the transport stream
            bucket: Bucket namespace of the source and the output

        Returns:
            Public URL of the uploaded MP4

        Raises:
            KeyResolutionError: If the source key cannot be determined
            DownloadError: If fetching the source fails
            EncodeError: If ffmpeg fails
            UploadError: If uploading the MP4 fails
            ConfigurationError: If the bucket is not configured
        """
        source_key = self.store.extract_key(source_url, bucket)
        if not source_key:
            raise KeyResolutionError(f"Cannot resolve storage key from {source_url}")

        signed_url = self.store.signed_download_url(source_key, bucket)
        await self.repository.mark_processing(video_id)
        logger.info(
            "Transcode started",
            extra={"video_id": str(video_id), "source_key": source_key, "bucket": bucket.value},
        )

        tmp_dir = resolve_tmp_dir(self.tmp_dir)
        source_ext = os.path.splitext(strip_url_query(source_key))[1].lstrip(".")
        input_path = None
        output_path = scratch_path(tmp_dir, "transcode", video_id, "mp4")

        try:
            if self.stream_source:
                encoder_input = signed_url
            else:
                input_path = scratch_path(
                    tmp_dir,
                    "transcode",
                    video_id,
                    source_ext or DEFAULT_SOURCE_EXTENSION,
                    suffix="-source",
                )
                await self.downloader(signed_url, input_path)
                encoder_input = input_path

            throttle = ProgressThrottle(
                lambda progress: self.repository.update_progress(video_id, progress),
                step=self.progress_step,
                video_id=video_id,
                on_error=self.repository.rollback,
            )
            await self.runner.run_encode(encoder_input, output_path, throttle)

            destination_key = compute_destination_key(self.store, source_key, video_id, bucket)
            mp4_url = await self.store.upload_local_file(
                output_path, destination_key, MP4_MIME_TYPE, bucket
            )
            await self.repository.mark_ready(video_id, mp4_url)
            logger.info(
                "Transcode finished",
                extra={"video_id": str(video_id), "destination_key": destination_key},
            )

            if self.thumbnails is not None:
                await self.thumbnails.maybe_generate_thumbnail(video_id, output_path, bucket)

            return mp4_url
        finally:
            remove_quietly(input_path, output_path)


def create_executor(
    repository: VideoRepository,
    stream_source: bool = False,
    with_thumbnails: bool = True,
    tmp_dir: Optional[str] = None,
) -> TranscodeJobExecutor:
    """Wire an executor with the process-wide store and ffmpeg settings."""
    store = get_object_store()
    runner = FFmpegRunner()
    thumbnails = None
    if with_thumbnails:
        thumbnails = ThumbnailGenerator(repository, store, runner, tmp_dir=tmp_dir)
    return TranscodeJobExecutor(
        repository,
        store=store,
        runner=runner,
        thumbnails=thumbnails,
        tmp_dir=tmp_dir,
        stream_source=stream_source,
    )
