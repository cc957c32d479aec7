"""Transcode triggers: deferred Celery tasks and inline execution.

Every trigger funnels through ``run_transcode_job``, the single place that
turns an executor outcome into record state, logs and metrics.
"""

import logging
import os
import time
import uuid
from typing import Mapping, Optional, Union

from celery import Task

from mediahub.core.celery_app import celery_app, run_async
from mediahub.core.config import settings
from mediahub.core.database import async_session_maker
from mediahub.core.logging import correlation_scope
from mediahub.core.metrics import (
    TRANSCODE_JOB_DURATION_SECONDS,
    TRANSCODE_JOBS_IN_PROGRESS,
    TRANSCODE_JOBS_TOTAL,
)
from mediahub.core.storage import StorageBucket, get_object_store, parse_storage_bucket
from mediahub.modules.transcoding.errors import InlineTranscodeDisabledError
from mediahub.modules.transcoding.service import TranscodeJobExecutor, create_executor
from mediahub.modules.transcoding.thumbnail import ThumbnailGenerator
from mediahub.modules.video.media_types import should_transcode_to_mp4
from mediahub.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

# Environment markers of serverless / short-lived runtimes
EPHEMERAL_RUNTIME_MARKERS = (
    "VERCEL",
    "AWS_LAMBDA_FUNCTION_NAME",
    "NETLIFY",
    "FUNCTION_TARGET",
    "FUNCTIONS_WORKER_RUNTIME",
)


def is_ephemeral_runtime(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Detect serverless runtimes that cannot host long encodes."""
    environ = os.environ if environ is None else environ
    return any(environ.get(marker) for marker in EPHEMERAL_RUNTIME_MARKERS)


def inline_transcode_allowed(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Check whether a transcode may run inside the calling process."""
    return settings.TRANSCODE_INLINE_ENABLED and not is_ephemeral_runtime(environ)


def describe_error(error: BaseException) -> str:
    """Short error summary stored on the record."""
    message = str(error).strip()
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


async def run_transcode_job(
    repository: VideoRepository,
    executor: TranscodeJobExecutor,
    video_id: uuid.UUID,
    source_url: str,
    bucket: StorageBucket = StorageBucket.MEDIA,
    trigger: str = "queue",
) -> bool:
    """Execute one job and record its outcome.

    On failure the error is logged with its stack trace and the record is
    marked failed; a failure to mark it is logged as well.

    Args:
        repository: Record store used for failure bookkeeping
        executor: Executor bound to the same record store
        video_id: Video to transcode
        source_url: Stored URL of the source
        bucket: Bucket namespace
        trigger: Metrics label of the calling trigger

    Returns:
        True if the transcode succeeded
    """
    with correlation_scope(str(video_id)):
        return await _run_job(repository, executor, video_id, source_url, bucket, trigger)


async def _run_job(
    repository: VideoRepository,
    executor: TranscodeJobExecutor,
    video_id: uuid.UUID,
    source_url: str,
    bucket: StorageBucket,
    trigger: str,
) -> bool:
    TRANSCODE_JOBS_IN_PROGRESS.inc()
    start_time = time.perf_counter()
    try:
        await executor.execute_job(video_id, source_url, bucket)
        TRANSCODE_JOBS_TOTAL.labels(trigger=trigger, status="success").inc()
        return True
    except Exception as e:
        TRANSCODE_JOBS_TOTAL.labels(trigger=trigger, status="failed").inc()
        logger.error(
            "Transcode failed",
            extra={"video_id": str(video_id), "trigger": trigger, "error": str(e)},
            exc_info=True,
        )
        try:
            await repository.rollback()
            await repository.mark_failed(video_id, describe_error(e))
        except Exception as mark_error:
            logger.error(
                "Failed to mark transcode as failed",
                extra={"video_id": str(video_id), "error": str(mark_error)},
                exc_info=True,
            )
        return False
    finally:
        TRANSCODE_JOB_DURATION_SECONDS.labels(trigger=trigger).observe(
            time.perf_counter() - start_time
        )
        TRANSCODE_JOBS_IN_PROGRESS.dec()


async def run_inline_transcode(
    repository: VideoRepository,
    video_id: uuid.UUID,
    source_url: str,
    bucket: StorageBucket = StorageBucket.MEDIA,
    executor: Optional[TranscodeJobExecutor] = None,
) -> bool:
    """Run a transcode synchronously in the calling process.

    Raises:
        InlineTranscodeDisabledError: If inline execution is switched off or
            the process runs in an ephemeral runtime
    """
    if not inline_transcode_allowed():
        raise InlineTranscodeDisabledError(
            "Inline transcoding is disabled in this environment; "
            "enqueue the job for the transcode worker instead"
        )
    executor = executor or create_executor(repository)
    return await run_transcode_job(
        repository, executor, video_id, source_url, bucket, trigger="inline"
    )


# ============================================
# Celery tasks
# ============================================

class TranscodeTask(Task):
    """Base task for transcode pipeline operations.

    Jobs are never retried automatically: a failed job is left in the
    failed state for an operator to re-trigger.
    """
    abstract = True
    max_retries = 0


async def _transcode_video_async(video_id: str, source_url: str, bucket: str) -> dict:
    async with async_session_maker() as session:
        repository = VideoRepository(session)
        success = await run_transcode_job(
            repository,
            create_executor(repository),
            uuid.UUID(video_id),
            source_url,
            parse_storage_bucket(bucket),
            trigger="queue",
        )
    return {"video_id": video_id, "success": success}


@celery_app.task(bind=True, base=TranscodeTask)
def transcode_video_task(self: TranscodeTask, video_id: str, source_url: str, bucket: str) -> dict:
    """Transcode a stored transport stream to MP4.

    Args:
        video_id: UUID of the video record
        source_url: Stored URL of the source
        bucket: Bucket namespace tag

    Returns:
        dict: Job outcome
    """
    return run_async(_transcode_video_async(video_id, source_url, bucket))


async def _generate_thumbnail_async(video_id: str, source_url: str, bucket: str) -> dict:
    with correlation_scope(video_id):
        async with async_session_maker() as session:
            repository = VideoRepository(session)
            generator = ThumbnailGenerator(repository, get_object_store())
            url = await generator.maybe_generate_thumbnail(
                uuid.UUID(video_id), source_url, parse_storage_bucket(bucket)
            )
    return {"video_id": video_id, "thumbnail_url": url}


@celery_app.task(bind=True, base=TranscodeTask)
def generate_thumbnail_task(self: TranscodeTask, video_id: str, source_url: str, bucket: str) -> dict:
    """Generate a thumbnail for a video that has none."""
    return run_async(_generate_thumbnail_async(video_id, source_url, bucket))


def enqueue_video_transcode(
    video_id: uuid.UUID,
    video_url: str,
    mime_type: Optional[str] = None,
    bucket: Union[StorageBucket, str, None] = StorageBucket.MEDIA,
) -> bool:
    """Schedule a transcode if the video needs one.

    Returns:
        True if a job was queued
    """
    if not should_transcode_to_mp4(video_url, mime_type):
        return False
    transcode_video_task.delay(str(video_id), video_url, parse_storage_bucket(bucket).value)
    logger.info("Transcode queued", extra={"video_id": str(video_id)})
    return True


def enqueue_video_thumbnail(
    video_id: uuid.UUID,
    video_url: str,
    bucket: Union[StorageBucket, str, None] = StorageBucket.MEDIA,
) -> bool:
    """Schedule thumbnail generation from the stored video.

    Returns:
        True if a job was queued
    """
    if not video_url:
        return False
    generate_thumbnail_task.delay(str(video_id), video_url, parse_storage_bucket(bucket).value)
    return True
