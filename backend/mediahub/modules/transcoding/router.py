"""Transcode API router.

Exposes batch and single-video transcode triggers, thumbnail triggers and
the progress view polled by viewers.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mediahub.core.storage import parse_storage_bucket
from mediahub.modules.transcoding.errors import InlineTranscodeDisabledError
from mediahub.modules.transcoding.schemas import (
    MarkReadyRequest,
    MarkReadyResponse,
    ThumbnailTriggerResponse,
    TranscodeBatchRequest,
    TranscodeBatchResponse,
    TranscodeStatusResponse,
    TranscodeTriggerResponse,
)
from mediahub.modules.transcoding.tasks import (
    enqueue_video_thumbnail,
    enqueue_video_transcode,
    run_inline_transcode,
)
from mediahub.modules.video.media_types import should_transcode_to_mp4
from mediahub.modules.video.models import Video
from mediahub.modules.video.repository import VideoRepository
from mediahub.modules.video.router import get_video_repository

router = APIRouter(tags=["transcoding"])


async def _get_video_or_404(repository: VideoRepository, video_id: uuid.UUID) -> Video:
    video = await repository.get_by_id(video_id)
    if not video:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Video {video_id} not found",
        )
    return video


@router.post("/admin/videos/transcode", response_model=TranscodeBatchResponse)
async def batch_transcode(
    request: TranscodeBatchRequest,
    repository: VideoRepository = Depends(get_video_repository),
):
    """Queue transcodes for transport-stream videos.

    Matches the most recently updated videos first. With ``dry_run`` the
    matches are reported without queueing anything.
    """
    videos = await repository.find_transcode_candidates(
        ids=request.ids,
        since=request.since,
        limit=request.limit,
    )

    queued = 0
    if not request.dry_run:
        for video in videos:
            if enqueue_video_transcode(
                video.id, video.video_url, video.mime_type, video.storage_bucket
            ):
                queued += 1

    return TranscodeBatchResponse(
        matched=len(videos),
        queued=queued,
        ids=[video.id for video in videos],
    )


@router.post("/admin/videos/mark-ready", response_model=MarkReadyResponse)
async def mark_mp4_videos_ready(
    request: MarkReadyRequest,
    repository: VideoRepository = Depends(get_video_repository),
):
    """Mark processing videos that already are MP4 files as ready."""
    updated = await repository.mark_mp4_videos_ready(request.ids)
    return MarkReadyResponse(updated=updated)


@router.post("/videos/{video_id}/transcode", response_model=TranscodeTriggerResponse)
async def trigger_transcode(
    video_id: uuid.UUID,
    inline: bool = Query(False, description="Run in this process instead of queueing"),
    repository: VideoRepository = Depends(get_video_repository),
):
    """Transcode one video, inline or through the queue."""
    video = await _get_video_or_404(repository, video_id)
    if not should_transcode_to_mp4(video.video_url, video.mime_type):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Video does not require transcoding",
        )

    bucket = parse_storage_bucket(video.storage_bucket)
    if inline:
        try:
            success = await run_inline_transcode(repository, video.id, video.video_url, bucket)
        except InlineTranscodeDisabledError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return TranscodeTriggerResponse(video_id=video.id, mode="inline", success=success)

    queued = enqueue_video_transcode(video.id, video.video_url, video.mime_type, bucket)
    return TranscodeTriggerResponse(video_id=video.id, mode="queued", queued=queued)


@router.get("/videos/{video_id}/transcode", response_model=TranscodeStatusResponse)
async def get_transcode_status(
    video_id: uuid.UUID,
    repository: VideoRepository = Depends(get_video_repository),
):
    """Get the transcode status and progress of a video."""
    video = await _get_video_or_404(repository, video_id)
    return TranscodeStatusResponse(
        video_id=video.id,
        status=video.status,
        transcode_progress=video.transcode_progress,
        video_url=video.video_url,
        mime_type=video.mime_type,
        last_error=video.last_transcode_error,
    )


@router.post(
    "/videos/{video_id}/thumbnail",
    response_model=ThumbnailTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_thumbnail(
    video_id: uuid.UUID,
    repository: VideoRepository = Depends(get_video_repository),
):
    """Queue thumbnail generation for a video without one."""
    video = await _get_video_or_404(repository, video_id)
    if video.thumbnail_url:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Video already has a thumbnail",
        )
    queued = enqueue_video_thumbnail(video.id, video.video_url, video.storage_bucket)
    return ThumbnailTriggerResponse(video_id=video.id, queued=queued)
