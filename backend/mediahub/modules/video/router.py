"""Video API router.

Implements ingestion of uploaded videos and signed direct-to-storage uploads.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from mediahub.core.database import get_db
from mediahub.core.storage import ConfigurationError, UploadError
from mediahub.modules.video.repository import VideoRepository
from mediahub.modules.video.schemas import (
    MultipartAbortRequest,
    MultipartCompleteRequest,
    MultipartCompleteResponse,
    MultipartInitResponse,
    MultipartPartUrlRequest,
    MultipartPartUrlResponse,
    UploadUrlRequest,
    UploadUrlResponse,
    VideoCreateRequest,
    VideoResponse,
)
from mediahub.modules.video.service import InvalidFileError, VideoNotFoundError, VideoService

router = APIRouter(prefix="/videos", tags=["videos"])


def get_video_repository(db: AsyncSession = Depends(get_db)) -> VideoRepository:
    return VideoRepository(db)


def get_video_service(
    repository: VideoRepository = Depends(get_video_repository),
) -> VideoService:
    return VideoService(repository)


@router.post("", response_model=VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    request: VideoCreateRequest,
    service: VideoService = Depends(get_video_service),
):
    """Register an uploaded video.

    Transport streams are created processing and queued for transcoding.
    """
    return await service.create_video(request)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: uuid.UUID,
    service: VideoService = Depends(get_video_service),
):
    """Get a video by ID."""
    try:
        return await service.get_video(video_id)
    except VideoNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    request: UploadUrlRequest,
    service: VideoService = Depends(get_video_service),
):
    """Issue a signed URL for uploading a video in a single request."""
    try:
        return service.create_upload_url(request)
    except (InvalidFileError, ConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/multipart", response_model=MultipartInitResponse)
async def start_multipart_upload(
    request: UploadUrlRequest,
    service: VideoService = Depends(get_video_service),
):
    """Start a multipart upload for a large video."""
    try:
        return await service.start_multipart_upload(request)
    except (InvalidFileError, ConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/multipart/part-url", response_model=MultipartPartUrlResponse)
async def create_part_upload_url(
    request: MultipartPartUrlRequest,
    service: VideoService = Depends(get_video_service),
):
    """Issue a signed URL for one part of a multipart upload."""
    try:
        url = service.create_part_upload_url(
            request.key, request.upload_id, request.part_number, request.storage_bucket
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return MultipartPartUrlResponse(url=url)


@router.post("/multipart/complete", response_model=MultipartCompleteResponse)
async def complete_multipart_upload(
    request: MultipartCompleteRequest,
    service: VideoService = Depends(get_video_service),
):
    """Assemble the uploaded parts into the final object."""
    try:
        return await service.complete_multipart_upload(
            request.key, request.upload_id, request.parts, request.storage_bucket
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/multipart/abort", status_code=status.HTTP_204_NO_CONTENT)
async def abort_multipart_upload(
    request: MultipartAbortRequest,
    service: VideoService = Depends(get_video_service),
):
    """Abort a multipart upload and discard its parts."""
    try:
        await service.abort_multipart_upload(
            request.key, request.upload_id, request.storage_bucket
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

