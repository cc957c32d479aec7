"""Pydantic schemas for video ingestion and direct-to-storage uploads."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from mediahub.core.storage import StorageBucket

ALLOWED_VIDEO_EXTENSIONS = {".mp4", ".ts", ".m4v", ".mov", ".mkv", ".webm"}
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000
# S3 multipart uploads allow at most 10,000 parts
MAX_UPLOAD_PARTS = 10000


class VideoCreateRequest(BaseModel):
    """Request schema for registering an uploaded video."""

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    video_url: str = Field(..., min_length=1, max_length=2048)
    mime_type: Optional[str] = Field(None, max_length=100)
    storage_bucket: StorageBucket = StorageBucket.MEDIA
    thumbnail_url: Optional[str] = Field(None, max_length=2048)
    file_size: Optional[int] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=0)

    @field_validator("thumbnail_url", mode="before")
    @classmethod
    def blank_thumbnail_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class VideoResponse(BaseModel):
    """Response schema for a video record."""

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    video_url: str
    mime_type: Optional[str] = None
    storage_bucket: str
    thumbnail_url: Optional[str] = None
    status: str
    transcode_progress: Optional[int] = None
    last_transcode_error: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UploadUrlRequest(BaseModel):
    """Request schema for a signed single-request upload URL."""

    filename: str = Field(..., min_length=1, max_length=512)
    content_type: str = Field(..., min_length=1, max_length=100)
    storage_bucket: StorageBucket = StorageBucket.MEDIA


class UploadUrlResponse(BaseModel):
    key: str
    upload_url: str
    public_url: str


class MultipartInitResponse(BaseModel):
    key: str
    upload_id: str
    public_url: str


class MultipartPartUrlRequest(BaseModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    part_number: int = Field(..., ge=1, le=MAX_UPLOAD_PARTS)
    storage_bucket: StorageBucket = StorageBucket.MEDIA


class MultipartPartUrlResponse(BaseModel):
    url: str


class CompletedPart(BaseModel):
    part_number: int = Field(..., ge=1, le=MAX_UPLOAD_PARTS)
    etag: str = Field(..., min_length=1)


class MultipartCompleteRequest(BaseModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    parts: list[CompletedPart] = Field(..., min_length=1, max_length=MAX_UPLOAD_PARTS)
    storage_bucket: StorageBucket = StorageBucket.MEDIA


class MultipartCompleteResponse(BaseModel):
    key: str
    public_url: str


class MultipartAbortRequest(BaseModel):
    key: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    storage_bucket: StorageBucket = StorageBucket.MEDIA
