"""Pydantic schemas for transcode triggers and progress."""

import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

# Numeric "since" values below this are epoch seconds, otherwise milliseconds
EPOCH_MILLISECONDS_THRESHOLD = 1e12

MAX_BATCH_LIMIT = 1000
DEFAULT_BATCH_LIMIT = 200


def parse_since_date(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse a ``since`` filter.

    Accepts epoch seconds, epoch milliseconds, or an ISO-8601 date.

    Raises:
        ValueError: If the value cannot be interpreted
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    else:
        number = float(value)

    if not math.isfinite(number):
        raise ValueError(f"Invalid since value: {value}")
    seconds = number if number < EPOCH_MILLISECONDS_THRESHOLD else number / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Invalid since value: {value}") from e


class TranscodeBatchRequest(BaseModel):
    """Request schema for batch-enqueueing transport-stream videos."""

    limit: int = Field(DEFAULT_BATCH_LIMIT, ge=1, le=MAX_BATCH_LIMIT)
    since: Optional[datetime] = None
    ids: Optional[list[uuid.UUID]] = None
    dry_run: bool = False

    @field_validator("since", mode="before")
    @classmethod
    def validate_since(cls, v):
        return parse_since_date(v)


class TranscodeBatchResponse(BaseModel):
    """Response schema for batch enqueue."""

    matched: int
    queued: int
    ids: list[uuid.UUID]


class TranscodeTriggerResponse(BaseModel):
    """Response schema for a single-video transcode trigger."""

    video_id: uuid.UUID
    mode: str  # "inline" or "queued"
    queued: bool = False
    success: Optional[bool] = None


class TranscodeStatusResponse(BaseModel):
    """Transcode state of a video, polled by viewers."""

    video_id: uuid.UUID
    status: str
    transcode_progress: Optional[int] = None
    video_url: str
    mime_type: Optional[str] = None
    last_error: Optional[str] = None


class ThumbnailTriggerResponse(BaseModel):
    video_id: uuid.UUID
    queued: bool


class MarkReadyRequest(BaseModel):
    """Request schema for reconciling MP4 videos stuck in processing."""

    ids: Optional[list[uuid.UUID]] = None


class MarkReadyResponse(BaseModel):
    updated: int
