"""Video records module.

The service and router are imported from their modules directly; they
depend on the transcoding triggers.
"""

from mediahub.modules.video.media_types import (
    is_mp4,
    is_transport_stream,
    should_transcode_to_mp4,
)
from mediahub.modules.video.models import Video, VideoStatus
from mediahub.modules.video.repository import VideoRepository

__all__ = [
    # Models
    "Video",
    "VideoStatus",
    # Repositories
    "VideoRepository",
    # Container detection
    "is_mp4",
    "is_transport_stream",
    "should_transcode_to_mp4",
]
