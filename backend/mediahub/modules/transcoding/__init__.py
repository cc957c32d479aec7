"""Transcode pipeline module.

Converts transport-stream uploads to MP4, tracks progress on the video
record and generates thumbnails.
"""

from mediahub.modules.transcoding.errors import (
    DownloadError,
    EncodeError,
    InlineTranscodeDisabledError,
    KeyResolutionError,
    TranscodeError,
)
from mediahub.modules.transcoding.ffmpeg import (
    FFmpegConfig,
    FFmpegProgressParser,
    FFmpegRunner,
    parse_ffmpeg_timestamp,
)
from mediahub.modules.transcoding.service import (
    ProgressThrottle,
    TranscodeJobExecutor,
    compute_destination_key,
    create_executor,
)
from mediahub.modules.transcoding.tasks import (
    enqueue_video_thumbnail,
    enqueue_video_transcode,
    inline_transcode_allowed,
    is_ephemeral_runtime,
    run_inline_transcode,
    run_transcode_job,
)
from mediahub.modules.transcoding.thumbnail import ThumbnailGenerator, pick_thumbnail_timestamp

__all__ = [
    # Errors
    "TranscodeError",
    "KeyResolutionError",
    "DownloadError",
    "EncodeError",
    "InlineTranscodeDisabledError",
    # FFmpeg
    "FFmpegConfig",
    "FFmpegProgressParser",
    "FFmpegRunner",
    "parse_ffmpeg_timestamp",
    # Executor
    "ProgressThrottle",
    "TranscodeJobExecutor",
    "compute_destination_key",
    "create_executor",
    # Thumbnails
    "ThumbnailGenerator",
    "pick_thumbnail_timestamp",
    # Triggers
    "enqueue_video_transcode",
    "enqueue_video_thumbnail",
    "inline_transcode_allowed",
    "is_ephemeral_runtime",
    "run_inline_transcode",
    "run_transcode_job",
]
