"""Container detection for stored video files."""

from typing import Optional

TRANSPORT_STREAM_MIME_TYPE = "video/mp2t"
TRANSPORT_STREAM_EXTENSION = ".ts"
MP4_MIME_TYPE = "video/mp4"
MP4_EXTENSION = ".mp4"


def strip_url_query(url: str) -> str:
    """Drop the query string and fragment of a URL or path."""
    return url.split("#", 1)[0].split("?", 1)[0]


def _url_extension_is(url: Optional[str], extension: str) -> bool:
    if not url:
        return False
    return strip_url_query(url).strip().lower().endswith(extension)


def _mime_is(mime_type: Optional[str], expected: str) -> bool:
    return bool(mime_type) and mime_type.strip().lower() == expected


def is_mp4(video_url: Optional[str], mime_type: Optional[str] = None) -> bool:
    """Check whether a stored video is already an MP4 file."""
    return _mime_is(mime_type, MP4_MIME_TYPE) or _url_extension_is(video_url, MP4_EXTENSION)


def is_transport_stream(video_url: Optional[str], mime_type: Optional[str] = None) -> bool:
    """Check whether a stored video is an MPEG transport stream."""
    return (
        _mime_is(mime_type, TRANSPORT_STREAM_MIME_TYPE)
        or _url_extension_is(video_url, TRANSPORT_STREAM_EXTENSION)
    )


def should_transcode_to_mp4(video_url: Optional[str], mime_type: Optional[str] = None) -> bool:
    """Decide whether a video must be transcoded to MP4.

    True for transport streams that are not already a finished MP4
    (MP4 MIME type served from an ``.mp4`` URL).
    """
    if not video_url:
        return False
    if _mime_is(mime_type, MP4_MIME_TYPE) and _url_extension_is(video_url, MP4_EXTENSION):
        return False
    return is_transport_stream(video_url, mime_type)
