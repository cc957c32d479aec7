"""Errors raised by the transcode pipeline.

Storage errors are re-exported so callers can import the whole taxonomy
from one place.
"""

from typing import Optional

from mediahub.core.storage import ConfigurationError, StorageError, UploadError


class TranscodeError(Exception):
    """Base exception for transcode pipeline errors."""
    pass


class KeyResolutionError(TranscodeError):
    """Raised when the object key of a stored URL cannot be determined."""
    pass


class DownloadError(TranscodeError):
    """Raised when the source file could not be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EncodeError(TranscodeError):
    """Raised when ffmpeg exits with a non-zero status.

    Attributes:
        returncode: Process exit status
        diagnostics: Tail of the process' diagnostic output
    """

    def __init__(self, message: str, returncode: Optional[int] = None, diagnostics: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.diagnostics = diagnostics


class InlineTranscodeDisabledError(ConfigurationError):
    """Raised when an inline transcode is requested but not allowed."""
    pass


__all__ = [
    "TranscodeError",
    "KeyResolutionError",
    "DownloadError",
    "EncodeError",
    "InlineTranscodeDisabledError",
    "ConfigurationError",
    "StorageError",
    "UploadError",
]
