"""Scratch files for transcode and thumbnail jobs."""

import logging
import os
import tempfile
import time
from typing import Optional

from mediahub.core.config import settings

logger = logging.getLogger(__name__)


def resolve_tmp_dir(tmp_dir: Optional[str] = None) -> str:
    """Get the scratch directory, creating it if needed."""
    path = tmp_dir or settings.TRANSCODE_TMP_DIR or tempfile.gettempdir()
    os.makedirs(path, exist_ok=True)
    return path


def scratch_path(tmp_dir: str, kind: str, video_id, extension: str, suffix: str = "") -> str:
    """Build a per-job scratch file path like ``transcode-<id>-<ms>.mp4``."""
    stamp = int(time.time() * 1000)
    return os.path.join(tmp_dir, f"{kind}-{video_id}-{stamp}{suffix}.{extension.lstrip('.')}")


def remove_quietly(*paths: Optional[str]) -> None:
    """Delete scratch files, logging instead of raising on failure."""
    for path in paths:
        if not path:
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove scratch file", extra={"path": path, "error": str(e)})
