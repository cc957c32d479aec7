"""Streaming download of source videos to local disk."""

import asyncio
import logging
from typing import Optional

import httpx

from mediahub.core.config import settings
from mediahub.modules.transcoding.errors import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


async def download_to_file(
    url: str,
    target_path: str,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Stream ``url`` into ``target_path`` without buffering it in memory.

    Args:
        url: Source URL (typically a signed object-store URL)
        target_path: Local destination path
        timeout: Per-operation network timeout in seconds
        transport: Optional httpx transport

    Returns:
        Number of bytes written

    Raises:
        DownloadError: On a non-success HTTP status or a network error
    """
    read_timeout = timeout or settings.TRANSCODE_DOWNLOAD_TIMEOUT_SECONDS
    written = 0
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout),
            follow_redirects=True,
            transport=transport,
        ) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise DownloadError(
                        f"Failed to download source video ({response.status_code})",
                        status_code=response.status_code,
                    )
                with open(target_path, "wb") as fh:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        await asyncio.to_thread(fh.write, chunk)
                        written += len(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download source video: {e}") from e

    logger.info("Downloaded source video", extra={"path": target_path, "bytes": written})
    return written
