"""FFmpeg invocation for MP4 transcodes, duration probes and frame grabs.

ffmpeg reports progress on stderr: an input ``Duration:`` line first, then
status lines carrying ``time=`` that are rewritten in place with carriage
returns. Both separators are treated as line breaks.
"""

import asyncio
import codecs
import logging
import math
import os
import re
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from mediahub.core.config import settings
from mediahub.modules.transcoding.errors import EncodeError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]

DURATION_RE = re.compile(r"Duration:\s*(\d+:\d+:\d+(?:\.\d+)?)")
TIME_RE = re.compile(r"time=\s*(\d+:\d+:\d+(?:\.\d+)?)")
LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

# Diagnostic lines kept for error reports
DIAGNOSTIC_TAIL_LINES = 200
READ_CHUNK_SIZE = 4096


def parse_ffmpeg_timestamp(value: str) -> Optional[float]:
    """Parse an ``HH:MM:SS(.fff)`` timestamp into seconds.

    Returns:
        Seconds, or None when the value is malformed
    """
    parts = value.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    except ValueError:
        return None
    total = hours * 3600 + minutes * 60 + seconds
    if not math.isfinite(total) or total < 0:
        return None
    return total


class FFmpegProgressParser:
    """Turns ffmpeg diagnostic lines into monotonic percentages.

    The first positive ``Duration:`` sets the denominator. Each ``time=``
    yields ``floor(clamp(time / duration, 0, 1) * 100)`` capped at 99, and
    only values strictly greater than the last emitted one are returned.
    100 is reserved for a successful exit.
    """

    def __init__(self):
        self.duration: Optional[float] = None
        self.last_progress = -1

    def feed(self, line: str) -> Optional[int]:
        """Parse one diagnostic line.

        Returns:
            New progress percentage, or None if the line did not advance it
        """
        if self.duration is None:
            match = DURATION_RE.search(line)
            if match:
                duration = parse_ffmpeg_timestamp(match.group(1))
                if duration and duration > 0:
                    self.duration = duration

        match = TIME_RE.search(line)
        if not match or not self.duration:
            return None

        current = parse_ffmpeg_timestamp(match.group(1))
        if current is None:
            return None

        ratio = min(max(current / self.duration, 0.0), 1.0)
        progress = min(99, math.floor(ratio * 100))
        if progress <= self.last_progress:
            return None
        self.last_progress = progress
        return progress


async def iter_output_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield decoded lines from a process pipe, splitting on CR and LF."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        # A trailing CR may be the first half of CRLF; wait for more data
        pieces = LINE_BREAK_RE.split(buffer[:-1] if buffer.endswith("\r") else buffer)
        remainder = pieces.pop()
        if buffer.endswith("\r"):
            remainder += "\r"
        buffer = remainder
        for piece in pieces:
            if piece:
                yield piece

    buffer += decoder.decode(b"", final=True)
    for piece in LINE_BREAK_RE.split(buffer):
        if piece:
            yield piece


@dataclass
class FFmpegConfig:
    """Configuration for the ffmpeg binaries."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    thumbnail_max_width: int = 1280

    @classmethod
    def from_settings(cls) -> "FFmpegConfig":
        return cls(
            ffmpeg_path=settings.FFMPEG_PATH,
            ffprobe_path=settings.FFPROBE_PATH,
            thumbnail_max_width=settings.THUMBNAIL_MAX_WIDTH,
        )


class FFmpegRunner:
    """Runs ffmpeg and ffprobe as asyncio subprocesses.

    A missing or non-executable binary raises the underlying ``OSError``
    (e.g. ``FileNotFoundError``); a non-zero exit raises ``EncodeError``.
    """

    def __init__(self, config: Optional[FFmpegConfig] = None):
        self.config = config or FFmpegConfig.from_settings()

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_encode_command(self, input_source: str, output_path: str) -> list[str]:
        """Build the H.264/AAC MP4 transcode command."""
        return [
            self.config.ffmpeg_path,
            "-y",
            "-i", input_source,
            "-c:v", "libx264",
            "-c:a", "aac",
            "-movflags", "+faststart",
            output_path,
        ]

    def build_probe_command(self, input_source: str) -> list[str]:
        return [
            self.config.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=nk=1:nw=1",
            input_source,
        ]

    def build_frame_command(
        self,
        input_source: str,
        output_path: str,
        seek_seconds: float = 0.0,
        use_thumbnail_filter: bool = True,
    ) -> list[str]:
        """Build a single-frame JPEG extraction command.

        Args:
            input_source: Local path or URL of the video
            output_path: JPEG destination
            seek_seconds: Input seek position; omitted when zero
            use_thumbnail_filter: Let ffmpeg pick a representative frame
                near the seek point
        """
        cmd = [self.config.ffmpeg_path, "-y", "-loglevel", "error"]
        if seek_seconds > 0:
            cmd.extend(["-ss", f"{seek_seconds:.3f}"])
        cmd.extend(["-i", input_source])

        scale = f"scale='min({self.config.thumbnail_max_width},iw)':-2"
        video_filter = f"thumbnail,{scale}" if use_thumbnail_filter else scale
        cmd.extend(["-vf", video_filter, "-frames:v", "1", "-q:v", "2", output_path])
        return cmd

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_process(self, cmd: list[str]) -> str:
        """Run a short-lived command to completion.

        Returns:
            Decoded stdout

        Raises:
            EncodeError: If the command exits non-zero
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            diagnostics = stderr.decode("utf-8", errors="replace").strip()
            raise EncodeError(
                diagnostics or f"{os.path.basename(cmd[0])} exited with code {process.returncode}",
                returncode=process.returncode,
                diagnostics=diagnostics,
            )
        return stdout.decode("utf-8", errors="replace")

    async def run_encode(
        self,
        input_source: str,
        output_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Transcode ``input_source`` into an MP4 at ``output_path``.

        ``on_progress`` is awaited in order with strictly increasing values
        below 100 while ffmpeg runs, then once with 100 after a clean exit.

        Args:
            input_source: Local path or URL readable by ffmpeg
            output_path: Destination MP4 path
            on_progress: Optional async progress callback

        Raises:
            EncodeError: If ffmpeg exits non-zero
        """
        cmd = self.build_encode_command(input_source, output_path)
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

        parser = FFmpegProgressParser()
        diagnostics: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        try:
            async for line in iter_output_lines(process.stderr):
                diagnostics.append(line)
                progress = parser.feed(line)
                if progress is not None and on_progress is not None:
                    await on_progress(progress)
        except BaseException:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise

        returncode = await process.wait()
        if returncode != 0:
            text = "\n".join(diagnostics).strip()
            raise EncodeError(
                text or f"ffmpeg exited with code {returncode}",
                returncode=returncode,
                diagnostics=text,
            )

        if on_progress is not None:
            await on_progress(100)

    async def probe_duration(self, input_source: str) -> Optional[float]:
        """Get the container duration in seconds.

        Returns:
            Duration, or None when ffprobe fails or reports no positive value
        """
        try:
            output = await self.run_process(self.build_probe_command(input_source))
        except (EncodeError, OSError) as e:
            logger.warning("Duration probe failed", extra={"input": input_source, "error": str(e)})
            return None

        try:
            duration = float(output.strip().splitlines()[0])
        except (IndexError, ValueError):
            return None
        if not math.isfinite(duration) or duration <= 0:
            return None
        return duration

    async def extract_frame(
        self,
        input_source: str,
        output_path: str,
        seek_seconds: float = 0.0,
    ) -> None:
        """Write one JPEG frame of the video to ``output_path``.

        Tries a representative frame near ``seek_seconds`` first. If that
        fails or produces no image, grabs the very first frame instead.

        Raises:
            EncodeError: If the fallback extraction fails too
        """
        try:
            await self.run_process(
                self.build_frame_command(input_source, output_path, seek_seconds)
            )
            if _has_content(output_path):
                return
            logger.info("Frame extraction produced no image, retrying from start")
        except EncodeError as e:
            logger.info("Frame extraction failed, retrying from start", extra={"error": str(e)})

        await self.run_process(
            self.build_frame_command(input_source, output_path, 0.0, use_thumbnail_filter=False)
        )
        if not _has_content(output_path):
            raise EncodeError("ffmpeg produced an empty thumbnail")


def _has_content(path: str) -> bool:
    try:
        return os.path.getsize(path) > 0
    except OSError:
        return False
