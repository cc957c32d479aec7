"""Standalone polling worker that drains pending transcode jobs.

Run with ``mediahub-transcode-worker`` (or ``python -m
mediahub.modules.transcoding.worker``). One worker processes one job at a
time; running several against the same database may double-process jobs.
"""

import asyncio
import logging
import signal
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mediahub.core.config import settings
from mediahub.core.database import async_session_maker
from mediahub.core.logging import setup_logging
from mediahub.core.metrics import TRANSCODE_WORKER_POLLS_TOTAL, serve_metrics
from mediahub.core.storage import parse_storage_bucket
from mediahub.modules.transcoding.service import TranscodeJobExecutor, create_executor
from mediahub.modules.transcoding.tasks import run_transcode_job
from mediahub.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


class TranscodeWorker:
    """Polls the record store for pending jobs and runs them sequentially."""

    def __init__(
        self,
        session_maker=async_session_maker,
        repository_factory: Callable[[AsyncSession], VideoRepository] = VideoRepository,
        executor_factory: Optional[Callable[[VideoRepository], TranscodeJobExecutor]] = None,
        poll_interval_ms: Optional[int] = None,
        idle_delay_ms: Optional[int] = None,
        tmp_dir: Optional[str] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the worker.

        Args:
            session_maker: Factory of async database sessions
            repository_factory: Builds the record store for a session
            executor_factory: Builds the executor for a record store
            poll_interval_ms: Cooldown after a failed job
            idle_delay_ms: Delay between polls when no job is pending
            tmp_dir: Scratch directory for the executor
            sleep: Sleep coroutine; by default the worker waits on its stop
                event so a shutdown interrupts the delay
        """
        self.session_maker = session_maker
        self.repository_factory = repository_factory
        self.executor_factory = executor_factory or self._default_executor
        self.poll_interval = (poll_interval_ms or settings.TRANSCODE_POLL_INTERVAL_MS) / 1000
        self.idle_delay = (idle_delay_ms or settings.transcode_idle_delay_ms) / 1000
        self.tmp_dir = tmp_dir
        self.sleep = sleep

    def _default_executor(self, repository: VideoRepository) -> TranscodeJobExecutor:
        return create_executor(
            repository,
            stream_source=settings.TRANSCODE_WORKER_STREAM_SOURCE,
            tmp_dir=self.tmp_dir,
        )

    async def run_once(self) -> Optional[bool]:
        """Fetch and run the oldest pending job.

        Returns:
            None when no job was pending, otherwise whether the job succeeded
        """
        async with self.session_maker() as session:
            repository = self.repository_factory(session)
            job = await repository.fetch_next_transcode_job()
            if job is None:
                TRANSCODE_WORKER_POLLS_TOTAL.labels(result="idle").inc()
                return None

            TRANSCODE_WORKER_POLLS_TOTAL.labels(result="claimed").inc()
            logger.info("Picked up transcode job", extra={"video_id": str(job.id)})
            return await run_transcode_job(
                repository,
                self.executor_factory(repository),
                job.id,
                job.video_url,
                parse_storage_bucket(job.storage_bucket),
                trigger="worker",
            )

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll until ``stop_event`` is set.

        Sleeps the idle delay after an empty poll and the poll interval after
        a failed job; a successful job is followed by an immediate poll.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Transcode worker started",
            extra={"poll_interval_s": self.poll_interval, "idle_delay_s": self.idle_delay},
        )
        while not stop_event.is_set():
            try:
                outcome = await self.run_once()
            except Exception as e:
                logger.error("Transcode worker poll failed", extra={"error": str(e)}, exc_info=True)
                outcome = False

            if outcome is None:
                await self._pause(self.idle_delay, stop_event)
            elif outcome is False:
                await self._pause(self.poll_interval, stop_event)
        logger.info("Transcode worker stopped")

    async def _pause(self, seconds: float, stop_event: asyncio.Event) -> None:
        if self.sleep is not None:
            await self.sleep(seconds)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


async def _main() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    await TranscodeWorker().run_forever(stop_event)


def main() -> None:
    """Console entrypoint for the polling worker."""
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    if settings.TRANSCODE_WORKER_METRICS_PORT:
        serve_metrics(settings.TRANSCODE_WORKER_METRICS_PORT)
    asyncio.run(_main())


if __name__ == "__main__":
    main()
