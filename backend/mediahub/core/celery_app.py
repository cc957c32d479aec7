"""Celery application configuration."""

import asyncio
from typing import Any, Coroutine, Optional

from celery import Celery, signals

from mediahub.core.config import settings
from mediahub.core.logging import setup_logging

celery_app = Celery(
    "mediahub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=6 * 3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "mediahub.modules.transcoding.tasks.*": {"queue": settings.TRANSCODE_QUEUE},
    },
)

celery_app.autodiscover_tasks(["mediahub.modules.transcoding"])


@signals.setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Use the structured application logging in Celery workers."""
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)


_worker_loop: Optional[asyncio.AbstractEventLoop] = None


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine on the worker process' persistent event loop.

    The async database engine pools connections per event loop, so every
    task executed by one worker process shares the same loop.
    """
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop.run_until_complete(coro)
