"""Tests for the video repository against a real database.

Runs the SQLAlchemy queries on a file-backed SQLite database, so ordering,
the pending-job filter, the container predicates and the conditional
thumbnail write are checked as SQL rather than through the in-memory fake.
"""

import random
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import make_object_store, make_s3_client
from mediahub.core.database import Base
from mediahub.modules.transcoding.thumbnail import ThumbnailGenerator
from mediahub.modules.video.models import Video, VideoStatus
from mediahub.modules.video.repository import MAX_ERROR_LENGTH, VideoRepository

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@asynccontextmanager
async def sqlite_repository(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'videos.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            yield VideoRepository(session)
    finally:
        await engine.dispose()


async def add_video(repository: VideoRepository, minutes: int = 0, **overrides) -> Video:
    """Insert a processing transport stream updated ``minutes`` after BASE_TIME."""
    timestamp = BASE_TIME + timedelta(minutes=minutes)
    values = {
        "title": "Clip",
        "video_url": f"https://cdn.example.com/media/videos/{uuid.uuid4().hex}.ts",
        "mime_type": None,
        "storage_bucket": "media",
        "status": VideoStatus.PROCESSING.value,
        "transcode_progress": 0,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    values.update(overrides)
    video = Video(**values)
    repository.session.add(video)
    await repository.session.commit()
    return video


class FrameRunner:
    async def probe_duration(self, input_source):
        return 4.0

    async def extract_frame(self, input_source, output_path, seek_seconds=0.0):
        with open(output_path, "wb") as fh:
            fh.write(b"jpeg")


class TestFetchNextTranscodeJob:
    @pytest.mark.asyncio
    async def test_oldest_updated_job_first(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            newer = await add_video(repository, minutes=5)
            older = await add_video(repository, minutes=1)

            job = await repository.fetch_next_transcode_job()

            assert job.id == older.id
            assert job.id != newer.id

    @pytest.mark.asyncio
    async def test_pending_filter(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            await add_video(repository, minutes=1, transcode_progress=100)
            await add_video(repository, minutes=2, status=VideoStatus.READY.value)
            await add_video(repository, minutes=3, status=VideoStatus.FAILED.value)
            await add_video(
                repository,
                minutes=4,
                video_url="https://cdn.example.com/media/videos/a.mp4",
                mime_type="video/mp4",
            )
            no_progress = await add_video(repository, minutes=5, transcode_progress=None)

            job = await repository.fetch_next_transcode_job()

            assert job.id == no_progress.id

    @pytest.mark.asyncio
    async def test_nothing_pending(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            await add_video(repository, status=VideoStatus.READY.value, transcode_progress=None)

            assert await repository.fetch_next_transcode_job() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "video_url, mime_type",
        [
            ("https://cdn.example.com/media/videos/A.TS", None),
            ("https://cdn.example.com/media/videos/a.ts?X-Amz-Signature=abc", None),
            ("https://cdn.example.com/media/videos/a.ts#t=10", None),
            ("https://cdn.example.com/media/videos/stream", "VIDEO/MP2T"),
        ],
    )
    async def test_transport_stream_predicate(self, tmp_path, video_url, mime_type) -> None:
        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(repository, video_url=video_url, mime_type=mime_type)

            job = await repository.fetch_next_transcode_job()

            assert job is not None
            assert job.id == video.id

    @pytest.mark.asyncio
    async def test_ts_inside_path_is_not_a_transport_stream(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            await add_video(repository, video_url="https://cdn.example.com/media/a.tsx")
            await add_video(repository, video_url="https://cdn.example.com/media/a.ts.mp4")

            assert await repository.fetch_next_transcode_job() is None


class TestPipelineWrites:
    @pytest.mark.asyncio
    async def test_progress_and_ready(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(repository, last_transcode_error="old error")

            await repository.mark_processing(video.id)
            await repository.update_progress(video.id, 40)
            stored = await repository.get_by_id(video.id)
            await repository.session.refresh(stored)
            assert stored.transcode_progress == 40
            assert stored.last_transcode_error is None

            await repository.mark_ready(video.id, "https://cdn.example.com/media/videos/a.mp4")
            await repository.session.refresh(stored)
            assert stored.status == VideoStatus.READY.value
            assert stored.transcode_progress == 100
            assert stored.mime_type == "video/mp4"
            assert await repository.fetch_next_transcode_job() is None

    @pytest.mark.asyncio
    async def test_failure_message_is_truncated(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(repository)

            await repository.mark_failed(video.id, "x" * (MAX_ERROR_LENGTH + 500))

            stored = await repository.get_by_id(video.id)
            await repository.session.refresh(stored)
            assert stored.status == VideoStatus.FAILED.value
            assert len(stored.last_transcode_error) == MAX_ERROR_LENGTH

    @pytest.mark.asyncio
    async def test_mark_mp4_videos_ready(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            mp4 = await add_video(
                repository, video_url="https://cdn.example.com/media/videos/a.MP4?sig=1"
            )
            other_mp4 = await add_video(
                repository, video_url="https://cdn.example.com/media/videos/b.mp4"
            )
            await add_video(repository)

            assert await repository.mark_mp4_videos_ready(ids=[mp4.id]) == 1
            assert await repository.mark_mp4_videos_ready() == 1

            for video_id in (mp4.id, other_mp4.id):
                stored = await repository.get_by_id(video_id)
                await repository.session.refresh(stored)
                assert stored.status == VideoStatus.READY.value

    @pytest.mark.asyncio
    async def test_find_transcode_candidates(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            old = await add_video(repository, minutes=1, status=VideoStatus.READY.value)
            middle = await add_video(repository, minutes=2)
            new = await add_video(repository, minutes=3, status=VideoStatus.FAILED.value)
            await add_video(repository, minutes=4, video_url="https://cdn.example.com/a.mp4")

            everything = await repository.find_transcode_candidates()
            recent = await repository.find_transcode_candidates(
                since=BASE_TIME + timedelta(minutes=1, seconds=30)
            )
            selected = await repository.find_transcode_candidates(ids=[old.id])

            assert [video.id for video in everything] == [new.id, middle.id, old.id]
            assert [video.id for video in recent] == [new.id, middle.id]
            assert [video.id for video in selected] == [old.id]


class TestThumbnailWrites:
    @pytest.mark.asyncio
    async def test_set_only_when_missing(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(repository)

            assert await repository.needs_thumbnail(video.id) is True
            assert await repository.set_thumbnail_if_missing(video.id, "https://cdn/first.jpg")
            assert not await repository.set_thumbnail_if_missing(video.id, "https://cdn/second.jpg")
            assert await repository.needs_thumbnail(video.id) is False

            stored = await repository.get_by_id(video.id)
            await repository.session.refresh(stored)
            assert stored.thumbnail_url == "https://cdn/first.jpg"

    @pytest.mark.asyncio
    async def test_empty_thumbnail_counts_as_missing(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(repository, thumbnail_url="")

            assert await repository.needs_thumbnail(video.id) is True
            assert await repository.set_thumbnail_if_missing(video.id, "https://cdn/a.jpg")
            assert await repository.needs_thumbnail(video.id) is False

    @pytest.mark.asyncio
    async def test_unknown_video_needs_no_thumbnail(self, tmp_path) -> None:
        async with sqlite_repository(tmp_path) as repository:
            assert await repository.needs_thumbnail(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_generator_fills_empty_thumbnail_once(self, tmp_path) -> None:
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        local = tmp_path / "output.mp4"
        local.write_bytes(b"mp4")
        client = make_s3_client()

        async with sqlite_repository(tmp_path) as repository:
            video = await add_video(
                repository,
                video_url="https://cdn.example.com/media/videos/a.mp4",
                status=VideoStatus.READY.value,
                thumbnail_url="",
            )
            generator = ThumbnailGenerator(
                repository,
                make_object_store(client),
                runner=FrameRunner(),
                tmp_dir=str(scratch),
                rng=random.Random(3),
            )

            first = await generator.maybe_generate_thumbnail(video.id, str(local))
            second = await generator.maybe_generate_thumbnail(video.id, str(local))

            assert first is not None
            assert second is None
            assert client.upload_file.call_count == 1
