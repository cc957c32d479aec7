"""Tests for video ingestion and direct-to-storage uploads."""

from unittest.mock import MagicMock, patch

import pytest
from kombu.exceptions import OperationalError

from conftest import FakeVideoRepository, make_object_store, make_s3_client
from mediahub.core.storage import StorageBucket
from mediahub.modules.transcoding import tasks
from mediahub.modules.video.models import VideoStatus
from mediahub.modules.video.schemas import CompletedPart, UploadUrlRequest, VideoCreateRequest
from mediahub.modules.video.service import InvalidFileError, VideoNotFoundError, VideoService


@pytest.fixture
def queue():
    transcode_task = MagicMock()
    thumbnail_task = MagicMock()
    with patch.object(tasks, "transcode_video_task", transcode_task), \
            patch.object(tasks, "generate_thumbnail_task", thumbnail_task):
        yield transcode_task, thumbnail_task


class TestCreateVideo:
    @pytest.mark.asyncio
    async def test_transport_stream_is_queued_for_transcode(self, queue) -> None:
        transcode_task, thumbnail_task = queue
        service = VideoService(FakeVideoRepository(), make_object_store())

        video = await service.create_video(VideoCreateRequest(
            title="Clip",
            video_url="https://cdn.example.com/media/videos/a.ts",
            mime_type="video/mp2t",
        ))

        assert video.status == VideoStatus.PROCESSING.value
        assert video.transcode_progress == 0
        transcode_task.delay.assert_called_once_with(
            str(video.id), "https://cdn.example.com/media/videos/a.ts", "media"
        )
        thumbnail_task.delay.assert_not_called()

    @pytest.mark.asyncio
    async def test_mp4_is_ready_and_gets_thumbnail(self, queue) -> None:
        transcode_task, thumbnail_task = queue
        service = VideoService(FakeVideoRepository(), make_object_store())

        video = await service.create_video(VideoCreateRequest(
            title="Clip",
            video_url="https://cdn.example.com/media/videos/a.mp4",
            mime_type="video/mp4",
            storage_bucket=StorageBucket.ARCHIVE,
        ))

        assert video.status == VideoStatus.READY.value
        assert video.transcode_progress == 100
        assert video.storage_bucket == "archive"
        transcode_task.delay.assert_not_called()
        thumbnail_task.delay.assert_called_once_with(
            str(video.id), "https://cdn.example.com/media/videos/a.mp4", "archive"
        )

    @pytest.mark.asyncio
    async def test_supplied_thumbnail_is_kept(self, queue) -> None:
        _, thumbnail_task = queue
        service = VideoService(FakeVideoRepository(), make_object_store())

        video = await service.create_video(VideoCreateRequest(
            title="Clip",
            video_url="https://cdn.example.com/media/videos/a.mp4",
            mime_type="video/mp4",
            thumbnail_url="https://cdn.example.com/media/thumbnails/a.jpg",
        ))

        assert video.thumbnail_url == "https://cdn.example.com/media/thumbnails/a.jpg"
        thumbnail_task.delay.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_thumbnail_is_stored_as_missing(self, queue) -> None:
        _, thumbnail_task = queue
        service = VideoService(FakeVideoRepository(), make_object_store())

        video = await service.create_video(VideoCreateRequest(
            title="Clip",
            video_url="https://cdn.example.com/media/videos/a.mp4",
            mime_type="video/mp4",
            thumbnail_url="  ",
        ))

        assert video.thumbnail_url is None
        thumbnail_task.delay.assert_called_once()

    @pytest.mark.asyncio
    async def test_broker_outage_leaves_processing_record(self, queue) -> None:
        transcode_task, _ = queue
        transcode_task.delay.side_effect = OperationalError("broker unavailable")
        repository = FakeVideoRepository()
        service = VideoService(repository, make_object_store())

        video = await service.create_video(VideoCreateRequest(
            title="Clip",
            video_url="https://cdn.example.com/media/videos/a.ts",
        ))

        assert video.status == VideoStatus.PROCESSING.value
        assert await repository.fetch_next_transcode_job() is video

    @pytest.mark.asyncio
    async def test_get_unknown_video(self) -> None:
        service = VideoService(FakeVideoRepository(), make_object_store())

        with pytest.raises(VideoNotFoundError):
            await service.get_video("missing")


class TestUploads:
    def test_signed_upload_url(self) -> None:
        client = make_s3_client()
        service = VideoService(FakeVideoRepository(), make_object_store(client))

        response = service.create_upload_url(
            UploadUrlRequest(filename="Holiday.TS", content_type="video/mp2t")
        )

        assert response.key.startswith("media/videos/")
        assert response.key.endswith(".ts")
        assert response.upload_url.startswith(f"https://signed.example.com/media-bucket/{response.key}")
        assert "op=put_object" in response.upload_url
        assert response.public_url == f"https://cdn.example.com/{response.key}"

    def test_rejects_unknown_extension(self) -> None:
        service = VideoService(FakeVideoRepository(), make_object_store())

        with pytest.raises(InvalidFileError):
            service.create_upload_url(
                UploadUrlRequest(filename="notes.txt", content_type="text/plain")
            )

    @pytest.mark.asyncio
    async def test_multipart_lifecycle(self) -> None:
        client = make_s3_client()
        service = VideoService(FakeVideoRepository(), make_object_store(client))

        started = await service.start_multipart_upload(
            UploadUrlRequest(filename="big.mp4", content_type="video/mp4")
        )
        part_url = service.create_part_upload_url(started.key, started.upload_id, 2)
        completed = await service.complete_multipart_upload(
            started.key,
            started.upload_id,
            [CompletedPart(part_number=1, etag='"a"'), CompletedPart(part_number=2, etag='"b"')],
        )

        assert started.upload_id == "upload-123"
        assert "op=upload_part" in part_url
        assert completed.public_url == f"https://cdn.example.com/{started.key}"
        kwargs = client.complete_multipart_upload.call_args.kwargs
        assert kwargs["MultipartUpload"] == {
            "Parts": [{"PartNumber": 1, "ETag": '"a"'}, {"PartNumber": 2, "ETag": '"b"'}]
        }

    @pytest.mark.asyncio
    async def test_abort_multipart(self) -> None:
        client = make_s3_client()
        service = VideoService(FakeVideoRepository(), make_object_store(client))

        await service.abort_multipart_upload("media/videos/a.mp4", "upload-123")

        client.abort_multipart_upload.assert_called_once_with(
            Bucket="media-bucket", Key="media/videos/a.mp4", UploadId="upload-123"
        )
