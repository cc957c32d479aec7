"""Tests for structured logging and correlation IDs."""

import json
import logging
import sys

from mediahub.core.logging import (
    CorrelationIdFilter,
    StructuredFormatter,
    correlation_scope,
    get_correlation_id,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "mediahub.test", logging.INFO, __file__, 10, "Transcode finished", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationScope:
    def test_nested_scope_restores_outer_id(self) -> None:
        with correlation_scope("request-1"):
            with correlation_scope("video-1"):
                assert get_correlation_id() == "video-1"
            assert get_correlation_id() == "request-1"
        assert get_correlation_id() is None

    def test_filter_stamps_placeholder_outside_scope(self) -> None:
        record = make_record()

        CorrelationIdFilter().filter(record)

        assert record.correlation_id == "-"

    def test_unscoped_record_is_emitted_with_placeholder(self) -> None:
        record = make_record()
        CorrelationIdFilter().filter(record)

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["correlation_id"] == "-"


class TestStructuredFormatter:
    def test_job_fields_are_promoted(self) -> None:
        record = make_record(video_id="abc", trigger="worker", destination_key="media/videos/a.mp4")

        with correlation_scope("abc"):
            payload = json.loads(StructuredFormatter().format(record))

        assert payload["message"] == "Transcode finished"
        assert payload["correlation_id"] == "abc"
        assert payload["video_id"] == "abc"
        assert payload["trigger"] == "worker"
        assert payload["extra"] == {"destination_key": "media/videos/a.mp4"}

    def test_exception_is_serialized(self) -> None:
        try:
            raise RuntimeError("ffmpeg exited with code 1")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["exception"]["type"] == "RuntimeError"
        assert payload["exception"]["message"] == "ffmpeg exited with code 1"
        assert payload["exception"]["stack_trace"]
