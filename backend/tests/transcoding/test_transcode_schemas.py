"""Tests for transcode request parsing."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from mediahub.modules.transcoding.schemas import (
    DEFAULT_BATCH_LIMIT,
    TranscodeBatchRequest,
    parse_since_date,
)


class TestParseSinceDate:
    def test_epoch_seconds(self) -> None:
        assert parse_since_date(1700000000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self) -> None:
        assert parse_since_date("1700000000000") == datetime(
            2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc
        )

    def test_iso_date_with_z(self) -> None:
        assert parse_since_date("2024-01-02T03:04:05Z") == datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
        )

    def test_naive_iso_date_is_utc(self) -> None:
        assert parse_since_date("2024-01-02") == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_empty_values(self) -> None:
        assert parse_since_date(None) is None
        assert parse_since_date("   ") is None

    def test_garbage_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_since_date("last tuesday")
        with pytest.raises(ValueError):
            parse_since_date("nan")


class TestBatchRequest:
    def test_defaults(self) -> None:
        request = TranscodeBatchRequest()

        assert request.limit == DEFAULT_BATCH_LIMIT
        assert request.since is None
        assert request.ids is None
        assert request.dry_run is False

    def test_since_is_parsed(self) -> None:
        request = TranscodeBatchRequest(since=1700000000000)

        assert request.since == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_limit_bounds(self, limit: int) -> None:
        with pytest.raises(ValidationError):
            TranscodeBatchRequest(limit=limit)

    def test_invalid_since(self) -> None:
        with pytest.raises(ValidationError):
            TranscodeBatchRequest(since="not a date")
