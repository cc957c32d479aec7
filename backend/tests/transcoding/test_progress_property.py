"""Property-based tests for encoder progress parsing and persistence throttling."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from mediahub.modules.transcoding.ffmpeg import FFmpegProgressParser, parse_ffmpeg_timestamp
from mediahub.modules.transcoding.service import ProgressThrottle


def format_timestamp(seconds: float) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{secs:05.2f}"


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("00:00:00.00", 0.0),
            ("00:01:30.50", 90.5),
            ("01:00:00", 3600.0),
            ("10:02:03.25", 36123.25),
        ],
    )
    def test_valid(self, value: str, expected: float) -> None:
        assert parse_ffmpeg_timestamp(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "N/A", "12:00", "aa:bb:cc", "1:2:3:4"])
    def test_invalid(self, value: str) -> None:
        assert parse_ffmpeg_timestamp(value) is None


class TestProgressParser:
    """Emitted progress is strictly increasing, within [0, 99]."""

    @given(
        duration=st.floats(min_value=1.0, max_value=20000.0),
        times=st.lists(st.floats(min_value=-10.0, max_value=30000.0), max_size=200),
    )
    @settings(max_examples=100)
    def test_emitted_values_are_strictly_increasing(self, duration, times) -> None:
        parser = FFmpegProgressParser()
        parser.feed(f"  Duration: {format_timestamp(duration)}, start: 0.000000, bitrate: 1 kb/s")

        emitted = []
        for t in times:
            line = f"frame=  1 fps=0.0 q=-1.0 size=0kB time={format_timestamp(max(t, 0))} bitrate=N/A"
            progress = parser.feed(line)
            if progress is not None:
                emitted.append(progress)

        assert all(0 <= p <= 99 for p in emitted)
        assert all(a < b for a, b in zip(emitted, emitted[1:]))

    def test_time_before_duration_is_ignored(self) -> None:
        parser = FFmpegProgressParser()

        assert parser.feed("time=00:00:05.00") is None
        parser.feed("Duration: 00:00:10.00, start: 0.0")
        assert parser.feed("time=00:00:05.00") == 50

    def test_only_first_duration_counts(self) -> None:
        parser = FFmpegProgressParser()
        parser.feed("Duration: 00:00:10.00")
        parser.feed("Duration: 00:01:40.00")

        assert parser.feed("time=00:00:05.00") == 50

    def test_progress_is_capped_at_99(self) -> None:
        parser = FFmpegProgressParser()
        parser.feed("Duration: 00:00:10.00")

        assert parser.feed("time=00:00:10.00") == 99
        assert parser.feed("time=00:00:12.00") is None

    def test_non_progress_lines_are_ignored(self) -> None:
        parser = FFmpegProgressParser()
        parser.feed("Duration: 00:00:10.00")

        assert parser.feed("Stream #0:0: Video: h264") is None
        assert parser.feed("time=N/A bitrate=N/A") is None


class TestProgressThrottle:
    """Persisted writes are monotonic, spaced by the step, and end at 100."""

    @given(step=st.integers(min_value=1, max_value=20))
    @settings(max_examples=50)
    def test_full_sequence(self, step: int) -> None:
        writes = []

        async def persist(progress: int) -> None:
            writes.append(progress)

        throttle = ProgressThrottle(persist, step=step)

        async def feed() -> None:
            for progress in range(0, 101):
                await throttle(progress)

        asyncio.run(feed())

        assert writes[-1] == 100
        assert all(a < b for a, b in zip(writes, writes[1:]))
        assert all(b - a >= step for a, b in zip(writes[:-1], writes[1:-1]))
        assert len(writes) <= 100 // step + 2

    def test_default_step_bounds_writes(self) -> None:
        writes = []

        async def persist(progress: int) -> None:
            writes.append(progress)

        throttle = ProgressThrottle(persist)

        async def feed() -> None:
            for progress in range(0, 101):
                await throttle(progress)

        asyncio.run(feed())

        assert writes == list(range(4, 100, 5)) + [100]
        assert len(writes) == 21

    @given(values=st.lists(st.integers(min_value=0, max_value=100), max_size=100))
    @settings(max_examples=100)
    def test_arbitrary_input_never_regresses(self, values) -> None:
        writes = []

        async def persist(progress: int) -> None:
            writes.append(progress)

        throttle = ProgressThrottle(persist)

        async def feed() -> None:
            for progress in values:
                await throttle(progress)

        asyncio.run(feed())

        assert all(a < b for a, b in zip(writes, writes[1:]))
        assert writes.count(100) <= 1

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_raise(self) -> None:
        async def persist(progress: int) -> None:
            raise RuntimeError("database unavailable")

        throttle = ProgressThrottle(persist)

        await throttle(10)
        await throttle(100)

        assert throttle.last_persisted == 100

    @pytest.mark.asyncio
    async def test_failed_write_runs_recovery_hook(self) -> None:
        recoveries = []

        async def persist(progress: int) -> None:
            if progress == 10:
                raise RuntimeError("deadlock detected")

        async def on_error() -> None:
            recoveries.append(True)

        throttle = ProgressThrottle(persist, on_error=on_error)

        await throttle(10)
        await throttle(20)

        assert recoveries == [True]

    @pytest.mark.asyncio
    async def test_recovery_hook_failure_does_not_raise(self) -> None:
        async def persist(progress: int) -> None:
            raise RuntimeError("database unavailable")

        async def on_error() -> None:
            raise RuntimeError("connection closed")

        throttle = ProgressThrottle(persist, on_error=on_error)

        await throttle(100)

        assert throttle.last_persisted == 100
