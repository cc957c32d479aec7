"""Transcode transport-stream videos to MP4 in this process.

Usage:
    cd backend
    python -m scripts.transcode_ts_videos [--dry-run] [--limit N] [--since DATE] [--ids ID,ID]

``--since`` accepts epoch seconds, epoch milliseconds or an ISO-8601 date.
Jobs run one after another; a failed job is marked failed and the batch
continues.
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from mediahub.core.config import settings
from mediahub.core.database import async_session_maker, engine
from mediahub.core.logging import setup_logging
from mediahub.core.storage import parse_storage_bucket
from mediahub.modules.transcoding.schemas import DEFAULT_BATCH_LIMIT, parse_since_date
from mediahub.modules.transcoding.service import create_executor
from mediahub.modules.transcoding.tasks import run_transcode_job
from mediahub.modules.video.repository import VideoRepository


def parse_ids(value: str) -> list[uuid.UUID]:
    """Parse a comma-separated list of video IDs."""
    try:
        return [uuid.UUID(item.strip()) for item in value.split(",") if item.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid video ID list: {e}")


def parse_since(value: str):
    try:
        return parse_since_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="List matches without transcoding")
    parser.add_argument("--limit", type=int, default=DEFAULT_BATCH_LIMIT, help="Maximum videos")
    parser.add_argument("--since", type=parse_since, default=None, help="Only videos updated after")
    parser.add_argument("--ids", type=parse_ids, default=None, help="Comma-separated video IDs")
    return parser


async def transcode_ts_videos(args: argparse.Namespace) -> int:
    """Transcode matching videos sequentially.

    Returns:
        Number of failed transcodes
    """
    failures = 0
    jobs = []
    try:
        async with async_session_maker() as session:
            repository = VideoRepository(session)
            videos = await repository.find_transcode_candidates(
                ids=args.ids, since=args.since, limit=max(args.limit, 1)
            )
            print(f"Matched {len(videos)} videos")
            if args.dry_run:
                for video in videos:
                    print(f"  {video.id}  {video.video_url}")
                print("Dry run enabled. No transcodes run.")
                return 0

            executor = create_executor(repository)
            jobs = [(video.id, video.video_url, video.storage_bucket) for video in videos]
            for video_id, video_url, bucket in jobs:
                print(f"Transcoding {video_id}")
                success = await run_transcode_job(
                    repository,
                    executor,
                    video_id,
                    video_url,
                    parse_storage_bucket(bucket),
                    trigger="cli",
                )
                if success:
                    print(f"Updated {video_id}")
                else:
                    failures += 1
                    print(f"Failed {video_id}")
    finally:
        await engine.dispose()

    print(f"\nDone: {len(jobs) - failures} succeeded, {failures} failed")
    return failures


def main() -> None:
    args = build_parser().parse_args()
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    failures = asyncio.run(transcode_ts_videos(args))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
