#!/usr/bin/env python3
"""
Podcast Digest - transcribe and analyze podcast episodes
Main entry point
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Ensure the package can be imported when run directly
sys.path.insert(0, str(Path(__file__).parent))

from podcast_digest import config
from podcast_digest.analysis import AnalysisEngine
from podcast_digest.audio import AudioDownloader
from podcast_digest.config import Settings, validate_settings
from podcast_digest.database import PodcastDatabase
from podcast_digest.feeds import FeedRefresher, import_feeds_from_yaml
from podcast_digest.models import ResultStatus
from podcast_digest.pipeline import EpisodeProcessor
from podcast_digest.rendering import MarkdownRenderer
from podcast_digest.scheduler import PipelineScheduler
from podcast_digest.transcription import create_transcriber
from podcast_digest.utils.clients import create_openai_client
from podcast_digest.utils.logging import setup_logging

logger = setup_logging(config.LOG_FILE, config.LOG_LEVEL)

SCHEDULED_LOCK_NAME = "scheduled_run.lock"


def build_processor(settings: Settings, db: PodcastDatabase) -> EpisodeProcessor:
    """Composition root: every client is created here and passed down"""
    analysis_client = create_openai_client(settings, for_analysis=True)
    whisper_client = (
        create_openai_client(settings, for_analysis=False)
        if settings.transcription_provider == "openai" else None
    )
    downloader = AudioDownloader(settings.temp_dir, timeout=settings.audio_download_timeout,
                                 max_attempts=settings.max_retry_attempts)
    return EpisodeProcessor(
        db=db,
        transcriber=create_transcriber(settings, openai_client=whisper_client, downloader=downloader),
        analyzer=AnalysisEngine.from_settings(analysis_client, settings),
        renderer=MarkdownRenderer(settings.summaries_dir),
        feed_refresher=FeedRefresher(db),
        downloader=downloader,
        settings=settings,
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="podcast-digest", description="Podcast Digest pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Refresh every active feed and process new episodes")
    sub.add_parser("scheduled", help="Same as run, but skipped while another scheduled run holds the lock")

    feed = sub.add_parser("feed", help="Refresh one feed and process its pending episodes")
    feed.add_argument("podcast_id", type=int)
    feed.add_argument("--limit", type=int, default=5)

    reprocess = sub.add_parser("reprocess", help="Delete an episode's analysis and process it again")
    reprocess.add_argument("episode_id", type=int)

    sub.add_parser("retry-failed", help="Reset failed episodes to pending and process them")

    add_feed = sub.add_parser("add-feed", help="Subscribe to an RSS feed")
    add_feed.add_argument("rss_url")
    add_feed.add_argument("--name")
    add_feed.add_argument("--category", default="")

    sub.add_parser("import-feeds", help="Subscribe to the feeds listed in feeds.yaml")
    sub.add_parser("stats", help="Show episode counts and recent task logs")
    return parser.parse_args(argv)


def report(results):
    for result in results:
        icon = {ResultStatus.SUCCESS: "✅", ResultStatus.FAILED: "❌", ResultStatus.SKIPPED: "⏭️"}[result.status]
        line = f"{icon} {result.episode_title} ({result.duration_ms}ms)"
        if result.error:
            line += f": {result.error}"
        logger.info(line)


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    db = PodcastDatabase(settings.db_path)

    if args.command == "stats":
        for key, value in db.get_stats().items():
            print(f"{key}: {value}")
        for log in db.get_task_logs(limit=10):
            print(f"#{log.id} {log.task_type} {log.status} "
                  f"{log.processed_episodes}/{log.total_episodes} ok, {log.failed_episodes} failed")
        return 0

    if args.command == "import-feeds":
        import_feeds_from_yaml(db, config.FEEDS_FILE)
        return 0

    if args.command == "add-feed":
        podcast = await FeedRefresher(db).add_feed(args.rss_url, name=args.name, category=args.category)
        logger.info(f"Subscribed to {podcast.name} (id={podcast.id})")
        return 0

    problems = validate_settings(settings)
    if problems:
        for problem in problems:
            logger.error(f"❌ {problem}")
        return 1

    processor = build_processor(settings, db)

    if args.command == "run":
        _, results = await processor.run_full_pipeline()
    elif args.command == "scheduled":
        scheduler = PipelineScheduler(processor, lock_path=settings.temp_dir / SCHEDULED_LOCK_NAME)
        outcome = await scheduler.run_scheduled()
        results = outcome[1] if outcome else []
    elif args.command == "feed":
        _, results = await processor.process_podcast(args.podcast_id, limit=args.limit)
    elif args.command == "reprocess":
        results = [await processor.reprocess_episode(args.episode_id)]
    else:
        _, results = await processor.retry_failed_episodes()

    report(results)
    return 1 if any(r.status == ResultStatus.FAILED for r in results) else 0


def main(argv=None):
    """Console script entry point"""
    args = parse_arguments(argv)
    settings = Settings.from_env()

    logger.info("🎙️  Podcast Digest")
    logger.info(f"🕐 Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')} ({args.command})")

    try:
        exit_code = asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        exit_code = 130
    except ValueError as e:
        logger.error(f"❌ {e}")
        exit_code = 1

    logger.info(f"✅ Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
