"""Episode pipeline: per-episode state machine, feed fan-out, and operator runs"""

import asyncio
import time
from pathlib import Path
from typing import List, Optional, Tuple

from ..config import Settings
from ..database import PodcastDatabase
from ..models import Episode, ProcessingResult, ProcessingStatus, ResultStatus
from ..rendering import EpisodeMeta
from ..utils.helpers import generate_correlation_id
from ..utils.logging import get_logger

logger = get_logger(__name__)

MIN_TRANSCRIPT_CHARS = 50
NO_AUDIO_URL_ERROR = "No audio URL"
TRANSCRIPT_TOO_SHORT_ERROR = "Transcription result too short or empty"


def summarize_results(results: List[ProcessingResult]) -> dict:
    succeeded = sum(1 for r in results if r.status == ResultStatus.SUCCESS)
    failed = sum(1 for r in results if r.status == ResultStatus.FAILED)
    skipped = sum(1 for r in results if r.status == ResultStatus.SKIPPED)
    error_details = "\n".join(
        f"[{r.episode_title}] {r.error}" for r in results if r.status == ResultStatus.FAILED and r.error
    )
    return {
        'total': len(results),
        'succeeded': succeeded,
        'failed': failed,
        'skipped': skipped,
        'error_details': error_details or None,
    }


class EpisodeProcessor:
    """Drive episodes through transcription, analysis and persistence"""

    def __init__(self, db: PodcastDatabase, transcriber, analyzer, renderer, feed_refresher=None,
                 downloader=None, settings: Optional[Settings] = None):
        self.db = db
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.renderer = renderer
        self.feed_refresher = feed_refresher
        self.downloader = downloader
        self.settings = settings or Settings.from_env()

    # ===== Single episode =====

    async def process_episode(self, podcast_name: str, episode: Episode) -> ProcessingResult:
        """
        pending -> processing -> completed | failed

        Returns skipped without touching state when an analysis already
        exists. Downloaded audio is removed on every exit path.
        """
        start = time.monotonic()
        cid = generate_correlation_id()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if self.db.has_analysis(episode.id):
            logger.info(f"[{cid}] Skipping '{episode.title}': analysis already exists")
            return ProcessingResult(ResultStatus.SKIPPED, episode.id, episode.title, elapsed_ms())

        if not episode.audio_url:
            logger.warning(f"[{cid}] '{episode.title}' has no audio URL")
            return ProcessingResult(ResultStatus.FAILED, episode.id, episode.title, elapsed_ms(),
                                    error=NO_AUDIO_URL_ERROR)

        self.db.update_episode_status(episode.id, ProcessingStatus.PROCESSING)
        logger.info(f"[{cid}] Processing episode: {episode.title} (id={episode.id})")

        audio_path: Optional[Path] = None
        try:
            if self.transcriber.requires_download:
                logger.info(f"[{cid}] Step 1/4: Downloading audio")
                audio_path = await self.downloader.download(episode.audio_url, cid)
            else:
                logger.info(f"[{cid}] Step 1/4: Skipping download (transcriber reads the URL directly)")

            logger.info(f"[{cid}] Step 2/4: Transcribing audio")
            transcription = await self.transcriber.transcribe(
                audio_path=audio_path, audio_url=episode.audio_url, correlation_id=cid
            )
            if not transcription.text or len(transcription.text) < MIN_TRANSCRIPT_CHARS:
                raise ValueError(TRANSCRIPT_TOO_SHORT_ERROR)

            logger.info(f"[{cid}] Step 3/4: Analyzing content")
            analysis = await self.analyzer.analyze(transcription.text, episode.title, podcast_name,
                                                   correlation_id=cid)

            logger.info(f"[{cid}] Step 4/4: Generating Markdown")
            meta = EpisodeMeta(
                podcast_name=podcast_name,
                episode_title=episode.title,
                published_at=episode.published_at,
                duration_seconds=episode.duration_seconds or int(transcription.duration or 0),
                audio_url=episode.audio_url,
            )
            markdown_path = str(self.renderer.render(analysis, meta))

            self.db.save_analysis_result(
                episode.id,
                summary=analysis.summary,
                key_points=analysis.key_points_as_dicts(),
                keywords=analysis.keywords_as_dicts(),
                full_recap=analysis.full_recap,
                transcript=transcription.text,
                markdown_path=markdown_path,
            )
            self.db.update_episode_status(episode.id, ProcessingStatus.COMPLETED)

            logger.info(f"[{cid}] ✅ Episode processed in {elapsed_ms()}ms: {markdown_path}")
            return ProcessingResult(ResultStatus.SUCCESS, episode.id, episode.title, elapsed_ms(),
                                    markdown_path=markdown_path)

        except Exception as e:
            self.db.update_episode_status(episode.id, ProcessingStatus.FAILED)
            logger.error(f"[{cid}] ❌ Episode processing failed: {episode.title}: {e}")
            return ProcessingResult(ResultStatus.FAILED, episode.id, episode.title, elapsed_ms(),
                                    error=str(e) or e.__class__.__name__)

        finally:
            if audio_path is not None:
                try:
                    audio_path.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"[{cid}] Could not delete {audio_path}: {e}")

    # ===== Single feed =====

    async def refresh_and_process_podcast(self, podcast_id: int, use_time_window: bool = False,
                                          limit: int = 5) -> List[ProcessingResult]:
        """Refresh one feed, then process its due episodes one after another"""
        podcast = self.db.get_podcast_by_id(podcast_id)
        if podcast is None:
            raise ValueError(f"Podcast not found: {podcast_id}")

        await self.feed_refresher.refresh(podcast)

        if use_time_window:
            episodes = self.db.get_new_episodes(podcast.id, self.settings.update_window_hours)
        else:
            episodes = self.db.get_pending_episodes_by_podcast(podcast.id, limit)
        logger.info(f"Found {len(episodes)} episodes to process for {podcast.name} "
                    f"(time window: {use_time_window})")

        results = []
        for episode in episodes:
            results.append(await self.process_episode(podcast.name, episode))
        return results

    # ===== Fan-out =====

    async def run_full_pipeline(self) -> Tuple[int, List[ProcessingResult]]:
        """Refresh and process every active feed with bounded concurrency"""
        task_log_id = self.db.create_task_log('full_pipeline')
        logger.info("Starting full pipeline")

        try:
            podcasts = self.db.get_active_podcasts()
            semaphore = asyncio.Semaphore(self.settings.max_concurrent_feeds)

            async def run_feed(podcast) -> List[ProcessingResult]:
                async with semaphore:
                    try:
                        return await self.refresh_and_process_podcast(podcast.id, use_time_window=True)
                    except Exception as e:
                        logger.error(f"Pipeline failed for podcast: {podcast.name}: {e}")
                        return []

            result_lists = await asyncio.gather(*(run_feed(p) for p in podcasts))
            results = [r for result_list in result_lists for r in result_list]

            summary = self._finish_task_log(task_log_id, results)
            logger.info(
                f"Full pipeline completed: {summary['total']} total, {summary['succeeded']} succeeded, "
                f"{summary['failed']} failed, {summary['skipped']} skipped"
            )
        except Exception as e:
            self.db.update_task_log(task_log_id, status='failed', error_details=str(e))
            raise

        return task_log_id, results

    # ===== Operator runs =====

    async def process_podcast(self, podcast_id: int, limit: int = 5) -> Tuple[int, List[ProcessingResult]]:
        """Manual run for one feed, recorded as its own task log"""
        podcast = self.db.get_podcast_by_id(podcast_id)
        if podcast is None:
            raise ValueError(f"Podcast not found: {podcast_id}")

        task_log_id = self.db.create_task_log(f"process_podcast_{podcast.name}")
        try:
            results = await self.refresh_and_process_podcast(podcast_id, use_time_window=False, limit=limit)
        except Exception as e:
            self.db.update_task_log(task_log_id, status='failed', error_details=str(e))
            raise

        self._finish_task_log(task_log_id, results)
        return task_log_id, results

    async def reprocess_episode(self, episode_id: int) -> ProcessingResult:
        """Drop the stored analysis, reset to pending, and run the episode again"""
        episode = self.db.get_episode_by_id(episode_id)
        if episode is None:
            raise ValueError(f"Episode not found: {episode_id}")
        podcast = self.db.get_podcast_by_id(episode.podcast_id)
        podcast_name = podcast.name if podcast else "Unknown"

        self.db.delete_analysis_result(episode_id)
        self.db.update_episode_status(episode_id, ProcessingStatus.PENDING)
        episode.status = ProcessingStatus.PENDING
        task_log_id = self.db.create_task_log(f"reprocess_{episode.title}")
        logger.info(f"Reprocessing episode {episode_id}: {episode.title}")

        result = await self.process_episode(podcast_name, episode)
        self._finish_task_log(task_log_id, [result])
        return result

    async def retry_failed_episodes(self) -> Tuple[int, List[ProcessingResult]]:
        """Reset every failed episode to pending and process them one at a time"""
        failed_episodes = self.db.get_failed_episodes()
        task_log_id = self.db.create_task_log('retry_failed_episodes')
        logger.info(f"Retrying {len(failed_episodes)} failed episode(s)")

        for episode in failed_episodes:
            self.db.delete_analysis_result(episode.id)
            self.db.update_episode_status(episode.id, ProcessingStatus.PENDING)

        results = []
        podcast_names = {}
        for episode in failed_episodes:
            if episode.podcast_id not in podcast_names:
                podcast = self.db.get_podcast_by_id(episode.podcast_id)
                podcast_names[episode.podcast_id] = podcast.name if podcast else "Unknown"
            results.append(await self.process_episode(podcast_names[episode.podcast_id], episode))

        self._finish_task_log(task_log_id, results)
        return task_log_id, results

    def _finish_task_log(self, task_log_id: int, results: List[ProcessingResult]) -> dict:
        """failed only when nothing succeeded and something failed"""
        summary = summarize_results(results)
        status = 'failed' if summary['failed'] > 0 and summary['succeeded'] == 0 else 'completed'
        self.db.update_task_log(
            task_log_id,
            status=status,
            total_episodes=summary['total'],
            processed_episodes=summary['succeeded'],
            failed_episodes=summary['failed'],
            error_details=summary['error_details'],
        )
        return summary
