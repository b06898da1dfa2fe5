"""End-to-end tests for the complete Podcast Digest pipeline"""

from datetime import datetime, timezone
from email.utils import format_datetime

import pytest
from aioresponses import aioresponses

from main import build_processor
from podcast_digest.models import ProcessingStatus, ResultStatus
from podcast_digest.scheduler import PipelineScheduler

DASHSCOPE = "https://dashscope.test"
SUBMIT_URL = f"{DASHSCOPE}/api/v1/services/audio/asr/transcription"
RESULT_URL = "https://results.test/ep1.json"
AUDIO_URL = "https://cdn.example.com/good/ep1.mp3"


def rss(title, audio_url):
    enclosure = f'<enclosure url="{audio_url}" type="audio/mpeg" length="1000"/>' if audio_url else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>{title}</title>
  <item>
    <guid>{title}-ep1</guid>
    <title>{title}: Episode 1</title>
    <pubDate>{format_datetime(datetime.now(timezone.utc))}</pubDate>
    {enclosure}
  </item>
</channel></rss>"""


class TestFullPipeline:
    """Real components wired by the composition root; only HTTP and the chat model are faked"""

    @pytest.fixture
    def processor(self, settings, test_db, fake_chat_client):
        processor = build_processor(settings, test_db)
        processor.analyzer.client = fake_chat_client
        return processor

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_scheduled_run_end_to_end(self, processor, test_db, settings, no_sleep):
        good = test_db.add_podcast(name="Good Show", rss_url="https://feeds.example.com/good")
        bad = test_db.add_podcast(name="Broken Show", rss_url="https://feeds.example.com/broken")

        with aioresponses() as m:
            m.get("https://feeds.example.com/good", body=rss("Good Show", AUDIO_URL))
            m.get("https://feeds.example.com/broken", status=500, repeat=True)
            m.post(SUBMIT_URL, payload={"output": {"task_id": "e2e-task", "task_status": "PENDING"}})
            m.get(f"{DASHSCOPE}/api/v1/tasks/e2e-task", payload={"output": {"task_status": "RUNNING"}})
            m.get(f"{DASHSCOPE}/api/v1/tasks/e2e-task", payload={"output": {
                "task_status": "SUCCEEDED",
                "results": [{"file_url": AUDIO_URL, "transcription_url": RESULT_URL,
                             "subtask_status": "SUCCEEDED"}],
            }})
            m.get(RESULT_URL, payload={
                "properties": {"original_duration_in_milliseconds": 2700000},
                "transcripts": [{"text": "主持人：欢迎收听本期节目，今天我们聊聊开源模型的发展。" * 5}],
            })

            outcome = await PipelineScheduler(processor).run_scheduled()

        task_log_id, results = outcome
        assert [(r.status, r.episode_title) for r in results] == [
            (ResultStatus.SUCCESS, "Good Show: Episode 1")
        ]

        episode = test_db.get_episodes_by_podcast(good)[0]
        assert episode.status == ProcessingStatus.COMPLETED
        assert test_db.get_episodes_by_podcast(bad) == []

        analysis = test_db.get_analysis_result(episode.id)
        assert analysis['transcript'].startswith("主持人")
        markdown_files = list((settings.summaries_dir / "Good Show").glob("*-podcast-summary.md"))
        assert len(markdown_files) == 1
        content = markdown_files[0].read_text(encoding="utf-8")
        assert "> **Duration**: 45m" in content
        assert "## 📝 Summary" in content

        log = test_db.get_task_log(task_log_id)
        assert (log.status, log.total_episodes, log.processed_episodes) == ("completed", 1, 1)

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_entry_without_audio_stays_pending(self, processor, test_db, no_sleep):
        test_db.add_podcast(name="Quiet Show", rss_url="https://feeds.example.com/quiet")

        with aioresponses() as m:
            m.get("https://feeds.example.com/quiet", body=rss("Quiet Show", ""), repeat=True)
            _, first = await processor.run_full_pipeline()
            _, second = await processor.run_full_pipeline()

        # An entry without an enclosure is stored but fails with no state change
        assert [r.error for r in first] == ["No audio URL"]
        assert [r.error for r in second] == ["No audio URL"]
        assert test_db.get_stats()['pending_episodes'] == 1
