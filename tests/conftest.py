"""Shared test configuration and fixtures for Podcast Digest tests"""

import json
import sys
import asyncio
import tempfile
from pathlib import Path
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest
from faker import Faker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from podcast_digest.config import Settings
from podcast_digest.database import PodcastDatabase
from podcast_digest.models import Episode, TranscriptionResult

# Initialize faker for test data generation
fake = Faker()


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: several real components wired together")
    config.addinivalue_line("markers", "e2e: full pipeline with only the network mocked")


# ===== Configuration Fixtures =====

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir):
    """Settings pointing every path into the temp dir"""
    return Settings(
        transcription_provider="dashscope",
        analysis_provider="openai",
        openai_api_key="test-openai-key",
        dashscope_api_key="test-dashscope-key",
        dashscope_base_url="https://dashscope.test",
        resolve_redirects=False,
        db_path=temp_dir / "test.db",
        summaries_dir=temp_dir / "summaries",
        temp_dir=temp_dir / "tmp",
        max_concurrent_feeds=2,
        update_window_hours=24,
    )


# ===== Database Fixtures =====

@pytest.fixture
def test_db(settings):
    """Create a test database"""
    return PodcastDatabase(settings.db_path)


@pytest.fixture
def podcast(test_db):
    """One active podcast stored in the test database"""
    podcast_id = test_db.add_podcast(name="Test Podcast", rss_url="https://feeds.example.com/test")
    return test_db.get_podcast_by_id(podcast_id)


# ===== Model Factories =====

def create_episode(podcast_id: int, title: str = None, published_at: datetime = None,
                   audio_url: Optional[str] = "default", **kwargs) -> Episode:
    """Factory for creating test episodes"""
    if published_at is None:
        published_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
    return Episode(
        podcast_id=podcast_id,
        guid=kwargs.get('guid', fake.uuid4()),
        title=title or f"{fake.catch_phrase()} with {fake.name()}",
        description=kwargs.get('description', fake.paragraph()),
        audio_url=f"https://cdn.example.com/{fake.uuid4()}.mp3" if audio_url == "default" else audio_url,
        duration_seconds=kwargs.get('duration_seconds', 3600),
        published_at=published_at,
    )


@pytest.fixture
def make_episode():
    """Unsaved episode factory"""
    return create_episode


@pytest.fixture
def episode_factory(test_db):
    """Store an episode and return it with its database id"""
    def _create(podcast_id: int, **kwargs) -> Episode:
        episode = create_episode(podcast_id, **kwargs)
        test_db.add_episode(episode)
        with test_db._connect() as conn:
            row = conn.execute(
                "SELECT id FROM episodes WHERE podcast_id = ? AND guid = ?",
                (podcast_id, episode.guid)
            ).fetchone()
        return test_db.get_episode_by_id(row['id'])
    return _create


# ===== Mock Fixtures =====

def make_completion(content: Optional[str], finish_reason: str = "stop"):
    """Shape of an OpenAI chat completion as far as the engine reads it"""
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)])


class FakeChatClient:
    """Synchronous stand-in for the OpenAI SDK's chat surface.

    ``responder`` receives the create() kwargs and returns the content
    string, or an exception instance to raise.
    """

    def __init__(self, responder: Callable[[dict], object]):
        self.responder = responder
        self.calls: List[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **params):
        self.calls.append(params)
        result = self.responder(params)
        if isinstance(result, Exception):
            raise result
        return make_completion(result)

    @property
    def json_calls(self):
        return [c for c in self.calls if c.get('response_format')]

    @property
    def text_calls(self):
        return [c for c in self.calls if not c.get('response_format')]


@pytest.fixture
def analysis_json():
    """Well-formed structured analysis response"""
    return json.dumps({
        "summary": "This episode discusses the economics of AI infrastructure in depth.",
        "keyPoints": [
            {"title": "Compute is the bottleneck", "detail": "The hosts argue that GPU supply limits progress."},
            "A bare string key point",
        ],
        "keywords": [
            {"word": "Scaling laws", "context": "Used to justify larger training runs."},
            {"term": "Inference cost", "explanation": "Falls each year as hardware improves."},
        ],
        "fullRecap": "The episode opens with a discussion of data centers and closes with predictions.",
    })


@pytest.fixture
def make_chat_client():
    """Factory for chat clients with a custom responder"""
    return FakeChatClient


@pytest.fixture
def fake_chat_client(analysis_json):
    """Chat client answering JSON requests with analysis_json and text requests with prose"""
    def responder(params):
        if params.get('response_format'):
            return analysis_json
        return "A detailed prose summary of this part of the conversation. " * 3
    return FakeChatClient(responder)


class FakeTranscriber:
    """URL-based transcriber returning a fixed transcript"""

    requires_download = False

    def __init__(self, text: str = None, error: Exception = None):
        self.text = text if text is not None else "Host: welcome to the show. " * 20
        self.error = error
        self.calls = []

    async def transcribe(self, audio_path=None, audio_url=None, correlation_id=None):
        self.calls.append({'audio_path': audio_path, 'audio_url': audio_url})
        if self.error:
            raise self.error
        return TranscriptionResult(text=self.text, language="zh", duration=3600.0)


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def make_transcriber():
    return FakeTranscriber


@pytest.fixture
def no_sleep(monkeypatch):
    """Make asyncio.sleep return at once; collects every positive delay requested"""
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        if delay and delay > 0:
            delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, 'sleep', fake_sleep)
    return delays


# ===== Test Data Fixtures =====

@pytest.fixture
def sample_transcript():
    """Sample transcript text"""
    return (
        "Host: Welcome to the show. Today we're discussing artificial intelligence.\n"
        "Guest: Thanks for having me. AI is transforming every industry.\n"
        "Host: Can you give us some examples?\n"
        "Guest: In healthcare, AI is helping diagnose diseases earlier. "
        "In finance, it's detecting fraud in real-time.\n"
        "Host: What about the risks?\n"
        "Guest: We need to consider bias, privacy, and job displacement.\n"
    )
