"""Configuration and constants for Podcast Digest"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Directories
BASE_DIR = Path.cwd()
DB_PATH = Path(os.getenv("DATABASE_PATH", str(BASE_DIR / "data" / "podcast_digest.db")))
SUMMARIES_DIR = Path(os.getenv("SUMMARIES_DIR", str(BASE_DIR / "summaries")))
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(BASE_DIR / "temp")))
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR / "logs" / "podcast_digest.log"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FEEDS_FILE = Path(os.getenv("FEEDS_FILE", str(BASE_DIR / "feeds.yaml")))

# Providers
TRANSCRIPTION_PROVIDER = os.getenv("TRANSCRIPTION_PROVIDER", "dashscope").lower()
ANALYSIS_PROVIDER = os.getenv("ANALYSIS_PROVIDER", "openai").lower()
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "zh")

# API Keys
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_WHISPER_MODEL = os.getenv("OPENAI_WHISPER_MODEL", "whisper-1")

DASHSCOPE_API_KEY = os.getenv("DASHSCOPE_API_KEY")
DASHSCOPE_BASE_URL = os.getenv("DASHSCOPE_BASE_URL", "https://dashscope.aliyuncs.com").rstrip("/")
DASHSCOPE_SPEECH_MODEL = os.getenv("DASHSCOPE_SPEECH_MODEL", "paraformer-v2")
DASHSCOPE_TEXT_MODEL = os.getenv("DASHSCOPE_TEXT_MODEL", "qwen-plus")
RESOLVE_REDIRECTS = _env_bool("RESOLVE_REDIRECTS", True)

# Processing limits
MAX_CONCURRENT_FEEDS = _env_int("MAX_CONCURRENT_FEEDS", 5)
UPDATE_WINDOW_HOURS = _env_int("UPDATE_WINDOW_HOURS", 24)
MAX_RETRY_ATTEMPTS = _env_int("MAX_RETRY_ATTEMPTS", 3)
AUDIO_DOWNLOAD_TIMEOUT = _env_int("AUDIO_DOWNLOAD_TIMEOUT", 300)  # seconds
AUDIO_MAX_CHUNK_SIZE_MB = _env_int("AUDIO_MAX_CHUNK_SIZE_MB", 25)

# Analysis sizing (prompt hints only)
ANALYSIS_SUMMARY_MIN_LENGTH = _env_int("ANALYSIS_SUMMARY_MIN_LENGTH", 1000)
ANALYSIS_SUMMARY_MAX_LENGTH = _env_int("ANALYSIS_SUMMARY_MAX_LENGTH", 2000)
ANALYSIS_KEY_POINTS_COUNT = _env_int("ANALYSIS_KEY_POINTS_COUNT", 8)
ANALYSIS_LANGUAGE = os.getenv("ANALYSIS_LANGUAGE", "zh-CN")
SINGLE_ANALYSIS_MAX_CHARS = _env_int("SINGLE_ANALYSIS_MAX_CHARS", 10000)
CHUNK_MAX_CHARS = _env_int("CHUNK_MAX_CHARS", 8000)

# Create directories
for dir_path in [DB_PATH.parent, SUMMARIES_DIR, TEMP_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)


@dataclass
class Settings:
    """Snapshot of the configuration handed to pipeline components"""

    transcription_provider: str = TRANSCRIPTION_PROVIDER
    analysis_provider: str = ANALYSIS_PROVIDER
    transcription_language: str = TRANSCRIPTION_LANGUAGE

    openai_api_key: Optional[str] = OPENAI_API_KEY
    openai_base_url: Optional[str] = OPENAI_BASE_URL
    openai_model: str = OPENAI_MODEL
    openai_whisper_model: str = OPENAI_WHISPER_MODEL

    dashscope_api_key: Optional[str] = DASHSCOPE_API_KEY
    dashscope_base_url: str = DASHSCOPE_BASE_URL
    dashscope_speech_model: str = DASHSCOPE_SPEECH_MODEL
    dashscope_text_model: str = DASHSCOPE_TEXT_MODEL
    resolve_redirects: bool = RESOLVE_REDIRECTS

    db_path: Path = DB_PATH
    summaries_dir: Path = SUMMARIES_DIR
    temp_dir: Path = TEMP_DIR

    max_concurrent_feeds: int = MAX_CONCURRENT_FEEDS
    update_window_hours: int = UPDATE_WINDOW_HOURS
    max_retry_attempts: int = MAX_RETRY_ATTEMPTS
    audio_download_timeout: int = AUDIO_DOWNLOAD_TIMEOUT
    audio_max_chunk_size_mb: int = AUDIO_MAX_CHUNK_SIZE_MB

    summary_min_length: int = ANALYSIS_SUMMARY_MIN_LENGTH
    summary_max_length: int = ANALYSIS_SUMMARY_MAX_LENGTH
    key_points_count: int = ANALYSIS_KEY_POINTS_COUNT
    analysis_language: str = ANALYSIS_LANGUAGE
    single_analysis_max_chars: int = SINGLE_ANALYSIS_MAX_CHARS
    chunk_max_chars: int = CHUNK_MAX_CHARS

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    @property
    def max_chunk_bytes(self) -> int:
        return self.audio_max_chunk_size_mb * 1024 * 1024

    @property
    def analysis_model(self) -> str:
        if self.analysis_provider == "dashscope":
            return self.dashscope_text_model
        return self.openai_model


def validate_settings(settings: Settings) -> List[str]:
    """Return a list of configuration problems, empty when usable"""
    problems = []
    if settings.transcription_provider not in ("dashscope", "openai"):
        problems.append(f"Unsupported TRANSCRIPTION_PROVIDER: {settings.transcription_provider}")
    if settings.transcription_provider == "dashscope" and not settings.dashscope_api_key:
        problems.append("DASHSCOPE_API_KEY is not configured")
    if settings.transcription_provider == "openai" and not settings.openai_api_key:
        problems.append("OPENAI_API_KEY is not configured")
    if settings.analysis_provider == "openai" and not settings.openai_api_key:
        problems.append("OPENAI_API_KEY is not configured")
    if settings.analysis_provider == "dashscope" and not settings.dashscope_api_key:
        problems.append("DASHSCOPE_API_KEY is not configured")
    if settings.max_concurrent_feeds < 1:
        problems.append("MAX_CONCURRENT_FEEDS must be at least 1")
    return problems


def load_feed_configs(yaml_file: Path = FEEDS_FILE) -> List[Dict]:
    """Load feed definitions from feeds.yaml

    Expected layout::

        feeds:
          - name: "Example Podcast"
            rss_url: "https://example.com/rss"
            category: "Technology"
    """
    if not yaml_file.exists():
        return []

    with open(yaml_file, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    configs = []
    for feed in data.get('feeds', []) or []:
        rss_url = (feed or {}).get('rss_url')
        if not rss_url:
            continue
        configs.append({
            'name': feed.get('name') or rss_url,
            'rss_url': rss_url,
            'category': feed.get('category', ''),
            'is_active': bool(feed.get('active', True)),
        })
    return configs
