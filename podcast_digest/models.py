"""Data models for Podcast Digest"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ProcessingStatus(Enum):
    """Lifecycle of an episode job"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResultStatus(Enum):
    """Outcome of a single process_episode call"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Podcast:
    """A subscribed feed"""
    name: str
    rss_url: str
    id: Optional[int] = None
    description: str = ""
    author: str = ""
    image_url: str = ""
    language: str = ""
    category: str = ""
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> 'Podcast':
        return cls(
            id=row['id'],
            name=row['name'],
            rss_url=row['rss_url'],
            description=row['description'] or "",
            author=row['author'] or "",
            image_url=row['image_url'] or "",
            language=row['language'] or "",
            category=row['category'] or "",
            is_active=bool(row['is_active']),
        )


@dataclass
class Episode:
    """Podcast episode data model"""
    podcast_id: int
    guid: str
    title: str
    id: Optional[int] = None
    description: str = ""
    audio_url: Optional[str] = None
    audio_format: str = "mp3"
    duration_seconds: int = 0
    published_at: Optional[datetime] = None
    file_size: int = 0
    status: ProcessingStatus = ProcessingStatus.PENDING
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Ensure datetime objects are timezone-naive"""
        if self.published_at and self.published_at.tzinfo:
            self.published_at = self.published_at.replace(tzinfo=None)
        if isinstance(self.status, str):
            self.status = ProcessingStatus(self.status)

    @classmethod
    def from_row(cls, row) -> 'Episode':
        """Create from a sqlite3.Row"""
        return cls(
            id=row['id'],
            podcast_id=row['podcast_id'],
            guid=row['guid'],
            title=row['title'],
            description=row['description'] or "",
            audio_url=row['audio_url'] or None,
            audio_format=row['audio_format'] or "mp3",
            duration_seconds=row['duration_seconds'] or 0,
            published_at=_parse_timestamp(row['published_at']),
            file_size=row['file_size'] or 0,
            status=ProcessingStatus(row['status']),
            processed_at=_parse_timestamp(row['processed_at']),
            created_at=_parse_timestamp(row['created_at']),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'id': self.id,
            'podcast_id': self.podcast_id,
            'guid': self.guid,
            'title': self.title,
            'description': self.description,
            'audio_url': self.audio_url,
            'audio_format': self.audio_format,
            'duration_seconds': self.duration_seconds,
            'published_at': _format_timestamp(self.published_at),
            'file_size': self.file_size,
            'status': self.status.value,
            'processed_at': _format_timestamp(self.processed_at),
            'created_at': _format_timestamp(self.created_at),
        }


@dataclass
class TranscriptionResult:
    """Output of either transcription strategy; never persisted on its own"""
    text: str
    language: str = ""
    duration: Optional[float] = None


@dataclass
class KeyPoint:
    title: str
    detail: str = ""


@dataclass
class Keyword:
    term: str
    context: str = ""


@dataclass
class AnalysisOutput:
    """Structured analysis of one episode"""
    summary: str = ""
    key_points: List[KeyPoint] = field(default_factory=list)
    keywords: List[Keyword] = field(default_factory=list)
    full_recap: str = ""

    def key_points_as_dicts(self) -> List[Dict[str, str]]:
        return [{'title': p.title, 'detail': p.detail} for p in self.key_points]

    def keywords_as_dicts(self) -> List[Dict[str, str]]:
        return [{'word': k.term, 'context': k.context} for k in self.keywords]


@dataclass
class ProcessingResult:
    """Result of processing one episode"""
    status: ResultStatus
    episode_id: int
    episode_title: str
    duration_ms: int = 0
    markdown_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TaskLog:
    """Audit record of one orchestration run"""
    id: int
    task_type: str
    status: str
    total_episodes: int = 0
    processed_episodes: int = 0
    failed_episodes: int = 0
    error_details: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> 'TaskLog':
        return cls(
            id=row['id'],
            task_type=row['task_type'],
            status=row['status'],
            total_episodes=row['total_episodes'] or 0,
            processed_episodes=row['processed_episodes'] or 0,
            failed_episodes=row['failed_episodes'] or 0,
            error_details=row['error_details'],
            started_at=_parse_timestamp(row['started_at']),
            completed_at=_parse_timestamp(row['completed_at']),
            duration_ms=row['duration_ms'],
        )
