"""RSS feed parsing and refresh into the episode store"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiohttp
import feedparser
from dateutil import parser as date_parser

from .config import FEEDS_FILE, load_feed_configs
from .database import PodcastDatabase
from .models import Episode, Podcast
from .utils.helpers import retry_with_backoff, generate_correlation_id
from .utils.logging import get_logger

logger = get_logger(__name__)

FEED_TIMEOUT = 15  # seconds
USER_AGENT = 'PodcastDigest/2.0'


@dataclass
class ParsedEpisode:
    guid: str
    title: str
    description: str
    audio_url: str
    audio_format: str
    duration_seconds: int
    published_at: datetime
    file_size: int


@dataclass
class ParsedFeed:
    title: str
    description: str = ""
    author: str = ""
    image_url: str = ""
    language: str = "zh-CN"
    category: str = ""
    episodes: List[ParsedEpisode] = field(default_factory=list)


def parse_duration(value) -> int:
    """itunes:duration as seconds; accepts 'HH:MM:SS', 'MM:SS' or plain seconds"""
    if not value:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        parts = [int(float(p)) for p in str(value).strip().split(':')]
    except ValueError:
        return 0
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 1:
        return parts[0]
    return 0


def detect_audio_format(type_or_url: str) -> str:
    value = (type_or_url or '').lower()
    if 'mp3' in value or 'mpeg' in value:
        return 'mp3'
    if 'm4a' in value or 'mp4' in value:
        return 'm4a'
    if 'wav' in value:
        return 'wav'
    if 'ogg' in value:
        return 'ogg'
    return 'mp3'


def _parse_date(entry) -> datetime:
    for key in ('published', 'updated'):
        raw = entry.get(key)
        if raw:
            try:
                parsed = date_parser.parse(raw)
            except (ValueError, OverflowError):
                continue
            if parsed.tzinfo:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _extract_enclosure(entry):
    for enclosure in entry.get('enclosures', []) or []:
        if enclosure.get('href'):
            return enclosure
    for link in entry.get('links', []) or []:
        if link.get('rel') == 'enclosure' and link.get('href'):
            return link
    return None


def parse_feed_content(content) -> ParsedFeed:
    """Parse RSS bytes/text with feedparser"""
    feed = feedparser.parse(content)
    channel = feed.get('feed', {})

    episodes = []
    for entry in feed.get('entries', []):
        enclosure = _extract_enclosure(entry)
        audio_url = enclosure.get('href', '') if enclosure else ''
        try:
            file_size = int(enclosure.get('length') or 0) if enclosure else 0
        except ValueError:
            file_size = 0

        episodes.append(ParsedEpisode(
            guid=entry.get('id') or entry.get('link') or entry.get('title') or '',
            title=entry.get('title', ''),
            description=entry.get('summary', '') or entry.get('itunes_summary', ''),
            audio_url=audio_url,
            audio_format=detect_audio_format((enclosure or {}).get('type') or audio_url),
            duration_seconds=parse_duration(entry.get('itunes_duration')),
            published_at=_parse_date(entry),
            file_size=file_size,
        ))

    image = channel.get('image') or {}
    tags = channel.get('tags') or []
    return ParsedFeed(
        title=channel.get('title', ''),
        description=channel.get('subtitle', '') or channel.get('description', ''),
        author=channel.get('author', '') or channel.get('itunes_author', ''),
        image_url=image.get('href', '') if isinstance(image, dict) else '',
        language=channel.get('language') or 'zh-CN',
        category=", ".join(t.get('term', '') for t in tags if t.get('term')),
        episodes=episodes,
    )


async def fetch_feed(url: str, correlation_id: Optional[str] = None) -> ParsedFeed:
    """Download and parse a feed, retrying transient HTTP failures"""
    cid = correlation_id or generate_correlation_id()

    async def fetch_rss():
        timeout = aiohttp.ClientTimeout(total=FEED_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout, headers={'User-Agent': USER_AGENT}) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read()

    content = await retry_with_backoff(
        fetch_rss,
        max_attempts=3,
        base_delay=3.0,
        exceptions=(aiohttp.ClientError, asyncio.TimeoutError),
        correlation_id=cid,
    )
    parsed = await asyncio.to_thread(parse_feed_content, content)
    logger.info(f"[{cid}] Parsed feed '{parsed.title}': {len(parsed.episodes)} entries")
    return parsed


class FeedRefresher:
    """Feed collaborator: pull a feed and store episodes not seen before"""

    def __init__(self, db: PodcastDatabase):
        self.db = db

    async def refresh(self, podcast: Podcast, correlation_id: Optional[str] = None) -> int:
        cid = correlation_id or generate_correlation_id()
        logger.info(f"[{cid}] Refreshing podcast: {podcast.name} ({podcast.rss_url})")

        feed = await fetch_feed(podcast.rss_url, cid)
        new_count = 0
        for item in feed.episodes:
            added = self.db.add_episode(Episode(
                podcast_id=podcast.id,
                guid=item.guid,
                title=item.title,
                description=item.description,
                audio_url=item.audio_url or None,
                audio_format=item.audio_format,
                duration_seconds=item.duration_seconds,
                published_at=item.published_at,
                file_size=item.file_size,
            ))
            if added:
                new_count += 1

        logger.info(f"[{cid}] Feed refreshed: {new_count} new episodes")
        return new_count

    async def add_feed(self, rss_url: str, name: Optional[str] = None, category: str = "") -> Podcast:
        """Validate a feed by parsing it, then subscribe to it"""
        existing = self.db.get_podcast_by_url(rss_url)
        if existing:
            return existing

        feed = await fetch_feed(rss_url)
        podcast_id = self.db.add_podcast(
            name=name or feed.title or rss_url,
            rss_url=rss_url,
            description=feed.description,
            author=feed.author,
            image_url=feed.image_url,
            language=feed.language,
            category=category or feed.category,
        )
        return self.db.get_podcast_by_id(podcast_id)


def import_feeds_from_yaml(db: PodcastDatabase, yaml_file: Path = FEEDS_FILE) -> int:
    """Subscribe to every feed listed in feeds.yaml that is not already stored"""
    added = 0
    for config in load_feed_configs(yaml_file):
        if db.get_podcast_by_url(config['rss_url']):
            continue
        podcast_id = db.add_podcast(name=config['name'], rss_url=config['rss_url'],
                                    category=config['category'])
        if not config['is_active']:
            db.update_podcast(podcast_id, is_active=0)
        added += 1
    logger.info(f"Imported {added} feed(s) from {yaml_file}")
    return added
