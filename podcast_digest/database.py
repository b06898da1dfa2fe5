"""Database module for Podcast Digest"""

import sqlite3
import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Episode, Podcast, ProcessingStatus, TaskLog
from .config import DB_PATH
from .utils.logging import get_logger

logger = get_logger(__name__)

TERMINAL_TASK_STATUSES = ('completed', 'failed')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as naive UTC 'YYYY-MM-DD HH:MM:SS' so they sort as text"""
    if value is None:
        return None
    if value.tzinfo:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=' ', timespec='seconds')


class PodcastDatabase:
    """Handle all database operations for podcasts, episodes, analyses and task logs"""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Initialize database tables"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS podcasts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    rss_url TEXT NOT NULL UNIQUE,
                    description TEXT,
                    author TEXT,
                    image_url TEXT,
                    language TEXT,
                    category TEXT,
                    is_active INTEGER DEFAULT 1,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS episodes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    podcast_id INTEGER NOT NULL,
                    guid TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    audio_url TEXT,
                    audio_format TEXT,
                    duration_seconds INTEGER,
                    published_at DATETIME,
                    file_size INTEGER,
                    status TEXT DEFAULT 'pending',
                    processed_at DATETIME,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (podcast_id) REFERENCES podcasts(id) ON DELETE CASCADE,
                    UNIQUE(podcast_id, guid)
                );

                CREATE TABLE IF NOT EXISTS analysis_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    episode_id INTEGER NOT NULL UNIQUE,
                    summary TEXT,
                    key_points TEXT,
                    keywords TEXT,
                    full_recap TEXT,
                    transcript TEXT,
                    markdown_path TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (episode_id) REFERENCES episodes(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS task_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_type TEXT NOT NULL,
                    status TEXT DEFAULT 'running',
                    total_episodes INTEGER DEFAULT 0,
                    processed_episodes INTEGER DEFAULT 0,
                    failed_episodes INTEGER DEFAULT 0,
                    error_details TEXT,
                    started_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    completed_at DATETIME,
                    duration_ms INTEGER
                );
            """)
            self._create_indexes(conn)
        logger.debug(f"Database ready at {self.db_path}")

    def _create_indexes(self, conn: sqlite3.Connection):
        """Create database indexes"""
        conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_podcast_id ON episodes(podcast_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_status ON episodes(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_published_at ON episodes(published_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_analysis_episode_id ON analysis_results(episode_id)")

    # ===== Podcasts =====

    def add_podcast(self, name: str, rss_url: str, description: str = "", author: str = "",
                    image_url: str = "", language: str = "", category: str = "") -> int:
        with self._connect() as conn:
            cursor = conn.execute("""
                INSERT INTO podcasts (name, rss_url, description, author, image_url, language, category)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (name, rss_url, description, author, image_url, language, category))
            logger.info(f"Added podcast: {name}")
            return cursor.lastrowid

    def update_podcast(self, podcast_id: int, **fields):
        allowed = {'name', 'description', 'author', 'image_url', 'language', 'category', 'is_active'}
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return
        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE podcasts SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (*updates.values(), podcast_id)
            )

    def get_podcast_by_id(self, podcast_id: int) -> Optional[Podcast]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM podcasts WHERE id = ?", (podcast_id,)).fetchone()
        return Podcast.from_row(row) if row else None

    def get_podcast_by_url(self, rss_url: str) -> Optional[Podcast]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM podcasts WHERE rss_url = ?", (rss_url,)).fetchone()
        return Podcast.from_row(row) if row else None

    def get_active_podcasts(self) -> List[Podcast]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM podcasts WHERE is_active = 1 ORDER BY name").fetchall()
        return [Podcast.from_row(row) for row in rows]

    # ===== Episodes =====

    def add_episode(self, episode: Episode) -> bool:
        """Insert an episode; returns False when (podcast_id, guid) already exists"""
        with self._connect() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO episodes
                (podcast_id, guid, title, description, audio_url, audio_format,
                 duration_seconds, published_at, file_size, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                episode.podcast_id,
                episode.guid,
                episode.title,
                episode.description,
                episode.audio_url,
                episode.audio_format,
                episode.duration_seconds,
                _to_db_timestamp(episode.published_at),
                episode.file_size,
                episode.status.value,
            ))
            return cursor.rowcount > 0

    def get_episode_by_id(self, episode_id: int) -> Optional[Episode]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM episodes WHERE id = ?", (episode_id,)).fetchone()
        return Episode.from_row(row) if row else None

    def get_episodes_by_podcast(self, podcast_id: int, limit: int = 50) -> List[Episode]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodes WHERE podcast_id = ?
                ORDER BY published_at DESC LIMIT ?
            """, (podcast_id, limit)).fetchall()
        return [Episode.from_row(row) for row in rows]

    def get_new_episodes(self, podcast_id: int, since_hours: int) -> List[Episode]:
        """Pending episodes published within the trailing window"""
        cutoff = _to_db_timestamp(_utcnow() - timedelta(hours=since_hours))
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodes
                WHERE podcast_id = ? AND published_at >= ? AND status = 'pending'
                ORDER BY published_at DESC
            """, (podcast_id, cutoff)).fetchall()
        return [Episode.from_row(row) for row in rows]

    def get_pending_episodes_by_podcast(self, podcast_id: int, limit: int = 10) -> List[Episode]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodes
                WHERE podcast_id = ? AND status = 'pending' AND audio_url IS NOT NULL
                ORDER BY published_at DESC LIMIT ?
            """, (podcast_id, limit)).fetchall()
        return [Episode.from_row(row) for row in rows]

    def get_failed_episodes(self) -> List[Episode]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodes WHERE status = 'failed'
                ORDER BY published_at DESC
            """).fetchall()
        return [Episode.from_row(row) for row in rows]

    def update_episode_status(self, episode_id: int, status: ProcessingStatus):
        """Set status; processed_at is only kept for completed episodes"""
        processed_at = _to_db_timestamp(_utcnow()) if status == ProcessingStatus.COMPLETED else None
        with self._connect() as conn:
            conn.execute(
                "UPDATE episodes SET status = ?, processed_at = ? WHERE id = ?",
                (status.value, processed_at, episode_id)
            )
        logger.debug(f"Episode {episode_id} -> {status.value}")

    # ===== Analysis results =====

    def has_analysis(self, episode_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM analysis_results WHERE episode_id = ?", (episode_id,)
            ).fetchone()
        return row is not None

    def get_analysis_result(self, episode_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM analysis_results WHERE episode_id = ?", (episode_id,)
            ).fetchone()
        if not row:
            return None
        result = dict(row)
        result['key_points'] = json.loads(result['key_points'] or '[]')
        result['keywords'] = json.loads(result['keywords'] or '[]')
        return result

    def save_analysis_result(self, episode_id: int, summary: str, key_points: List[Dict],
                             keywords: List[Dict], full_recap: str, transcript: str,
                             markdown_path: str):
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO analysis_results
                (episode_id, summary, key_points, keywords, full_recap, transcript, markdown_path)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(episode_id) DO UPDATE SET
                    summary = excluded.summary,
                    key_points = excluded.key_points,
                    keywords = excluded.keywords,
                    full_recap = excluded.full_recap,
                    transcript = excluded.transcript,
                    markdown_path = excluded.markdown_path,
                    updated_at = CURRENT_TIMESTAMP
            """, (
                episode_id,
                summary,
                json.dumps(key_points, ensure_ascii=False),
                json.dumps(keywords, ensure_ascii=False),
                full_recap,
                transcript,
                markdown_path,
            ))

    def delete_analysis_result(self, episode_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM analysis_results WHERE episode_id = ?", (episode_id,))
            return cursor.rowcount > 0

    # ===== Task logs =====

    def create_task_log(self, task_type: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO task_logs (task_type, status, started_at) VALUES (?, 'running', ?)",
                (task_type, _to_db_timestamp(_utcnow()))
            )
            return cursor.lastrowid

    def update_task_log(self, task_log_id: int, status: str, total_episodes: Optional[int] = None,
                        processed_episodes: Optional[int] = None, failed_episodes: Optional[int] = None,
                        error_details: Optional[str] = None):
        """Finalize a task log; completion time and duration are stamped for terminal statuses"""
        updates: Dict[str, Any] = {'status': status}
        if total_episodes is not None:
            updates['total_episodes'] = total_episodes
        if processed_episodes is not None:
            updates['processed_episodes'] = processed_episodes
        if failed_episodes is not None:
            updates['failed_episodes'] = failed_episodes
        if error_details is not None:
            updates['error_details'] = error_details

        with self._connect() as conn:
            if status in TERMINAL_TASK_STATUSES:
                row = conn.execute(
                    "SELECT started_at FROM task_logs WHERE id = ?", (task_log_id,)
                ).fetchone()
                now = _utcnow()
                updates['completed_at'] = _to_db_timestamp(now)
                if row and row['started_at']:
                    started = datetime.fromisoformat(row['started_at'])
                    updates['duration_ms'] = int((now - started).total_seconds() * 1000)

            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE task_logs SET {assignments} WHERE id = ?",
                (*updates.values(), task_log_id)
            )

    def get_task_log(self, task_log_id: int) -> Optional[TaskLog]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM task_logs WHERE id = ?", (task_log_id,)).fetchone()
        return TaskLog.from_row(row) if row else None

    def get_task_logs(self, limit: int = 50) -> List[TaskLog]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [TaskLog.from_row(row) for row in rows]

    # ===== Stats =====

    def get_stats(self) -> Dict[str, int]:
        """Aggregate counts for the CLI"""
        with self._connect() as conn:
            podcasts = conn.execute("SELECT COUNT(*) FROM podcasts WHERE is_active = 1").fetchone()[0]
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM episodes GROUP BY status"
            ).fetchall()
            analyses = conn.execute("SELECT COUNT(*) FROM analysis_results").fetchone()[0]

        stats = {'active_podcasts': podcasts, 'analyses': analyses, 'total_episodes': 0}
        for status in ProcessingStatus:
            stats[f'{status.value}_episodes'] = 0
        for row in rows:
            stats[f"{row['status']}_episodes"] = row['n']
            stats['total_episodes'] += row['n']
        return stats
