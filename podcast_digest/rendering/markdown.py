"""Render an AnalysisOutput as a markdown document"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..models import AnalysisOutput, KeyPoint, Keyword
from ..utils.helpers import format_duration, safe_filename
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EpisodeMeta:
    podcast_name: str
    episode_title: str
    published_at: Optional[datetime] = None
    duration_seconds: int = 0
    audio_url: Optional[str] = None


def _format_key_point(point: KeyPoint) -> List[str]:
    lines = [f"### {point.title}", ""]
    if point.detail:
        lines += [
            "<details>",
            "<summary>Show details</summary>",
            "",
            point.detail,
            "",
            "</details>",
            "",
        ]
    return lines


def _format_keyword(keyword: Keyword) -> List[str]:
    return [f"**{keyword.term}**", "", keyword.context, ""]


def generate_markdown(analysis: AnalysisOutput, meta: EpisodeMeta,
                      generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now()
    published = meta.published_at or generated_at
    duration = format_duration(meta.duration_seconds)

    lines = [f"# {meta.episode_title}", ""]
    lines.append(f"> **Podcast**: {meta.podcast_name}")
    lines.append(f"> **Date**: {published:%Y-%m-%d}")
    if duration:
        lines.append(f"> **Duration**: {duration}")
    if meta.audio_url:
        lines.append(f"> **Audio**: [Listen to the original]({meta.audio_url})")
    lines += ["", "---", ""]

    lines += ["## 📝 Summary", "", analysis.summary, ""]

    if analysis.key_points:
        lines += ["## 🎯 Key Points", ""]
        for point in analysis.key_points:
            lines += _format_key_point(point)

    if analysis.keywords:
        lines += ["## 🔑 Keywords", ""]
        for keyword in analysis.keywords:
            lines += _format_keyword(keyword)

    if analysis.full_recap:
        lines += ["## 📖 Full Recap", "", analysis.full_recap, ""]

    lines += ["---", "", f"*Generated by Podcast Digest at {generated_at:%Y-%m-%d %H:%M:%S}*", ""]
    return "\n".join(lines)


def save_markdown(content: str, podcast_name: str, published_at: Optional[datetime],
                  summaries_dir: Path) -> Path:
    """Write to summaries_dir/<podcast>/<date>-podcast-summary[-n].md without overwriting"""
    directory = Path(summaries_dir) / safe_filename(podcast_name)
    directory.mkdir(parents=True, exist_ok=True)

    date = f"{(published_at or datetime.now()):%Y-%m-%d}"
    path = directory / f"{date}-podcast-summary.md"
    counter = 1
    while path.exists():
        path = directory / f"{date}-podcast-summary-{counter}.md"
        counter += 1

    path.write_text(content, encoding='utf-8')
    logger.info(f"Markdown saved: {path}")
    return path


class MarkdownRenderer:
    """Rendering collaborator used by the pipeline"""

    def __init__(self, summaries_dir: Path):
        self.summaries_dir = Path(summaries_dir)

    def render(self, analysis: AnalysisOutput, meta: EpisodeMeta) -> Path:
        content = generate_markdown(analysis, meta)
        return save_markdown(content, meta.podcast_name, meta.published_at, self.summaries_dir)
