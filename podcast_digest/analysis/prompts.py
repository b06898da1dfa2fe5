"""Prompt templates for episode analysis"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils.logging import get_logger

logger = get_logger(__name__)

MAX_PROMPT_TRANSCRIPT_CHARS = 100000
TRUNCATION_NOTICE = "\n...(transcript truncated)"

DEFAULT_SYSTEM_PROMPT = """You are a professional podcast content analyst. Your task is to analyze podcast transcripts in depth, extract the key information, and produce a structured analysis report.

Core principles:
1. Write all analysis and output in {language}
2. Be accurate and objective, stay strictly faithful to the source, and never introduce information from outside the episode
3. Analyze in depth rather than simply restating
4. The long-form recap should restore the full content and context of the episode as completely as possible"""

JSON_SHAPE = """{{
  "summary": "(a {summary_min}-{summary_max} character core summary covering the main themes, discussion and conclusions)",
  "keyPoints": [
    {{
      "title": "Key point title (a short phrase)",
      "detail": "Detailed expansion of this point: the specific discussion, arguments, data, examples and each participant's position. Rich enough that a reader understands the point from this text alone."
    }}
  ],
  "keywords": [
    {{
      "word": "Core keyword or term",
      "context": "What the term means in this episode and the context it was discussed in: who raised it, in what setting, and what was concluded"
    }}
  ],
  "fullRecap": "(a long-form recap following the episode's timeline and order of discussion, covering every topic, the participants' statements, data and examples cited, and the transitions between topics; based only on the transcript)"
}}"""

REQUIREMENTS = """Requirements:
1. summary should be roughly {summary_min}-{summary_max} characters, concise but complete
2. keyPoints should contain the {key_points_count} most important points, each with a substantial detail
3. keywords should contain 8-15 core terms, each with enough context
4. fullRecap should follow the timeline and rely strictly on the source material
5. Write everything in {language} (proper nouns may keep their original spelling)
6. Output JSON only, with no other text"""


@dataclass
class PromptOptions:
    """Sizing hints threaded into the prompts; never validated against the response"""
    summary_min_length: int = 1000
    summary_max_length: int = 2000
    key_points_count: int = 8
    language: str = "zh-CN"

    def format_args(self) -> dict:
        return {
            'summary_min': self.summary_min_length,
            'summary_max': self.summary_max_length,
            'key_points_count': self.key_points_count,
            'language': self.language,
        }


def load_system_prompt(language: str, prompts_dir: Optional[Path] = None) -> str:
    """Load prompts_dir/analysis_system_prompt.txt, falling back to the built-in prompt"""
    template = DEFAULT_SYSTEM_PROMPT
    if prompts_dir is not None:
        prompt_path = Path(prompts_dir) / "analysis_system_prompt.txt"
        if prompt_path.exists():
            template = prompt_path.read_text(encoding='utf-8')
            logger.debug(f"Loaded system prompt from {prompt_path}")
    return template.replace("{language}", language)


def _truncate(transcript: str) -> str:
    if len(transcript) > MAX_PROMPT_TRANSCRIPT_CHARS:
        return transcript[:MAX_PROMPT_TRANSCRIPT_CHARS] + TRUNCATION_NOTICE
    return transcript


def build_analysis_prompt(transcript: str, episode_title: str, podcast_name: str,
                          options: PromptOptions) -> str:
    args = options.format_args()
    return f"""Please analyze the following podcast content in depth:

Podcast: {podcast_name}
Episode: {episode_title}

Transcript:
{_truncate(transcript)}

Output the analysis in the following JSON format (it must be valid JSON):

{JSON_SHAPE.format(**args)}

{REQUIREMENTS.format(**args)}"""


def build_chunk_summary_prompt(chunk: str, index: int, total: int, episode_title: str,
                               podcast_name: str, language: str = "zh-CN") -> str:
    return f"""The following is part {index} of {total} of a podcast transcript.

Podcast: {podcast_name}
Episode: {episode_title}

Transcript part {index}/{total}:
{chunk}

Write a detailed prose summary of this part in {language}. Do not output JSON. Cover:
- every topic discussed, in the order it comes up
- each participant's positions and arguments
- data, examples and quotes that matter
- key terms and what they mean in this conversation

Keep the chronological order and rely only on the text above."""


def build_merge_analysis_prompt(merged_summaries: str, episode_title: str, podcast_name: str,
                                options: PromptOptions) -> str:
    args = options.format_args()
    return f"""The podcast below was too long to analyze in one pass, so it was split into parts and each part was summarized in order. Using these partial summaries, produce one structured analysis of the whole episode.

Podcast: {podcast_name}
Episode: {episode_title}

Partial summaries:
{merged_summaries}

Output the analysis in the following JSON format (it must be valid JSON):

{JSON_SHAPE.format(**args)}

{REQUIREMENTS.format(**args)}"""
