"""Single-pass and chunked analysis of episode transcripts"""

import asyncio
import math
from pathlib import Path
from typing import Optional

from ..config import Settings
from ..exceptions import AnalysisError
from ..models import AnalysisOutput
from ..utils.clients import TRANSIENT_API_ERRORS
from ..utils.helpers import retry_with_backoff, generate_correlation_id
from ..utils.logging import get_logger
from .chunking import split_into_chunks
from .normalizer import normalize_analysis_result
from .prompts import (
    PromptOptions,
    build_analysis_prompt,
    build_chunk_summary_prompt,
    build_merge_analysis_prompt,
    load_system_prompt,
)

logger = get_logger(__name__)

SINGLE_ANALYSIS_MAX_CHARS = 10000
CHUNK_MAX_CHARS = 8000
MIN_CHUNK_SUMMARY_CHARS = 50
MIN_JSON_RESPONSE_CHARS = 10


class AnalysisEngine:
    """Turn a transcript into an AnalysisOutput with one or two model passes"""

    def __init__(self, client, model: str, options: Optional[PromptOptions] = None,
                 single_max_chars: int = SINGLE_ANALYSIS_MAX_CHARS,
                 chunk_max_chars: int = CHUNK_MAX_CHARS,
                 max_attempts: int = 3, prompts_dir: Optional[Path] = None):
        self.client = client
        self.model = model
        self.options = options or PromptOptions()
        self.single_max_chars = single_max_chars
        self.chunk_max_chars = chunk_max_chars
        self.max_attempts = max_attempts
        self.system_prompt = load_system_prompt(self.options.language, prompts_dir)

    @classmethod
    def from_settings(cls, client, settings: Settings) -> "AnalysisEngine":
        options = PromptOptions(
            summary_min_length=settings.summary_min_length,
            summary_max_length=settings.summary_max_length,
            key_points_count=settings.key_points_count,
            language=settings.analysis_language,
        )
        return cls(
            client,
            settings.analysis_model,
            options=options,
            single_max_chars=settings.single_analysis_max_chars,
            chunk_max_chars=settings.chunk_max_chars,
            max_attempts=settings.max_retry_attempts,
        )

    async def analyze(self, transcript: str, episode_title: str, podcast_name: str,
                      correlation_id: Optional[str] = None) -> AnalysisOutput:
        cid = correlation_id or generate_correlation_id()
        logger.info(f"[{cid}] Starting content analysis: {len(transcript)} chars, '{episode_title}'")

        if len(transcript) <= self.single_max_chars:
            logger.info(f"[{cid}] Using single-pass analysis")
            prompt = build_analysis_prompt(transcript, episode_title, podcast_name, self.options)
            content = await self._request_json(prompt, "Single-pass", base_delay=10.0, cid=cid)
            return normalize_analysis_result(content)

        estimated = math.ceil(len(transcript) / self.chunk_max_chars)
        logger.info(f"[{cid}] Using chunked analysis for long transcript (~{estimated} chunks)")
        return await self._analyze_with_chunks(transcript, episode_title, podcast_name, cid)

    async def _analyze_with_chunks(self, transcript: str, episode_title: str, podcast_name: str,
                                   cid: str) -> AnalysisOutput:
        chunks = split_into_chunks(transcript, self.chunk_max_chars)
        logger.info(f"[{cid}] Split transcript into {len(chunks)} chunks: {[len(c) for c in chunks]}")

        summaries = []
        for index, chunk in enumerate(chunks, start=1):
            logger.info(f"[{cid}] Analyzing chunk {index}/{len(chunks)} ({len(chunk)} chars)")
            prompt = build_chunk_summary_prompt(
                chunk, index, len(chunks), episode_title, podcast_name, self.options.language
            )
            summary = await self._request_chunk_summary(prompt, index, cid)
            summaries.append(summary)
            logger.info(f"[{cid}] Chunk {index} summary generated: {len(summary)} chars")

        empty = [s for s in summaries if len(s.strip()) < MIN_CHUNK_SUMMARY_CHARS]
        if empty:
            raise AnalysisError(f"{len(empty)} out of {len(chunks)} chunk summaries are empty")

        merged = "\n\n".join(
            f"=== Part {i} of {len(chunks)} ===\n{s}" for i, s in enumerate(summaries, start=1)
        )
        logger.info(f"[{cid}] Generating final merged analysis from {len(merged)} chars")

        prompt = build_merge_analysis_prompt(merged, episode_title, podcast_name, self.options)
        content = await self._request_json(prompt, "Merge", base_delay=15.0, cid=cid)
        return normalize_analysis_result(content)

    async def _complete(self, **params):
        return await asyncio.to_thread(self.client.chat.completions.create, **params)

    def _messages(self, prompt: str):
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

    async def _request_chunk_summary(self, prompt: str, index: int, cid: str) -> str:
        async def summarize_chunk():
            response = await self._complete(
                model=self.model,
                messages=self._messages(prompt),
                temperature=0.3,
                max_completion_tokens=32000,
            )
            content, finish_reason = _first_choice(response)
            if len(content.strip()) < MIN_CHUNK_SUMMARY_CHARS:
                raise AnalysisError(
                    f"Chunk {index} returned empty/short response "
                    f"(finish_reason: {finish_reason}, length: {len(content)})"
                )
            return content

        return await retry_with_backoff(
            summarize_chunk,
            max_attempts=self.max_attempts,
            base_delay=15.0,
            exceptions=TRANSIENT_API_ERRORS + (AnalysisError,),
            correlation_id=cid,
        )

    async def _request_json(self, prompt: str, label: str, base_delay: float, cid: str) -> str:
        async def request_analysis():
            response = await self._complete(
                model=self.model,
                messages=self._messages(prompt),
                temperature=0.3,
                max_completion_tokens=65536,
                response_format={"type": "json_object"},
            )
            content, finish_reason = _first_choice(response)
            logger.info(f"[{cid}] {label} API response: finish_reason={finish_reason}, length={len(content)}")
            if len(content) < MIN_JSON_RESPONSE_CHARS:
                raise AnalysisError(
                    f"{label} response empty or too short "
                    f"(finish_reason: {finish_reason}, length: {len(content)})"
                )
            return content

        return await retry_with_backoff(
            request_analysis,
            max_attempts=self.max_attempts,
            base_delay=base_delay,
            exceptions=TRANSIENT_API_ERRORS + (AnalysisError,),
            correlation_id=cid,
        )


def _first_choice(response):
    choices = getattr(response, 'choices', None) or []
    if not choices:
        return "", None
    message = getattr(choices[0], 'message', None)
    return (getattr(message, 'content', None) or ""), getattr(choices[0], 'finish_reason', None)
