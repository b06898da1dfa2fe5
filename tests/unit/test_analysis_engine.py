"""Unit tests for the analysis engine"""

import httpx
import openai
import pytest

from podcast_digest.analysis import AnalysisEngine
from podcast_digest.analysis.normalizer import PARSE_FAILED_SUMMARY
from podcast_digest.analysis.prompts import (
    MAX_PROMPT_TRANSCRIPT_CHARS,
    TRUNCATION_NOTICE,
    PromptOptions,
    build_analysis_prompt,
)
from podcast_digest.exceptions import AnalysisError


PROSE = "A detailed prose summary of this part of the conversation. " * 3


def long_transcript(length: int = 50000) -> str:
    return ("abcdefghij" * (length // 10 + 1))[:length]


class TestSinglePassAnalysis:
    """Transcripts at or below the single-pass limit"""

    @pytest.fixture
    def engine(self, fake_chat_client):
        return AnalysisEngine(fake_chat_client, model="test-model")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_short_transcript_uses_one_call(self, engine, fake_chat_client):
        result = await engine.analyze("x" * 500, "Episode", "Podcast")

        assert len(fake_chat_client.calls) == 1
        call = fake_chat_client.calls[0]
        assert call['model'] == "test-model"
        assert call['response_format'] == {"type": "json_object"}
        assert call['messages'][0]['role'] == "system"
        assert "Episode" in call['messages'][1]['content']
        assert result.summary.startswith("This episode discusses")
        assert len(result.key_points) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_boundary_length_stays_single_pass(self, engine, fake_chat_client):
        await engine.analyze("x" * engine.single_max_chars, "Episode", "Podcast")

        assert len(fake_chat_client.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unparseable_response_gives_placeholder(self, make_chat_client, no_sleep):
        client = make_chat_client(lambda params: "this is definitely not json")
        engine = AnalysisEngine(client, model="test-model")

        result = await engine.analyze("x" * 500, "Episode", "Podcast")

        assert result.summary == PARSE_FAILED_SUMMARY
        assert len(client.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_short_json_response_is_retried(self, make_chat_client, analysis_json, no_sleep):
        responses = iter(["{}", analysis_json])
        client = make_chat_client(lambda params: next(responses))
        engine = AnalysisEngine(client, model="test-model")

        result = await engine.analyze("x" * 500, "Episode", "Podcast")

        assert len(client.calls) == 2
        assert result.summary.startswith("This episode discusses")
        assert len(no_sleep) == 1
        assert 10.0 <= no_sleep[0] <= 15.0


class TestChunkedAnalysis:
    """Transcripts above the single-pass limit"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_long_transcript_map_then_merge(self, fake_chat_client):
        engine = AnalysisEngine(fake_chat_client, model="test-model")

        result = await engine.analyze(long_transcript(50000), "Episode", "Podcast")

        assert len(fake_chat_client.text_calls) == 7
        assert len(fake_chat_client.json_calls) == 1
        assert fake_chat_client.calls[-1] is fake_chat_client.json_calls[0]
        for index, call in enumerate(fake_chat_client.text_calls, start=1):
            assert call['temperature'] == 0.3
            assert 'response_format' not in call
            assert f"part {index} of 7" in call['messages'][1]['content']

        merge_prompt = fake_chat_client.json_calls[0]['messages'][1]['content']
        assert "=== Part 1 of 7 ===" in merge_prompt
        assert "=== Part 7 of 7 ===" in merge_prompt
        assert result.full_recap.startswith("The episode opens")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_short_chunk_summary_is_retried(self, make_chat_client, analysis_json, no_sleep):
        chunk_answers = iter(["too short", PROSE, PROSE])

        def responder(params):
            if params.get('response_format'):
                return analysis_json
            return next(chunk_answers)

        client = make_chat_client(responder)
        engine = AnalysisEngine(client, model="test-model", single_max_chars=100, chunk_max_chars=100)

        await engine.analyze(long_transcript(150), "Episode", "Podcast")

        assert len(client.text_calls) == 3
        assert len(client.json_calls) == 1
        assert len(no_sleep) == 1
        assert 15.0 <= no_sleep[0] <= 22.5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_persistently_empty_chunk_aborts(self, make_chat_client, analysis_json, no_sleep):
        def responder(params):
            if params.get('response_format'):
                return analysis_json
            return ""

        client = make_chat_client(responder)
        engine = AnalysisEngine(client, model="test-model", single_max_chars=100,
                                chunk_max_chars=100, max_attempts=2)

        with pytest.raises(AnalysisError):
            await engine.analyze(long_transcript(150), "Episode", "Podcast")

        assert client.json_calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_errors_propagate_after_retries(self, make_chat_client, no_sleep):
        client = make_chat_client(lambda params: ConnectionError("api down"))
        engine = AnalysisEngine(client, model="test-model", max_attempts=3)

        with pytest.raises(ConnectionError):
            await engine.analyze(long_transcript(20000), "Episode", "Podcast")

        assert len(client.calls) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_authentication_error_is_not_retried(self, make_chat_client, no_sleep):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        rejected = openai.AuthenticationError(
            "Incorrect API key provided",
            response=httpx.Response(401, request=request),
            body=None,
        )
        client = make_chat_client(lambda params: rejected)
        engine = AnalysisEngine(client, model="test-model", max_attempts=3)

        with pytest.raises(openai.AuthenticationError):
            await engine.analyze("x" * 500, "Episode", "Podcast")

        assert len(client.calls) == 1
        assert no_sleep == []


class TestPrompts:
    """Prompt construction"""

    @pytest.mark.unit
    def test_analysis_prompt_truncates_huge_transcripts(self):
        transcript = "y" * (MAX_PROMPT_TRANSCRIPT_CHARS + 500)
        prompt = build_analysis_prompt(transcript, "Episode", "Podcast", PromptOptions())

        assert TRUNCATION_NOTICE in prompt
        assert "y" * (MAX_PROMPT_TRANSCRIPT_CHARS + 1) not in prompt

    @pytest.mark.unit
    def test_sizing_hints_are_threaded_through(self):
        options = PromptOptions(summary_min_length=300, summary_max_length=600,
                                key_points_count=5, language="en-US")
        prompt = build_analysis_prompt("text", "Episode", "Podcast", options)

        assert "300-600" in prompt
        assert "5 most important points" in prompt
        assert "en-US" in prompt

    @pytest.mark.unit
    def test_custom_system_prompt_file(self, temp_dir, fake_chat_client):
        (temp_dir / "analysis_system_prompt.txt").write_text("Answer in {language}.", encoding="utf-8")
        engine = AnalysisEngine(fake_chat_client, model="m", options=PromptOptions(language="fr-FR"),
                                prompts_dir=temp_dir)

        assert engine.system_prompt == "Answer in fr-FR."
