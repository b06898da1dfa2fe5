"""Unit tests for segment-upload transcription"""

import logging
from types import SimpleNamespace

import httpx
import openai
import pytest

from podcast_digest.audio import AudioProcessor
from podcast_digest.exceptions import TranscriptionError
from podcast_digest.transcription import WhisperTranscriber


class FakeAudioClient:
    """Stand-in for client.audio.transcriptions"""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._create))

    def _create(self, **params):
        self.calls.append({**params, 'file': params['file'].name})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeProcessor(AudioProcessor):
    """Returns pre-made segment files instead of running ffmpeg"""

    def __init__(self, temp_dir, segment_count):
        super().__init__(temp_dir)
        self.segment_count = segment_count

    async def prepare(self, audio_file, correlation_id=None):
        segments = []
        for i in range(self.segment_count):
            path = self.temp_dir / f"chunk_{i}.mp3"
            path.write_bytes(b"\x00" * 128)
            segments.append(path)
        return segments


def whisper_response(text, duration):
    return SimpleNamespace(text=text, duration=duration)


@pytest.fixture
def audio_file(temp_dir):
    path = temp_dir / "episode.mp3"
    path.write_bytes(b"\x00" * 1024)
    return path


class TestWhisperTranscriber:
    """Test per-segment transcription"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_segments_are_joined_in_order(self, temp_dir, audio_file):
        client = FakeAudioClient([whisper_response("first part", 1800.0),
                                  whisper_response("second part", 1750.5)])
        processor = FakeProcessor(temp_dir, segment_count=2)
        transcriber = WhisperTranscriber(client, processor, model="whisper-1", language="zh")

        result = await transcriber.transcribe(audio_path=audio_file, audio_url="https://x/a.mp3")

        assert result.text == "first part second part"
        assert result.duration == pytest.approx(3550.5)
        assert result.language == "zh"
        assert [c['file'] for c in client.calls] == [str(temp_dir / "chunk_0.mp3"),
                                                     str(temp_dir / "chunk_1.mp3")]
        assert all(c['response_format'] == "verbose_json" for c in client.calls)
        # Segments are removed, the source file is left to the caller
        assert not (temp_dir / "chunk_0.mp3").exists()
        assert not (temp_dir / "chunk_1.mp3").exists()
        assert audio_file.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, temp_dir, audio_file, no_sleep, caplog):
        client = FakeAudioClient([
            ConnectionError("connection reset"),
            ConnectionError("connection reset"),
            whisper_response("finally transcribed", 60.0),
        ])
        transcriber = WhisperTranscriber(client, FakeProcessor(temp_dir, 1))

        with caplog.at_level(logging.WARNING, logger="podcast_digest.utils.helpers"):
            result = await transcriber.transcribe(audio_path=audio_file)

        assert result.text == "finally transcribed"
        assert len(client.calls) == 3
        retry_warnings = [r for r in caplog.records if r.levelno == logging.WARNING and hasattr(r, 'attempt')]
        assert len(retry_warnings) == 2
        assert 10.0 <= no_sleep[0] <= 15.0
        assert 20.0 <= no_sleep[1] <= 25.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_upload_is_not_retried(self, temp_dir, audio_file, no_sleep):
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        too_large = openai.BadRequestError(
            "Maximum content size limit exceeded",
            response=httpx.Response(400, request=request),
            body=None,
        )
        client = FakeAudioClient([too_large, whisper_response("never reached", 1.0)])
        transcriber = WhisperTranscriber(client, FakeProcessor(temp_dir, 1))

        with pytest.raises(openai.BadRequestError):
            await transcriber.transcribe(audio_path=audio_file)

        assert len(client.calls) == 1
        assert no_sleep == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_segments_cleaned_up_on_failure(self, temp_dir, audio_file, no_sleep):
        client = FakeAudioClient([whisper_response("ok", 10.0)] + [RuntimeError("down")] * 3)
        transcriber = WhisperTranscriber(client, FakeProcessor(temp_dir, 2))

        with pytest.raises(RuntimeError):
            await transcriber.transcribe(audio_path=audio_file)

        assert not list(temp_dir.glob("chunk_*.mp3"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_requires_local_file(self, temp_dir):
        transcriber = WhisperTranscriber(FakeAudioClient([]), FakeProcessor(temp_dir, 1))

        assert transcriber.requires_download is True
        with pytest.raises(TranscriptionError):
            await transcriber.transcribe(audio_url="https://x/a.mp3")
