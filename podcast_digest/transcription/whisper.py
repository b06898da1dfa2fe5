"""Segment-upload transcription through the OpenAI audio API"""

import asyncio
from pathlib import Path
from typing import Optional

from ..audio.processor import AudioProcessor
from ..exceptions import TranscriptionError
from ..models import TranscriptionResult
from ..utils.clients import TRANSIENT_API_ERRORS
from ..utils.helpers import retry_with_backoff, generate_correlation_id
from ..utils.logging import get_logger

logger = get_logger(__name__)


class WhisperTranscriber:
    """Prepare a local file into segments and transcribe them one by one"""

    requires_download = True

    def __init__(self, client, processor: AudioProcessor, model: str = "whisper-1",
                 language: str = "zh", max_attempts: int = 3, base_delay: float = 10.0):
        self.client = client
        self.processor = processor
        self.model = model
        self.language = language
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def transcribe(self, audio_path: Optional[Path] = None, audio_url: Optional[str] = None,
                         correlation_id: Optional[str] = None) -> TranscriptionResult:
        cid = correlation_id or generate_correlation_id()
        if audio_path is None:
            raise TranscriptionError("Whisper transcription requires a local audio file")

        audio_path = Path(audio_path)
        segments = await self.processor.prepare(audio_path, cid)
        logger.info(f"[{cid}] Audio prepared: {len(segments)} segment(s)")

        texts = []
        total_duration = 0.0
        try:
            for index, segment in enumerate(segments):
                logger.info(f"[{cid}] Transcribing segment {index + 1}/{len(segments)}")
                text, duration = await self._transcribe_segment(segment, cid)
                texts.append(text)
                total_duration += duration
        finally:
            self.processor.cleanup(segments, keep=audio_path)

        full_text = " ".join(texts).strip()
        logger.info(f"[{cid}] Transcription complete: {len(full_text)} chars, {total_duration:.0f}s audio")
        return TranscriptionResult(text=full_text, language=self.language, duration=total_duration)

    async def _transcribe_segment(self, segment: Path, cid: str):
        size_mb = segment.stat().st_size / 1024 / 1024
        logger.info(f"[{cid}] Uploading {segment.name} ({size_mb:.1f} MB)")

        def api_call():
            with open(segment, 'rb') as audio:
                return self.client.audio.transcriptions.create(
                    model=self.model,
                    file=audio,
                    response_format="verbose_json",
                    language=self.language,
                )

        async def transcribe():
            return await asyncio.to_thread(api_call)

        response = await retry_with_backoff(
            transcribe,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            exceptions=TRANSIENT_API_ERRORS,
            correlation_id=cid,
        )

        text = getattr(response, 'text', '') or ''
        duration = float(getattr(response, 'duration', 0) or 0)
        logger.info(f"[{cid}] Segment transcribed: {len(text)} chars")
        return text, duration
