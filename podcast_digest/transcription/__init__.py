"""Transcription strategies.

Both strategies expose ``requires_download`` and an async
``transcribe(audio_path=None, audio_url=None, correlation_id=None)``
returning a ``TranscriptionResult``.
"""

from ..audio import AudioDownloader, AudioProcessor
from ..config import Settings
from .paraformer import ParaformerTranscriber, PollSchedule, PollState
from .whisper import WhisperTranscriber

__all__ = ['create_transcriber', 'ParaformerTranscriber', 'WhisperTranscriber', 'PollSchedule', 'PollState']


def create_transcriber(settings: Settings, openai_client=None, downloader: AudioDownloader = None):
    """Pick the strategy named by TRANSCRIPTION_PROVIDER"""
    provider = settings.transcription_provider
    if provider == "dashscope":
        return ParaformerTranscriber(
            api_key=settings.dashscope_api_key,
            base_url=settings.dashscope_base_url,
            model=settings.dashscope_speech_model,
            downloader=downloader,
            resolve_redirects=settings.resolve_redirects,
            upload_timeout=settings.audio_download_timeout,
        )
    if provider == "openai":
        if openai_client is None:
            raise ValueError("OpenAI transcription requires an OpenAI client")
        processor = AudioProcessor(settings.temp_dir, settings.max_chunk_bytes)
        return WhisperTranscriber(
            client=openai_client,
            processor=processor,
            model=settings.openai_whisper_model,
            language=settings.transcription_language,
            max_attempts=settings.max_retry_attempts,
        )
    raise ValueError(f"Unsupported transcription provider: {provider}")
