"""Submit-and-poll transcription against DashScope Paraformer"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..exceptions import TranscriptionError, TranscriptionTaskFailed, TranscriptionTimeout
from ..models import TranscriptionResult
from ..utils.helpers import retry_with_backoff, generate_correlation_id
from ..utils.logging import get_logger
from .redirect_resolver import RedirectResolver

logger = get_logger(__name__)

SUBMIT_PATH = "/api/v1/services/audio/asr/transcription"
TASK_PATH = "/api/v1/tasks/{task_id}"
UPLOAD_POLICY_PATH = "/api/v1/uploads"
LANGUAGE_HINTS = ['zh', 'en']


class PollState(Enum):
    SUBMITTED = "submitted"
    POLLING_FAST = "polling_fast"
    POLLING_SLOW = "polling_slow"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = (PollState.SUCCEEDED, PollState.FAILED, PollState.TIMED_OUT)


@dataclass
class PollSchedule:
    """Fast polls first, then slow polls, up to a hard ceiling (seconds)"""
    fast_interval: float = 10.0
    fast_polls: int = 5
    slow_interval: float = 30.0
    max_wait: float = 30 * 60.0


class TaskPoller:
    """Timer-driven state machine for one remote task.

    SUBMITTED -> POLLING_FAST -> POLLING_SLOW, ending in SUCCEEDED, FAILED
    or TIMED_OUT. The caller asks for the next delay, sleeps, polls, and
    reports the remote status back.
    """

    def __init__(self, task_id: str, schedule: PollSchedule,
                 clock: Callable[[], float] = time.monotonic):
        self.task_id = task_id
        self.schedule = schedule
        self.clock = clock
        self.state = PollState.SUBMITTED
        self.polls = 0
        self.started = clock()
        self.failure: Optional[Dict[str, str]] = None
        self.output: Dict[str, Any] = {}

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def next_delay(self) -> Optional[float]:
        """Advance to the next polling state; None once the ceiling is reached"""
        if self.done:
            raise RuntimeError(f"Task {self.task_id} already finished ({self.state.value})")
        if self.elapsed >= self.schedule.max_wait:
            self.state = PollState.TIMED_OUT
            return None
        if self.polls < self.schedule.fast_polls:
            self.state = PollState.POLLING_FAST
            return self.schedule.fast_interval
        self.state = PollState.POLLING_SLOW
        return self.schedule.slow_interval

    def record(self, output: Dict[str, Any]):
        """Apply one task status response"""
        self.polls += 1
        status = output.get('task_status')
        if status == 'SUCCEEDED':
            self.state = PollState.SUCCEEDED
            self.output = output
        elif status == 'FAILED':
            self.state = PollState.FAILED
            # Some failures only carry their code on the first subtask
            first = (output.get('results') or [{}])[0] or {}
            self.failure = {
                'code': output.get('code') or first.get('code') or 'UNKNOWN',
                'message': output.get('message') or first.get('message') or 'Unknown error',
            }

    def record_error(self):
        """A poll that could not be completed still counts toward the schedule"""
        self.polls += 1


class ParaformerTranscriber:
    """Submit a media URL as an async job, poll it, and fetch the transcript document"""

    requires_download = False

    def __init__(self, api_key: str, base_url: str = "https://dashscope.aliyuncs.com",
                 model: str = "paraformer-v2", downloader=None, resolve_redirects: bool = True,
                 schedule: Optional[PollSchedule] = None, request_timeout: int = 60,
                 upload_timeout: int = 600,
                 clock: Callable[[], float] = time.monotonic):
        if not api_key:
            raise TranscriptionError("DASHSCOPE_API_KEY is not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.downloader = downloader
        self.resolve_redirects = resolve_redirects
        self.schedule = schedule or PollSchedule()
        self.request_timeout = request_timeout
        self.upload_timeout = upload_timeout
        self.clock = clock

    def _headers(self, **extra) -> Dict[str, str]:
        headers = {'Authorization': f'Bearer {self.api_key}'}
        headers.update(extra)
        return headers

    async def transcribe(self, audio_path: Optional[Path] = None, audio_url: Optional[str] = None,
                         correlation_id: Optional[str] = None) -> TranscriptionResult:
        cid = correlation_id or generate_correlation_id()
        if not audio_url:
            raise TranscriptionError("DashScope transcription requires audio URL but none provided")

        source_url = audio_url
        if self.resolve_redirects:
            async with RedirectResolver() as resolver:
                source_url, _ = await resolver.resolve_redirect_chain(audio_url)

        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            try:
                return await self._run_job(session, source_url, cid)
            except TranscriptionTaskFailed as e:
                if not e.is_fetch_failure or self.downloader is None:
                    raise
                logger.warning(f"[{cid}] Remote side could not fetch audio ({e.code}), uploading a local copy")

            oss_url = await self._upload_from_source(session, audio_url, cid)
            return await self._run_job(session, oss_url, cid, oss_resolve=True)

    async def _run_job(self, session: aiohttp.ClientSession, file_url: str, cid: str,
                       oss_resolve: bool = False) -> TranscriptionResult:
        task_id = await self.submit(session, file_url, cid, oss_resolve=oss_resolve)
        output = await self.poll(session, task_id, cid)
        return await self.fetch_result(session, output, task_id, cid)

    async def submit(self, session: aiohttp.ClientSession, file_url: str, cid: str,
                     oss_resolve: bool = False) -> str:
        headers = self._headers(**{'X-DashScope-Async': 'enable', 'Content-Type': 'application/json'})
        if oss_resolve:
            headers['X-DashScope-OssResourceResolve'] = 'enable'
        body = {
            'model': self.model,
            'input': {'file_urls': [file_url]},
            'parameters': {'language_hints': LANGUAGE_HINTS},
        }

        async def submit_job():
            async with session.post(self.base_url + SUBMIT_PATH, json=body, headers=headers) as response:
                data = await self._read_json(response, "submit")
            return data

        logger.info(f"[{cid}] Submitting Paraformer job: {file_url[:80]}")
        data = await retry_with_backoff(
            submit_job,
            max_attempts=3,
            base_delay=5.0,
            exceptions=(aiohttp.ClientError, asyncio.TimeoutError),
            correlation_id=cid,
        )

        task_id = (data.get('output') or {}).get('task_id')
        if not task_id:
            raise TranscriptionError(f"Paraformer submit failed: no task_id in response. Response: {str(data)[:500]}")
        logger.info(f"[{cid}] Paraformer task submitted: {task_id}")
        return task_id

    async def poll(self, session: aiohttp.ClientSession, task_id: str, cid: str) -> Dict[str, Any]:
        """Poll until the task is terminal; returns the task's output block"""
        poller = TaskPoller(task_id, self.schedule, clock=self.clock)
        url = self.base_url + TASK_PATH.format(task_id=task_id)

        while not poller.done:
            delay = poller.next_delay()
            if delay is None:
                break
            await asyncio.sleep(delay)

            try:
                async with session.get(url, headers=self._headers()) as response:
                    data = await self._read_json(response, "poll")
            except (aiohttp.ClientError, asyncio.TimeoutError, TranscriptionError) as e:
                poller.record_error()
                logger.warning(f"[{cid}] Paraformer poll error (will retry): {e}")
                continue

            poller.record(data.get('output') or {})
            logger.info(
                f"[{cid}] Paraformer task {task_id}: {poller.state.value} "
                f"(poll {poller.polls}, {poller.elapsed / 60:.1f} min)"
            )

        if poller.state == PollState.TIMED_OUT:
            raise TranscriptionTimeout(
                f"Paraformer task timed out after {round(poller.elapsed / 60)} minutes (taskId: {task_id})"
            )
        if poller.state == PollState.FAILED:
            raise TranscriptionTaskFailed(poller.failure['code'], poller.failure['message'], task_id)
        return poller.output

    async def fetch_result(self, session: aiohttp.ClientSession, output: Dict[str, Any], task_id: str,
                           cid: str) -> TranscriptionResult:
        results = output.get('results') or []
        if not results:
            raise TranscriptionError('Paraformer task succeeded but no results returned')

        first = results[0]
        if first.get('subtask_status') != 'SUCCEEDED':
            code = first.get('code') or first.get('subtask_status') or 'UNKNOWN'
            raise TranscriptionTaskFailed(code, first.get('message', ''), task_id)

        transcription_url = first.get('transcription_url')
        if not transcription_url:
            raise TranscriptionError('Paraformer: no transcription_url in result')

        # transcription_url is a pre-signed public link; no auth header
        async with session.get(transcription_url) as response:
            document = await self._read_json(response, "fetch result")

        text = " ".join(
            t.get('text', '') for t in document.get('transcripts') or [] if t.get('text')
        ).strip()
        duration_ms = (document.get('properties') or {}).get('original_duration_in_milliseconds')
        duration = duration_ms / 1000 if duration_ms else None

        logger.info(f"[{cid}] Paraformer transcription complete: {len(text)} chars")
        return TranscriptionResult(text=text, language='zh', duration=duration)

    async def _upload_from_source(self, session: aiohttp.ClientSession, audio_url: str, cid: str) -> str:
        local_file = await self.downloader.download(audio_url, cid)
        try:
            return await self.upload_file(session, local_file, cid)
        finally:
            local_file.unlink(missing_ok=True)

    async def upload_file(self, session: aiohttp.ClientSession, local_file: Path, cid: str) -> str:
        """Upload through DashScope's temporary storage; returns an oss:// locator"""
        params = {'action': 'getPolicy', 'model': self.model}
        async with session.get(self.base_url + UPLOAD_POLICY_PATH, params=params,
                               headers=self._headers()) as response:
            policy = (await self._read_json(response, "upload policy")).get('data') or {}

        if not policy.get('upload_host') or not policy.get('upload_dir'):
            raise TranscriptionError(f"Upload policy incomplete: {str(policy)[:300]}")

        key = f"{policy['upload_dir']}/{local_file.name}"
        size_mb = local_file.stat().st_size / 1024 / 1024
        # Whole-episode upload has its own time budget
        timeout = aiohttp.ClientTimeout(total=self.upload_timeout)

        with open(local_file, 'rb') as audio:
            form = aiohttp.FormData()
            form.add_field('OSSAccessKeyId', policy.get('oss_access_key_id', ''))
            form.add_field('Signature', policy.get('signature', ''))
            form.add_field('policy', policy.get('policy', ''))
            form.add_field('x-oss-object-acl', policy.get('x_oss_object_acl', 'private'))
            form.add_field('x-oss-forbid-overwrite', policy.get('x_oss_forbid_overwrite', 'true'))
            form.add_field('key', key)
            form.add_field('success_action_status', '200')
            form.add_field('file', audio, filename=local_file.name)

            logger.info(f"[{cid}] Uploading {local_file.name} ({size_mb:.1f} MB)")
            async with session.post(policy['upload_host'], data=form, timeout=timeout) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TranscriptionError(f"Upload failed: HTTP {response.status} {body[:300]}")

        logger.info(f"[{cid}] Uploaded {local_file.name} ({size_mb:.1f} MB)")
        return f"oss://{key}"

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse, step: str) -> Dict[str, Any]:
        """Server errors and throttling raise ClientResponseError (retryable); other 4xx do not"""
        if response.status >= 500 or response.status == 429:
            response.raise_for_status()
        if response.status >= 400:
            body = await response.text()
            raise TranscriptionError(f"Paraformer {step} failed: HTTP {response.status} {body[:300]}")
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise TranscriptionError(f"Paraformer {step} returned invalid JSON: {e}") from e
