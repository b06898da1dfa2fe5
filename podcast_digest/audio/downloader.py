"""Streaming audio download into the temp directory"""

import asyncio
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import aiofiles
import aiohttp

from ..exceptions import AudioDownloadError
from ..utils.helpers import retry_with_backoff, generate_correlation_id, temp_file_tag
from ..utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = 'PodcastDigest/2.0'
PROGRESS_STEP_BYTES = 5 * 1024 * 1024


class AudioDownloader:
    """Download remote audio to a local file with retries"""

    def __init__(self, output_dir: Path, timeout: int = 300, max_attempts: int = 3,
                 base_delay: float = 5.0):
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.chunk_size = 64 * 1024

    def _output_path(self, url: str, cid: str) -> Path:
        suffix = Path(urlparse(url).path).suffix or '.mp3'
        return self.output_dir / f"download_{temp_file_tag(cid)}{suffix}"

    async def download(self, url: str, correlation_id: Optional[str] = None) -> Path:
        """Download url and return the local path; raises AudioDownloadError after retries"""
        cid = correlation_id or generate_correlation_id()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_file = self._output_path(url, cid)
        logger.info(f"[{cid}] Downloading audio: {url[:100]} -> {output_file.name}")

        async def download_once():
            await self._stream_to_file(url, output_file, cid)

        try:
            await retry_with_backoff(
                download_once,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                exceptions=(aiohttp.ClientError, AudioDownloadError, asyncio.TimeoutError),
                correlation_id=cid,
            )
        except Exception:
            if output_file.exists():
                output_file.unlink()
            raise

        size_mb = output_file.stat().st_size / 1024 / 1024
        logger.info(f"[{cid}] Audio downloaded: {output_file.name} ({size_mb:.1f} MB)")
        return output_file

    async def _stream_to_file(self, url: str, output_file: Path, cid: str):
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout, headers={'User-Agent': USER_AGENT}) as session:
            async with session.get(url, allow_redirects=True) as response:
                if response.status not in (200, 206):
                    raise AudioDownloadError(f"Download failed: HTTP {response.status}")

                content_type = response.headers.get('Content-Type', '').lower()
                if 'text/html' in content_type:
                    raise AudioDownloadError("Received HTML instead of audio")

                total_size = int(response.headers.get('Content-Length', 0) or 0)
                downloaded = 0
                next_report = PROGRESS_STEP_BYTES

                async with aiofiles.open(output_file, 'wb') as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if total_size > 0 and downloaded >= next_report:
                            progress = int(downloaded / total_size * 100)
                            logger.info(f"[{cid}]    Progress: {progress}%")
                            next_report += PROGRESS_STEP_BYTES

        if downloaded == 0:
            raise AudioDownloadError("Downloaded file is empty")
