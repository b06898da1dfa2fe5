"""
Redirect chain resolver for podcast audio URLs.
Tracking/analytics redirects can stop a remote downloader from reaching the file.
"""

import asyncio
from typing import List, Tuple
from urllib.parse import urljoin

import aiohttp

from ..utils.logging import get_logger

logger = get_logger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
AUDIO_CONTENT_TYPES = ('audio/', 'application/octet-stream')


class RedirectResolver:
    """Resolves redirect chains to find direct CDN URLs"""

    def __init__(self, max_redirects: int = 10, timeout: int = 20):
        self.max_redirects = max_redirects
        self.timeout = timeout
        self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session and not self.session.closed:
            await self.session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    'User-Agent': 'PodcastDigest/2.0',
                    'Accept': 'audio/mpeg, audio/mp4, audio/*',
                }
            )
        return self.session

    async def resolve_redirect_chain(self, url: str) -> Tuple[str, List[str]]:
        """
        Follow redirects with HEAD requests.

        Returns:
            Tuple of (final_url, urls visited before it). On any error the
            last URL reached is returned.
        """
        session = await self._get_session()
        chain: List[str] = []
        current_url = url

        for _ in range(self.max_redirects):
            try:
                async with session.head(current_url, allow_redirects=False) as response:
                    content_type = response.headers.get('Content-Type', '').lower()
                    if any(t in content_type for t in AUDIO_CONTENT_TYPES):
                        break

                    if response.status not in REDIRECT_STATUSES:
                        if response.status >= 400:
                            logger.warning(f"HTTP {response.status} while resolving: {current_url[:80]}")
                        break

                    location = response.headers.get('Location')
                    if not location:
                        logger.warning(f"Redirect without Location header at: {current_url[:80]}")
                        break

                    chain.append(current_url)
                    current_url = urljoin(current_url, location)
                    logger.debug(f"Following redirect -> {current_url[:80]}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Error resolving redirect at {current_url[:80]}: {e}")
                break

        if chain:
            logger.info(f"Resolved audio URL after {len(chain)} redirect(s)")
        return current_url, chain
