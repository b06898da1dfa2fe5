"""Utility helper functions"""

import re
import uuid
import random
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def generate_correlation_id() -> str:
    """Short id used to tie together the log lines of one job"""
    return str(uuid.uuid4())[:8]


def temp_file_tag(correlation_id: str) -> str:
    """Name fragment for temp files, unique even when jobs share a correlation id"""
    return f"{safe_filename(correlation_id)[:40]}_{uuid.uuid4().hex[:8]}"


def safe_filename(text: str) -> str:
    """Replace characters that are invalid in file or directory names"""
    safe_text = re.sub(r'[/\\?%*:|"<>]', '-', text or '')
    safe_text = safe_text.strip().strip('.')
    return safe_text[:100] or 'untitled'


def format_duration(seconds: float) -> str:
    """Format seconds as e.g. '1h 5m' or '42m'; empty string for unknown"""
    if not seconds or seconds <= 0:
        return ""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def calculate_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0,
                            jitter: bool = True) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: The attempt that just failed (1-based)
        base_delay: Base delay in seconds
        max_delay: Upper bound for the returned delay
        jitter: Add a uniform random value up to half of base_delay

    Returns:
        Delay in seconds, never above max_delay
    """
    delay = base_delay * (2 ** (attempt - 1))
    if jitter:
        delay += random.uniform(0, 0.5 * base_delay)
    return min(delay, max_delay)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    correlation_id: Optional[str] = None,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
) -> T:
    """
    Retry an async callable with exponential backoff and jitter.

    Args:
        func: Zero-argument coroutine function to call
        max_attempts: Maximum number of attempts
        base_delay: Base delay between retries
        max_delay: Maximum delay between retries
        exceptions: Exception types worth retrying; anything else propagates at once
        correlation_id: Optional correlation ID for logging
        on_retry: Called with (error, attempt) before each sleep

    Returns:
        Result from the first successful call

    Raises:
        The last exception once all attempts fail
    """
    cid = correlation_id or generate_correlation_id()
    name = getattr(func, '__name__', 'operation')

    for attempt in range(1, max_attempts + 1):
        try:
            result = await func()
            if attempt > 1:
                logger.info(f"[{cid}] {name} succeeded after {attempt} attempts")
            return result
        except exceptions as e:
            if attempt >= max_attempts:
                logger.error(f"[{cid}] All {max_attempts} attempts failed for {name}: {str(e)[:200]}")
                raise

            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"[{cid}] Attempt {attempt}/{max_attempts} failed for {name}: {str(e)[:200]}. "
                f"Retrying in {delay:.1f}s...",
                extra={'attempt': attempt, 'delay': delay},
            )
            if on_retry:
                on_retry(e, attempt)
            await asyncio.sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")
