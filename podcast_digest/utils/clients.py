"""API client construction

Clients are built once by the caller (see main.py) and handed to the
components that need them.
"""

import openai
from openai import OpenAI

from ..config import Settings
from .logging import get_logger

logger = get_logger(__name__)

# Errors worth another attempt; auth and bad-request errors are not
TRANSIENT_API_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    ConnectionError,
    TimeoutError,
)


def create_openai_client(settings: Settings, for_analysis: bool = True) -> OpenAI:
    """Build an OpenAI SDK client.

    When the analysis provider is DashScope the same SDK is pointed at
    DashScope's OpenAI-compatible endpoint.
    """
    if for_analysis and settings.analysis_provider == "dashscope":
        api_key = settings.dashscope_api_key
        base_url = f"{settings.dashscope_base_url}/compatible-mode/v1"
    else:
        api_key = settings.openai_api_key
        base_url = settings.openai_base_url

    client = OpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=300.0,  # 5 minute timeout for long transcriptions and analyses
        max_retries=0   # We handle retries ourselves
    )
    logger.info(f"OpenAI client initialized (base_url={base_url or 'default'})")
    return client
