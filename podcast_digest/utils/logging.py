"""Logging configuration for Podcast Digest"""

import logging
from pathlib import Path
from typing import Optional, Union


def setup_logging(log_file: Optional[Union[str, Path]] = "podcast_digest.log",
                  level: str = "INFO") -> logging.Logger:
    """Set up logging configuration"""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    # Suppress verbose HTTP client logging from the OpenAI SDK
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return logging.getLogger("podcast_digest")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    return logging.getLogger(name)
