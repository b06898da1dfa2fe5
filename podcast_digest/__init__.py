"""Podcast Digest - transcribe and analyze podcast episodes"""

__version__ = "1.0.0"
